#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterator

from requests import PreparedRequest, Response
from requests.auth import AuthBase
from requests.exceptions import (
    ChunkedEncodingError,
    ConnectionError,
    SSLError,
    Timeout,
)
from urllib3.exceptions import ProtocolError

from .constants import HEADER_AUTHORIZATION_BASIC, HEADER_SNOWFLAKE_TOKEN, HTTP_HEADER_AUTHORIZATION
from .description import (
    CLIENT_NAME,
    IMPLEMENTATION,
    PLATFORM,
    PYTHON_VERSION,
    SNOWFLAKE_ENGINE_VERSION,
)
from .errorcode import ER_FAILED_TO_REQUEST, ER_HTTP_GENERAL_ERROR
from .errors import Error, HttpError, OperationalError, RequestCancelledError, RequestTimeoutError
from .secret_detector import SecretDetector
from .session_manager import SessionManager
from .sqlstate import SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED
from .time_util import TimeoutBackoffCtx
from .uri_updater import UriUpdater

if TYPE_CHECKING:  # pragma: no cover
    from requests import Session

    from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_REST_TIMEOUT = 120  # seconds
DEFAULT_HTTP_TIMEOUT = 16  # seconds

# HTTP codes
OK = 200
FORBIDDEN = 403
REQUEST_TIMEOUT = 408

USER_AGENT = f"{CLIENT_NAME}/{SNOWFLAKE_ENGINE_VERSION} ({PLATFORM}) {IMPLEMENTATION}/{PYTHON_VERSION}"

RETRYABLE_CLIENT_ERRORS = (
    ConnectionError,
    Timeout,
    ChunkedEncodingError,
    ProtocolError,  # from urllib3
)


def is_retryable_http_code(code: int) -> bool:
    """Decides whether code is a retryable HTTP issue."""
    return 500 <= code < 600 or code in (
        FORBIDDEN,  # 403
        REQUEST_TIMEOUT,  # 408
    )


def get_http_retryable_error(status_code: int) -> Error:
    return HttpError(
        msg=f"HTTP {status_code}: retryable server error",
        errno=ER_HTTP_GENERAL_ERROR + status_code,
    )


def raise_failed_request_error(url: str, method: str, response: Response) -> None:
    _, masked_url, _ = SecretDetector.mask_secrets(url)
    raise HttpError(
        msg=f"{response.status_code} {response.reason}: {method} {masked_url}",
        errno=ER_HTTP_GENERAL_ERROR + response.status_code,
        sqlstate=SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
    )


def is_econnreset_exception(e: Exception) -> bool:
    return "ECONNRESET" in repr(e)


class SnowflakeAuth(AuthBase):
    """Attaches HTTP Authorization header for Snowflake.

    Before login there is no token and the ``Basic`` placeholder is sent instead.
    """

    def __init__(self, token: str | None) -> None:
        self.token = token

    def __call__(self, r: PreparedRequest) -> PreparedRequest:
        """Modifies and returns the request."""
        if HTTP_HEADER_AUTHORIZATION in r.headers:
            del r.headers[HTTP_HEADER_AUTHORIZATION]
        if self.token:
            r.headers[HTTP_HEADER_AUTHORIZATION] = HEADER_SNOWFLAKE_TOKEN.format(
                token=self.token
            )
        else:
            r.headers[HTTP_HEADER_AUTHORIZATION] = HEADER_AUTHORIZATION_BASIC
        return r


def _close_abandoned_response(future: Future) -> None:
    if future.exception() is None:
        future.result().close()


@dataclass
class RestRequest:
    """One logical HTTP request and its timeouts.

    ``rest_timeout`` is the overall deadline across retries and ``http_timeout``
    bounds a single attempt; ``None`` means unbounded for either.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str | bytes | None = None
    auth: AuthBase | None = None
    rest_timeout: float | None = DEFAULT_REST_TIMEOUT
    http_timeout: float | None = DEFAULT_HTTP_TIMEOUT
    stream: bool = False

    def attempt_timeout(self, retry_ctx: TimeoutBackoffCtx) -> float | None:
        remaining = retry_ctx.remaining_time_millis
        if remaining is None:
            return self.http_timeout
        remaining_seconds = max(remaining / 1000, 0.001)
        if self.http_timeout is None:
            return remaining_seconds
        return min(self.http_timeout, remaining_seconds)


class RetryTransport:
    """Sends requests with exponential backoff until a non-retryable outcome.

    Retryable outcomes are 5xx, 403 and 408 responses plus connection level
    failures and per-attempt timeouts. Any other response is handed back to the
    caller untouched. Before each retry the URL is rewritten by a
    :class:`UriUpdater`. Running past the overall deadline raises
    :class:`RequestTimeoutError` and a cancelled token raises
    :class:`RequestCancelledError`.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        backoff_policy: Callable[[], Iterator[int]] | None = None,
    ) -> None:
        self._session_manager = session_manager
        self._backoff_policy = backoff_policy

    @property
    def session_manager(self) -> SessionManager:
        return self._session_manager

    def send(
        self,
        request: RestRequest,
        cancel_token: CancellationToken | None = None,
    ) -> Response:
        retry_ctx = TimeoutBackoffCtx(
            timeout=request.rest_timeout,
            backoff_generator=self._backoff_policy,
        )
        retry_ctx.set_start_time()
        updater = UriUpdater(request.url)

        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            logger.debug(
                "remaining request timeout: %s ms, retry cnt: %s",
                retry_ctx.remaining_time_millis
                if retry_ctx.timeout is not None
                else "N/A",
                retry_ctx.current_retry_count + 1,
            )
            cause = self._request_exec(request, retry_ctx, cancel_token)
            if isinstance(cause, Response):
                return cause

            if not retry_ctx.should_retry:
                self._raise_timeout(request, retry_ctx, cause)

            sleep_time = retry_ctx.next_sleep_time()
            logger.debug(
                "retrying: errorclass=%s, error=%s, counter=%s, sleeping=%s(s)",
                type(cause),
                cause,
                retry_ctx.current_retry_count + 1,
                sleep_time,
            )
            request.url = updater.update()
            self._sleep(sleep_time, cancel_token)
            retry_ctx.increment()

            if not retry_ctx.should_retry:
                self._raise_timeout(request, retry_ctx, cause)

    def _request_exec(
        self,
        request: RestRequest,
        retry_ctx: TimeoutBackoffCtx,
        cancel_token: CancellationToken | None = None,
    ) -> Response | Exception:
        """Runs one attempt. Returns the final response or the retryable cause."""
        with self._session_manager.use_requests_session(request.url) as session:
            kwargs = dict(
                method=request.method,
                url=request.url,
                headers=request.headers,
                data=request.body,
                timeout=request.attempt_timeout(retry_ctx),
                stream=request.stream,
                auth=request.auth,
            )
            try:
                if cancel_token is None:
                    raw_ret = session.request(**kwargs)
                else:
                    raw_ret = self._cancellable_request(session, kwargs, cancel_token)
            except SSLError as se:
                if is_econnreset_exception(se):
                    return se
                msg = f"Hit non-retryable SSL error, {str(se)}."
                logger.debug(msg)
                raise OperationalError(msg=msg, errno=ER_FAILED_TO_REQUEST) from se
            except RETRYABLE_CLIENT_ERRORS as err:
                logger.debug(
                    "Hit retryable client error. Retrying... Ignore the following "
                    f"error stack: {err}",
                    exc_info=True,
                )
                if is_econnreset_exception(err):
                    # the underlying connection is broken and can not be reused
                    try:
                        session.get_adapter(request.url).close()
                    except Exception as close_adapter_exc:
                        logger.debug(
                            "Ignored error caused by closing https connection failure: %s",
                            close_adapter_exc,
                        )
                return err

        if is_retryable_http_code(raw_ret.status_code):
            raw_ret.close()
            err = get_http_retryable_error(raw_ret.status_code)
            logger.debug(f"{err}. Retrying...")
            return err
        return raw_ret

    @staticmethod
    def _cancellable_request(
        session: Session, kwargs: dict[str, Any], cancel_token: CancellationToken
    ) -> Response:
        """Runs the attempt on its own thread and gives up on it once cancelled.

        A cancelled attempt is abandoned: the worker finishes on its own timeout
        and whatever response it gets is closed.
        """
        future: Future = Future()

        def attempt() -> None:
            future.set_running_or_notify_cancel()
            try:
                future.set_result(session.request(**kwargs))
            except BaseException as e:
                future.set_exception(e)

        woken = threading.Event()
        future.add_done_callback(lambda _: woken.set())
        cancel_token.add_callback(woken.set)
        try:
            threading.Thread(target=attempt, name="rest-attempt", daemon=True).start()
            woken.wait()
        finally:
            cancel_token.remove_callback(woken.set)
        if future.done():
            return future.result()

        logger.debug("request cancelled while in flight: %s", kwargs["method"])
        future.add_done_callback(_close_abandoned_response)
        # drops the idle pooled connections, the in-flight one goes with its worker
        session.close()
        raise RequestCancelledError()

    @staticmethod
    def _sleep(sleep_time: float, cancel_token: CancellationToken | None) -> None:
        if cancel_token is None:
            time.sleep(sleep_time)
        elif cancel_token.wait(sleep_time):
            raise RequestCancelledError()

    @staticmethod
    def _raise_timeout(
        request: RestRequest, retry_ctx: TimeoutBackoffCtx, cause: Any
    ) -> None:
        _, masked_url, _ = SecretDetector.mask_secrets(request.url)
        logger.error(
            "request timed out after %s attempts: %s %s, last error: %s",
            retry_ctx.current_retry_count + 1,
            request.method,
            masked_url,
            cause,
        )
        raise RequestTimeoutError(
            msg=f"Request to {request.method} {masked_url} timed out after "
            f"{retry_ctx.timeout} seconds. Last error: {cause}",
        )
