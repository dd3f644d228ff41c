#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import asyncio
import functools
import json
import logging
import re
import threading
import uuid
from enum import Enum, unique
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping
from urllib.parse import urlencode

from .auth.factory import get_authenticator
from .constants import (
    ACCEPT_TYPE_APPLICATION_SNOWFLAKE,
    CONTENT_TYPE_APPLICATION_JSON,
    HTTP_HEADER_ACCEPT,
    HTTP_HEADER_CONTENT_TYPE,
    HTTP_HEADER_SERVICE_NAME,
    HTTP_HEADER_USER_AGENT,
    KNOWN_SESSION_PARAMETERS,
    PARAM_DELETE,
    PARAM_REQUEST_GUID,
    PARAM_REQUEST_ID,
    PARAMETER_CLIENT_PREFETCH_THREADS,
    PARAMETER_CLIENT_VALIDATE_DEFAULT_PARAMETERS,
    PARAMETER_SERVICE_NAME,
    REQUEST_TYPE_RENEW,
    SESSION_EXPIRED_GS_CODE,
    SESSION_PATH,
    TOKEN_REQUEST_PATH,
    ChunkDownloaderVersion,
    ChunkParserVersion,
)
from .description import CLIENT_NAME
from .errorcode import (
    ER_CONNECTION_IS_CLOSED,
    ER_FAILED_TO_RENEW_SESSION,
    ER_INVALID_APPLICATION,
    ER_INVALID_RESPONSE,
    ER_SESSION_ALREADY_OPEN,
)
from .errors import DatabaseError, Error, InterfaceError, ProgrammingError
from .network import (
    DEFAULT_HTTP_TIMEOUT,
    OK,
    USER_AGENT,
    RestRequest,
    RetryTransport,
    SnowflakeAuth,
    raise_failed_request_error,
)
from .proxy import get_no_proxy
from .secret_detector import SecretDetector
from .session_manager import HTTP_CLIENT_REGISTRY, HttpConfig, SessionManager
from .session_properties import SessionProperties, SessionProperty
from .sqlstate import (
    SQLSTATE_CONNECTION_ALREADY_EXISTS,
    SQLSTATE_CONNECTION_NOT_EXISTS,
    SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
)

if TYPE_CHECKING:  # pragma: no cover
    from .cancellation import CancellationToken
    from .chunk_downloader import ChunkDownloader

logger = logging.getLogger(__name__)

APPLICATION_RE = re.compile(r"^[A-Za-z][A-Za-z0-9.\-_]{1,50}$")

# seconds allowed for the best-effort session delete on close
DELETE_SESSION_TIMEOUT = 5


@unique
class SessionState(Enum):
    CLOSED = "CLOSED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"


def make_http_config(properties: SessionProperties) -> HttpConfig:
    """Builds the network configuration a Session's HTTP client is keyed by."""
    if not properties.use_proxy:
        return HttpConfig(insecure_mode=properties.insecure_mode)
    return HttpConfig(
        proxy_host=properties.get(SessionProperty.PROXYHOST),
        proxy_port=properties.get(SessionProperty.PROXYPORT),
        proxy_user=properties.get(SessionProperty.PROXYUSER),
        proxy_password=properties.get(SessionProperty.PROXYPASSWORD),
        no_proxy=get_no_proxy(properties.get(SessionProperty.NONPROXYHOSTS)),
        insecure_mode=properties.insecure_mode,
    )


class Session:
    """A logged in Snowflake session.

    The Session owns the session and master tokens, the resolved connection
    properties and the parameters negotiated with the server. All REST calls are
    built here and sent through one :class:`RetryTransport`.

    Examples:
        >>> session = Session("account=testaccount;user=testuser;password=secret")
        >>> with session:
        ...     session.open()
        ...     ret = session.request(QUERY_REQUEST_PATH, body={"sqlText": "select 1"})
    """

    def __init__(
        self,
        properties: SessionProperties | Mapping[str, Any] | str | None = None,
        *,
        transport: RetryTransport | None = None,
        session_manager: SessionManager | None = None,
        backoff_policy: Callable[[], Iterator[int]] | None = None,
        chunk_downloader_version: int = ChunkDownloaderVersion.SLIDING_WINDOW,
        chunk_parser_version: int = ChunkParserVersion.BYTE_SCANNER,
        errorhandler: Callable[..., None] | None = None,
        **kwargs: Any,
    ) -> None:
        if isinstance(properties, str):
            properties = SessionProperties.from_connection_string(properties)
        if not isinstance(properties, SessionProperties) or kwargs:
            if isinstance(properties, SessionProperties):
                values = {prop.name: value for prop, value in properties.items()}
            else:
                values = dict(properties or {})
            # keyword arguments override the given properties
            values.update(kwargs)
            properties = SessionProperties.from_dict(values)
        self._properties: SessionProperties = properties

        self.messages: list[tuple[type[Error], dict[str, Any]]] = []
        self.errorhandler = errorhandler

        self._lock_token = threading.Lock()
        self._lock_state = threading.Lock()
        self._session_token: str | None = None
        self._master_token: str | None = None
        self._session_id: int | None = None
        self._database: str | None = None
        self._schema: str | None = None
        self._server_version: str | None = None
        self._state = SessionState.CLOSED

        self._parameters: dict[str, Any] = {}
        if properties.validate_default_parameters:
            self._parameters[PARAMETER_CLIENT_VALIDATE_DEFAULT_PARAMETERS] = True

        self._chunk_downloader_version = ChunkDownloaderVersion(chunk_downloader_version)
        self._chunk_parser_version = ChunkParserVersion(chunk_parser_version)

        if transport is None:
            if session_manager is None:
                session_manager = HTTP_CLIENT_REGISTRY.get(make_http_config(properties))
            transport = RetryTransport(session_manager, backoff_policy=backoff_policy)
        self._transport = transport

    def __repr__(self) -> str:
        return f"Session(state={self._state.value}, properties={self._properties!r})"

    def __enter__(self) -> Session:
        """Context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager that closes the session on exit."""
        self.close()

    @property
    def properties(self) -> SessionProperties:
        return self._properties

    @property
    def parameters(self) -> dict[str, Any]:
        return self._parameters

    @property
    def transport(self) -> RetryTransport:
        return self._transport

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == SessionState.OPEN

    @property
    def session_token(self) -> str | None:
        return self._session_token

    @property
    def master_token(self) -> str | None:
        return self._master_token

    @property
    def session_id(self) -> int | None:
        return self._session_id

    @property
    def database(self) -> str | None:
        return self._database

    @property
    def schema(self) -> str | None:
        return self._schema

    @property
    def server_version(self) -> str | None:
        return self._server_version

    @property
    def application(self) -> str:
        return self._properties.application or CLIENT_NAME

    @property
    def server_url(self) -> str:
        properties = self._properties
        return f"{properties.scheme}://{properties.host}:{properties.port}"

    @property
    def service_name(self) -> str | None:
        return self._parameters.get(PARAMETER_SERVICE_NAME)

    @property
    def prefetch_threads(self) -> int:
        """Server negotiated value wins over the connection property."""
        value = self._parameters.get(PARAMETER_CLIENT_PREFETCH_THREADS)
        if value is None:
            return self._properties.prefetch_threads
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.debug("ignoring invalid %s: %s", PARAMETER_CLIENT_PREFETCH_THREADS, value)
            return self._properties.prefetch_threads

    def _validate_application(self) -> None:
        application = self._properties.application
        if application is not None and not APPLICATION_RE.match(application):
            Error.errorhandler_wrapper(
                self,
                ProgrammingError,
                {
                    "msg": f"Invalid application name: {application}",
                    "errno": ER_INVALID_APPLICATION,
                    "sqlstate": SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                },
            )

    def open(self, cancel_token: CancellationToken | None = None) -> None:
        """Logs in with the configured authenticator."""
        with self._lock_state:
            if self._state != SessionState.CLOSED:
                raise InterfaceError(
                    msg=f"Session is already {self._state.value.lower()}",
                    errno=ER_SESSION_ALREADY_OPEN,
                    sqlstate=SQLSTATE_CONNECTION_ALREADY_EXISTS,
                )
            self._state = SessionState.CONNECTING

        logger.info(
            "Snowflake session opening: account=%s, user=%s, host=%s",
            self._properties.account,
            self._properties.user,
            self._properties.host,
        )
        try:
            self._validate_application()
            auth_instance = get_authenticator(self._properties)
            auth_instance.login(self, cancel_token=cancel_token)
        except BaseException:
            self._clear_tokens()
            with self._lock_state:
                self._state = SessionState.CLOSED
            raise

        with self._lock_state:
            self._state = SessionState.OPEN
        logger.debug("session opened, session id: %s", self._session_id)

    async def open_async(self, cancel_token: CancellationToken | None = None) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, functools.partial(self.open, cancel_token))

    def close(self, cancel_token: CancellationToken | None = None) -> None:
        """Deletes the session on the server. Errors in deleting are ignored."""
        with self._lock_token:
            token = self._session_token
        if token is None:
            with self._lock_state:
                self._state = SessionState.CLOSED
            return

        logger.debug("closing session %s", self._session_id)
        try:
            request = self.build_request(
                SESSION_PATH, body={}, query={PARAM_DELETE: "true"}
            )
            request.rest_timeout = DELETE_SESSION_TIMEOUT
            ret = self._send(request, cancel_token)
            if not ret.get("success"):
                err = ret.get("message")
                if err is not None and ret.get("data"):
                    err += ret["data"].get("errorMessage", "")
                logger.debug("error in deleting session. ignoring...: %s", err)
        except Exception as e:
            logger.debug("error in deleting session. ignoring...: %s", e)
        finally:
            self._clear_tokens()
            with self._lock_state:
                self._state = SessionState.CLOSED

    async def close_async(self, cancel_token: CancellationToken | None = None) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, functools.partial(self.close, cancel_token))

    def renew_token(self, cancel_token: CancellationToken | None = None) -> dict[str, Any]:
        """Renews the session token with the master token."""
        with self._lock_token:
            master_token = self._master_token
            old_session_token = self._session_token
        logger.debug(
            "updating session. master_token: %s",
            "****" if master_token else None,
        )
        if master_token is None:
            Error.errorhandler_wrapper(
                self,
                DatabaseError,
                {
                    "msg": "Connection is closed",
                    "errno": ER_CONNECTION_IS_CLOSED,
                    "sqlstate": SQLSTATE_CONNECTION_NOT_EXISTS,
                },
            )
            return {}

        request = self.build_request(
            TOKEN_REQUEST_PATH,
            body={
                "oldSessionToken": old_session_token,
                "requestType": REQUEST_TYPE_RENEW,
            },
        )
        request.auth = SnowflakeAuth(master_token)
        request.rest_timeout = None
        ret = self._send(request, cancel_token)

        data = ret.get("data") or {}
        if ret.get("success") and data.get("sessionToken"):
            with self._lock_token:
                self._session_token = data["sessionToken"]
                self._master_token = data.get("masterToken") or master_token
            logger.debug("updating session completed")
            return ret

        err = ret.get("message")
        if err is not None and data:
            err += data.get("errorMessage", "")
        code = ret.get("code")
        try:
            errno = int(code) if code is not None else ER_FAILED_TO_RENEW_SESSION
        except (TypeError, ValueError):
            errno = ER_FAILED_TO_RENEW_SESSION
        Error.errorhandler_wrapper(
            self,
            ProgrammingError,
            {
                "msg": err or "Failed to renew the session",
                "errno": errno,
            },
        )
        return ret

    def build_request(
        self,
        path: str,
        body: Any = None,
        query: Mapping[str, Any] | None = None,
        method: str = "POST",
    ) -> RestRequest:
        params = dict(query or {})
        params[PARAM_REQUEST_ID] = str(uuid.uuid4())
        params[PARAM_REQUEST_GUID] = str(uuid.uuid4())
        url = f"{self.server_url}{path}?{urlencode(params)}"

        headers = {
            HTTP_HEADER_CONTENT_TYPE: CONTENT_TYPE_APPLICATION_JSON,
            HTTP_HEADER_ACCEPT: ACCEPT_TYPE_APPLICATION_SNOWFLAKE,
            HTTP_HEADER_USER_AGENT: USER_AGENT,
        }
        if self.service_name:
            headers[HTTP_HEADER_SERVICE_NAME] = self.service_name

        with self._lock_token:
            token = self._session_token
        return RestRequest(
            method=method,
            url=url,
            headers=headers,
            body=json.dumps(body) if body is not None else None,
            auth=SnowflakeAuth(token),
            rest_timeout=self._properties.connection_timeout,
            http_timeout=DEFAULT_HTTP_TIMEOUT,
        )

    def request(
        self,
        path: str,
        body: Any = None,
        query: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
        method: str = "POST",
    ) -> dict[str, Any]:
        """Sends a REST call and returns the decoded JSON response.

        An expired session is reported through the response (see
        :meth:`is_session_expired`). The caller decides whether to renew and resend.
        """
        request = self.build_request(path, body=body, query=query, method=method)
        return self._send(request, cancel_token)

    def _send(
        self, request: RestRequest, cancel_token: CancellationToken | None
    ) -> dict[str, Any]:
        response = self._transport.send(request, cancel_token=cancel_token)
        try:
            if response.status_code == OK:
                try:
                    ret = response.json()
                except ValueError as e:
                    _, masked_url, _ = SecretDetector.mask_secrets(request.url)
                    logger.debug("response body is not valid JSON: %s", e)
                    raise InterfaceError(
                        msg=f"Invalid JSON in the response to {request.method} "
                        f"{masked_url}: {e}",
                        errno=ER_INVALID_RESPONSE,
                    ) from e
                if isinstance(ret, dict):
                    self._merge_response_parameters(ret)
                return ret
            raise_failed_request_error(request.url, request.method, response)
        finally:
            response.close()

    def _merge_response_parameters(self, ret: Mapping[str, Any]) -> None:
        # parameters come either at the top level or under "data"
        if ret.get("parameters"):
            self._update_parameters(ret["parameters"])
        data = ret.get("data")
        if isinstance(data, dict) and data.get("parameters"):
            self._update_parameters(data["parameters"])

    @staticmethod
    def is_session_expired(ret: Mapping[str, Any]) -> bool:
        return str(ret.get("code")) == SESSION_EXPIRED_GS_CODE

    def process_login_response(self, ret: Mapping[str, Any]) -> None:
        """Stores the tokens and session info of a successful login."""
        data = ret.get("data") or {}
        with self._lock_token:
            self._session_token = data.get("token")
            self._master_token = data.get("masterToken")
        self._session_id = data.get("sessionId")
        self._server_version = data.get("serverVersion")
        session_info = data.get("sessionInfo") or {}
        self._database = session_info.get("databaseName")
        self._schema = session_info.get("schemaName")
        if data.get("parameters"):
            self._update_parameters(data["parameters"])
        logger.debug(
            "login succeeded, server version: %s, database: %s, schema: %s",
            self._server_version,
            self._database,
            self._schema,
        )

    def _update_parameters(self, parameters: list[Mapping[str, Any]]) -> None:
        for param in parameters:
            name = param.get("name")
            if name in KNOWN_SESSION_PARAMETERS:
                self._parameters[name] = param.get("value")
            else:
                logger.debug("ignoring unknown session parameter: %s", name)

    def _clear_tokens(self) -> None:
        with self._lock_token:
            self._session_token = None
            self._master_token = None

    def get_chunk_downloader(
        self,
        result_data: Mapping[str, Any],
        cancel_token: CancellationToken | None = None,
    ) -> ChunkDownloader | None:
        """Builds the configured downloader for the chunks of a query response.

        Returns None when the result has no remote chunks.
        """
        from .chunk_downloader import get_chunk_downloader

        chunks = result_data.get("chunks") or []
        if not chunks:
            return None
        return get_chunk_downloader(
            chunks,
            column_count=len(result_data.get("rowtype") or []),
            transport=self._transport,
            qrmk=result_data.get("qrmk"),
            chunk_headers=result_data.get("chunkHeaders"),
            prefetch_threads=self.prefetch_threads,
            version=self._chunk_downloader_version,
            parser_version=self._chunk_parser_version,
            cancel_token=cancel_token,
        )
