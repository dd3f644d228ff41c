#!/usr/bin/env python
from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from requests.exceptions import SSLError, Timeout

from snowflake.engine.errorcode import ER_FAILED_TO_REQUEST, ER_REQUEST_TIMEOUT
from snowflake.engine.errors import (
    OperationalError,
    RequestCancelledError,
    RequestTimeoutError,
)
from snowflake.engine.network import (
    RestRequest,
    RetryTransport,
    SnowflakeAuth,
    is_retryable_http_code,
)
from snowflake.engine.time_util import TimeoutBackoffCtx

from .mock_utils import mock_request_with_action, zero_backoff

QUERY_URL = (
    "https://testaccount.snowflakecomputing.com:443/queries/v1/query-request"
    "?requestId=1234&request_guid=guid-0"
)
CHUNK_URL = "https://sfc-stage.s3.amazonaws.com/results/data_0_0_1?x-amz-signature=abc"


def _ok():
    return MagicMock(status_code=200, close=lambda: None)


def _status(code):
    return MagicMock(status_code=code, close=lambda: None)


def _query(url):
    return parse_qs(urlsplit(url).query)


@pytest.mark.parametrize(
    "code, retryable",
    [
        (200, False),
        (400, False),
        (401, False),
        (403, True),
        (404, False),
        (408, True),
        (429, False),
        (500, True),
        (503, True),
        (504, True),
        (599, True),
    ],
)
def test_is_retryable_http_code(code, retryable):
    assert is_retryable_http_code(code) is retryable


def test_retry_until_success(session_manager):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    with patch.object(
        requests.Session,
        "request",
        side_effect=[_status(503), _status(500), _ok()],
    ) as mock_request:
        ret = transport.send(RestRequest("POST", QUERY_URL, rest_timeout=None))

    assert ret.status_code == 200
    assert mock_request.call_count == 3

    urls = [c.kwargs["url"] for c in mock_request.call_args_list]
    assert "retryCount" not in _query(urls[0])
    assert _query(urls[1])["retryCount"] == ["1"]
    assert _query(urls[2])["retryCount"] == ["2"]
    # every attempt carries a new request_guid, the request id stays
    guids = {_query(u)["request_guid"][0] for u in urls}
    assert len(guids) == 3
    assert {_query(u)["requestId"][0] for u in urls} == {"1234"}


@pytest.mark.parametrize("code", [403, 408])
def test_retry_on_forbidden_and_request_timeout(session_manager, code):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    with patch.object(
        requests.Session, "request", side_effect=[_status(code), _ok()]
    ) as mock_request:
        ret = transport.send(RestRequest("GET", CHUNK_URL, rest_timeout=None))
    assert ret.status_code == 200
    assert mock_request.call_count == 2
    # no retry rule applies to this URL
    assert mock_request.call_args_list[1].kwargs["url"] == CHUNK_URL


@pytest.mark.parametrize("code", [400, 401, 404, 429])
def test_non_retryable_status_is_returned(session_manager, code):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    with patch.object(
        requests.Session, "request", return_value=_status(code)
    ) as mock_request:
        ret = transport.send(RestRequest("POST", QUERY_URL))
    assert ret.status_code == code
    assert mock_request.call_count == 1


@pytest.mark.parametrize(
    "error", [requests.exceptions.ConnectionError(), Timeout("read timed out")]
)
def test_retry_on_client_error(session_manager, error):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    with patch.object(
        requests.Session, "request", side_effect=[error, error, _ok()]
    ) as mock_request:
        ret = transport.send(RestRequest("POST", QUERY_URL, rest_timeout=None))
    assert ret.status_code == 200
    assert mock_request.call_count == 3


def test_non_retryable_ssl_error(session_manager):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    with patch.object(
        requests.Session,
        "request",
        side_effect=SSLError("certificate verify failed"),
    ) as mock_request:
        with pytest.raises(OperationalError) as e:
            transport.send(RestRequest("POST", QUERY_URL))
    assert e.value.errno == ER_FAILED_TO_REQUEST
    assert mock_request.call_count == 1


@pytest.mark.parametrize("next_action", ("RETRY", "ERROR"))
def test_request_timeout(session_manager, next_action):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    with patch.object(
        requests.Session,
        "request",
        side_effect=mock_request_with_action(next_action, sleep=0.2),
    ) as mock_request:
        with pytest.raises(RequestTimeoutError) as e:
            transport.send(RestRequest("POST", QUERY_URL, rest_timeout=1))
    assert e.value.errno == ER_REQUEST_TIMEOUT
    assert 1 < mock_request.call_count < 10


def test_cancelled_before_send(session_manager, cancel_token):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    cancel_token.cancel()
    with patch.object(requests.Session, "request") as mock_request:
        with pytest.raises(RequestCancelledError):
            transport.send(RestRequest("POST", QUERY_URL), cancel_token=cancel_token)
    assert not mock_request.called


def test_cancel_interrupts_backoff(session_manager, cancel_token):
    def long_backoff():
        while True:
            yield 60

    def cancel_and_fail(*args, **kwargs):
        cancel_token.cancel()
        return _status(503)

    transport = RetryTransport(session_manager, backoff_policy=long_backoff)
    with patch.object(
        requests.Session, "request", side_effect=cancel_and_fail
    ) as mock_request:
        with pytest.raises(RequestCancelledError):
            transport.send(
                RestRequest("POST", QUERY_URL, rest_timeout=None),
                cancel_token=cancel_token,
            )
    assert mock_request.call_count == 1


def test_cancel_interrupts_stalled_request(
    session_manager, cancel_token, stalled_server
):
    transport = RetryTransport(session_manager, backoff_policy=zero_backoff)
    request = RestRequest(
        "POST",
        f"{stalled_server}/queries/v1/query-request?requestId=1",
        http_timeout=16,
        rest_timeout=60,
    )
    timer = threading.Timer(0.3, cancel_token.cancel)
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(RequestCancelledError):
            transport.send(request, cancel_token=cancel_token)
    finally:
        timer.cancel()
    assert time.monotonic() - start < 5


def test_attempt_timeout_bounded_by_deadline():
    unbounded = TimeoutBackoffCtx(timeout=None, backoff_generator=zero_backoff)
    request = RestRequest("GET", CHUNK_URL, http_timeout=16)
    assert request.attempt_timeout(unbounded) == 16

    ctx = TimeoutBackoffCtx(timeout=5, backoff_generator=zero_backoff)
    ctx.set_start_time()
    assert request.attempt_timeout(ctx) <= 5

    request.http_timeout = None
    assert 0 < request.attempt_timeout(ctx) <= 5
    assert RestRequest("GET", CHUNK_URL, http_timeout=None).attempt_timeout(
        unbounded
    ) is None


def test_snowflake_auth_header():
    prepared = requests.Request(
        "POST", QUERY_URL, headers={"Authorization": "stale"}
    ).prepare()
    SnowflakeAuth("SESSION_TOKEN")(prepared)
    assert prepared.headers["Authorization"] == 'Snowflake Token="SESSION_TOKEN"'

    SnowflakeAuth(None)(prepared)
    assert prepared.headers["Authorization"] == "Basic"
