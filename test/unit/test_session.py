#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import asyncio
import json
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from snowflake.engine.constants import (
    LOGIN_REQUEST_PATH,
    QUERY_REQUEST_PATH,
    SESSION_PATH,
    ChunkDownloaderVersion,
    ChunkParserVersion,
)
from snowflake.engine.errorcode import (
    ER_HTTP_GENERAL_ERROR,
    ER_INVALID_APPLICATION,
    ER_INVALID_RESPONSE,
    ER_SESSION_ALREADY_OPEN,
    ER_UNKNOWN_AUTHENTICATOR,
)
from snowflake.engine.errors import (
    DatabaseError,
    HttpError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
)
from snowflake.engine.network import SnowflakeAuth
from snowflake.engine.session import Session, SessionState, make_http_config
from snowflake.engine.session_properties import SessionProperties

from .mock_utils import (
    ACCOUNT,
    PASSWORD,
    USER,
    login_response,
    mock_response,
    mock_session,
    sent_requests,
)

SERVER_URL = "https://testaccount.snowflakecomputing.com:443"


def _body(request):
    return json.loads(request.body)


def _query(request):
    return parse_qs(urlsplit(request.url).query)


def test_open_with_password():
    session = mock_session(
        [
            login_response(
                parameters=[
                    {"name": "CLIENT_PREFETCH_THREADS", "value": 8},
                    {"name": "TIMEZONE", "value": "UTC"},
                ]
            )
        ],
        warehouse="TESTWH",
        db="TESTDB",
        application="testapplication",
    )
    assert session.state == SessionState.CLOSED

    session.open()

    assert session.is_open
    assert session.session_token == "TOKEN"
    assert session.master_token == "MASTER_TOKEN"
    assert session.session_id == 1234
    assert session.database == "TESTDB"
    assert session.schema == "PUBLIC"
    assert session.server_version == "7.40.0"
    assert session.prefetch_threads == 8
    assert "TIMEZONE" not in session.parameters

    (request,) = sent_requests(session)
    assert request.url.startswith(SERVER_URL + LOGIN_REQUEST_PATH)
    assert _query(request)["warehouse"] == ["TESTWH"]
    assert _query(request)["databaseName"] == ["TESTDB"]
    assert "request_guid" in _query(request)
    data = _body(request)["data"]
    assert data["ACCOUNT_NAME"] == ACCOUNT
    assert data["LOGIN_NAME"] == USER
    assert data["PASSWORD"] == PASSWORD
    assert data["CLIENT_ENVIRONMENT"]["APPLICATION"] == "testapplication"
    assert data["SESSION_PARAMETERS"] == {"CLIENT_VALIDATE_DEFAULT_PARAMETERS": True}
    assert isinstance(request.auth, SnowflakeAuth)
    assert request.auth.token is None


def test_session_from_connection_string():
    session = Session(
        "account=testaccount;user=testuser;password=testpassword",
        transport=Mock(),
        port=8443,
    )
    assert session.properties.user == "testuser"
    assert session.server_url == "https://testaccount.snowflakecomputing.com:8443"


def test_open_twice():
    session = mock_session([login_response()])
    session.open()
    with pytest.raises(InterfaceError) as e:
        session.open()
    assert e.value.errno == ER_SESSION_ALREADY_OPEN
    assert session.is_open


def test_open_login_failure():
    session = mock_session(
        [
            mock_response(
                json_body={
                    "success": False,
                    "code": "390100",
                    "message": "Incorrect username or password was specified.",
                    "data": None,
                }
            )
        ]
    )
    with pytest.raises(DatabaseError) as e:
        session.open()
    assert e.value.errno == 390100
    assert "Incorrect username or password" in e.value.msg
    assert session.state == SessionState.CLOSED
    assert session.session_token is None
    # a failed open leaves the session reusable
    session.transport.send.side_effect = [login_response()]
    session.open()
    assert session.is_open


def test_open_http_failure():
    session = mock_session([mock_response(status_code=404, reason="Not Found")])
    with pytest.raises(HttpError) as e:
        session.open()
    assert e.value.errno == ER_HTTP_GENERAL_ERROR + 404
    assert session.state == SessionState.CLOSED


def test_open_invalid_application():
    session = mock_session(application="1 bad name")
    with pytest.raises(ProgrammingError) as e:
        session.open()
    assert e.value.errno == ER_INVALID_APPLICATION
    assert not session.transport.send.called
    assert session.messages[0][0] is ProgrammingError


def test_open_unknown_authenticator():
    session = mock_session(authenticator="kerberos")
    with pytest.raises(ProgrammingError) as e:
        session.open()
    assert e.value.errno == ER_UNKNOWN_AUTHENTICATOR
    assert session.state == SessionState.CLOSED


def test_open_async():
    session = mock_session([login_response()])
    asyncio.run(session.open_async())
    assert session.is_open


def test_close():
    session = mock_session([login_response(), mock_response(json_body={"success": True})])
    session.open()
    session.close()

    assert session.state == SessionState.CLOSED
    assert session.session_token is None
    assert session.master_token is None
    request = sent_requests(session)[1]
    assert urlsplit(request.url).path == SESSION_PATH
    assert _query(request)["delete"] == ["true"]
    assert request.rest_timeout == 5
    assert request.auth.token == "TOKEN"


@pytest.mark.parametrize(
    "close_outcome",
    [
        mock_response(json_body={"success": False, "message": "gone", "data": {}}),
        OperationalError(msg="network is down"),
    ],
)
def test_close_ignores_errors(close_outcome):
    session = mock_session([login_response(), close_outcome])
    session.open()
    session.close()
    assert session.state == SessionState.CLOSED
    assert session.session_token is None


def test_close_not_opened():
    session = mock_session()
    session.close()
    assert session.state == SessionState.CLOSED
    assert not session.transport.send.called


def test_context_manager_closes():
    session = mock_session([login_response(), mock_response(json_body={"success": True})])
    with session:
        session.open()
        assert session.is_open
    assert session.state == SessionState.CLOSED


def test_request_carries_session_token_and_service_name():
    session = mock_session(
        [
            login_response(parameters=[{"name": "SERVICE_NAME", "value": "svc"}]),
            mock_response(json_body={"success": True, "data": {"rowset": []}}),
        ]
    )
    session.open()
    ret = session.request(QUERY_REQUEST_PATH, body={"sqlText": "select 1"})

    assert ret["success"]
    request = sent_requests(session)[1]
    assert request.auth.token == "TOKEN"
    assert request.headers["X-Snowflake-Service"] == "svc"
    assert request.headers["accept"] == "application/snowflake"
    assert _body(request) == {"sqlText": "select 1"}


def test_is_session_expired():
    assert Session.is_session_expired({"code": "390112"})
    assert Session.is_session_expired({"code": 390112})
    assert not Session.is_session_expired({"code": "390100"})
    assert not Session.is_session_expired({"success": True})


def test_prefetch_threads_property():
    session = mock_session(client_prefetch_threads=2)
    assert session.prefetch_threads == 2
    session.parameters["CLIENT_PREFETCH_THREADS"] = "not a number"
    assert session.prefetch_threads == 2


def test_query_response_parameters_are_merged():
    session = mock_session(
        [
            mock_response(
                json_body={
                    "success": True,
                    "data": {
                        "parameters": [
                            {"name": "CLIENT_PREFETCH_THREADS", "value": 8},
                            {"name": "SERVICE_NAME", "value": "fancy_service"},
                        ],
                        "rowset": [],
                    },
                }
            ),
            mock_response(json_body={"success": True, "data": {}}),
        ],
        client_prefetch_threads=2,
    )
    session.request(QUERY_REQUEST_PATH, body={"sqlText": "select 1"})
    assert session.prefetch_threads == 8
    assert session.service_name == "fancy_service"

    session.request(QUERY_REQUEST_PATH, body={"sqlText": "select 2"})
    assert sent_requests(session)[1].headers["X-Snowflake-Service"] == "fancy_service"


def test_invalid_json_response():
    session = mock_session(
        [mock_response(json_body=ValueError("Expecting value: line 1 column 1"))]
    )
    with pytest.raises(InterfaceError) as e:
        session.request(QUERY_REQUEST_PATH, body={"sqlText": "select 1"})
    assert e.value.errno == ER_INVALID_RESPONSE
    assert isinstance(e.value.__cause__, ValueError)


def test_make_http_config():
    props = SessionProperties.from_dict(
        {
            "account": ACCOUNT,
            "user": USER,
            "password": PASSWORD,
            "useproxy": "true",
            "proxyhost": "proxy.example.com",
            "proxyport": "8080",
            "nonproxyhosts": "*.example.com%7Clocalhost",
        }
    )
    config = make_http_config(props)
    assert config.proxy_host == "proxy.example.com"
    assert config.proxy_port == "8080"
    assert config.no_proxy == ".example.com,localhost"

    props = SessionProperties.from_dict(
        {"account": ACCOUNT, "user": USER, "password": PASSWORD, "proxyhost": "x"}
    )
    assert make_http_config(props).proxy_host is None


def test_get_chunk_downloader_without_chunks(session):
    assert session.get_chunk_downloader({"rowset": [["1"]], "rowtype": [{}]}) is None


@patch("snowflake.engine.chunk_downloader.get_chunk_downloader")
def test_get_chunk_downloader(mock_get_chunk_downloader):
    session = mock_session(
        session_kwargs={
            "chunk_downloader_version": ChunkDownloaderVersion.WORKER_POOL,
            "chunk_parser_version": ChunkParserVersion.STREAMING,
        },
        client_prefetch_threads=3,
    )
    chunks = [{"url": "https://stage/c0", "rowCount": 10, "uncompressedSize": 100}]
    session.get_chunk_downloader(
        {"chunks": chunks, "rowtype": [{}, {}], "qrmk": "QRMK"}
    )

    kwargs = mock_get_chunk_downloader.call_args.kwargs
    assert mock_get_chunk_downloader.call_args.args[0] == chunks
    assert kwargs["column_count"] == 2
    assert kwargs["qrmk"] == "QRMK"
    assert kwargs["chunk_headers"] is None
    assert kwargs["prefetch_threads"] == 3
    assert kwargs["version"] == ChunkDownloaderVersion.WORKER_POOL
    assert kwargs["parser_version"] == ChunkParserVersion.STREAMING
    assert kwargs["transport"] is session.transport
