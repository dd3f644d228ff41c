#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import socket

import pytest

from snowflake.engine.cancellation import CancellationToken
from snowflake.engine.session_manager import HttpConfig, SessionManager

from .mock_utils import mock_session


@pytest.fixture
def session_manager():
    """A manager that hands out one-shot requests sessions."""
    manager = SessionManager(HttpConfig(use_pooling=False))
    yield manager
    manager.close()


@pytest.fixture
def cancel_token():
    return CancellationToken()


@pytest.fixture
def session():
    return mock_session()


@pytest.fixture(autouse=True)
def no_jwt_lifetime_override(monkeypatch):
    monkeypatch.delenv("JWT_LIFETIME_IN_SECONDS", raising=False)


@pytest.fixture
def stalled_server(monkeypatch):
    """A listening socket that accepts connections and never answers."""
    monkeypatch.setenv("NO_PROXY", "127.0.0.1")
    monkeypatch.setenv("no_proxy", "127.0.0.1")
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    yield f"http://127.0.0.1:{server.getsockname()[1]}"
    server.close()
