#!/usr/bin/env python
from __future__ import annotations

import pytest

from snowflake.engine.errorcode import ER_INVALID_VALUE, ER_MISSING_CONNECTION_PROPERTY
from snowflake.engine.errors import ProgrammingError
from snowflake.engine.session_properties import SessionProperties, SessionProperty


def test_connection_string():
    props = SessionProperties.from_connection_string(
        "account=testaccount;user=testuser;password=test;;pwd;db=TESTDB;"
    )
    assert props.account == "testaccount"
    assert props.user == "testuser"
    assert props.password == "test;pwd"
    assert props[SessionProperty.DB] == "TESTDB"


def test_defaults_and_computed_host():
    props = SessionProperties.from_dict(
        {"ACCOUNT": "testaccount", "user": "testuser", "password": "test"}
    )
    assert props.host == "testaccount.snowflakecomputing.com"
    assert props.port == 443
    assert props.scheme == "https"
    assert props.authenticator == "snowflake"
    assert props.connection_timeout == 120
    assert props.prefetch_threads == 4
    assert props.validate_default_parameters
    assert not props.insecure_mode
    assert not props.use_proxy


def test_explicit_host_wins():
    props = SessionProperties.from_dict(
        {
            "account": "testaccount",
            "user": "testuser",
            "password": "test",
            "host": "localhost",
            "port": 8080,
            "scheme": "http",
        }
    )
    assert props.host == "localhost"
    assert props.port == 8080


def test_unknown_keys_and_booleans():
    props = SessionProperties.from_dict(
        {
            "account": "testaccount",
            "user": "testuser",
            "password": "test",
            "no_such_property": "x",
            "insecuremode": True,
            "connection_timeout": 0,
        }
    )
    assert props.insecure_mode
    # a non-positive timeout disables the deadline
    assert props.connection_timeout is None


@pytest.mark.parametrize(
    "values",
    [
        {"user": "testuser", "password": "test"},
        {"account": "testaccount", "password": "test"},
        {"account": "testaccount", "user": "testuser"},
        {"account": "testaccount", "user": "testuser", "authenticator": "oauth"},
        {
            "account": "testaccount",
            "user": "testuser",
            "authenticator": "snowflake_jwt",
        },
        {
            "account": "testaccount",
            "user": "testuser",
            "authenticator": "https://testaccount.okta.com/",
        },
    ],
)
def test_missing_property(values):
    with pytest.raises(ProgrammingError) as e:
        SessionProperties.from_dict(values)
    assert e.value.errno == ER_MISSING_CONNECTION_PROPERTY


def test_external_browser_needs_no_password():
    props = SessionProperties.from_dict(
        {"account": "testaccount", "user": "testuser", "authenticator": "externalbrowser"}
    )
    assert props.password is None


@pytest.mark.parametrize(
    "key, value",
    [("port", "https"), ("connection_timeout", "soon"), ("useproxy", "maybe")],
)
def test_invalid_value(key, value):
    with pytest.raises(ProgrammingError) as e:
        SessionProperties.from_dict(
            {"account": "testaccount", "user": "testuser", "password": "test", key: value}
        )
    assert e.value.errno == ER_INVALID_VALUE


def test_invalid_connection_string_segment():
    with pytest.raises(ProgrammingError) as e:
        SessionProperties.from_connection_string("account=testaccount;user")
    assert e.value.errno == ER_INVALID_VALUE


def test_repr_masks_secrets():
    props = SessionProperties.from_dict(
        {"account": "testaccount", "user": "testuser", "password": "supersecret"}
    )
    assert "supersecret" not in repr(props)
    assert "testuser" in repr(props)
