#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import base64
import json

import jwt
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import load_der_private_key
from pytest import fixture, mark, raises

from snowflake.engine.auth import AuthByKeyPair
from snowflake.engine.errorcode import ER_INVALID_PRIVATE_KEY
from snowflake.engine.errors import ProgrammingError

from .mock_utils import login_response, mock_session


def generate_key_pair(key_length):
    private_key = rsa.generate_private_key(
        backend=default_backend(), public_exponent=65537, key_size=key_length
    )

    private_key_der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    public_key_pem = (
        private_key.public_key()
        .public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        .decode("utf-8")
    )

    return private_key_der, public_key_pem


@fixture(scope="module")
def key_pair():
    return generate_key_pair(2048)


def _decode(token, public_key_pem):
    return jwt.decode(token, public_key_pem, algorithms=["RS256"])


def test_auth_keypair(key_pair):
    """Simple Key Pair test."""
    private_key_der, public_key_pem = key_pair
    auth_instance = AuthByKeyPair(private_key=private_key_der)

    token = auth_instance.generate_token("testaccount", "testuser")
    claims = _decode(token, public_key_pem)
    fingerprint = AuthByKeyPair.calculate_public_key_fingerprint(
        load_der_private_key(private_key_der, None, default_backend())
    )
    assert fingerprint.startswith("SHA256:")
    assert claims["iss"] == f"TESTACCOUNT.TESTUSER.{fingerprint}"
    assert claims["sub"] == "TESTACCOUNT.TESTUSER"
    assert claims["exp"] - claims["iat"] == 60
    assert auth_instance.assertion_content == token

    body = {"data": {}}
    auth_instance.update_body(body)
    assert body["data"] == {"AUTHENTICATOR": "SNOWFLAKE_JWT", "TOKEN": token}


def test_auth_keypair_abc(key_pair):
    """Simple Key Pair test using abstraction layer."""
    private_key_der, public_key_pem = key_pair
    private_key = load_der_private_key(
        data=private_key_der,
        password=None,
        backend=default_backend(),
    )
    assert isinstance(private_key, RSAPrivateKey)

    auth_instance = AuthByKeyPair(private_key=private_key)
    token = auth_instance.generate_token("testaccount", "testuser")
    assert _decode(token, public_key_pem)["sub"] == "TESTACCOUNT.TESTUSER"


@mark.parametrize(
    "account, expected",
    [
        ("testaccount.us-east-1", "TESTACCOUNT"),
        ("testaccount-xyz.global", "TESTACCOUNT"),
        ("TestAccount", "TESTACCOUNT"),
    ],
)
def test_auth_keypair_account_name(key_pair, account, expected):
    private_key_der, public_key_pem = key_pair
    auth_instance = AuthByKeyPair(private_key=private_key_der)
    token = auth_instance.generate_token(account, "testuser")
    assert _decode(token, public_key_pem)["sub"] == f"{expected}.TESTUSER"


def test_auth_keypair_login(key_pair):
    private_key_der, public_key_pem = key_pair
    session = mock_session(
        [login_response()],
        authenticator="snowflake_jwt",
        password=None,
        private_key=base64.b64encode(private_key_der).decode("ascii"),
    )
    session.open()

    assert session.session_token == "TOKEN"
    request = session.transport.send.call_args.args[0]
    data = json.loads(request.body)["data"]
    assert data["AUTHENTICATOR"] == "SNOWFLAKE_JWT"
    assert _decode(data["TOKEN"], public_key_pem)["sub"] == "TESTACCOUNT.TESTUSER"


def test_auth_keypair_pem_file_with_passphrase(key_pair, tmp_path):
    private_key_der, public_key_pem = key_pair
    private_key = load_der_private_key(private_key_der, None, default_backend())
    key_file = tmp_path / "rsa_key.p8"
    key_file.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(b"secret"),
        )
    )

    auth_instance = AuthByKeyPair(
        private_key_file=str(key_file), private_key_passphrase="secret"
    )
    token = auth_instance.generate_token("testaccount", "testuser")
    assert _decode(token, public_key_pem)["sub"] == "TESTACCOUNT.TESTUSER"

    auth_instance = AuthByKeyPair(
        private_key_file=str(key_file), private_key_passphrase="wrong"
    )
    with raises(ProgrammingError) as ex:
        auth_instance.generate_token("testaccount", "testuser")
    assert ex.value.errno == ER_INVALID_PRIVATE_KEY


def test_auth_keypair_pem_text(key_pair):
    private_key_der, public_key_pem = key_pair
    private_key = load_der_private_key(private_key_der, None, default_backend())
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")

    token = AuthByKeyPair(private_key=pem).generate_token("testaccount", "testuser")
    assert _decode(token, public_key_pem)["iss"].startswith("TESTACCOUNT.TESTUSER.")


def test_auth_keypair_bad_key():
    for bad_private_key in ("abcd", b"not a key", 1234):
        auth_instance = AuthByKeyPair(private_key=bad_private_key)
        with raises(ProgrammingError) as ex:
            auth_instance.generate_token("testaccount", "testuser")
        assert ex.value.errno == ER_INVALID_PRIVATE_KEY


def test_auth_keypair_not_rsa():
    ec_key = ec.generate_private_key(ec.SECP256R1(), default_backend())
    der = ec_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    with raises(ProgrammingError) as ex:
        AuthByKeyPair(private_key=der).generate_token("testaccount", "testuser")
    assert "not supported" in str(ex.value)


def test_auth_keypair_missing_key(tmp_path):
    with raises(ProgrammingError) as ex:
        AuthByKeyPair()
    assert ex.value.errno == ER_INVALID_PRIVATE_KEY

    auth_instance = AuthByKeyPair(private_key_file=str(tmp_path / "missing.p8"))
    with raises(ProgrammingError) as ex:
        auth_instance.generate_token("testaccount", "testuser")
    assert ex.value.errno == ER_INVALID_PRIVATE_KEY


def test_auth_keypair_lifetime(key_pair, monkeypatch):
    private_key_der, public_key_pem = key_pair
    monkeypatch.setenv("JWT_LIFETIME_IN_SECONDS", "120")
    token = AuthByKeyPair(private_key=private_key_der).generate_token(
        "testaccount", "testuser"
    )
    claims = _decode(token, public_key_pem)
    assert claims["exp"] - claims["iat"] == 120


def test_auth_keypair_reset_secrets(key_pair):
    private_key_der, _ = key_pair
    auth_instance = AuthByKeyPair(
        private_key=private_key_der, private_key_passphrase="unused"
    )
    auth_instance.reset_secrets()
    assert auth_instance._private_key is None
    assert auth_instance._private_key_passphrase is None
