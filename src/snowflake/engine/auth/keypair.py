#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import base64
import hashlib
import os
from datetime import datetime, timedelta, timezone
from logging import getLogger
from typing import TYPE_CHECKING, Any

import jwt
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_der_private_key,
    load_pem_private_key,
)

from ..errorcode import ER_INVALID_PRIVATE_KEY
from ..errors import ProgrammingError
from .by_plugin import AuthByPlugin, AuthType

if TYPE_CHECKING:
    from ..session import Session

logger = getLogger(__name__)

PEM_PREFIX = b"-----BEGIN"


class AuthByKeyPair(AuthByPlugin):
    """Key pair based authentication."""

    ALGORITHM = "RS256"
    ISSUER = "iss"
    SUBJECT = "sub"
    EXPIRE_TIME = "exp"
    ISSUE_TIME = "iat"
    LIFETIME = 60

    def __init__(
        self,
        private_key: bytes | str | RSAPrivateKey | None = None,
        private_key_file: str | None = None,
        private_key_passphrase: str | bytes | None = None,
        lifetime_in_seconds: int = LIFETIME,
    ) -> None:
        """Inits AuthByKeyPair class with private key.

        Args:
            private_key: PEM text, base64 encoded DER, DER bytes or an object
                implementing the `RSAPrivateKey` interface.
            private_key_file: path to a PEM file, used when private_key is not given.
            private_key_passphrase: passphrase of an encrypted key.
            lifetime_in_seconds: number of seconds the JWT token will be valid
        """
        super().__init__()
        if private_key is None and private_key_file is None:
            raise ProgrammingError(
                msg="Either a private key or a private key file is required for "
                "key pair authentication",
                errno=ER_INVALID_PRIVATE_KEY,
            )
        self._private_key: bytes | str | RSAPrivateKey | None = private_key
        self._private_key_file = private_key_file
        if isinstance(private_key_passphrase, str):
            private_key_passphrase = private_key_passphrase.encode("utf-8")
        self._private_key_passphrase: bytes | None = private_key_passphrase
        self._jwt_token = ""
        self._lifetime = timedelta(
            seconds=int(os.getenv("JWT_LIFETIME_IN_SECONDS", lifetime_in_seconds))
        )

    def reset_secrets(self) -> None:
        self._private_key = None
        self._private_key_passphrase = None

    @property
    def type_(self) -> AuthType:
        return AuthType.KEY_PAIR

    @property
    def assertion_content(self) -> str:
        return self._jwt_token

    def prepare(
        self,
        *,
        session: Session,
        **kwargs: Any,
    ) -> str:
        return self.generate_token(session.properties.account, session.properties.user)

    def generate_token(self, account: str, user: str) -> str:
        if ".global" in account:
            account = account.partition("-")[0]
        else:
            account = account.partition(".")[0]
        account = account.upper()
        user = user.upper()

        private_key = self._load_private_key()
        public_key_fp = self.calculate_public_key_fingerprint(private_key)

        now = datetime.now(timezone.utc)
        payload = {
            self.ISSUER: f"{account}.{user}.{public_key_fp}",
            self.SUBJECT: f"{account}.{user}",
            self.ISSUE_TIME: now,
            self.EXPIRE_TIME: now + self._lifetime,
        }

        _jwt_token = jwt.encode(payload, private_key, algorithm=self.ALGORITHM)

        # jwt.encode() returns bytes in pyjwt 1.x and a string
        # in pyjwt 2.x
        if isinstance(_jwt_token, bytes):
            self._jwt_token = _jwt_token.decode("utf-8")
        else:
            self._jwt_token = _jwt_token

        return self._jwt_token

    def _load_private_key(self) -> RSAPrivateKey:
        key_data = self._private_key
        if key_data is None:
            try:
                with open(self._private_key_file, "rb") as f:
                    key_data = f.read()
            except (OSError, TypeError) as e:
                raise ProgrammingError(
                    msg=f"Failed to read private key file {self._private_key_file}: {e}",
                    errno=ER_INVALID_PRIVATE_KEY,
                )

        if isinstance(key_data, RSAPrivateKey):
            return key_data

        if isinstance(key_data, str):
            stripped = key_data.strip()
            if stripped.startswith(PEM_PREFIX.decode("ascii")):
                key_data = stripped.encode("utf-8")
            else:
                try:
                    key_data = base64.b64decode(stripped)
                except Exception as e:
                    raise ProgrammingError(
                        msg=f"Failed to decode private key: {e}\nPlease provide a valid "
                        "RSA private key in PEM format or base64-encoded DER format",
                        errno=ER_INVALID_PRIVATE_KEY,
                    )

        try:
            if key_data.lstrip().startswith(PEM_PREFIX):
                private_key = load_pem_private_key(
                    data=key_data,
                    password=self._private_key_passphrase,
                    backend=default_backend(),
                )
            else:
                private_key = load_der_private_key(
                    data=key_data,
                    password=self._private_key_passphrase,
                    backend=default_backend(),
                )
        except Exception as e:
            raise ProgrammingError(
                msg=f"Failed to load private key: {e}\nPlease provide a valid "
                "RSA private key. If the key is encrypted, provide the passphrase "
                "via PRIVATE_KEY_PWD",
                errno=ER_INVALID_PRIVATE_KEY,
            )

        if not isinstance(private_key, RSAPrivateKey):
            raise ProgrammingError(
                msg=f"Private key type ({private_key.__class__.__name__}) not supported."
                "\nPlease provide a valid RSA private key",
                errno=ER_INVALID_PRIVATE_KEY,
            )
        return private_key

    @staticmethod
    def calculate_public_key_fingerprint(private_key: RSAPrivateKey) -> str:
        # get public key bytes
        public_key_der = private_key.public_key().public_bytes(
            Encoding.DER, PublicFormat.SubjectPublicKeyInfo
        )

        # take sha256 on raw bytes and then do base64 encode
        sha256hash = hashlib.sha256()
        sha256hash.update(public_key_der)

        public_key_fp = "SHA256:" + base64.b64encode(sha256hash.digest()).decode(
            "utf-8"
        )
        logger.debug("Public key fingerprint is %s", public_key_fp)

        return public_key_fp

    def update_body(self, body: dict[Any, Any]) -> None:
        body["data"]["AUTHENTICATOR"] = AuthType.KEY_PAIR.value
        body["data"]["TOKEN"] = self._jwt_token
