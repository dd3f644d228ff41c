#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

"""Connection properties consumed by a Session."""

from __future__ import annotations

import logging
from enum import Enum, unique
from typing import Any, Iterator, Mapping, NamedTuple

from .errorcode import ER_INVALID_VALUE, ER_MISSING_CONNECTION_PROPERTY
from .errors import ProgrammingError
from .sqlstate import SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED

logger = logging.getLogger(__name__)

SNOWFLAKE_HOST_SUFFIX = ".snowflakecomputing.com"

_TRUE_VALUES = ("true", "yes", "y", "t", "1", "on")
_FALSE_VALUES = ("false", "no", "n", "f", "0", "off")


class PropertyDef(NamedTuple):
    key: str
    required: bool = False
    default: str | None = None


@unique
class SessionProperty(Enum):
    ACCOUNT = PropertyDef("account", required=True)
    USER = PropertyDef("user", required=True)
    PASSWORD = PropertyDef("password")
    DB = PropertyDef("db")
    SCHEMA = PropertyDef("schema")
    WAREHOUSE = PropertyDef("warehouse")
    ROLE = PropertyDef("role")
    HOST = PropertyDef("host")
    PORT = PropertyDef("port", default="443")
    SCHEME = PropertyDef("scheme", default="https")
    CONNECTION_TIMEOUT = PropertyDef("connection_timeout", default="120")
    AUTHENTICATOR = PropertyDef("authenticator", default="snowflake")
    VALIDATE_DEFAULT_PARAMETERS = PropertyDef(
        "validate_default_parameters", default="true"
    )
    PRIVATE_KEY_FILE = PropertyDef("private_key_file")
    PRIVATE_KEY_PWD = PropertyDef("private_key_pwd")
    PRIVATE_KEY = PropertyDef("private_key")
    TOKEN = PropertyDef("token")
    INSECUREMODE = PropertyDef("insecuremode", default="false")
    USEPROXY = PropertyDef("useproxy", default="false")
    PROXYHOST = PropertyDef("proxyhost")
    PROXYPORT = PropertyDef("proxyport")
    PROXYUSER = PropertyDef("proxyuser")
    PROXYPASSWORD = PropertyDef("proxypassword")
    NONPROXYHOSTS = PropertyDef("nonproxyhosts")
    APPLICATION = PropertyDef("application")
    CLIENT_PREFETCH_THREADS = PropertyDef("client_prefetch_threads", default="4")

    @property
    def required(self) -> bool:
        return self.value.required

    @property
    def default(self) -> str | None:
        return self.value.default


# properties that hold secrets, never logged
SECRET_PROPERTIES = frozenset(
    (
        SessionProperty.PASSWORD,
        SessionProperty.PRIVATE_KEY,
        SessionProperty.PRIVATE_KEY_PWD,
        SessionProperty.TOKEN,
        SessionProperty.PROXYPASSWORD,
    )
)


def _missing(prop: SessionProperty) -> ProgrammingError:
    return ProgrammingError(
        msg=f"Required property {prop.name} is not provided.",
        errno=ER_MISSING_CONNECTION_PROPERTY,
        sqlstate=SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
    )


def _invalid(prop: SessionProperty, value: Any) -> ProgrammingError:
    return ProgrammingError(
        msg=f"Invalid value for property {prop.name}: {value}",
        errno=ER_INVALID_VALUE,
        sqlstate=SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
    )


class SessionProperties(Mapping[SessionProperty, str]):
    """Resolved connection properties.

    Every required property resolves either directly, through its default or
    by computation (``HOST`` from ``ACCOUNT``). Resolution problems raise
    :class:`ProgrammingError` before any network call is made.
    """

    def __init__(self, values: Mapping[SessionProperty, str]) -> None:
        self._values: dict[SessionProperty, str] = dict(values)
        self._resolve()

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> SessionProperties:
        resolved: dict[SessionProperty, str] = {}
        for key, value in values.items():
            try:
                prop = SessionProperty[key.strip().upper()]
            except KeyError:
                logger.debug("ignoring unknown connection property: %s", key)
                continue
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            resolved[prop] = str(value)
        return cls(resolved)

    @classmethod
    def from_connection_string(cls, connection_string: str) -> SessionProperties:
        """Parses ``key=value;key=value``. A doubled ``;;`` stands for a literal ``;``."""
        values: dict[str, str] = {}
        for pair in _split_pairs(connection_string):
            if not pair.strip():
                continue
            key, sep, value = pair.partition("=")
            if not sep:
                raise ProgrammingError(
                    msg=f"Invalid connection string segment: {key.strip()}",
                    errno=ER_INVALID_VALUE,
                    sqlstate=SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                )
            values[key.strip()] = value
        return cls.from_dict(values)

    def _resolve(self) -> None:
        for prop in SessionProperty:
            if prop not in self._values and prop.default is not None:
                self._values[prop] = prop.default

        account = self._values.get(SessionProperty.ACCOUNT)
        if account and SessionProperty.HOST not in self._values:
            self._values[SessionProperty.HOST] = f"{account}{SNOWFLAKE_HOST_SUFFIX}"

        for prop in SessionProperty:
            if prop.required and not self._values.get(prop):
                raise _missing(prop)

        # typed accessors validate eagerly
        _ = (
            self.port,
            self.connection_timeout,
            self.prefetch_threads,
            self.validate_default_parameters,
            self.insecure_mode,
            self.use_proxy,
        )
        self._check_credentials()

    def _check_credentials(self) -> None:
        authenticator = self.authenticator.lower()
        if authenticator == "snowflake_jwt":
            if not (
                self._values.get(SessionProperty.PRIVATE_KEY_FILE)
                or self._values.get(SessionProperty.PRIVATE_KEY)
            ):
                raise ProgrammingError(
                    msg="Property PRIVATE_KEY_FILE or PRIVATE_KEY is required for "
                    "key pair authentication.",
                    errno=ER_MISSING_CONNECTION_PROPERTY,
                    sqlstate=SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                )
        elif authenticator == "oauth":
            if not self._values.get(SessionProperty.TOKEN):
                raise _missing(SessionProperty.TOKEN)
        elif authenticator == "snowflake" or (
            authenticator.startswith("https://") and "okta" in authenticator
        ):
            if not self._values.get(SessionProperty.PASSWORD):
                raise _missing(SessionProperty.PASSWORD)

    def __getitem__(self, key: SessionProperty) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[SessionProperty]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        shown = {
            prop.name: "****" if prop in SECRET_PROPERTIES else value
            for prop, value in self._values.items()
        }
        return f"SessionProperties({shown})"

    def _int(self, prop: SessionProperty) -> int:
        value = self._values[prop]
        try:
            return int(value)
        except ValueError:
            raise _invalid(prop, value)

    def _bool(self, prop: SessionProperty) -> bool:
        value = self._values[prop].strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise _invalid(prop, value)

    @property
    def account(self) -> str:
        return self._values[SessionProperty.ACCOUNT]

    @property
    def user(self) -> str:
        return self._values[SessionProperty.USER]

    @property
    def password(self) -> str | None:
        return self._values.get(SessionProperty.PASSWORD)

    @property
    def host(self) -> str:
        return self._values[SessionProperty.HOST]

    @property
    def port(self) -> int:
        return self._int(SessionProperty.PORT)

    @property
    def scheme(self) -> str:
        return self._values[SessionProperty.SCHEME]

    @property
    def authenticator(self) -> str:
        return self._values[SessionProperty.AUTHENTICATOR]

    @property
    def application(self) -> str | None:
        return self._values.get(SessionProperty.APPLICATION)

    @property
    def connection_timeout(self) -> int | None:
        """Seconds, or None when the configured value is not positive (no deadline)."""
        timeout = self._int(SessionProperty.CONNECTION_TIMEOUT)
        return timeout if timeout > 0 else None

    @property
    def prefetch_threads(self) -> int:
        return self._int(SessionProperty.CLIENT_PREFETCH_THREADS)

    @property
    def validate_default_parameters(self) -> bool:
        return self._bool(SessionProperty.VALIDATE_DEFAULT_PARAMETERS)

    @property
    def insecure_mode(self) -> bool:
        return self._bool(SessionProperty.INSECUREMODE)

    @property
    def use_proxy(self) -> bool:
        return self._bool(SessionProperty.USEPROXY)


def _split_pairs(connection_string: str) -> Iterator[str]:
    current: list[str] = []
    i = 0
    while i < len(connection_string):
        ch = connection_string[i]
        if ch == ";":
            if connection_string[i + 1 : i + 2] == ";":
                current.append(";")
                i += 2
                continue
            yield "".join(current)
            current = []
        else:
            current.append(ch)
        i += 1
    if current:
        yield "".join(current)
