#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

"""This module implements the base class for authenticator classes.

Note:
 **kwargs are added to most functions so that child classes can safely ignore extra in
  arguments in case of a caller API change and named arguments are enforced to prevent
  issues with argument being sent in out of order.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum, unique
from typing import TYPE_CHECKING, Any

from ..errors import DatabaseError, Error
from ..sqlstate import SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED

if TYPE_CHECKING:
    from ..cancellation import CancellationToken
    from ..session import Session

logger = logging.getLogger(__name__)


@unique
class AuthType(Enum):
    DEFAULT = "SNOWFLAKE"  # default authenticator name
    EXTERNAL_BROWSER = "EXTERNALBROWSER"
    KEY_PAIR = "SNOWFLAKE_JWT"
    OAUTH = "OAUTH"
    OKTA = "OKTA"


class AuthByPlugin(ABC):
    """External Authenticator interface."""

    @property
    @abstractmethod
    def type_(self) -> AuthType:
        """Return the Snowflake friendly name of auth class."""
        raise NotImplementedError

    @property
    @abstractmethod
    def assertion_content(self) -> str | None:
        """Return a safe version of the information used to authenticate with Snowflake.

        This is used for logging, useful for printing temporary tokens, but make sure to
        mask secrets.
        """
        raise NotImplementedError

    @abstractmethod
    def prepare(
        self,
        *,
        session: Session,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any,
    ) -> str | None:
        """Prepare for authentication.

        This function is useful for situations where we need to reach out to a 3rd-party
        service before authenticating with Snowflake.
        """
        raise NotImplementedError

    @abstractmethod
    def update_body(self, body: dict[Any, Any]) -> None:
        """Update the body of the authentication request."""
        raise NotImplementedError

    @abstractmethod
    def reset_secrets(self) -> None:
        """Reset secret members."""
        raise NotImplementedError

    def login(
        self,
        session: Session,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Runs the side-channel step of this authenticator, then the common login call."""
        from ._auth import Auth

        logger.debug("login with authenticator %s", self.type_.value)
        try:
            self.prepare(session=session, cancel_token=cancel_token)
            Auth(session).authenticate(self, cancel_token=cancel_token)
        finally:
            self.reset_secrets()

    def _handle_failure(
        self,
        *,
        session: Session,
        ret: dict[Any, Any],
        **kwargs: Any,
    ) -> None:
        """Handles a failure reported by Snowflake while authenticating.

        The server's code and message are carried over verbatim.
        """
        code = ret.get("code")
        try:
            errno = int(code) if code is not None else None
        except (TypeError, ValueError):
            errno = None
        Error.errorhandler_wrapper(
            session,
            DatabaseError,
            {
                "msg": "Failed to connect to DB: {host}:{port}, {message}".format(
                    host=session.properties.host,
                    port=session.properties.port,
                    message=ret.get("message"),
                ),
                "errno": errno,
                "sqlstate": SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
            },
        )
