#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

from typing import Any

from .by_plugin import AuthByPlugin, AuthType


class AuthByOAuth(AuthByPlugin):
    """OAuth Based Authentication.

    Works by accepting an OAuth token and using that to authenticate.
    """

    def __init__(self, oauth_token: str) -> None:
        """Initializes an instance with an OAuth Token."""
        super().__init__()
        self._oauth_token: str | None = oauth_token

    @property
    def type_(self) -> AuthType:
        return AuthType.OAUTH

    @property
    def assertion_content(self) -> str | None:
        """Returns the token."""
        return self._oauth_token

    def reset_secrets(self) -> None:
        self._oauth_token = None

    def prepare(self, **kwargs: Any) -> None:
        """Nothing to do here, token should be obtained outside of the driver."""
        pass

    def update_body(self, body: dict[Any, Any]) -> None:
        """Update some information required by OAuth.

        OAuth needs the authenticator and token attributes set. The login name
        is not part of an OAuth login.
        """
        body["data"]["AUTHENTICATOR"] = AuthType.OAUTH.value
        body["data"]["TOKEN"] = self._oauth_token
        body["data"].pop("LOGIN_NAME", None)
