#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import logging

from ..errorcode import ER_UNKNOWN_AUTHENTICATOR
from ..errors import ProgrammingError
from ..session_properties import SessionProperties, SessionProperty
from ..sqlstate import SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED
from .by_plugin import AuthByPlugin, AuthType
from .default import AuthByDefault
from .keypair import AuthByKeyPair
from .oauth import AuthByOAuth
from .okta import AuthByOkta
from .webbrowser import AuthByWebBrowser

logger = logging.getLogger(__name__)


def is_okta_authenticator(authenticator: str) -> bool:
    lowered = authenticator.lower()
    return lowered.startswith("https://") and "okta" in lowered


def get_authenticator(properties: SessionProperties) -> AuthByPlugin:
    """Creates the authenticator named by the AUTHENTICATOR property."""
    authenticator = properties.authenticator
    auth_type = authenticator.upper()
    logger.debug("authenticator: %s", auth_type)

    if auth_type == AuthType.DEFAULT.value:
        return AuthByDefault(properties.password)
    if auth_type == AuthType.EXTERNAL_BROWSER.value:
        return AuthByWebBrowser()
    if auth_type == AuthType.KEY_PAIR.value:
        return AuthByKeyPair(
            private_key=properties.get(SessionProperty.PRIVATE_KEY),
            private_key_file=properties.get(SessionProperty.PRIVATE_KEY_FILE),
            private_key_passphrase=properties.get(SessionProperty.PRIVATE_KEY_PWD),
        )
    if auth_type == AuthType.OAUTH.value:
        return AuthByOAuth(properties[SessionProperty.TOKEN])
    if is_okta_authenticator(authenticator):
        return AuthByOkta(authenticator, properties.password)

    raise ProgrammingError(
        msg=f"Unknown authenticator: {authenticator}",
        errno=ER_UNKNOWN_AUTHENTICATOR,
        sqlstate=SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
    )
