#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from ..constants import (
    LOGIN_REQUEST_PATH,
    PARAM_DATABASE_NAME,
    PARAM_ROLE_NAME,
    PARAM_SCHEMA_NAME,
    PARAM_WAREHOUSE,
)
from ..description import (
    CLIENT_NAME,
    CLIENT_VERSION,
    COMPILER,
    IMPLEMENTATION,
    OPERATING_SYSTEM,
    PLATFORM,
    PYTHON_VERSION,
)
from ..session_properties import SessionProperty

if TYPE_CHECKING:
    from ..cancellation import CancellationToken
    from ..session import Session
    from .by_plugin import AuthByPlugin

logger = logging.getLogger(__name__)

AUTHENTICATION_REQUEST_KEY_WHITELIST = {
    "ACCOUNT_NAME",
    "AUTHENTICATOR",
    "CLIENT_APP_ID",
    "CLIENT_APP_VERSION",
    "CLIENT_ENVIRONMENT",
    "LOGIN_NAME",
    "SESSION_PARAMETERS",
    "BROWSER_MODE_REDIRECT_PORT",
}


class Auth:
    """Snowflake Authenticator."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @staticmethod
    def base_auth_data(
        user: str,
        account: str,
        application: str,
        internal_application_name: str = CLIENT_NAME,
        internal_application_version: str = CLIENT_VERSION,
    ) -> dict[str, Any]:
        return {
            "data": {
                "CLIENT_APP_ID": internal_application_name,
                "CLIENT_APP_VERSION": internal_application_version,
                "ACCOUNT_NAME": account,
                "LOGIN_NAME": user,
                "CLIENT_ENVIRONMENT": {
                    "APPLICATION": application,
                    "OS": OPERATING_SYSTEM,
                    "OS_VERSION": PLATFORM,
                    "PYTHON_VERSION": PYTHON_VERSION,
                    "PYTHON_RUNTIME": IMPLEMENTATION,
                    "PYTHON_COMPILER": COMPILER,
                    "TRACING": logger.getEffectiveLevel(),
                },
            },
        }

    def authenticate(
        self,
        auth_instance: AuthByPlugin,
        cancel_token: CancellationToken | None = None,
    ) -> dict[str, Any]:
        logger.debug("authenticate")
        session = self._session
        properties = session.properties

        body_template = Auth.base_auth_data(
            properties.user,
            properties.account,
            session.application,
        )
        body = copy.deepcopy(body_template)
        # updating request body
        auth_instance.update_body(body)

        if session.parameters:
            body["data"]["SESSION_PARAMETERS"] = dict(session.parameters)

        url_parameters = {}
        for param, prop in (
            (PARAM_WAREHOUSE, SessionProperty.WAREHOUSE),
            (PARAM_DATABASE_NAME, SessionProperty.DB),
            (PARAM_SCHEMA_NAME, SessionProperty.SCHEMA),
            (PARAM_ROLE_NAME, SessionProperty.ROLE),
        ):
            if properties.get(prop):
                url_parameters[param] = properties[prop]

        logger.debug(
            "account=%s, user=%s, database=%s, schema=%s, warehouse=%s, role=%s",
            properties.account,
            properties.user,
            properties.get(SessionProperty.DB),
            properties.get(SessionProperty.SCHEMA),
            properties.get(SessionProperty.WAREHOUSE),
            properties.get(SessionProperty.ROLE),
        )
        logger.debug(
            "body['data']: %s",
            {
                k: v if k in AUTHENTICATION_REQUEST_KEY_WHITELIST else "******"
                for (k, v) in body["data"].items()
            },
        )

        ret = session.request(
            LOGIN_REQUEST_PATH,
            body=body,
            query=url_parameters,
            cancel_token=cancel_token,
        )

        if not ret.get("success"):
            auth_instance._handle_failure(session=session, ret=ret)
            return ret

        session.process_login_response(ret)
        return ret
