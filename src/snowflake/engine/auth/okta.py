#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import json
import logging
from html import unescape
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit

from ..constants import (
    AUTHENTICATOR_REQUEST_PATH,
    CONTENT_TYPE_APPLICATION_JSON,
    HTTP_HEADER_ACCEPT,
    HTTP_HEADER_CONTENT_TYPE,
    HTTP_HEADER_USER_AGENT,
)
from ..errorcode import (
    ER_IDP_CONNECTION_ERROR,
    ER_INCORRECT_DESTINATION,
    ER_SAML_POSTBACK_NOT_FOUND,
)
from ..errors import DatabaseError, Error
from ..network import USER_AGENT, RestRequest
from ..sqlstate import SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED
from ._auth import Auth
from .by_plugin import AuthByPlugin, AuthType

if TYPE_CHECKING:
    from ..cancellation import CancellationToken
    from ..session import Session

logger = logging.getLogger(__name__)


def _is_prefix_equal(url1: str, url2: str) -> bool:
    """Checks if URL prefixes are identical.

    The scheme, hostname and port number are compared. If the port number is not specified and the scheme is https,
    the port number is assumed to be 443.
    """
    parsed_url1 = urlsplit(url1)
    parsed_url2 = urlsplit(url2)

    port1 = parsed_url1.port
    if not port1 and parsed_url1.scheme == "https":
        port1 = 443
    port2 = parsed_url2.port
    if not port2 and parsed_url2.scheme == "https":
        port2 = 443

    return (
        parsed_url1.hostname == parsed_url2.hostname
        and port1 == port2
        and parsed_url1.scheme == parsed_url2.scheme
    )


def _get_post_back_url_from_html(html: str | None) -> str | None:
    """Gets the post back URL.

    Since the HTML is not well formed, minidom cannot be used to convert to
    DOM. The first discovered form is assumed to be the form to post back
    and the URL is taken from action attributes.
    """
    if not html:
        return None
    idx = html.find("<form")
    if idx < 0:
        return None
    start_idx = html.find('action="', idx)
    if start_idx < 0:
        return None
    end_idx = html.find('"', start_idx + 8)
    if end_idx < 0:
        return None
    return unescape(html[start_idx + 8 : end_idx])


class AuthByOkta(AuthByPlugin):
    """Authenticate user by OKTA."""

    def __init__(self, okta_url: str, password: str | None) -> None:
        super().__init__()
        self._okta_url = okta_url
        self._password = password
        self._saml_response: str | None = None

    def reset_secrets(self) -> None:
        self._password = None

    @property
    def type_(self) -> AuthType:
        return AuthType.OKTA

    @property
    def assertion_content(self) -> str | None:
        return self._saml_response

    def update_body(self, body: dict[Any, Any]) -> None:
        body["data"]["RAW_SAML_RESPONSE"] = self._saml_response

    def prepare(
        self,
        *,
        session: Session,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any,
    ) -> None:
        """SAML Authentication.

        Steps are:
        1.  query GS to obtain IDP token and SSO url
        2.  IMPORTANT Client side validation:
            validate both token url and sso url contains same prefix
            (protocol + host + port) as the given authenticator url.
            Explanation:
            This provides a way for the user to 'authenticate' the IDP it is
            sending their credentials to.  Without such a check, the user could
            be coerced to provide credentials to an IDP impersonator.
        3.  query IDP token url to authenticate and retrieve access token
        4.  given access token, query IDP URL snowflake app to get SAML response
        5.  IMPORTANT Client side validation:
            validate the post back url come back with the SAML response
            contains the same prefix as the Snowflake's server url, which is the
            intended destination url to Snowflake.
        Explanation:
            This emulates the behavior of IDP initiated login flow in the user
            browser where the IDP instructs the browser to POST the SAML
            assertion to the specific SP endpoint.  This is critical in
            preventing a SAML assertion issued to one SP from being sent to
            another SP.
        """
        logger.debug("authenticating by SAML")
        sso_url, token_url = self._step1(session, cancel_token)
        self._step2(session, sso_url, token_url)
        one_time_token = self._step3(session, token_url, cancel_token)
        response_html = self._step4(session, one_time_token, sso_url, cancel_token)
        self._step5(session, response_html)

    def _step1(
        self, session: Session, cancel_token: CancellationToken | None
    ) -> tuple[str, str]:
        logger.debug("step 1: query GS to obtain IDP token and SSO url")
        properties = session.properties
        body = Auth.base_auth_data(
            properties.user,
            properties.account,
            session.application,
        )
        body["data"]["AUTHENTICATOR"] = self._okta_url
        logger.debug(
            "account=%s, authenticator=%s",
            properties.account,
            self._okta_url,
        )
        ret = session.request(
            AUTHENTICATOR_REQUEST_PATH, body=body, cancel_token=cancel_token
        )

        if not ret.get("success"):
            self._handle_failure(session=session, ret=ret)

        data = ret["data"]
        return data["ssoUrl"], data["tokenUrl"]

    def _step2(self, session: Session, sso_url: str, token_url: str) -> None:
        logger.debug(
            "step 2: validate Token and SSO URL has the same prefix as authenticator"
        )
        if not _is_prefix_equal(self._okta_url, token_url) or not _is_prefix_equal(
            self._okta_url, sso_url
        ):
            Error.errorhandler_wrapper(
                session,
                DatabaseError,
                {
                    "msg": (
                        "The specified authenticator is not supported: "
                        "{authenticator}, token_url: {token_url}, "
                        "sso_url: {sso_url}".format(
                            authenticator=self._okta_url,
                            token_url=token_url,
                            sso_url=sso_url,
                        )
                    ),
                    "errno": ER_IDP_CONNECTION_ERROR,
                    "sqlstate": SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                },
            )

    def _step3(
        self,
        session: Session,
        token_url: str,
        cancel_token: CancellationToken | None,
    ) -> str:
        logger.debug(
            "step 3: query IDP token url to authenticate and retrieve access token"
        )
        user = session.properties.user
        data = {
            "username": user,
            "password": self._password,
        }
        response = session.transport.send(
            RestRequest(
                method="POST",
                url=token_url,
                headers={
                    HTTP_HEADER_CONTENT_TYPE: CONTENT_TYPE_APPLICATION_JSON,
                    HTTP_HEADER_ACCEPT: CONTENT_TYPE_APPLICATION_JSON,
                    HTTP_HEADER_USER_AGENT: USER_AGENT,
                },
                body=json.dumps(data),
                rest_timeout=session.properties.connection_timeout,
            ),
            cancel_token=cancel_token,
        )
        # a rejected login still carries a JSON body without a cookie token
        try:
            ret = response.json()
        except ValueError:
            ret = {}
        finally:
            response.close()
        one_time_token = ret.get("cookieToken") if isinstance(ret, dict) else None
        if not one_time_token:
            Error.errorhandler_wrapper(
                session,
                DatabaseError,
                {
                    "msg": (
                        "The authentication failed for {user} "
                        "by {token_url}.".format(
                            token_url=token_url,
                            user=user,
                        )
                    ),
                    "errno": ER_IDP_CONNECTION_ERROR,
                    "sqlstate": SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                },
            )
        return one_time_token

    def _step4(
        self,
        session: Session,
        one_time_token: str,
        sso_url: str,
        cancel_token: CancellationToken | None,
    ) -> str:
        logger.debug("step 4: query IDP URL snowflake app to get SAML response")
        url_parameters = {
            "RelayState": "/some/deep/link",
            "onetimetoken": one_time_token,
        }
        sso_url = sso_url + "?" + urlencode(url_parameters)
        response = session.transport.send(
            RestRequest(
                method="GET",
                url=sso_url,
                headers={HTTP_HEADER_ACCEPT: "*/*"},
                rest_timeout=session.properties.connection_timeout,
            ),
            cancel_token=cancel_token,
        )
        try:
            return response.text
        finally:
            response.close()

    def _step5(self, session: Session, response_html: str) -> None:
        logger.debug("step 5: validate post_back_url matches Snowflake URL")
        post_back_url = _get_post_back_url_from_html(response_html)
        full_url = session.server_url
        try:
            matches = bool(post_back_url) and _is_prefix_equal(post_back_url, full_url)
        except ValueError:
            # unparsable port
            post_back_url, matches = None, False
        if not post_back_url:
            Error.errorhandler_wrapper(
                session,
                DatabaseError,
                {
                    "msg": "Failed to find the SAML postback URL in the IDP response.",
                    "errno": ER_SAML_POSTBACK_NOT_FOUND,
                    "sqlstate": SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                },
            )
        if not matches:
            Error.errorhandler_wrapper(
                session,
                DatabaseError,
                {
                    "msg": (
                        "The specified authenticator and destination "
                        "URL in the SAML assertion do not match: "
                        "expected: {url}, "
                        "post back: {post_back_url}".format(
                            url=full_url,
                            post_back_url=post_back_url,
                        )
                    ),
                    "errno": ER_INCORRECT_DESTINATION,
                    "sqlstate": SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED,
                },
            )
        self._saml_response = response_html
