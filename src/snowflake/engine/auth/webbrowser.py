#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import logging
import os
import socket
import time
import webbrowser
from types import ModuleType
from typing import TYPE_CHECKING, Any, Callable
from urllib.parse import unquote

from ..constants import AUTHENTICATOR_REQUEST_PATH
from ..errorcode import (
    ER_BROWSER_RESPONSE_INVALID_PREFIX,
    ER_BROWSER_RESPONSE_WRONG_METHOD,
    ER_NO_HOSTNAME_FOUND,
    ER_UNABLE_TO_OPEN_BROWSER,
)
from ..errors import OperationalError
from ._auth import Auth
from .by_plugin import AuthByPlugin, AuthType

if TYPE_CHECKING:
    from ..cancellation import CancellationToken
    from ..session import Session

logger = logging.getLogger(__name__)

BUF_SIZE = 16384
TOKEN_REQUEST_PREFIX = "/?token="
# how often a pending accept wakes up to look at the cancellation token
ACCEPT_POLL_INTERVAL = 1.0

SUCCESS_RESPONSE = """<!DOCTYPE html><html><head><meta charset="UTF-8"/>
<title>SAML Response for Snowflake</title></head>
<body>
Your identity was confirmed and propagated to Snowflake {application}.
You can close this window now and go back where you started from.
</body></html>"""


class AuthByWebBrowser(AuthByPlugin):
    """Authenticates user by web browser. Only used for SAML based authentication."""

    def __init__(
        self,
        webbrowser_pkg: ModuleType | Any | None = None,
        socket_pkg: Callable[..., socket.socket] | None = None,
    ) -> None:
        super().__init__()
        self._token: str | None = None
        self._proof_key: str | None = None
        self._webbrowser = webbrowser if webbrowser_pkg is None else webbrowser_pkg
        self._socket = socket.socket if socket_pkg is None else socket_pkg

    def reset_secrets(self) -> None:
        self._token = None

    @property
    def type_(self) -> AuthType:
        return AuthType.EXTERNAL_BROWSER

    @property
    def assertion_content(self) -> str | None:
        """Returns the token."""
        return self._token

    def update_body(self, body: dict[Any, Any]) -> None:
        """Used by Auth to update the request that gets sent to /v1/login-request.

        Args:
            body: existing request dictionary
        """
        body["data"]["AUTHENTICATOR"] = AuthType.EXTERNAL_BROWSER.value
        body["data"]["TOKEN"] = self._token
        body["data"]["PROOF_KEY"] = self._proof_key

    def prepare(
        self,
        *,
        session: Session,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any,
    ) -> None:
        """Web Browser based Authentication."""
        logger.debug("authenticating by Web Browser")

        socket_connection = self._socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            try:
                socket_connection.bind(
                    (
                        os.getenv("SF_AUTH_SOCKET_ADDR", "localhost"),
                        int(os.getenv("SF_AUTH_SOCKET_PORT", 0)),
                    )
                )
            except socket.gaierror as ex:
                if ex.args[0] == socket.EAI_NONAME:
                    raise OperationalError(
                        msg="localhost is not found. Ensure /etc/hosts has "
                        "localhost entry.",
                        errno=ER_NO_HOSTNAME_FOUND,
                    )
                else:
                    raise ex
            socket_connection.listen(0)  # no backlog
            callback_port = socket_connection.getsockname()[1]

            logger.debug("step 1: query GS to obtain SSO url")
            sso_url = self._get_sso_url(session, callback_port, cancel_token)

            logger.debug("step 2: open a browser")
            try:
                opened = self._webbrowser.open_new(sso_url)
            except Exception as e:
                logger.debug("failed to open a browser: %s", e)
                opened = False
            if not opened:
                raise OperationalError(
                    msg=f"Unable to open a browser in this environment. SSO URL: {sso_url}",
                    errno=ER_UNABLE_TO_OPEN_BROWSER,
                )

            logger.debug("step 3: accept SAML token")
            self._receive_saml_token(
                socket_connection, session.application, cancel_token
            )
        finally:
            socket_connection.close()

    def _receive_saml_token(
        self,
        socket_connection: socket.socket,
        application: str,
        cancel_token: CancellationToken | None,
    ) -> None:
        """Receives SAML token from web browser."""
        socket_client = self._accept(socket_connection, cancel_token)
        try:
            data = socket_client.recv(BUF_SIZE).decode("utf-8").split("\r\n")
            self._get_user_agent(data)
            self._token = self._validate_and_extract_token(data[0])

            msg = SUCCESS_RESPONSE.format(application=application)
            content = [
                "HTTP/1.1 200 OK",
                "Date: {}".format(
                    time.strftime("%a, %d %b %Y %H:%M:%S GMT", time.gmtime())
                ),
                "Content-Type: text/html",
                f"Content-Length: {len(msg.encode('utf-8'))}",
                "",
                msg,
            ]
            try:
                socket_client.sendall("\r\n".join(content).encode("utf-8"))
            except OSError as e:
                # token already received
                logger.debug("failed to reply to the browser: %s", e)
        finally:
            try:
                socket_client.shutdown(socket.SHUT_RDWR)
            except OSError as e:
                logger.debug("socket shutdown failed: %s", e)
            socket_client.close()

    @staticmethod
    def _accept(
        socket_connection: socket.socket, cancel_token: CancellationToken | None
    ) -> socket.socket:
        if cancel_token is None:
            socket_client, _ = socket_connection.accept()
            return socket_client
        socket_connection.settimeout(ACCEPT_POLL_INTERVAL)
        while True:
            cancel_token.raise_if_cancelled()
            try:
                socket_client, _ = socket_connection.accept()
            except socket.timeout:
                continue
            socket_client.settimeout(None)
            return socket_client

    @staticmethod
    def _validate_and_extract_token(request_line: str) -> str:
        method, _, rest = request_line.partition(" ")
        if method != "GET":
            raise OperationalError(
                msg=f"Invalid HTTP request method from web browser: {method}",
                errno=ER_BROWSER_RESPONSE_WRONG_METHOD,
            )
        # drop the protocol version
        target = rest.rsplit(" ", 1)[0] if " " in rest else rest
        if not target.startswith(TOKEN_REQUEST_PREFIX):
            raise OperationalError(
                msg=f"Expect {TOKEN_REQUEST_PREFIX}, but got {target}",
                errno=ER_BROWSER_RESPONSE_INVALID_PREFIX,
            )
        return unquote(target[len(TOKEN_REQUEST_PREFIX) :])

    @staticmethod
    def _get_user_agent(data: list[str]) -> None:
        for line in data:
            if line.lower().startswith("user-agent"):
                logger.debug(line)
                break
        else:
            logger.debug("No User-Agent")

    def _get_sso_url(
        self,
        session: Session,
        callback_port: int,
        cancel_token: CancellationToken | None,
    ) -> str:
        """Gets SSO URL from Snowflake."""
        properties = session.properties
        body = Auth.base_auth_data(
            properties.user,
            properties.account,
            session.application,
        )
        body["data"]["AUTHENTICATOR"] = AuthType.EXTERNAL_BROWSER.value
        body["data"]["BROWSER_MODE_REDIRECT_PORT"] = str(callback_port)
        logger.debug(
            "account=%s, authenticator=%s, user=%s",
            properties.account,
            AuthType.EXTERNAL_BROWSER.value,
            properties.user,
        )
        ret = session.request(
            AUTHENTICATOR_REQUEST_PATH, body=body, cancel_token=cancel_token
        )
        if not ret.get("success"):
            self._handle_failure(session=session, ret=ret)
        data = ret["data"]
        self._proof_key = data["proofKey"]
        return data["ssoUrl"]
