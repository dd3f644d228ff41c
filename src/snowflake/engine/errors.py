#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import logging
from logging import getLogger
from typing import TYPE_CHECKING, Any

from .constants import UTF8
from .errorcode import ER_REQUEST_CANCELLED, ER_REQUEST_TIMEOUT

if TYPE_CHECKING:  # pragma: no cover
    from .session import Session

logger = getLogger(__name__)


class Error(Exception):
    """Base Snowflake exception class."""

    def __init__(
        self,
        msg: str | None = None,
        errno: int | None = None,
        sqlstate: str | None = None,
        sfqid: str | None = None,
        done_format_msg: bool | None = None,
    ) -> None:
        super().__init__(msg)
        self.msg = msg
        self.raw_msg = msg
        self.errno = errno or -1
        self.sqlstate = sqlstate or "n/a"
        self.sfqid = sfqid

        if not self.msg:
            self.msg = "Unknown error"

        if self.errno != -1 and not done_format_msg:
            if self.sqlstate != "n/a":
                if logger.getEffectiveLevel() in (logging.INFO, logging.DEBUG):
                    self.msg = f"{self.errno:06d} ({self.sqlstate}): {self.sfqid}: {self.msg}"
                else:
                    self.msg = f"{self.errno:06d} ({self.sqlstate}): {self.msg}"
            else:
                if logger.getEffectiveLevel() in (logging.INFO, logging.DEBUG):
                    self.msg = f"{self.errno:06d}: {self.sfqid}: {self.msg}"
                else:
                    self.msg = f"{self.errno:06d}: {self.msg}"

    def __repr__(self) -> str:
        return self.__str__()

    def __str__(self) -> str:
        return self.msg

    def __bytes__(self) -> bytes:
        return self.__str__().encode(UTF8)

    @staticmethod
    def default_errorhandler(
        session: Session | None,
        error_class: type[Error],
        error_value: dict[str, Any],
    ) -> None:
        """Default error handler that raises an error.

        Args:
            session: Session in which the error happened.
            error_class: Class of error that needs handling.
            error_value: A dictionary of the error details.

        Raises:
            A Snowflake error.
        """
        raise error_class(
            msg=error_value.get("msg"),
            errno=error_value.get("errno"),
            sqlstate=error_value.get("sqlstate"),
            sfqid=error_value.get("sfqid"),
            done_format_msg=error_value.get("done_format_msg"),
        )

    @staticmethod
    def errorhandler_wrapper(
        session: Session | None,
        error_class: type[Error] | Error,
        error_value: dict[str, Any] | None = None,
    ) -> None:
        """Error handler wrapper that calls the errorhandler method.

        Args:
            session: Session in which the error happened.
            error_class: Class of error that needs handling, or an error object.
            error_value: An optional dictionary of the error details.

        Returns:
            None if no exceptions are raised by the session's error handler.

        Raises:
            A Snowflake error if the session has no error handler of its own.
        """
        if error_value is None:
            # no value indicates errorclass is error_object
            error_object = error_class
            error_class = type(error_object)
            error_value = {
                "msg": error_object.msg,
                "errno": error_object.errno,
                "sqlstate": error_object.sqlstate,
                "done_format_msg": True,
            }
        else:
            error_value["done_format_msg"] = False

        if session is not None:
            session.messages.append((error_class, error_value))
            handler = getattr(session, "errorhandler", None)
            if handler is not None:
                handler(session, error_class, error_value)
                return

        Error.default_errorhandler(session, error_class, error_value)


class InterfaceError(Error):
    """Exception for errors related to the interface."""


class DatabaseError(Error):
    """Exception for errors related to the database."""


class InternalError(DatabaseError):
    """Exception for errors internal database errors."""


class OperationalError(DatabaseError):
    """Exception for errors related to the database's operation."""


class ProgrammingError(DatabaseError):
    """Exception for errors programming errors."""


class NotSupportedError(DatabaseError):
    """Exception for errors when an unsupported database feature was used."""


class HttpError(Error):
    """Exception for a non-retryable HTTP status."""


class RequestTimeoutError(OperationalError):
    """Exception raised once a request has used up its overall deadline."""

    def __init__(self, **kwargs) -> None:
        OperationalError.__init__(
            self,
            msg=kwargs.get("msg") or "Request timed out",
            errno=kwargs.get("errno") or ER_REQUEST_TIMEOUT,
            sqlstate=kwargs.get("sqlstate"),
            sfqid=kwargs.get("sfqid"),
        )


class RequestCancelledError(OperationalError):
    """Exception raised when a request was aborted by its cancellation token."""

    def __init__(self, **kwargs) -> None:
        OperationalError.__init__(
            self,
            msg=kwargs.get("msg") or "Request was cancelled",
            errno=kwargs.get("errno") or ER_REQUEST_CANCELLED,
            sqlstate=kwargs.get("sqlstate"),
            sfqid=kwargs.get("sfqid"),
        )
