#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

"""Rewrites the tracking query parameters of a URL before each retry."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from logging import getLogger
from urllib.parse import unquote_plus, urlsplit, urlunsplit

from .constants import PARAM_REQUEST_GUID, PARAM_RETRY_COUNT, QUERY_REQUEST_PATH

logger = getLogger(__name__)


class UriRule(ABC):
    @abstractmethod
    def apply(self, segments: list[str]) -> list[str]:
        raise NotImplementedError


class RetryCountRule(UriRule):
    """Sets ``retryCount`` to 1 on the first retry and increments it afterwards."""

    def __init__(self) -> None:
        self._retry_count = 1

    def apply(self, segments: list[str]) -> list[str]:
        value = str(self._retry_count)
        self._retry_count += 1
        return _set_param(segments, PARAM_RETRY_COUNT, value)


class RequestGuidRule(UriRule):
    """Replaces the single-use ``request_guid`` with a freshly generated one."""

    def apply(self, segments: list[str]) -> list[str]:
        return _set_param(segments, PARAM_REQUEST_GUID, str(uuid.uuid4()))


def _segment_key(segment: str) -> str:
    return unquote_plus(segment.partition("=")[0])


def _set_param(segments: list[str], name: str, value: str) -> list[str]:
    # only the segment owned by the rule is rewritten, the rest keep their encoding
    replaced = False
    updated = []
    for segment in segments:
        if _segment_key(segment) == name:
            if replaced:
                continue
            updated.append(f"{name}={value}")
            replaced = True
        else:
            updated.append(segment)
    if not replaced:
        updated.append(f"{name}={value}")
    return updated


class UriUpdater:
    """Applies the retry rules that fit a URL, once per retry attempt.

    The rules are picked from the original URL: query requests get a retry
    counter, and URLs carrying a ``request_guid`` get a fresh one each time.
    Any other URL is returned unchanged, and query parameters not touched by a
    rule are kept exactly as they were encoded.
    """

    def __init__(self, url: str) -> None:
        self._parts = urlsplit(url)
        self._segments = [s for s in self._parts.query.split("&") if s]
        self._rules: list[UriRule] = []
        if self._parts.path.startswith(QUERY_REQUEST_PATH):
            self._rules.append(RetryCountRule())
        if any(_segment_key(s) == PARAM_REQUEST_GUID for s in self._segments):
            self._rules.append(RequestGuidRule())
        self._url = url

    @property
    def rules(self) -> list[UriRule]:
        return list(self._rules)

    def update(self) -> str:
        if not self._rules:
            return self._url
        for rule in self._rules:
            self._segments = rule.apply(self._segments)
        self._url = urlunsplit(self._parts._replace(query="&".join(self._segments)))
        logger.debug("updated url for retry: %s", self._parts.path)
        return self._url
