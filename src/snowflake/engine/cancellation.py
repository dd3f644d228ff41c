#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import threading
from logging import getLogger
from typing import Callable

from .errors import RequestCancelledError

logger = getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal shared across threads.

    One token is handed to every blocking or network call that belongs to the
    same logical operation. Callers check it at each suspension point and wait
    on it instead of sleeping, so ``cancel()`` wakes them up immediately.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.debug("cancellation callback failed. ignoring...: %s", e)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Registers a callback run once on cancel, or now if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def wait(self, timeout: float | None = None) -> bool:
        """Blocks up to ``timeout`` seconds. Returns True if cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError()
