#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import time
from logging import getLogger
from types import TracebackType
from typing import Callable, Iterator

from .backoff_policies import exponential_backoff, shorten_to_deadline

logger = getLogger(__name__)

DEFAULT_BACKOFF_POLICY: Callable[[], Iterator[int]] = exponential_backoff


def get_time_millis() -> int:
    """Returns the current time in milliseconds."""
    return int(time.time() * 1000)


class TimerContextManager:
    """Context manager class to easily measure execution of a code block.

    Once the context manager finishes, the class should be cast into an int to retrieve
    result.

    Example:

        with TimerContextManager() as measured_time:
            pass
        download_metric = measured_time.get_timing_millis()
    """

    def __init__(self) -> None:
        self._start: int | None = None
        self._end: int | None = None

    def __enter__(self) -> TimerContextManager:
        self._start = get_time_millis()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._end = get_time_millis()

    def get_timing_millis(self) -> int:
        """Get measured timing in milliseconds."""
        if self._start is None or self._end is None:
            raise Exception(
                "Trying to get timing before TimerContextManager has finished"
            )
        return self._end - self._start


class TimeoutBackoffCtx:
    """Context for handling the overall deadline and backoff of one logical request.

    The backoff follows the given generator, but the sleep is shortened to
    ``max(1, remaining - 1)`` seconds once the remaining budget is smaller
    than the next backoff, so the last attempt still fits before the deadline.
    """

    def __init__(
        self,
        timeout: float | None = None,
        backoff_generator: Callable[[], Iterator[int]] | None = None,
    ) -> None:
        self._backoff = (
            backoff_generator() if backoff_generator is not None else DEFAULT_BACKOFF_POLICY()
        )
        self._current_retry_count = 0
        self._current_sleep_time = next(self._backoff)

        # in seconds
        self._timeout = timeout

        # in milliseconds
        self._start_time_millis: int | None = None

    @property
    def timeout(self) -> float | None:
        return self._timeout

    @property
    def current_retry_count(self) -> int:
        return int(self._current_retry_count)

    @property
    def current_sleep_time(self) -> int:
        return int(self._current_sleep_time)

    def set_start_time(self) -> None:
        self._start_time_millis = get_time_millis()

    @property
    def elapsed_time_millis(self) -> int:
        if self._start_time_millis is None:
            return 0
        return get_time_millis() - self._start_time_millis

    @property
    def remaining_time_millis(self) -> int | None:
        if self._timeout is None or self._start_time_millis is None:
            return None
        return int(self._timeout * 1000) - self.elapsed_time_millis

    @property
    def should_retry(self) -> bool:
        """Decides whether there is budget left for another attempt."""
        if self._timeout is not None and self._start_time_millis is None:
            logger.warning(
                "Timeout set in TimeoutBackoffCtx, but start time not recorded"
            )
        remaining = self.remaining_time_millis
        return remaining is None or remaining > 0

    def next_sleep_time(self) -> float:
        """Returns the sleep before the next attempt, shortened near the deadline."""
        remaining = self.remaining_time_millis
        return shorten_to_deadline(
            self._current_sleep_time,
            remaining / 1000 if remaining is not None else None,
        )

    def increment(self) -> None:
        """Updates retry count and sleep time for another retry"""
        self._current_retry_count += 1
        self._current_sleep_time = next(self._backoff)
        logger.debug(f"Update retry count to {self._current_retry_count}")
        logger.debug(f"Update sleep time to {self._current_sleep_time} seconds")
