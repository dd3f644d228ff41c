#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

"""Backoff policies for the retry transport.

A policy is a zero-argument callable returning an iterator of sleep durations in
seconds. The first value is the sleep before the first retry.
"""

from __future__ import annotations

import random
from typing import Iterator

DEFAULT_BACKOFF_FACTOR = 2
DEFAULT_BACKOFF_BASE = 1
DEFAULT_BACKOFF_CAP = 16

# the shortened sleep never drops below this many seconds
MIN_DEADLINE_SLEEP = 1.0


def exponential_backoff(
    factor: int = DEFAULT_BACKOFF_FACTOR,
    base: int = DEFAULT_BACKOFF_BASE,
    cap: int = DEFAULT_BACKOFF_CAP,
    enable_jitter: bool = False,
) -> Iterator[int]:
    """Yields base, base*factor, ... capped at ``cap``: 1, 2, 4, 8, 16, 16, ...

    With ``enable_jitter`` every value after the first is drawn uniformly from
    ``[0, sleep]``.
    """
    sleep = base
    yield sleep
    while True:
        sleep = min(cap, sleep * factor)
        yield random.randint(0, sleep) if enable_jitter else sleep


def shorten_to_deadline(sleep: float, remaining_seconds: float | None) -> float:
    """Fits a backoff into the remaining budget of a request.

    When less than ``sleep`` seconds are left, the sleep becomes one second short
    of the deadline so one more attempt can be made, but never under a second.
    """
    if remaining_seconds is None or remaining_seconds >= sleep:
        return float(sleep)
    return max(MIN_DEADLINE_SLEEP, remaining_seconds - 1)
