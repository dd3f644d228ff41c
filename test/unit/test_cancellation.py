#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import threading
from unittest.mock import Mock

import pytest

from snowflake.engine.cancellation import CancellationToken
from snowflake.engine.errorcode import ER_REQUEST_CANCELLED
from snowflake.engine.errors import RequestCancelledError


def test_cancel_runs_callbacks_once(cancel_token):
    callback = Mock()
    cancel_token.add_callback(callback)
    assert not cancel_token.is_cancelled

    cancel_token.cancel()
    cancel_token.cancel()
    assert cancel_token.is_cancelled
    callback.assert_called_once_with()


def test_callback_added_after_cancel_runs_immediately(cancel_token):
    cancel_token.cancel()
    callback = Mock()
    cancel_token.add_callback(callback)
    callback.assert_called_once_with()


def test_removed_callback_is_not_run(cancel_token):
    callback = Mock()
    cancel_token.add_callback(callback)
    cancel_token.remove_callback(callback)
    # removing an unknown callback is a no-op
    cancel_token.remove_callback(Mock())
    cancel_token.cancel()
    callback.assert_not_called()


def test_failing_callback_does_not_stop_others(cancel_token):
    second = Mock()
    cancel_token.add_callback(Mock(side_effect=RuntimeError("boom")))
    cancel_token.add_callback(second)
    cancel_token.cancel()
    second.assert_called_once_with()


def test_raise_if_cancelled(cancel_token):
    cancel_token.raise_if_cancelled()
    cancel_token.cancel()
    with pytest.raises(RequestCancelledError) as e:
        cancel_token.raise_if_cancelled()
    assert e.value.errno == ER_REQUEST_CANCELLED


def test_wait_is_woken_by_cancel(cancel_token):
    assert cancel_token.wait(0.01) is False
    timer = threading.Timer(0.05, cancel_token.cancel)
    timer.start()
    try:
        assert cancel_token.wait(10) is True
    finally:
        timer.cancel()


def test_chained_tokens():
    parent = CancellationToken()
    child = CancellationToken()
    parent.add_callback(child.cancel)

    child.cancel()
    assert not parent.is_cancelled

    other_child = CancellationToken()
    parent.add_callback(other_child.cancel)
    parent.cancel()
    assert other_child.is_cancelled
