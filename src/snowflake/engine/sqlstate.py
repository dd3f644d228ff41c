#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

SQLSTATE_CONNECTION_WAS_NOT_ESTABLISHED = "08001"
SQLSTATE_CONNECTION_ALREADY_EXISTS = "08002"
SQLSTATE_CONNECTION_NOT_EXISTS = "08003"
SQLSTATE_CONNECTION_REJECTED = "08004"
SQLSTATE_IO_ERROR = "58030"
SQLSTATE_FEATURE_NOT_SUPPORTED = "0A000"
