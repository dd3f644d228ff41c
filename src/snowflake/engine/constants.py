#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#
from __future__ import annotations

from enum import Enum, IntEnum, unique

UTF8 = "utf-8"

# REST endpoints
SESSION_PATH = "/session"
LOGIN_REQUEST_PATH = "/session/v1/login-request"
TOKEN_REQUEST_PATH = "/session/token-request"
AUTHENTICATOR_REQUEST_PATH = "/session/authenticator-request"
QUERY_REQUEST_PATH = "/queries/v1/query-request"

# REST query parameters
PARAM_WAREHOUSE = "warehouse"
PARAM_DATABASE_NAME = "databaseName"
PARAM_SCHEMA_NAME = "schemaName"
PARAM_ROLE_NAME = "roleName"
PARAM_REQUEST_ID = "requestId"
PARAM_REQUEST_GUID = "request_guid"
PARAM_RETRY_COUNT = "retryCount"
PARAM_DELETE = "delete"

HTTP_HEADER_CONTENT_TYPE = "Content-Type"
HTTP_HEADER_ACCEPT = "accept"
HTTP_HEADER_USER_AGENT = "User-Agent"
HTTP_HEADER_SERVICE_NAME = "X-Snowflake-Service"
HTTP_HEADER_AUTHORIZATION = "Authorization"

CONTENT_TYPE_APPLICATION_JSON = "application/json"
ACCEPT_TYPE_APPLICATION_SNOWFLAKE = "application/snowflake"

# Authorization header values
HEADER_AUTHORIZATION_BASIC = "Basic"
HEADER_SNOWFLAKE_TOKEN = 'Snowflake Token="{token}"'

# qrmk related constants
SSE_C_ALGORITHM = "x-amz-server-side-encryption-customer-algorithm"
SSE_C_KEY = "x-amz-server-side-encryption-customer-key"
SSE_C_AES = "AES256"

# GS response codes
SESSION_EXPIRED_GS_CODE = "390112"  # GS code: session expired. need to renew

REQUEST_TYPE_RENEW = "RENEW"

# session parameters negotiated with the server
PARAMETER_CLIENT_PREFETCH_THREADS = "CLIENT_PREFETCH_THREADS"
PARAMETER_SERVICE_NAME = "SERVICE_NAME"
PARAMETER_CLIENT_VALIDATE_DEFAULT_PARAMETERS = "CLIENT_VALIDATE_DEFAULT_PARAMETERS"
PARAMETER_CLIENT_RESULT_CHUNK_SIZE = "CLIENT_RESULT_CHUNK_SIZE"
PARAMETER_CLIENT_SESSION_KEEP_ALIVE = "CLIENT_SESSION_KEEP_ALIVE"

KNOWN_SESSION_PARAMETERS = frozenset(
    (
        PARAMETER_CLIENT_PREFETCH_THREADS,
        PARAMETER_SERVICE_NAME,
        PARAMETER_CLIENT_VALIDATE_DEFAULT_PARAMETERS,
        PARAMETER_CLIENT_RESULT_CHUNK_SIZE,
        PARAMETER_CLIENT_SESSION_KEEP_ALIVE,
    )
)

DEFAULT_CLIENT_PREFETCH_THREADS = 4
MAX_CLIENT_PREFETCH_THREADS = 10


@unique
class DownloadState(Enum):
    """Lifecycle of a single chunk download."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@unique
class ChunkDownloaderVersion(IntEnum):
    BOUNDED_QUEUE = 1
    WORKER_POOL = 2
    SLIDING_WINDOW = 3


@unique
class ChunkParserVersion(IntEnum):
    WHOLE_DOCUMENT = 1
    STREAMING = 2
    BYTE_SCANNER = 3
