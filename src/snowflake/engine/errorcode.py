#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

# network
ER_FAILED_TO_CONNECT_TO_DB = 250001
ER_CONNECTION_IS_CLOSED = 250002
ER_FAILED_TO_REQUEST = 250003
ER_NOT_HTTPS_USED = 250004
ER_FAILED_TO_SERVER = 250005
ER_IDP_CONNECTION_ERROR = 250006
ER_INCORRECT_DESTINATION = 250007
ER_UNABLE_TO_OPEN_BROWSER = 250008
ER_NO_HOSTNAME_FOUND = 250009
ER_CONNECTION_TIMEOUT = 250010
ER_REQUEST_TIMEOUT = 250011
ER_REQUEST_CANCELLED = 250012
ER_SAML_POSTBACK_NOT_FOUND = 250013
ER_BROWSER_RESPONSE_WRONG_METHOD = 250014
ER_BROWSER_RESPONSE_INVALID_PREFIX = 250015
ER_SESSION_ALREADY_OPEN = 250016
ER_FAILED_TO_RENEW_SESSION = 250017
ER_INVALID_RESPONSE = 250018

# connection properties
ER_MISSING_CONNECTION_PROPERTY = 251001
ER_INVALID_VALUE = 251002
ER_INVALID_APPLICATION = 251003
ER_UNKNOWN_AUTHENTICATOR = 251004
ER_INVALID_PRIVATE_KEY = 251005

# result chunks
ER_CHUNK_DOWNLOAD_FAILED = 253001
ER_CHUNK_PARSE_ERROR = 253002

ER_HTTP_GENERAL_ERROR = 290000
