#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import logging
from logging import NullHandler

from .cancellation import CancellationToken
from .chunk_downloader import (
    BoundedQueueChunkDownloader,
    ChunkDownloader,
    SlidingWindowChunkDownloader,
    WorkerPoolChunkDownloader,
    get_chunk_downloader,
)
from .constants import ChunkDownloaderVersion, ChunkParserVersion, DownloadState
from .description import SNOWFLAKE_ENGINE_VERSION
from .errors import (
    DatabaseError,
    Error,
    HttpError,
    InterfaceError,
    InternalError,
    NotSupportedError,
    OperationalError,
    ProgrammingError,
    RequestCancelledError,
    RequestTimeoutError,
)
from .network import RestRequest, RetryTransport
from .result_chunk import ChunkBuffer, ChunkDescriptor, PackedChunkBuffer, SimpleChunkBuffer
from .session import Session, SessionState
from .session_properties import SessionProperties, SessionProperty
from .version import VERSION

logging.getLogger(__name__).addHandler(NullHandler())

__version__ = SNOWFLAKE_ENGINE_VERSION

__all__ = [
    # Error handling
    "Error",
    "InterfaceError",
    "DatabaseError",
    "NotSupportedError",
    "ProgrammingError",
    "OperationalError",
    "InternalError",
    "HttpError",
    "RequestTimeoutError",
    "RequestCancelledError",
    # Session
    "Session",
    "SessionState",
    "SessionProperties",
    "SessionProperty",
    "CancellationToken",
    "RestRequest",
    "RetryTransport",
    # Result chunks
    "ChunkBuffer",
    "ChunkDescriptor",
    "SimpleChunkBuffer",
    "PackedChunkBuffer",
    "ChunkDownloader",
    "BoundedQueueChunkDownloader",
    "WorkerPoolChunkDownloader",
    "SlidingWindowChunkDownloader",
    "get_chunk_downloader",
    "ChunkDownloaderVersion",
    "ChunkParserVersion",
    "DownloadState",
]
