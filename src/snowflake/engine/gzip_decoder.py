#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import itertools
import zlib
from logging import getLogger
from typing import Iterable, Iterator

CHUNK_SIZE = 16384
MAGIC_NUMBER = 16  # magic number from requests/packages/urllib3/response.py
GZIP_MAGIC = b"\x1f\x8b"

logger = getLogger(__name__)


def is_gzip(data: bytes) -> bool:
    return data[:2] == GZIP_MAGIC


def decompress_chunks(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Decompresses a gzip byte stream lazily.

    Concatenated gzip members are decompressed one after another.
    """
    obj = zlib.decompressobj(MAGIC_NUMBER + zlib.MAX_WBITS)
    for d in chunks:
        yield obj.decompress(d)
        while obj.unused_data != b"":
            unused_data = obj.unused_data
            obj = zlib.decompressobj(MAGIC_NUMBER + zlib.MAX_WBITS)
            yield obj.decompress(unused_data)
    yield obj.flush()


class IterStreamer:
    """
    File-like streaming iterator.
    """

    def __init__(self, generator: Iterable[bytes]) -> None:
        self.iterator = iter(generator)
        self.leftover = b""

    def __iter__(self) -> Iterator[bytes]:
        return self.iterator

    def readable(self) -> bool:
        return True

    def read(self, size: int | None = -1) -> bytes:
        if size is None or size < 0:
            data = self.leftover + b"".join(self.iterator)
            self.leftover = b""
            return data

        parts = [self.leftover]
        count = len(self.leftover)
        while count < size:
            try:
                chunk = next(self.iterator)
            except StopIteration:
                break
            parts.append(chunk)
            count += len(chunk)

        data = b"".join(parts)
        self.leftover = data[size:]
        return data[:size]


class BracketedStream(IterStreamer):
    """Chunk payloads are comma separated rows; this makes them a JSON array."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        super().__init__(itertools.chain((b"[",), chunks, (b"]",)))
