#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

"""Parsers turning a bracketed chunk payload into buffer cells.

Every parser reads a binary file-like object holding a JSON array of rows,
each row being an array of strings and nulls, and appends the cells to a
:class:`~snowflake.engine.result_chunk.ChunkBuffer` in row-major order.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from logging import getLogger
from typing import BinaryIO

import ijson

from .constants import ChunkParserVersion
from .errorcode import ER_CHUNK_PARSE_ERROR
from .errors import InterfaceError
from .result_chunk import ChunkBuffer

logger = getLogger(__name__)

READ_BLOCK_SIZE = 64 * 1024

_QUOTE = ord('"')
_BACKSLASH = ord("\\")
_NULL_START = ord("n")
_ESCAPES = {
    ord("n"): ord("\n"),
    ord("r"): ord("\r"),
    ord("b"): ord("\b"),
    ord("t"): ord("\t"),
}


def _parse_error(msg: str) -> InterfaceError:
    return InterfaceError(msg=msg, errno=ER_CHUNK_PARSE_ERROR)


class ChunkParser(ABC):
    @abstractmethod
    def parse(self, stream: BinaryIO, buffer: ChunkBuffer) -> None:
        raise NotImplementedError


class WholeDocumentParser(ChunkParser):
    """Loads the whole payload with :func:`json.load`."""

    def parse(self, stream: BinaryIO, buffer: ChunkBuffer) -> None:
        try:
            rows = json.load(stream)
        except ValueError as e:
            raise _parse_error(f"Failed to parse chunk {buffer.chunk_index}: {e}")
        buffer.load_rows(rows)


class StreamingParser(ChunkParser):
    """Walks the ijson event stream, never holding more than one cell decoded."""

    def parse(self, stream: BinaryIO, buffer: ChunkBuffer) -> None:
        cells_in_row = 0
        try:
            for prefix, event, value in ijson.parse(stream):
                if event == "start_array":
                    continue
                if event == "end_array":
                    if prefix != "" and cells_in_row != buffer.column_count:
                        raise _parse_error(
                            f"Unexpected row width in chunk {buffer.chunk_index}: "
                            f"{cells_in_row}, expected {buffer.column_count}"
                        )
                    cells_in_row = 0
                elif event in ("string", "null"):
                    buffer.add_cell(value)
                    cells_in_row += 1
                else:
                    raise _parse_error(f"Unexpected token type: {event}")
        except ijson.JSONError as e:
            raise _parse_error(f"Failed to parse chunk {buffer.chunk_index}: {e}")


class ByteScanningParser(ChunkParser):
    """Very fast scanner that only understands strings and nulls.

    Outside a string, ``"`` opens a cell and ``n`` adds a NULL; everything else
    is skipped, so the structure of the document is never validated. Rows wrap
    on the buffer's column count. Inside a string ``\\n``, ``\\r``, ``\\b`` and
    ``\\t`` become control characters and any other escaped byte is kept as is.
    """

    def parse(self, stream: BinaryIO, buffer: ChunkBuffer) -> None:
        in_string = False
        in_escape = False
        cell = bytearray()

        block = stream.read(READ_BLOCK_SIZE)
        while block:
            start = 0
            i = 0
            end = len(block)
            while i < end:
                c = block[i]
                if in_escape:
                    cell.append(_ESCAPES.get(c, c))
                    in_escape = False
                    start = i + 1
                elif in_string:
                    if c == _QUOTE:
                        cell += block[start:i]
                        buffer.add_cell(bytes(cell))
                        cell.clear()
                        in_string = False
                    elif c == _BACKSLASH:
                        cell += block[start:i]
                        in_escape = True
                elif c == _QUOTE:
                    in_string = True
                    start = i + 1
                elif c == _NULL_START:
                    buffer.add_cell(None)
                i += 1
            if in_string and not in_escape:
                cell += block[start:end]
            block = stream.read(READ_BLOCK_SIZE)

        if in_escape:
            raise _parse_error("Unexpected end of stream in escape sequence")
        if in_string:
            raise _parse_error("Unexpected end of stream in string")


_PARSERS: dict[ChunkParserVersion, type[ChunkParser]] = {
    ChunkParserVersion.WHOLE_DOCUMENT: WholeDocumentParser,
    ChunkParserVersion.STREAMING: StreamingParser,
    ChunkParserVersion.BYTE_SCANNER: ByteScanningParser,
}


def get_chunk_parser(version: int | ChunkParserVersion) -> ChunkParser:
    try:
        return _PARSERS[ChunkParserVersion(version)]()
    except ValueError:
        raise InterfaceError(
            msg=f"Unknown chunk parser version: {version}",
            errno=ER_CHUNK_PARSE_ERROR,
        )
