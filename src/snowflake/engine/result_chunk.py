#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

from abc import ABC, abstractmethod
from array import array
from logging import getLogger
from typing import Any, Iterable, Mapping, NamedTuple

from .constants import UTF8, DownloadState
from .errorcode import ER_CHUNK_PARSE_ERROR
from .errors import InterfaceError, InternalError

logger = getLogger(__name__)

# length marking a NULL cell in the packed buffer
NULL_VALUE = -100
BLOCK_LENGTH_BITS = 24
META_BLOCK_LENGTH_BITS = 15

_ALLOWED_TRANSITIONS = {
    DownloadState.NOT_STARTED: (DownloadState.IN_PROGRESS, DownloadState.FAILURE),
    DownloadState.IN_PROGRESS: (DownloadState.SUCCESS, DownloadState.FAILURE),
    DownloadState.SUCCESS: (),
    DownloadState.FAILURE: (),
}


class ChunkDescriptor(NamedTuple):
    """Small class that holds information about chunks that are given by back-end."""

    url: str
    row_count: int
    uncompressed_size: int
    index: int

    @classmethod
    def from_response(cls, chunk: Mapping[str, Any], index: int) -> ChunkDescriptor:
        return cls(
            url=chunk["url"],
            row_count=int(chunk["rowCount"]),
            uncompressed_size=int(chunk.get("uncompressedSize") or 0),
            index=index,
        )


class ChunkBuffer(ABC):
    """Parsed cells of one result chunk.

    A buffer is bound to one descriptor at a time through :meth:`reset`, which
    also starts a new download lifecycle. Cells are appended in row-major order
    and read back as UTF-8 bytes.
    """

    def __init__(self) -> None:
        self._descriptor: ChunkDescriptor | None = None
        self._column_count = 0
        self._download_state = DownloadState.NOT_STARTED
        self.error: BaseException | None = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(index={self.chunk_index}, "
            f"rows={self.row_count}, state={self._download_state.value})"
        )

    def reset(self, descriptor: ChunkDescriptor, column_count: int) -> None:
        self._descriptor = descriptor
        self._column_count = column_count
        self._download_state = DownloadState.NOT_STARTED
        self.error = None
        self._reset_storage()

    @abstractmethod
    def _reset_storage(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def add_cell(self, value: bytes | str | None) -> None:
        """Appends the next cell in row-major order."""
        raise NotImplementedError

    @abstractmethod
    def extract_cell(self, row: int, col: int) -> bytes | memoryview | None:
        raise NotImplementedError

    def load_rows(self, rows: Iterable[Iterable[Any]]) -> None:
        """Appends whole rows of already decoded JSON values."""
        for row in rows:
            for cell in row:
                if cell is not None and not isinstance(cell, str):
                    raise InterfaceError(
                        msg=f"Unexpected cell type in chunk {self.chunk_index}: "
                        f"{type(cell).__name__}",
                        errno=ER_CHUNK_PARSE_ERROR,
                    )
                self.add_cell(cell)

    @property
    def descriptor(self) -> ChunkDescriptor | None:
        return self._descriptor

    @property
    def row_count(self) -> int:
        return self._descriptor.row_count if self._descriptor else 0

    @property
    def column_count(self) -> int:
        return self._column_count

    @property
    def chunk_index(self) -> int:
        return self._descriptor.index if self._descriptor else -1

    @property
    def url(self) -> str | None:
        return self._descriptor.url if self._descriptor else None

    @property
    def download_state(self) -> DownloadState:
        return self._download_state

    @download_state.setter
    def download_state(self, state: DownloadState) -> None:
        if state not in _ALLOWED_TRANSITIONS[self._download_state]:
            raise InternalError(
                msg=f"Invalid download state transition for chunk {self.chunk_index}: "
                f"{self._download_state.value} -> {state.value}"
            )
        self._download_state = state

    def mark_failure(self, error: BaseException) -> None:
        self.error = error
        self.download_state = DownloadState.FAILURE


class SimpleChunkBuffer(ChunkBuffer):
    """Row-major 2D list of decoded strings."""

    def __init__(self) -> None:
        super().__init__()
        self._rows: list[list[str | None]] = []

    def _reset_storage(self) -> None:
        self._rows = []

    def add_cell(self, value: bytes | str | None) -> None:
        if isinstance(value, (bytes, bytearray, memoryview)):
            value = bytes(value).decode(UTF8)
        if not self._rows or len(self._rows[-1]) >= self._column_count:
            self._rows.append([])
        self._rows[-1].append(value)

    def extract_cell(self, row: int, col: int) -> bytes | None:
        value = self._rows[row][col]
        return None if value is None else value.encode(UTF8)


class PackedChunkBuffer(ChunkBuffer):
    """Block allocated cell storage meant to be reused across chunks.

    Cell bytes are packed into ``bytearray`` blocks and located through parallel
    offset and length arrays. Blocks allocated for an earlier chunk are kept, so
    a recycled buffer does not allocate again unless the new chunk is larger.
    """

    def __init__(
        self,
        block_length_bits: int = BLOCK_LENGTH_BITS,
        meta_block_length_bits: int = META_BLOCK_LENGTH_BITS,
    ) -> None:
        super().__init__()
        self._block_length_bits = block_length_bits
        self._block_length = 1 << block_length_bits
        self._meta_block_length_bits = meta_block_length_bits
        self._meta_block_length = 1 << meta_block_length_bits

        self._data: list[bytearray] = []
        self._offsets: list[array] = []
        self._lengths: list[array] = []
        self._block_count = 0
        self._meta_block_count = 0
        self._next_index = 0
        self._current_data_offset = 0

    def _get_block(self, offset: int) -> int:
        return offset >> self._block_length_bits

    def _get_block_offset(self, offset: int) -> int:
        return offset & (self._block_length - 1)

    def _space_left_on_block(self, offset: int) -> int:
        return self._block_length - self._get_block_offset(offset)

    def _get_meta_block(self, index: int) -> int:
        return index >> self._meta_block_length_bits

    def _get_meta_block_index(self, index: int) -> int:
        return index & (self._meta_block_length - 1)

    @property
    def allocated_blocks(self) -> int:
        return len(self._data)

    @property
    def allocated_meta_blocks(self) -> int:
        return len(self._offsets)

    def _reset_storage(self) -> None:
        self._current_data_offset = 0
        self._next_index = 0
        rows = self.row_count
        cols = self._column_count
        uncompressed_size = self._descriptor.uncompressed_size if self._descriptor else 0
        # the JSON text minus brackets and separators bounds the cell bytes
        bytes_needed = uncompressed_size - (rows * 2) - (rows * cols)
        self._block_count = max(self._get_block(bytes_needed - 1) + 1, 0)
        self._meta_block_count = max(self._get_meta_block(rows * cols - 1) + 1, 0)

    def _allocate_arrays(self) -> None:
        while len(self._data) < self._block_count:
            self._data.append(bytearray(self._block_length))
        while len(self._offsets) < self._meta_block_count:
            self._offsets.append(array("l", bytes(self._meta_block_length * array("l").itemsize)))
            self._lengths.append(array("l", bytes(self._meta_block_length * array("l").itemsize)))

    def _ensure_capacity(self, index: int, data_end: int) -> None:
        if len(self._data) < self._block_count or len(self._offsets) < self._meta_block_count:
            self._allocate_arrays()
        # grow when the size estimate was short
        needed_blocks = self._get_block(data_end - 1) + 1 if data_end > 0 else 0
        if needed_blocks > self._block_count:
            logger.debug(
                "growing chunk %s data blocks: %s -> %s",
                self.chunk_index,
                self._block_count,
                needed_blocks,
            )
            self._block_count = needed_blocks
        needed_meta_blocks = self._get_meta_block(index) + 1
        if needed_meta_blocks > self._meta_block_count:
            self._meta_block_count = needed_meta_blocks
        self._allocate_arrays()

    def add_cell(self, value: bytes | str | None) -> None:
        if isinstance(value, str):
            value = value.encode(UTF8)
        index = self._next_index
        block = self._get_meta_block(index)
        block_index = self._get_meta_block_index(index)

        if value is None:
            self._ensure_capacity(index, self._current_data_offset)
            self._lengths[block][block_index] = NULL_VALUE
        else:
            offset = self._current_data_offset
            length = len(value)
            self._ensure_capacity(index, offset + length)

            # store offset and length
            self._offsets[block][block_index] = offset
            self._lengths[block][block_index] = length

            # copy bytes to data array
            copied = 0
            while copied < length:
                position = offset + copied
                block_offset = self._get_block_offset(position)
                copy_size = min(length - copied, self._space_left_on_block(position))
                self._data[self._get_block(position)][
                    block_offset : block_offset + copy_size
                ] = value[copied : copied + copy_size]
                copied += copy_size
            self._current_data_offset += length
        self._next_index += 1

    def extract_cell(self, row: int, col: int) -> bytes | memoryview | None:
        index = row * self._column_count + col
        if index >= self._next_index or index < 0:
            raise IndexError(f"cell ({row}, {col}) out of range")
        block = self._get_meta_block(index)
        block_index = self._get_meta_block_index(index)
        length = self._lengths[block][block_index]

        if length == NULL_VALUE:
            return None
        if length == 0:
            return b""

        offset = self._offsets[block][block_index]
        if self._space_left_on_block(offset) < length:
            # the cell spans a block boundary
            cell = bytearray(length)
            copied = 0
            while copied < length:
                position = offset + copied
                block_offset = self._get_block_offset(position)
                copy_size = min(length - copied, self._space_left_on_block(position))
                cell[copied : copied + copy_size] = self._data[self._get_block(position)][
                    block_offset : block_offset + copy_size
                ]
                copied += copy_size
            return bytes(cell)

        block_offset = self._get_block_offset(offset)
        return memoryview(self._data[self._get_block(offset)])[
            block_offset : block_offset + length
        ]
