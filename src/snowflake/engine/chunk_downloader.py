#!/usr/bin/env python
#
# Copyright (c) 2012-2023 Snowflake Computing Inc. All rights reserved.
#

from __future__ import annotations

import itertools
import queue
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum, unique
from logging import getLogger
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, Mapping, Sequence

from typing_extensions import Self

from .cancellation import CancellationToken
from .constants import (
    DEFAULT_CLIENT_PREFETCH_THREADS,
    MAX_CLIENT_PREFETCH_THREADS,
    SSE_C_AES,
    SSE_C_ALGORITHM,
    SSE_C_KEY,
    ChunkDownloaderVersion,
    ChunkParserVersion,
    DownloadState,
)
from .chunk_parser import ByteScanningParser, ChunkParser, get_chunk_parser
from .errorcode import ER_CHUNK_DOWNLOAD_FAILED, ER_INVALID_VALUE
from .errors import OperationalError, ProgrammingError, RequestCancelledError
from .gzip_decoder import CHUNK_SIZE, BracketedStream, decompress_chunks, is_gzip
from .network import DEFAULT_HTTP_TIMEOUT, OK, RestRequest
from .result_chunk import (
    ChunkBuffer,
    ChunkDescriptor,
    PackedChunkBuffer,
    SimpleChunkBuffer,
)
from .time_util import TimerContextManager

if TYPE_CHECKING:  # pragma: no cover
    from requests import Response

    from .network import RetryTransport

logger = getLogger(__name__)

# overall deadline of one chunk download, retries included
DEFAULT_CHUNK_REST_TIMEOUT = 3600
WAIT_TIME_IN_SECONDS = 10


@unique
class DownloadMetrics(Enum):
    """Defines the keywords by which to store metrics for chunks."""

    download = "download"  # Download time in milliseconds
    parse = "parse"  # Parsing time into the buffer


class ChunkFetcher:
    """Downloads one chunk through the retry transport and parses it into a buffer."""

    def __init__(
        self,
        transport: RetryTransport,
        qrmk: str | None = None,
        chunk_headers: Mapping[str, str] | None = None,
        http_timeout: float | None = DEFAULT_HTTP_TIMEOUT,
        rest_timeout: float | None = DEFAULT_CHUNK_REST_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._qrmk = qrmk
        self._chunk_headers = chunk_headers
        self._http_timeout = http_timeout
        self._rest_timeout = rest_timeout

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._chunk_headers is not None:
            headers.update(self._chunk_headers)
            logger.debug("use chunk headers from result")
        elif self._qrmk is not None:
            headers[SSE_C_ALGORITHM] = SSE_C_AES
            headers[SSE_C_KEY] = self._qrmk
        return headers

    def fetch(
        self,
        descriptor: ChunkDescriptor,
        buffer: ChunkBuffer,
        parser: ChunkParser,
        cancel_token: CancellationToken | None = None,
    ) -> dict[DownloadMetrics, int]:
        """Fills ``buffer`` with the chunk behind ``descriptor``.

        The buffer ends in ``SUCCESS``, or in ``FAILURE`` with the error retained
        and re-raised.
        """
        buffer.download_state = DownloadState.IN_PROGRESS
        try:
            return self._fetch(descriptor, buffer, parser, cancel_token)
        except BaseException as e:
            if (
                cancel_token is not None
                and cancel_token.is_cancelled
                and not isinstance(e, RequestCancelledError)
            ):
                # the response was closed underneath the reader
                error: BaseException = RequestCancelledError()
                error.__cause__ = e
            else:
                error = e
            buffer.mark_failure(error)
            if error is e:
                raise
            raise error

    def _fetch(
        self,
        descriptor: ChunkDescriptor,
        buffer: ChunkBuffer,
        parser: ChunkParser,
        cancel_token: CancellationToken | None,
    ) -> dict[DownloadMetrics, int]:
        logger.debug(
            "started getting the result set %s: %s", descriptor.index + 1, descriptor.url
        )
        request = RestRequest(
            method="GET",
            url=descriptor.url,
            headers=self.headers(),
            auth=None,
            rest_timeout=self._rest_timeout,
            http_timeout=self._http_timeout,
            stream=True,
        )
        with TimerContextManager() as download_metric:
            response = self._transport.send(request, cancel_token=cancel_token)

        try:
            if response.status_code != OK:
                raise OperationalError(
                    msg=f"Failed to download the result set chunk {descriptor.index + 1}: "
                    f"{response.status_code} {response.reason}",
                    errno=ER_CHUNK_DOWNLOAD_FAILED,
                )
            if cancel_token is not None:
                cancel_token.add_callback(response.close)
            try:
                with TimerContextManager() as parse_metric:
                    parser.parse(
                        BracketedStream(self._iter_payload(response, cancel_token)),
                        buffer,
                    )
            finally:
                if cancel_token is not None:
                    cancel_token.remove_callback(response.close)
        finally:
            response.close()

        buffer.download_state = DownloadState.SUCCESS
        metrics = {
            DownloadMetrics.download: download_metric.get_timing_millis(),
            DownloadMetrics.parse: parse_metric.get_timing_millis(),
        }
        logger.debug(
            "finished getting the result set %s: %s ms download, %s ms parse",
            descriptor.index + 1,
            metrics[DownloadMetrics.download],
            metrics[DownloadMetrics.parse],
        )
        return metrics

    @staticmethod
    def _iter_payload(
        response: Response, cancel_token: CancellationToken | None
    ) -> Iterator[bytes]:
        def checked(chunks: Iterable[bytes]) -> Iterator[bytes]:
            for chunk in chunks:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                if chunk:
                    yield chunk

        raw = checked(response.iter_content(chunk_size=CHUNK_SIZE))
        first = next(raw, b"")
        chunks = itertools.chain((first,), raw)
        if is_gzip(first):
            # stored compressed without a Content-Encoding header
            return decompress_chunks(chunks)
        return chunks


def _clamp_prefetch_threads(prefetch_threads: int) -> int:
    return max(1, min(prefetch_threads, MAX_CLIENT_PREFETCH_THREADS))


class ChunkDownloader(ABC):
    """
    Large Result set chunk downloader class.

    Chunks are handed out in index order through :meth:`next_chunk`, which
    returns None once every chunk was consumed.
    """

    def __init__(
        self,
        descriptors: Sequence[ChunkDescriptor],
        column_count: int,
        chunk_fetcher: ChunkFetcher,
        parser: ChunkParser,
        prefetch_threads: int = DEFAULT_CLIENT_PREFETCH_THREADS,
        cancel_token: CancellationToken | None = None,
        buffer_factory: Callable[[], ChunkBuffer] | None = None,
    ) -> None:
        self._descriptors = list(descriptors)
        self._chunk_size = len(self._descriptors)
        self._column_count = column_count
        self._fetcher = chunk_fetcher
        self._parser = parser
        self._prefetch_threads = _clamp_prefetch_threads(prefetch_threads)
        self._effective_threads = max(1, min(self._prefetch_threads, self._chunk_size))
        self._buffer_factory = buffer_factory or self._default_buffer_factory()

        # terminate() cancels only this downloader, the caller's token cancels all
        self._cancel_token = CancellationToken()
        self._parent_cancel_token = cancel_token
        if cancel_token is not None:
            cancel_token.add_callback(self._cancel_token.cancel)

        self._downloading_chunks_lock = threading.Lock()
        self._total_millis_downloading_chunks = 0
        self._total_millis_parsing_chunks = 0
        self._next_chunk_to_consume = 0
        self._terminated = False

        logger.debug(
            "prefetch threads: %s, number of chunks: %s, effective threads: %s",
            prefetch_threads,
            self._chunk_size,
            self._effective_threads,
        )

    @staticmethod
    def _default_buffer_factory() -> Callable[[], ChunkBuffer]:
        return SimpleChunkBuffer

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.terminate()

    def __iter__(self) -> Iterator[ChunkBuffer]:
        while True:
            chunk = self.next_chunk()
            if chunk is None:
                return
            yield chunk

    @property
    def chunk_count(self) -> int:
        return self._chunk_size

    @property
    def prefetch_threads(self) -> int:
        return self._prefetch_threads

    @property
    def total_millis_downloading_chunks(self) -> int:
        return self._total_millis_downloading_chunks

    @property
    def total_millis_parsing_chunks(self) -> int:
        return self._total_millis_parsing_chunks

    @abstractmethod
    def next_chunk(self) -> ChunkBuffer | None:
        """Gets the next chunk, blocking until it is downloaded."""
        raise NotImplementedError

    def terminate(self) -> None:
        """Terminates downloading the chunks."""
        if self._terminated:
            return
        self._terminated = True
        logger.debug("terminating chunk downloader")
        if self._parent_cancel_token is not None:
            self._parent_cancel_token.remove_callback(self._cancel_token.cancel)
        self._cancel_token.cancel()
        self._shutdown()

    @abstractmethod
    def _shutdown(self) -> None:
        raise NotImplementedError

    def _check_not_terminated(self) -> None:
        if self._terminated:
            raise RequestCancelledError(msg="The chunk downloader was terminated")

    def _new_buffer(self, descriptor: ChunkDescriptor) -> ChunkBuffer:
        buffer = self._buffer_factory()
        buffer.reset(descriptor, self._column_count)
        return buffer

    def _download_chunk(self, buffer: ChunkBuffer) -> ChunkBuffer:
        """Downloads a chunk asynchronously."""
        logger.debug("downloading chunk %s/%s", buffer.chunk_index + 1, self._chunk_size)
        try:
            metrics = self._fetcher.fetch(
                buffer.descriptor, buffer, self._parser, self._cancel_token
            )
        except Exception:
            logger.debug(
                "Failed to fetch the large result set chunk %s/%s",
                buffer.chunk_index + 1,
                self._chunk_size,
                exc_info=True,
            )
            raise
        with self._downloading_chunks_lock:
            self._total_millis_downloading_chunks += metrics[DownloadMetrics.download]
            self._total_millis_parsing_chunks += metrics[DownloadMetrics.parse]
        return buffer

    def _wait_for(self, future: Future) -> ChunkBuffer:
        """Waits for a download future, returning early once the downloader is cancelled."""
        woken = threading.Event()
        future.add_done_callback(lambda _: woken.set())
        self._cancel_token.add_callback(woken.set)
        try:
            woken.wait()
        finally:
            self._cancel_token.remove_callback(woken.set)
        if not future.done() or future.cancelled():
            self._check_not_terminated()
            raise RequestCancelledError()
        return future.result()

    def _log_ready(self, buffer: ChunkBuffer) -> None:
        logger.debug(
            "chunk %s/%s is ready to consume", buffer.chunk_index + 1, self._chunk_size
        )


_SENTINEL = object()
_CANCELLED = object()


class BoundedQueueChunkDownloader(ChunkDownloader):
    """A producer thread queues one download future per chunk.

    The queue holds at most ``prefetch_threads`` futures, which bounds how far
    the downloads run ahead of the consumer.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._queue: queue.Queue = queue.Queue(maxsize=self._prefetch_threads)
        self._exhausted = False
        self._pool = ThreadPoolExecutor(
            self._effective_threads, thread_name_prefix="chunk-downloader"
        )
        self._cancel_token.add_callback(self._wake_consumer)
        self._producer = threading.Thread(
            target=self._produce, name="chunk-producer", daemon=True
        )
        self._producer.start()

    def _wake_consumer(self) -> None:
        try:
            self._queue.put_nowait(_CANCELLED)
        except queue.Full:
            # a full queue never blocks the consumer
            logger.debug("queue is full, consumer is not waiting")

    def _put(self, item: Any) -> bool:
        while not self._cancel_token.is_cancelled:
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _produce(self) -> None:
        for descriptor in self._descriptors:
            if self._cancel_token.is_cancelled:
                return
            try:
                future = self._pool.submit(
                    self._download_chunk, self._new_buffer(descriptor)
                )
            except RuntimeError:
                # pool already shut down
                return
            if not self._put(future):
                return
        self._put(_SENTINEL)

    def next_chunk(self) -> ChunkBuffer | None:
        if self._exhausted:
            return None
        self._check_not_terminated()
        while True:
            try:
                item = self._queue.get(timeout=WAIT_TIME_IN_SECONDS)
                break
            except queue.Empty:
                self._check_not_terminated()
                self._cancel_token.raise_if_cancelled()
                logger.debug(
                    "chunk %s/%s is NOT ready to consume",
                    self._next_chunk_to_consume + 1,
                    self._chunk_size,
                )
        if item is _SENTINEL:
            self._exhausted = True
            return None
        if item is _CANCELLED:
            self._check_not_terminated()
            raise RequestCancelledError()
        buffer = self._wait_for(item)
        self._next_chunk_to_consume += 1
        self._log_ready(buffer)
        return buffer

    def _shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


class WorkerPoolChunkDownloader(ChunkDownloader):
    """Daemon workers drain a shared task queue; results are stored under a Condition."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._tasks: queue.Queue = queue.Queue()
        for descriptor in self._descriptors:
            self._tasks.put(descriptor)
        self._chunks: dict[int, ChunkBuffer] = {}
        self._chunk_cond = threading.Condition()
        self._cancel_token.add_callback(self._notify_consumer)
        self._workers = [
            threading.Thread(
                target=self._work, name=f"chunk-worker-{i}", daemon=True
            )
            for i in range(self._effective_threads)
        ]
        for worker in self._workers:
            worker.start()

    def _notify_consumer(self) -> None:
        with self._chunk_cond:
            self._chunk_cond.notify_all()

    def _work(self) -> None:
        while not self._cancel_token.is_cancelled:
            try:
                descriptor = self._tasks.get_nowait()
            except queue.Empty:
                return
            buffer = self._new_buffer(descriptor)
            try:
                self._download_chunk(buffer)
            except Exception as e:
                if buffer.download_state != DownloadState.FAILURE:
                    buffer.mark_failure(e)
            with self._chunk_cond:
                self._chunks[descriptor.index] = buffer
                self._chunk_cond.notify_all()
                logger.debug(
                    "added chunk %s/%s to a chunk list.",
                    descriptor.index + 1,
                    self._chunk_size,
                )

    def next_chunk(self) -> ChunkBuffer | None:
        if self._next_chunk_to_consume >= self._chunk_size:
            return None
        self._check_not_terminated()
        idx = self._next_chunk_to_consume
        with self._chunk_cond:
            while idx not in self._chunks:
                self._check_not_terminated()
                self._cancel_token.raise_if_cancelled()
                self._chunk_cond.wait(WAIT_TIME_IN_SECONDS)
            buffer = self._chunks.pop(idx)
        self._next_chunk_to_consume += 1
        if buffer.download_state == DownloadState.FAILURE:
            raise buffer.error
        self._log_ready(buffer)
        return buffer

    def _shutdown(self) -> None:
        with self._chunk_cond:
            self._chunk_cond.notify_all()


class SlidingWindowChunkDownloader(ChunkDownloader):
    """Recycles a ring of packed buffers.

    Chunk ``i`` always lives in slot ``i % window``. A slot is relaunched for the
    next chunk only when the consumer asks for the chunk after the one it holds,
    so the consumer owns a returned buffer until its next :meth:`next_chunk` call.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._window = self._effective_threads
        self._buffers = [self._buffer_factory() for _ in range(self._window)]
        self._futures: list[Future | None] = [None] * self._window
        self._pool = ThreadPoolExecutor(
            self._window, thread_name_prefix="chunk-downloader"
        )
        self._next_chunk_to_download = 0
        # slot handed to the consumer by the last successful next_chunk
        self._slot_to_relaunch: int | None = None
        for slot in range(min(self._window, self._chunk_size)):
            self._launch(slot)

    @staticmethod
    def _default_buffer_factory() -> Callable[[], ChunkBuffer]:
        return PackedChunkBuffer

    def _launch(self, slot: int) -> None:
        descriptor = self._descriptors[self._next_chunk_to_download]
        buffer = self._buffers[slot]
        buffer.reset(descriptor, self._column_count)
        self._futures[slot] = self._pool.submit(self._download_chunk, buffer)
        self._next_chunk_to_download += 1

    def next_chunk(self) -> ChunkBuffer | None:
        logger.debug(
            "next_chunk_to_consume=%s, next_chunk_to_download=%s, total_chunks=%s",
            self._next_chunk_to_consume + 1,
            self._next_chunk_to_download + 1,
            self._chunk_size,
        )
        self._check_not_terminated()
        if self._slot_to_relaunch is not None:
            # the consumer gave back the buffer it was handed last time
            if self._next_chunk_to_download < self._chunk_size:
                self._launch(self._slot_to_relaunch)
            self._slot_to_relaunch = None

        if self._next_chunk_to_consume >= self._chunk_size:
            return None

        slot = self._next_chunk_to_consume % self._window
        # a failed download stays in its slot and is raised again on every call
        buffer = self._wait_for(self._futures[slot])
        self._next_chunk_to_consume += 1
        self._slot_to_relaunch = slot
        self._log_ready(buffer)
        return buffer

    def _shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)


_DOWNLOADERS: dict[ChunkDownloaderVersion, type[ChunkDownloader]] = {
    ChunkDownloaderVersion.BOUNDED_QUEUE: BoundedQueueChunkDownloader,
    ChunkDownloaderVersion.WORKER_POOL: WorkerPoolChunkDownloader,
    ChunkDownloaderVersion.SLIDING_WINDOW: SlidingWindowChunkDownloader,
}


def get_chunk_downloader(
    chunks: Sequence[Mapping[str, Any]],
    column_count: int,
    transport: RetryTransport,
    qrmk: str | None = None,
    chunk_headers: Mapping[str, str] | None = None,
    prefetch_threads: int = DEFAULT_CLIENT_PREFETCH_THREADS,
    version: int | ChunkDownloaderVersion = ChunkDownloaderVersion.SLIDING_WINDOW,
    parser_version: int | ChunkParserVersion = ChunkParserVersion.BYTE_SCANNER,
    cancel_token: CancellationToken | None = None,
) -> ChunkDownloader:
    """Creates the downloader for the chunk list of a query response.

    The sliding window always scans bytes into packed buffers. The other
    strategies parse with ``parser_version`` into simple buffers.
    """
    try:
        version = ChunkDownloaderVersion(version)
    except ValueError:
        raise ProgrammingError(
            msg=f"Unknown chunk downloader version: {version}",
            errno=ER_INVALID_VALUE,
        )
    descriptors = [
        ChunkDescriptor.from_response(chunk, idx) for idx, chunk in enumerate(chunks)
    ]
    for descriptor in descriptors:
        logger.debug(
            "queued chunk %d: rowCount=%s", descriptor.index, descriptor.row_count
        )

    if version == ChunkDownloaderVersion.SLIDING_WINDOW:
        fetcher = ChunkFetcher(transport, qrmk, chunk_headers, http_timeout=None)
        parser: ChunkParser = ByteScanningParser()
    else:
        fetcher = ChunkFetcher(transport, qrmk, chunk_headers)
        parser = get_chunk_parser(parser_version)

    return _DOWNLOADERS[version](
        descriptors,
        column_count,
        fetcher,
        parser,
        prefetch_threads=prefetch_threads,
        cancel_token=cancel_token,
    )
