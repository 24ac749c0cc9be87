"""Line decoding for NDJSON response bodies.

Turns an async stream of byte chunks into UTF-8 lines without buffering
more than the current, unfinished line.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable
from typing import TypeVar

from .errors import DecodeError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEWLINE = b"\n"
_CARRIAGE_RETURN = b"\r"


async def run_cancellable(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await `awaitable`, abandoning it as soon as `cancel` is set.

    Raises:
        OperationCancelledError: If the cancel signal fires first (or was
            already set).
    """
    if cancel is None:
        return await awaitable

    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError("Operation was cancelled.")

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, waiter):
            if not task.done():
                task.cancel()

    if work.done() and not work.cancelled():
        return work.result()

    # Let the abandoned read unwind before the caller closes the stream under it
    await asyncio.wait({work})
    raise OperationCancelledError("Operation was cancelled.")


class LineDecoder:
    """Pull-based decoder from byte chunks to lines.

    Lines are split on `\\n`; a trailing `\\r` is stripped, so `\\r\\n` and
    `\\n` may be mixed in one stream. A final line without terminator is
    still emitted. Splitting happens on raw bytes before decoding, so
    multi-byte characters spread across chunks decode correctly.

    Usage:
        async for line in LineDecoder(response.aiter_bytes()):
            handle(line)

    Or, pulling explicitly:
        line = await decoder.read_line()  # None at end of stream
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        self._chunks: AsyncIterator[bytes] = aiter(chunks)
        self._cancel = cancel
        self._pending = bytearray()
        # Bytes of _pending already known to contain no newline
        self._scanned = 0
        self._exhausted = False

    def __aiter__(self) -> LineDecoder:
        return self

    async def __anext__(self) -> str:
        line = await self.read_line()
        if line is None:
            raise StopAsyncIteration
        return line

    async def read_line(self) -> str | None:
        """Return the next line, or None once the stream is exhausted.

        Raises:
            OperationCancelledError: If the cancel signal is set.
            DecodeError: If a line is not valid UTF-8.
        """
        while True:
            if self._cancel is not None and self._cancel.is_set():
                raise OperationCancelledError("Operation was cancelled.")

            index = self._pending.find(_NEWLINE, self._scanned)
            if index != -1:
                line = self._take(index)
                del self._pending[:1]
                return line

            self._scanned = len(self._pending)

            if self._exhausted:
                if not self._pending:
                    return None
                return self._take(len(self._pending))

            chunk = await run_cancellable(anext(self._chunks, None), self._cancel)
            if chunk is None:
                self._exhausted = True
            else:
                self._pending.extend(chunk)

    def _take(self, end: int) -> str:
        """Remove and decode the first `end` pending bytes."""
        raw = bytes(self._pending[:end]).rstrip(_CARRIAGE_RETURN)
        del self._pending[:end]
        self._scanned = 0
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Failed to decode line as UTF-8: {e}") from e
