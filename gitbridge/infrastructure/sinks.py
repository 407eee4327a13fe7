"""Response sinks for git protocol output.

A sink either buffers the whole response (status code decided at the end)
or hands bytes to the HTTP response as soon as they are flushed.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional


class PacketSink(ABC):
    """Ordered byte sink shared by hook output and git process output"""

    supports_flush: bool = False

    @abstractmethod
    def write(self, data: bytes) -> None:
        pass

    def flush(self) -> None:
        """Push written bytes to the client; no-op for buffer-only sinks"""

    @abstractmethod
    def getvalue(self) -> bytes:
        """Bytes written so far that have not been handed to the client"""

    @property
    def has_output(self) -> bool:
        return bool(self.getvalue())


class BufferedSink(PacketSink):
    supports_flush = False

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data: bytes) -> None:
        self._buffer += data

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


class StreamingSink(PacketSink):
    """Sink feeding a streaming HTTP response through an ordered queue"""

    supports_flush = True

    def __init__(self):
        self._pending = bytearray()
        self._queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()
        self._started = asyncio.Event()
        self._finished = False

    def write(self, data: bytes) -> None:
        if self._finished:
            raise RuntimeError("write to a finished sink")
        self._pending += data

    def flush(self) -> None:
        if not self._pending:
            return
        self._queue.put_nowait(bytes(self._pending))
        self._pending.clear()
        self._started.set()

    def finish(self) -> None:
        """Flush what is left and mark the end of the response body"""
        if self._finished:
            return
        self.flush()
        self._finished = True
        self._queue.put_nowait(None)

    @property
    def started(self) -> bool:
        return self._started.is_set()

    @property
    def has_output(self) -> bool:
        return self.started or bool(self._pending)

    async def wait_started(self) -> None:
        await self._started.wait()

    def getvalue(self) -> bytes:
        return bytes(self._pending)

    def drain(self) -> bytes:
        """Collect everything queued so far without waiting"""
        chunks = []
        while not self._queue.empty():
            chunk = self._queue.get_nowait()
            if chunk is not None:
                chunks.append(chunk)
        chunks.append(bytes(self._pending))
        self._pending.clear()
        return b"".join(chunks)

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


class CountingSink(PacketSink):
    """Passes writes through to another sink, counting the bytes"""

    def __init__(self, inner: PacketSink):
        self._inner = inner
        self.supports_flush = inner.supports_flush
        self.bytes_written = 0

    def write(self, data: bytes) -> None:
        self.bytes_written += len(data)
        self._inner.write(data)

    def flush(self) -> None:
        self._inner.flush()

    def getvalue(self) -> bytes:
        return self._inner.getvalue()
