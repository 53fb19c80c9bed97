"""Byte-stream adapters over message-based transports."""

from __future__ import annotations

import threading
from enum import IntEnum
from typing import Protocol


class MessageType(IntEnum):
    """WebSocket message opcodes."""

    TEXT = 1
    BINARY = 2
    CLOSE = 8
    PING = 9
    PONG = 10


class _MessageStream(Protocol):
    def recv(self) -> bytes: ...

    def send(self, data: bytes) -> None: ...


class _WebSocket(Protocol):
    def read_message(self) -> tuple[int, bytes]: ...

    def write_message(self, message_type: int, data: bytes) -> None: ...


def _take(buffer: bytes, size: int) -> tuple[bytes, bytes]:
    if size < 0:
        return buffer, b""
    return buffer[:size], buffer[size:]


class IOStreamWrapper:
    """Presents a message stream (recv/send of byte chunks) as a readable, writable file.

    ``recv`` raising EOFError marks the end of the stream; ``read`` then returns b"".
    """

    def __init__(self, stream: _MessageStream) -> None:
        self.stream = stream
        self._pending = b""
        self._closed = threading.Event()

    def read(self, size: int = -1) -> bytes:
        """Return up to size bytes (all of the next chunk if size is negative)."""
        if not self._pending:
            while True:
                try:
                    data = self.stream.recv()
                except EOFError:
                    return b""
                if data is None:
                    return b""
                if data:
                    break
            self._pending = bytes(data)
        chunk, self._pending = _take(self._pending, size)
        return chunk

    def write(self, data: bytes) -> int:
        """Send data as one message and return its length."""
        self.stream.send(bytes(data))
        return len(data)

    def close(self) -> None:
        """Mark the wrapper closed; calling it again does nothing."""
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the wrapper is closed; return False if the timeout ran out."""
        return self._closed.wait(timeout)

    def __enter__(self) -> IOStreamWrapper:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SafeWebSocketConn:
    """A WebSocket connection whose writes are serialised and which reads as a byte stream.

    Text messages are read as command input: a zero byte is put in front of them.
    """

    def __init__(self, conn: _WebSocket) -> None:
        self.conn = conn
        self._write_lock = threading.Lock()
        self._pending = b""

    def write(self, data: bytes) -> int:
        """Send data as one binary message and return its length."""
        with self._write_lock:
            self.conn.write_message(MessageType.BINARY, bytes(data))
        return len(data)

    def write_message(self, message_type: int, data: bytes) -> None:
        """Send one message of the given type."""
        with self._write_lock:
            self.conn.write_message(message_type, data)

    def read(self, size: int = -1) -> bytes:
        """Return up to size bytes (all of the next message if size is negative)."""
        if not self._pending:
            message_type, data = self.conn.read_message()
            data = bytes(data)
            if message_type == MessageType.TEXT:
                data = b"\x00" + data
            self._pending = data
        chunk, self._pending = _take(self._pending, size)
        return chunk

    def close(self) -> None:
        """Close the underlying connection, if it can be closed."""
        closer = getattr(self.conn, "close", None)
        if callable(closer):
            closer()

    def __enter__(self) -> SafeWebSocketConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()