"""
Transport Layer.

This module contains:
- RPCTransport Protocol
- QueueTransport
- JSONSocketTransport
- socket_pair helper
"""

from __future__ import annotations

import contextlib
import json
import logging
import socket
import struct
import threading
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

# We only import this to get type hinting working.
if TYPE_CHECKING:
    import multiprocessing as typehint_mp
else:
    typehint_mp = None

logger = logging.getLogger(__name__)

MAX_FRAME_BYTES = 100 * 1024 * 1024
_CHUNK = 64 * 1024


@runtime_checkable
class RPCTransport(Protocol):
    """Protocol for blocking message transports.

    Implementations must provide thread-safe send/recv operations. ``recv``
    returns ``None`` once the peer has closed the stream cleanly.
    """

    def send(self, obj: Any) -> None:
        """Deliver one message to the peer."""
        ...

    def recv(self) -> Any:
        """Block until the next message arrives; None once the peer closed cleanly."""
        ...

    def close(self) -> None:
        """Release the underlying channel and wake the peer's recv."""
        ...


class QueueTransport:
    """Transport over a pair of queues, one per direction."""

    def __init__(
        self,
        send_queue: typehint_mp.Queue[Any],  # type: ignore
        recv_queue: typehint_mp.Queue[Any],  # type: ignore
    ) -> None:
        self._send_queue = send_queue
        self._recv_queue = recv_queue

    def send(self, obj: Any) -> None:
        self._send_queue.put(obj)

    def recv(self) -> Any:
        return self._recv_queue.get()

    def close(self) -> None:
        # A None sentinel ends the peer's receive loop.
        with contextlib.suppress(Exception):
            self._send_queue.put(None)
        with contextlib.suppress(Exception):
            self._send_queue.close()


class JSONSocketTransport:
    """Transport using raw sockets + length-prefixed JSON frames.

    Only plain data crosses the socket, so a compromised peer cannot smuggle
    executable payloads the way pickle would allow.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock
        self._send_lock = threading.Lock()
        self._recv_lock = threading.Lock()

    def send(self, obj: Any) -> None:
        """Serialize to JSON with a 4-byte big-endian length prefix."""
        try:
            data = json.dumps(obj).encode("utf-8")
        except (TypeError, ValueError) as e:
            type_name = type(obj).__name__
            logger.error("Cannot serialize %s for the socket: %s", type_name, e)
            raise TypeError(f"Cannot JSON-serialize {type_name}: {e}") from e

        if len(data) > MAX_FRAME_BYTES:
            raise ValueError(f"Message too large: {len(data)} bytes")
        frame = struct.pack(">I", len(data)) + data
        with self._send_lock:
            self._sock.sendall(frame)

    def recv(self) -> Any:
        """Receive one length-prefixed JSON message, or None on clean EOF."""
        with self._recv_lock:
            header = self._read_exact(4)
            if not header:
                return None
            if len(header) < 4:
                raise ConnectionError("Socket closed inside length header")
            size = struct.unpack(">I", header)[0]
            if size > MAX_FRAME_BYTES:
                raise ValueError(f"Message too large: {size} bytes")
            data = self._read_exact(size)
            if len(data) < size:
                raise ConnectionError(f"Incomplete message: got {len(data)}/{size} bytes")
            return json.loads(data.decode("utf-8"))

    def _read_exact(self, n: int) -> bytes:
        """Receive exactly n bytes from the socket, fewer if it closes."""
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self._sock.recv(min(remaining, _CHUNK))
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def close(self) -> None:
        """Shut down and close the underlying socket."""
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(Exception):
            self._sock.close()


def socket_pair() -> tuple[JSONSocketTransport, JSONSocketTransport]:
    """Return two connected JSON transports (host end, remote end)."""
    host_sock, remote_sock = socket.socketpair()
    return JSONSocketTransport(host_sock), JSONSocketTransport(remote_sock)
