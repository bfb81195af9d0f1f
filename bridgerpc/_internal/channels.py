"""
Channel adapters.

This module contains:
- LocalChannel (remote context as an isolated namespace on the same loop)
- ThreadedReceiver (blocking transport -> event loop pump)
- TransportChannel (host end of an RPCTransport)
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Callable
from typing import Any

from ..errors import ChannelClosed, ProtocolViolation
from ..interfaces import InboundHandler
from .bootstrap import SEND_FUNCTION, run_bootstrap
from .client import RemoteSurface
from .transports import RPCTransport
from .wire import Message

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# LocalChannel
# ---------------------------------------------------------------------------


class LocalChannel:
    """In-process channel whose remote context is a private globals dict.

    Every message is JSON round-tripped, so neither side ever holds a
    reference to the other's objects. Delivery uses ``loop.call_soon`` in
    both directions, which keeps each direction FIFO.

    Args:
        global_name: Name the bootstrap publishes the client surface under.
    """

    def __init__(self, global_name: str = "rpc") -> None:
        self.global_name = global_name
        self.context: dict[str, Any] = {
            "__name__": "__bridgerpc_remote__",
            SEND_FUNCTION: self._remote_send,
        }
        self._handler: InboundHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._bootstrapped = False

    @property
    def rpc(self) -> RemoteSurface:
        """The client surface installed in the remote context."""
        if not self._bootstrapped:
            raise RuntimeError("Remote context has not been bootstrapped")
        return self.context[self.global_name]

    async def expose_inbound_handler(self, handler: InboundHandler) -> None:
        self._loop = asyncio.get_running_loop()
        self._handler = handler

    async def inject_bootstrap(self, script_source: str) -> None:
        if self._bootstrapped:
            raise RuntimeError("Bootstrap already injected into this remote context")
        run_bootstrap(script_source, self.context)
        self._bootstrapped = True

    def send_outbound(self, message: Message) -> None:
        payload = self._copy(message)
        self._require_loop().call_soon(self._deliver_outbound, payload)

    def _remote_send(self, message: dict[str, Any]) -> None:
        payload = self._copy(message)
        self._require_loop().call_soon(self._deliver_inbound, payload)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise ChannelClosed("No inbound handler exposed on this channel")
        return self._loop

    def _deliver_inbound(self, message: Any) -> None:
        assert self._handler is not None
        try:
            self._handler(message)
        except Exception:
            logger.exception("Inbound handler failed")

    def _deliver_outbound(self, message: Any) -> None:
        try:
            self.rpc.dispatch_message(message)
        except ProtocolViolation as exc:
            logger.error("Remote context rejected message: %s", exc)

    @staticmethod
    def _copy(message: Any) -> Any:
        return json.loads(json.dumps(message))


# ---------------------------------------------------------------------------
# Threaded transports
# ---------------------------------------------------------------------------


class ThreadedReceiver:
    """Pumps a blocking :class:`RPCTransport` into an event loop.

    A daemon thread calls ``transport.recv()`` in a loop and hands each item
    to ``deliver`` via ``call_soon_threadsafe``, preserving arrival order.
    ``on_closed`` runs on the loop once the stream ends.
    """

    def __init__(
        self,
        transport: RPCTransport,
        deliver: Callable[[Any], None],
        on_closed: Callable[[], None] | None = None,
        name: str = "bridgerpc-recv",
    ) -> None:
        self.transport = transport
        self._deliver = deliver
        self._on_closed = on_closed
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._stopping = False

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._thread is not None:
            raise RuntimeError(f"{self._name} already started")
        self._loop = loop
        self._thread = threading.Thread(target=self._recv_thread, name=self._name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal intent to stop and close the transport. Suppresses connection errors."""
        self._stopping = True
        self.transport.close()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _recv_thread(self) -> None:
        assert self._loop is not None
        while True:
            try:
                item = self.transport.recv()
            except Exception as exc:
                if self._stopping:
                    logger.debug("%s shutting down (%s)", self._name, exc)
                else:
                    logger.error("%s: recv failed: %s", self._name, exc)
                break
            if item is None:
                logger.debug("%s: end of stream", self._name)
                break
            try:
                self._loop.call_soon_threadsafe(self._deliver, item)
            except RuntimeError:
                logger.warning("%s: event loop closed, dropping inbound message", self._name)
                return
        if self._on_closed is not None:
            try:
                self._loop.call_soon_threadsafe(self._on_closed)
            except RuntimeError:
                pass  # Loop closed, nobody left to notify


class TransportChannel:
    """Host end of a channel carried by an :class:`RPCTransport`.

    The bootstrap travels as the first frame, ``{"bootstrap": source}``;
    every later frame is a wire message.
    """

    def __init__(self, transport: RPCTransport) -> None:
        self._transport = transport
        self._handler: InboundHandler | None = None
        self._receiver = ThreadedReceiver(transport, self._deliver_inbound, name="bridgerpc-host-recv")
        self._bootstrapped = False

    async def expose_inbound_handler(self, handler: InboundHandler) -> None:
        self._handler = handler
        self._receiver.start(asyncio.get_running_loop())

    async def inject_bootstrap(self, script_source: str) -> None:
        if self._bootstrapped:
            raise RuntimeError("Bootstrap already injected into this remote context")
        self._transport.send({"bootstrap": script_source})
        self._bootstrapped = True
        logger.debug("Bootstrap frame sent")

    def send_outbound(self, message: Message) -> None:
        self._transport.send(message)

    def close(self) -> None:
        self._receiver.stop()

    def _deliver_inbound(self, message: Any) -> None:
        assert self._handler is not None
        try:
            self._handler(message)
        except Exception:
            logger.exception("Inbound handler failed")
