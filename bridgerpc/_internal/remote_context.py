"""Remote end of a :class:`~bridgerpc._internal.channels.TransportChannel`.

Runs inside the remote process. Nothing reaches the client until the
bootstrap frame has been executed, so remote code that awaits
:meth:`RemoteContext.ready` always finds the client surface installed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import ProtocolViolation
from .bootstrap import SEND_FUNCTION, run_bootstrap
from .channels import ThreadedReceiver
from .client import RemoteSurface
from .transports import RPCTransport

logger = logging.getLogger(__name__)


class RemoteContext:
    """Remote-side namespace bootstrapped over a transport.

    Args:
        transport: The remote end of the transport pair.
        global_name: Name the bootstrap publishes the client surface under.
    """

    def __init__(self, transport: RPCTransport, global_name: str = "rpc") -> None:
        self.global_name = global_name
        self.context: dict[str, Any] = {
            "__name__": "__bridgerpc_remote__",
            SEND_FUNCTION: transport.send,
        }
        self._receiver = ThreadedReceiver(
            transport, self._deliver, on_closed=self._on_closed, name="bridgerpc-remote-recv"
        )
        self._ready: asyncio.Future[None] | None = None
        self._bootstrapped = False

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._ready = loop.create_future()
        self._receiver.start(loop)

    async def ready(self) -> RemoteSurface:
        """Wait until the bootstrap has run and return the client surface."""
        if self._ready is None:
            await self.start()
        assert self._ready is not None
        await asyncio.shield(self._ready)
        return self.rpc

    @property
    def rpc(self) -> RemoteSurface:
        if not self._bootstrapped:
            raise RuntimeError("Remote context has not been bootstrapped")
        return self.context[self.global_name]

    def close(self) -> None:
        self._receiver.stop()

    def _deliver(self, item: Any) -> None:
        if not self._bootstrapped:
            self._bootstrap(item)
            return
        if isinstance(item, dict) and "bootstrap" in item:
            logger.error("Ignoring repeated bootstrap frame")
            return
        try:
            self.rpc.dispatch_message(item)
        except ProtocolViolation as exc:
            logger.error("Remote context rejected message: %s", exc)

    def _bootstrap(self, item: Any) -> None:
        assert self._ready is not None
        if self._ready.done():
            logger.error("Dropping frame after failed bootstrap: %r", item)
            return
        source = item.get("bootstrap") if isinstance(item, dict) else None
        if not isinstance(source, str):
            self._ready.set_exception(ProtocolViolation(f"Expected bootstrap frame, got {item!r}"))
            return
        try:
            run_bootstrap(source, self.context)
        except Exception as exc:
            logger.exception("Bootstrap failed")
            self._ready.set_exception(exc)
            return
        self._bootstrapped = True
        self._ready.set_result(None)
        logger.info("Remote context bootstrapped")

    def _on_closed(self) -> None:
        if self._bootstrapped:
            self.rpc.client.close("transport closed")
        elif self._ready is not None and not self._ready.done():
            self._ready.set_exception(ProtocolViolation("Transport closed before bootstrap"))
