"""
Remote-side client engine.

Everything the bootstrap installs into the remote context lives here:

- ProxyEventEmitter: local ``on``/``off`` subscriptions and event fan-out
- RemoteProxy: one stub per host-described method, plus ``dispose``
- Client: request-id correlation, proxy bookkeeping, inbound dispatch
- install_client: builds the surface published under the global name
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from ..config import ClientConfig, resolve_client_config
from ..errors import CallTimeout, ChannelClosed, ProtocolViolation
from .wire import classify_inbound, error_from_reply, prepare_for_wire

logger = logging.getLogger(__name__)

# Proxy attributes that host method names may not shadow.
RESERVED_NAMES = frozenset({"on", "off", "dispose", "object_id", "methods", "disposed"})

# Timed-out request ids remembered so their late replies can be told apart
# from protocol violations. The oldest are forgotten first.
MAX_RETIRED_IDS = 1024

SendFunction = Callable[[dict[str, Any]], Any]


class _Registration:
    """One ``on`` call. Stays inactive once removed, even if the handler is re-added."""

    __slots__ = ("handler", "active")

    def __init__(self, handler: Callable[..., Any]) -> None:
        self.handler = handler
        self.active = True


class ProxyEventEmitter:
    """Per-proxy event listeners keyed by event name."""

    def __init__(self) -> None:
        self._event_handlers: dict[str, list[_Registration]] = {}
        self._listener_tasks: set[asyncio.Future[Any]] = set()

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        """Call *handler* with the event's arguments each time *event* fires.

        Registering the same handler twice makes it fire twice.
        """
        self._event_handlers.setdefault(event, []).append(_Registration(handler))

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        """Remove every registration of *handler* for *event*."""
        handlers = self._event_handlers.get(event)
        if handlers is None:
            return
        remaining = []
        for registration in handlers:
            if registration.handler is handler:
                registration.active = False
            else:
                remaining.append(registration)
        if remaining:
            self._event_handlers[event] = remaining
        else:
            del self._event_handlers[event]

    def listener_count(self, event: str) -> int:
        return len(self._event_handlers.get(event, ()))

    def _fan_out(self, event: str, args: list[Any]) -> None:
        snapshot = self._event_handlers.get(event)
        if not snapshot:
            return
        for registration in list(snapshot):
            # Removed by an earlier listener during this fan-out.
            if not registration.active:
                continue
            try:
                result = registration.handler(*args)
            except Exception:
                logger.exception("Listener for '%s' raised", event)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Future[Any]) -> None:
        self._listener_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Async listener raised: %s", task.exception())


class RemoteProxy(ProxyEventEmitter):
    """Stand-in for a host object, exposing the methods the host described."""

    def __init__(self, client: Client, object_id: str, methods: list[str]) -> None:
        super().__init__()
        self._client = client
        self.object_id = object_id
        self.disposed = False
        exposed = []
        for name in methods:
            if name in RESERVED_NAMES or name.startswith("_"):
                logger.warning("Method '%s' of %s shadows a proxy attribute; not bound", name, object_id)
                continue
            setattr(self, name, self._make_stub(name))
            exposed.append(name)
        self.methods = tuple(exposed)

    def _make_stub(self, method: str) -> Callable[..., Any]:
        client = self._client
        object_id = self.object_id

        async def stub(*args: Any) -> Any:
            return await client.call(object_id, method, args)

        stub.__name__ = method
        stub.__qualname__ = f"RemoteProxy.{method}"
        return stub

    def dispose(self) -> None:
        """Release the host object. Does not wait for any acknowledgement."""
        if self.disposed:
            return
        self.disposed = True
        self._client.dispose(self.object_id)

    def __repr__(self) -> str:
        return f"<RemoteProxy id={self.object_id} methods={list(self.methods)}>"


class Client:
    """Correlates requests with replies and demultiplexes events to proxies.

    Args:
        send: Carries one message to the host. Must preserve call order.
        config: Optional :class:`~bridgerpc.config.ClientConfig`.
    """

    def __init__(self, send: SendFunction, config: ClientConfig | None = None) -> None:
        self._send = send
        self.config = resolve_client_config(config)
        self._last_id = 0
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._retired: dict[int, None] = {}
        self.proxies: dict[str, RemoteProxy] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def create(self, name: str) -> RemoteProxy:
        """Instantiate the host factory *name* and return its proxy."""
        return self._wrap(await self._request({"create": name}))

    async def lookup(self, name: str) -> RemoteProxy:
        """Locate the host service *name* and return its proxy."""
        return self._wrap(await self._request({"lookup": name}))

    async def call(self, object_id: str, method: str, args: Any) -> Any:
        return await self._request({"method": method, "objectId": object_id, "args": prepare_for_wire(args)})

    def dispose(self, object_id: str) -> None:
        self.proxies.pop(object_id, None)
        self._send({"dispose": True, "objectId": object_id})

    async def _request(self, message: dict[str, Any]) -> Any:
        self._last_id += 1
        request_id = self._last_id
        message["id"] = request_id
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            self._send(message)
        except Exception as exc:
            self._pending.pop(request_id, None)
            raise ChannelClosed(f"Sending request {request_id} failed: {exc}") from exc

        timeout = self.config.get("call_timeout")
        if timeout is None:
            return await future
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self._pending.pop(request_id, None)
            self._retire(request_id)
            raise CallTimeout(f"No reply to request {request_id} within {timeout}s") from None

    def _retire(self, request_id: int) -> None:
        self._retired[request_id] = None
        while len(self._retired) > MAX_RETIRED_IDS:
            del self._retired[next(iter(self._retired))]

    def _wrap(self, result: Any) -> RemoteProxy:
        if (
            not isinstance(result, dict)
            or not isinstance(result.get("objectId"), str)
            or not isinstance(result.get("methods"), list)
        ):
            raise ProtocolViolation(f"Malformed create/lookup result: {result!r}")
        proxy = RemoteProxy(self, result["objectId"], result["methods"])
        self.proxies[proxy.object_id] = proxy
        return proxy

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def dispatch_message(self, message: Any) -> None:
        """Handle one host-to-remote message.

        Raises:
            ProtocolViolation: If the message is malformed or answers no pending call.
        """
        if classify_inbound(message) == "reply":
            self._resolve(message)
            return

        proxy = self.proxies.get(message["objectId"])
        if proxy is None:
            logger.warning("Dropped event '%s' for unknown object %s", message["method"], message["objectId"])
            return
        proxy._fan_out(message["method"], message["args"])

    def _resolve(self, message: dict[str, Any]) -> None:
        request_id = message["id"]
        future = self._pending.pop(request_id, None)
        if future is None:
            if request_id in self._retired:
                del self._retired[request_id]
                logger.warning("Dropped late reply to timed-out request %s", request_id)
                return
            raise ProtocolViolation(f"Reply id {request_id} has no pending call")
        if future.done():
            logger.debug("Reply to cancelled request %s ignored", request_id)
            return
        if "error" in message:
            future.set_exception(error_from_reply(message["error"]))
        else:
            future.set_result(message.get("result"))

    def close(self, reason: str = "channel closed") -> None:
        """Fail every pending call with :class:`ChannelClosed`."""
        pending, self._pending = self._pending, {}
        for request_id, future in pending.items():
            if not future.done():
                future.set_exception(ChannelClosed(f"Request {request_id} abandoned: {reason}"))


class RemoteSurface:
    """The object the bootstrap publishes in the remote context."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def create(self, name: str) -> Any:
        return self.client.create(name)

    def lookup(self, name: str) -> Any:
        return self.client.lookup(name)

    def dispatch_message(self, message: Any) -> None:
        self.client.dispatch_message(message)

    def __repr__(self) -> str:
        return f"<RemoteSurface proxies={len(self.client.proxies)} pending={self.client.pending_count}>"


def install_client(send: SendFunction, config: ClientConfig | None = None) -> RemoteSurface:
    """Build a :class:`Client` around *send* and return its remote surface."""
    return RemoteSurface(Client(send, config))
