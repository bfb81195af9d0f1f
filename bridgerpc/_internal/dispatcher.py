"""
Host-side message dispatcher.

Handles every remote-to-host message on the event loop, in arrival order.
Create, lookup and dispose complete synchronously inside
:meth:`Dispatcher.handle_message`; invocations resolve their target
synchronously too, and only the awaited body of an ``async`` method runs as
a separate task. Registry mutation therefore never needs a lock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from ..errors import BridgeError, ProtocolViolation, UnknownMethod
from .registry import Catalog, ObjectKind, ObjectRegistry, RegisteredObject, describe
from .wire import (
    DescribeReply,
    Description,
    EventMessage,
    InvokeReply,
    Message,
    classify_request,
    error_reply,
    is_request_id,
    prepare_for_wire,
)

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes inbound messages to the catalog and the object registry.

    Args:
        catalog: Factories and services that create/lookup resolve against.
        send: Delivers one outbound message to the remote context.
    """

    def __init__(self, catalog: Catalog, send: Callable[[Message], None]) -> None:
        self.catalog = catalog
        self.registry = ObjectRegistry()
        self._send = send
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle_message(self, message: Any) -> None:
        """Process one inbound message. Never raises for a bad request."""
        try:
            kind = classify_request(message)
        except ProtocolViolation as exc:
            logger.error("Rejected malformed request: %s", exc)
            if isinstance(message, dict) and is_request_id(message.get("id")):
                self._send(error_reply(message["id"], exc, "bridge"))
            return

        logger.debug("Inbound %s request: %s", kind, message)
        if kind == "create" or kind == "lookup":
            self._handle_register(kind, message[kind], message["id"])
        elif kind == "dispose":
            self.dispose(message["objectId"])
        else:
            self._handle_invoke(message["objectId"], message["method"], message.get("args", []), message["id"])

    # ------------------------------------------------------------------
    # create / lookup
    # ------------------------------------------------------------------

    def _handle_register(self, kind: ObjectKind, name: str, request_id: int) -> None:
        try:
            if kind == "create":
                cls = self.catalog.factory(name)
            else:
                instance = self.catalog.service(name)
        except BridgeError as exc:
            logger.warning("%s of '%s' failed: %s", kind, name, exc)
            self._send(error_reply(request_id, exc, "bridge"))
            return

        if kind == "create":
            try:
                instance = cls()
            except Exception as exc:
                logger.exception("Constructing factory '%s' failed", name)
                self._send(error_reply(request_id, exc, "method"))
                return

        try:
            entry = self.register(kind, name, instance)
        except TypeError as exc:
            logger.error("Cannot expose %s '%s': %s", kind, name, exc)
            self._send(error_reply(request_id, exc, "bridge"))
            return

        self._send(
            DescribeReply(
                id=request_id,
                result=Description(methods=list(entry.methods), objectId=entry.object_id),
            )
        )

    def register(self, kind: ObjectKind, name: str, instance: Any) -> RegisteredObject:
        """Mint an ObjectId for *instance*, describe it and start forwarding its events."""
        methods = describe(instance)
        object_id = self.registry.mint(kind, name)
        entry = RegisteredObject(object_id, instance, methods, self._make_forwarder(object_id))
        self.registry.add(entry)
        instance.subscribe(entry.forwarder)
        logger.debug("Registered %s with methods %s", object_id, methods)
        return entry

    def _make_forwarder(self, object_id: str) -> Callable[[str, tuple[Any, ...]], None]:
        def forward(event: str, args: tuple[Any, ...]) -> None:
            # Runs inside the host object's emit; must not raise into it.
            try:
                self._send(EventMessage(objectId=object_id, method=event, args=prepare_for_wire(args)))
            except Exception as exc:
                logger.error("Dropped event '%s' from %s: %s", event, object_id, exc)

        return forward

    # ------------------------------------------------------------------
    # dispose
    # ------------------------------------------------------------------

    def dispose(self, object_id: str) -> bool:
        """Drop *object_id* from the registry. Unknown ids are a no-op."""
        entry = self.registry.remove(object_id)
        if entry is None:
            logger.debug("Dispose of unknown object %s ignored", object_id)
            return False
        entry.instance.unsubscribe(entry.forwarder)
        logger.debug("Disposed %s", object_id)
        return True

    def close(self) -> None:
        """Dispose every registered object and cancel in-flight invocations."""
        for entry in self.registry.clear():
            entry.instance.unsubscribe(entry.forwarder)
        for task in list(self._tasks):
            task.cancel()
        logger.debug("Dispatcher closed")

    # ------------------------------------------------------------------
    # invoke
    # ------------------------------------------------------------------

    def _handle_invoke(self, object_id: str, method: str, args: list[Any], request_id: int) -> None:
        try:
            entry = self.registry.get(object_id)
            if method not in entry.methods:
                raise UnknownMethod(f"{object_id} has no remote method '{method}'")
            func = getattr(entry.instance, method)
            _check_arguments(func, object_id, method, args)
        except (BridgeError, AttributeError, TypeError) as exc:
            logger.warning("Invoke of %s.%s failed: %s", object_id, method, exc)
            self._send(error_reply(request_id, exc, "bridge", object_id))
            return

        try:
            result = func(*args)
        except Exception as exc:
            logger.exception("RPC dispatch failed for %s.%s", object_id, method)
            self._send(error_reply(request_id, exc, "method", object_id))
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(self._finish_invoke(object_id, method, result, request_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self._reply(object_id, result, request_id)

    async def _finish_invoke(self, object_id: str, method: str, awaitable: Any, request_id: int) -> None:
        try:
            result = await awaitable
        except Exception as exc:
            logger.exception("RPC dispatch failed for %s.%s", object_id, method)
            self._send(error_reply(request_id, exc, "method", object_id))
            return
        self._reply(object_id, result, request_id)

    def _reply(self, object_id: str, result: Any, request_id: int) -> None:
        try:
            prepared = prepare_for_wire(result)
        except (TypeError, ValueError) as exc:
            logger.error("RPC response serialization failed for id=%s: %s", request_id, exc)
            self._send(error_reply(request_id, exc, "bridge", object_id))
            return
        self._send(InvokeReply(id=request_id, objectId=object_id, result=prepared))


def _check_arguments(func: Callable[..., Any], object_id: str, method: str, args: list[Any]) -> None:
    """Raise ``TypeError`` if *args* cannot bind to *func* positionally."""
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return  # No introspectable signature; let the call decide.
    try:
        signature.bind(*args)
    except TypeError as exc:
        raise TypeError(f"{object_id}.{method}: {exc}") from None
