"""
Wire schema for bridgerpc messages.

This module contains:
- TypedDicts for every message shape carried by the channel
- Request/reply classification (rejecting malformed messages)
- Plain-data preparation of values before they are sent
- Encoding and decoding of failed replies
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Literal, TypedDict, Union

from ..errors import BRIDGE_ERRORS, BridgeError, MethodInvocationError, ProtocolViolation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Message Shapes
# ---------------------------------------------------------------------------


class CreateRequest(TypedDict):
    create: str
    id: int


class LookupRequest(TypedDict):
    lookup: str
    id: int


class DisposeRequest(TypedDict):
    dispose: Literal[True]
    objectId: str


class InvokeRequest(TypedDict):
    objectId: str
    method: str
    args: list[Any]
    id: int


class Description(TypedDict):
    methods: list[str]
    objectId: str


class DescribeReply(TypedDict):
    id: int
    result: Description


class InvokeReply(TypedDict):
    id: int
    objectId: str
    result: Any


class ErrorInfo(TypedDict, total=False):
    type: str
    message: str
    origin: Literal["bridge", "method"]
    traceback: str


class ErrorReply(TypedDict, total=False):
    id: int
    objectId: str
    error: ErrorInfo


class EventMessage(TypedDict):
    objectId: str
    method: str
    args: list[Any]


Request = Union[CreateRequest, LookupRequest, DisposeRequest, InvokeRequest]
Reply = Union[DescribeReply, InvokeReply, ErrorReply]
Message = Union[Request, Reply, EventMessage]

RequestKind = Literal["create", "lookup", "dispose", "invoke"]
InboundKind = Literal["reply", "event"]

# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def is_request_id(value: Any) -> bool:
    """Return True if *value* is a usable numeric request id."""
    return isinstance(value, int) and not isinstance(value, bool)


def classify_request(message: Any) -> RequestKind:
    """Return the kind of a remote-to-host message.

    Raises:
        ProtocolViolation: If the message matches none of the request shapes.
    """
    if not isinstance(message, dict):
        raise ProtocolViolation(f"Request must be a mapping, got {type(message).__name__}")

    if message.get("create") or message.get("lookup"):
        kind: RequestKind = "create" if message.get("create") else "lookup"
        if not isinstance(message[kind], str):
            raise ProtocolViolation(f"'{kind}' must name a string, got {message[kind]!r}")
        if not is_request_id(message.get("id")):
            raise ProtocolViolation(f"'{kind}' request without numeric id: {message!r}")
        return kind

    if message.get("dispose"):
        if not isinstance(message.get("objectId"), str):
            raise ProtocolViolation(f"Dispose request without objectId: {message!r}")
        return "dispose"

    if not is_request_id(message.get("id")):
        raise ProtocolViolation(f"Invoke request without numeric id: {message!r}")
    if not isinstance(message.get("objectId"), str) or not isinstance(message.get("method"), str):
        raise ProtocolViolation(f"Invoke request needs string objectId and method: {message!r}")
    if not isinstance(message.get("args", []), list):
        raise ProtocolViolation(f"Invoke args must be a list: {message!r}")
    return "invoke"


def classify_inbound(message: Any) -> InboundKind:
    """Return the kind of a host-to-remote message.

    A numeric ``id`` marks a reply; anything else must be an event.

    Raises:
        ProtocolViolation: If the message is neither a reply nor a well-formed event.
    """
    if not isinstance(message, dict):
        raise ProtocolViolation(f"Message must be a mapping, got {type(message).__name__}")
    if is_request_id(message.get("id")):
        return "reply"
    if (
        isinstance(message.get("objectId"), str)
        and isinstance(message.get("method"), str)
        and isinstance(message.get("args"), list)
    ):
        return "event"
    raise ProtocolViolation(f"Malformed message: {message!r}")


# ---------------------------------------------------------------------------
# Plain Data
# ---------------------------------------------------------------------------


def prepare_for_wire(value: Any, _depth: int = 0) -> Any:
    """Convert *value* into plain data the channel can carry.

    Tuples become lists. Anything that is not None, bool, int, float, str,
    list/tuple or a str-keyed dict is rejected.

    Raises:
        TypeError: For values that are not plain data.
        ValueError: For structures nested deep enough to suggest a cycle.
    """
    if _depth > 100:
        raise ValueError("Value nesting exceeds 100 levels (cyclic structure?)")
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [prepare_for_wire(item, _depth + 1) for item in value]
    if isinstance(value, dict):
        prepared = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Mapping keys must be strings, got {type(key).__name__}")
            prepared[key] = prepare_for_wire(item, _depth + 1)
        return prepared
    raise TypeError(f"Object of type {type(value).__name__} cannot be sent over the channel")


# ---------------------------------------------------------------------------
# Error Replies
# ---------------------------------------------------------------------------


def error_reply(
    request_id: int,
    exc: BaseException,
    origin: Literal["bridge", "method"],
    object_id: str | None = None,
) -> ErrorReply:
    """Build the failed-reply message for *exc*."""
    info = ErrorInfo(type=type(exc).__name__, message=str(exc), origin=origin)
    if origin == "method":
        info["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    reply = ErrorReply(id=request_id, error=info)
    if object_id is not None:
        reply["objectId"] = object_id
    return reply


def error_from_reply(info: Any) -> BridgeError:
    """Rebuild the exception carried by a failed reply."""
    if not isinstance(info, dict):
        return ProtocolViolation(f"Malformed error payload: {info!r}")
    type_name = str(info.get("type", "BridgeError"))
    message = str(info.get("message", ""))
    if info.get("origin") == "method":
        return MethodInvocationError(type_name, message, str(info.get("traceback", "")))
    error_cls = BRIDGE_ERRORS.get(type_name, BridgeError)
    if error_cls is BridgeError and type_name != "BridgeError":
        return BridgeError(f"{type_name}: {message}")
    return error_cls(message)
