"""
Object identity and host-side registries.

This module contains:
- ObjectId minting and parsing
- Method discovery for exposed objects
- Catalog (factories and services, keyed by name)
- ObjectRegistry (live ObjectId -> instance map owned by one dispatcher)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any, Literal

from ..errors import DuplicateRegistration, UnknownFactory, UnknownObject, UnknownService
from ..interfaces import EventListener, EventSourceProtocol

logger = logging.getLogger(__name__)

ObjectKind = Literal["create", "lookup"]

# Members of EventSourceProtocol. Never remotely callable.
EVENT_SOURCE_MEMBERS = frozenset({"emit", "subscribe", "unsubscribe"})

# ---------------------------------------------------------------------------
# ObjectId
# ---------------------------------------------------------------------------


def make_object_id(kind: ObjectKind, name: str, sequence: int) -> str:
    return f"{kind}#{name}#{sequence}#"


def parse_object_id(object_id: str) -> tuple[ObjectKind, str, int]:
    """Split an ObjectId into ``(kind, name, sequence)``.

    Names may themselves contain ``#``; the sequence is always the last field.

    Raises:
        ValueError: If *object_id* was not minted by :func:`make_object_id`.
    """
    kind, sep, rest = object_id.partition("#")
    if kind not in ("create", "lookup") or not sep or not rest.endswith("#"):
        raise ValueError(f"Malformed ObjectId: {object_id!r}")
    name, sep, sequence = rest[:-1].rpartition("#")
    if not sep or not name or not sequence.isdigit():
        raise ValueError(f"Malformed ObjectId: {object_id!r}")
    return kind, name, int(sequence)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Method Discovery
# ---------------------------------------------------------------------------


def describe(obj: object) -> list[str]:
    """Return the remotely callable method names of *obj*, in definition order.

    Only the immediate class is inspected. An explicit ``remote_methods``
    sequence on the class replaces discovery. The event source members
    (``emit``, ``subscribe``, ``unsubscribe``) are never exposed.

    Raises:
        TypeError: If a declared name is not callable on *obj*, or is an
            event source member.
    """
    cls = type(obj)
    declared = getattr(cls, "remote_methods", None)
    if declared is not None:
        methods = list(declared)
        for name in methods:
            if name in EVENT_SOURCE_MEMBERS:
                raise TypeError(f"{cls.__name__}.remote_methods lists event source member '{name}'")
            if not callable(getattr(obj, name, None)):
                raise TypeError(f"{cls.__name__}.remote_methods lists non-callable '{name}'")
        return methods

    methods = []
    for name, attr in vars(cls).items():
        if name.startswith("_") or name in EVENT_SOURCE_MEMBERS or isinstance(attr, property):
            continue
        if isinstance(attr, (staticmethod, classmethod)):
            attr = attr.__func__
        if not callable(attr) or isinstance(attr, type):
            continue
        if getattr(attr, "_bridgerpc_local_only", False):
            continue
        methods.append(name)
    return methods


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Catalog:
    """Factories (constructible types) and services (singletons) keyed by name."""

    def __init__(self, reject_duplicates: bool = False) -> None:
        self.reject_duplicates = reject_duplicates
        self._factories: dict[str, type] = {}
        self._services: dict[str, object] = {}

    def add_factory(self, name: str, cls: type) -> None:
        if not isinstance(cls, type) or not issubclass(cls, EventSourceProtocol):
            raise TypeError(
                f"Factory '{name}' must be a class providing emit/subscribe/unsubscribe "
                f"(subclass bridgerpc.EventSource), got {cls!r}"
            )
        self._check_collision("factory", name, self._factories)
        self._factories[name] = cls
        logger.debug("Registered factory %s -> %s", name, cls.__qualname__)

    def add_service(self, name: str, instance: object) -> None:
        if not isinstance(instance, EventSourceProtocol):
            raise TypeError(
                f"Service '{name}' must provide emit/subscribe/unsubscribe "
                f"(subclass bridgerpc.EventSource), got {type(instance).__name__}"
            )
        self._check_collision("service", name, self._services)
        self._services[name] = instance
        logger.debug("Registered service %s -> %s", name, type(instance).__qualname__)

    def _check_collision(self, kind: str, name: str, table: dict[str, Any]) -> None:
        if name not in table:
            return
        if self.reject_duplicates:
            raise DuplicateRegistration(f"A {kind} named '{name}' is already registered")
        logger.debug("Overwriting existing %s %s", kind, name)

    def factory(self, name: str) -> type:
        try:
            return self._factories[name]
        except KeyError:
            raise UnknownFactory(f"No factory registered under '{name}'") from None

    def service(self, name: str) -> object:
        try:
            return self._services[name]
        except KeyError:
            raise UnknownService(f"No service registered under '{name}'") from None

    @property
    def factory_names(self) -> list[str]:
        return list(self._factories)

    @property
    def service_names(self) -> list[str]:
        return list(self._services)


# ---------------------------------------------------------------------------
# Object Registry
# ---------------------------------------------------------------------------


class RegisteredObject:
    """A live object as seen by the dispatcher."""

    __slots__ = ("object_id", "instance", "methods", "forwarder")

    def __init__(
        self,
        object_id: str,
        instance: Any,
        methods: list[str],
        forwarder: EventListener,
    ) -> None:
        self.object_id = object_id
        self.instance = instance
        self.methods = methods
        self.forwarder = forwarder

    def __repr__(self) -> str:
        return f"<RegisteredObject id={self.object_id} type={type(self.instance).__name__}>"


class ObjectRegistry:
    """ObjectId -> live object map with a never-reused sequence counter."""

    def __init__(self) -> None:
        self._last_sequence = 0
        self._objects: dict[str, RegisteredObject] = {}

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def mint(self, kind: ObjectKind, name: str) -> str:
        self._last_sequence += 1
        return make_object_id(kind, name, self._last_sequence)

    def add(self, entry: RegisteredObject) -> None:
        if entry.object_id in self._objects:
            raise ValueError(f"Object ID {entry.object_id} already registered")
        self._objects[entry.object_id] = entry

    def get(self, object_id: str) -> RegisteredObject:
        entry = self._objects.get(object_id)
        if entry is None:
            raise UnknownObject(f"Object ID {object_id} not registered")
        return entry

    def remove(self, object_id: str) -> RegisteredObject | None:
        return self._objects.pop(object_id, None)

    def clear(self) -> list[RegisteredObject]:
        entries = list(self._objects.values())
        self._objects.clear()
        return entries

    def ids(self) -> list[str]:
        return list(self._objects)

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._objects

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._objects))
