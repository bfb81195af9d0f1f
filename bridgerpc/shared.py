"""Public base classes for objects exposed over the bridge."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar, final

from .interfaces import EventListener

F = TypeVar("F", bound=Callable[..., Any])


def local_only(func: F) -> F:
    """Mark a method so it is never exposed to the remote context."""
    func._bridgerpc_local_only = True  # type: ignore[attr-defined]
    return func


class EventSource:
    """Base class for objects that can be created or looked up remotely.

    Subclasses call :meth:`emit` to publish events. While an object is
    registered with a :class:`~bridgerpc.host.Server`, every emission is
    forwarded to the matching proxy in the remote context.

    Public methods defined directly on the subclass form its remote surface.
    Set ``remote_methods`` to a sequence of names to declare it explicitly.
    """

    def __init__(self) -> None:
        self._event_listeners: list[EventListener] = []

    def _listeners(self) -> list[EventListener]:
        # Tolerate subclasses that skip super().__init__()
        return self.__dict__.setdefault("_event_listeners", [])

    @final
    def subscribe(self, listener: EventListener) -> None:
        self._listeners().append(listener)

    @final
    def unsubscribe(self, listener: EventListener) -> None:
        self._listeners()[:] = [entry for entry in self._listeners() if entry != listener]

    def emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners()):
            listener(event, args)
