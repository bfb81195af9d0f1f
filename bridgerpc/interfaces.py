"""Public protocols for bridgerpc plugins.

These interfaces define the contract between the bridgerpc core and the
objects and transports plugged into it. They enable structural typing so
channels and exposed objects can be implemented without inheriting from
concrete base classes.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ._internal.wire import Message

EventListener = Callable[[str, tuple[Any, ...]], Any]
"""Receives ``(event, args)`` for every emission of an event source."""

InboundHandler = Callable[[Any], None]
"""Receives each remote-to-host message, in arrival order."""


@runtime_checkable
class EventSourceProtocol(Protocol):
    """Capability every exposed object must provide: emits named events."""

    def emit(self, event: str, *args: Any) -> None:
        """Publish *event* with positional *args* to every subscriber."""

    def subscribe(self, listener: EventListener) -> None:
        """Add *listener*; it is called as ``listener(event, args)``."""

    def unsubscribe(self, listener: EventListener) -> None:
        """Remove *listener*. Unknown listeners are ignored."""


@runtime_checkable
class ChannelAdapter(Protocol):
    """Transport between the host Server and one remote context."""

    async def expose_inbound_handler(self, handler: InboundHandler) -> None:
        """Register *handler* to be invoked once per inbound message, in arrival order."""

    async def inject_bootstrap(self, script_source: str) -> None:
        """Ensure *script_source* runs in the remote context before any other remote code.

        Runs once per remote-context lifetime.
        """

    def send_outbound(self, message: Message) -> None:
        """Deliver *message* to the bootstrapped client's ``dispatch_message``."""
