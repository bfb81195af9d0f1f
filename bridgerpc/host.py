"""Host-side Server for bridgerpc.

Owns the factory/service catalog and the dispatcher, and binds them to a
single channel into the remote context.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ._internal.bootstrap import build_bootstrap_script
from ._internal.dispatcher import Dispatcher
from ._internal.registry import Catalog, ObjectRegistry
from ._internal.wire import Message
from .config import ClientConfig, ServerConfig, resolve_server_config
from .interfaces import ChannelAdapter

__all__ = ["Server"]

logger = logging.getLogger(__name__)


class Server:
    """Dispatcher and object registry for one remote context."""

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the Server.

        Args:
            config: Optional overrides for :data:`~bridgerpc.config.DEFAULT_SERVER_CONFIG`.
        """
        self.config = resolve_server_config(config)
        self.catalog = Catalog(reject_duplicates=self.config["reject_duplicates"])
        self._dispatcher = Dispatcher(self.catalog, self._send_message)
        self._channel: ChannelAdapter | None = None

    @property
    def registry(self) -> ObjectRegistry:
        return self._dispatcher.registry

    @property
    def channel(self) -> ChannelAdapter | None:
        return self._channel

    def register_factory(self, cls: type, name: str | None = None) -> None:
        """Make *cls* remotely constructible under *name* (default: the class name).

        Raises:
            TypeError: If *cls* does not provide the event source capability.
            DuplicateRegistration: If *name* is taken and duplicates are rejected.
        """
        self.catalog.add_factory(name or cls.__name__, cls)

    def register_service(self, name: str, instance: Any) -> None:
        """Make the existing *instance* remotely locatable under *name*.

        Raises:
            TypeError: If *instance* does not provide the event source capability.
            DuplicateRegistration: If *name* is taken and duplicates are rejected.
        """
        self.catalog.add_service(name, instance)

    async def attach(self, channel: ChannelAdapter, client_config: ClientConfig | None = None) -> None:
        """Bind to *channel*, inject the bootstrap and start accepting messages.

        Args:
            channel: The channel into the remote context.
            client_config: Configuration baked into the injected client.

        Raises:
            RuntimeError: If a channel is already attached.
        """
        if self._channel is not None:
            raise RuntimeError("Server is already attached to a channel")
        if not isinstance(channel, ChannelAdapter):
            raise TypeError(f"{type(channel).__name__} does not implement ChannelAdapter")
        script = build_bootstrap_script(self.config["global_name"], client_config)
        self._channel = channel
        try:
            await asyncio.gather(
                channel.expose_inbound_handler(self.handle_message),
                channel.inject_bootstrap(script),
            )
        except BaseException:
            self._channel = None
            raise
        logger.info("Server attached to %s", type(channel).__name__)

    def handle_message(self, message: Any) -> None:
        """Process one inbound message (the handler exposed to the channel)."""
        self._dispatcher.handle_message(message)

    def registered_ids(self) -> list[str]:
        return self.registry.ids()

    def close(self) -> None:
        """Dispose every registered object. The remote side is not notified."""
        count = len(self.registry)
        self._dispatcher.close()
        logger.info("Server closed, released %d object(s)", count)

    def _send_message(self, message: Message) -> None:
        if self._channel is None:
            raise RuntimeError("Server is not attached to a channel")
        self._channel.send_outbound(message)
