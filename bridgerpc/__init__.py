"""
bridgerpc - Object-oriented RPC between a host and a sandboxed remote context.

The host registers factories (classes) and services (singletons). Code in
the remote context creates or looks them up by name and gets back proxies
whose methods are discovered at creation time. Events the host objects emit
are delivered to listeners registered on the proxies.

Basic Usage:
    >>> import asyncio
    >>> import bridgerpc
    >>> class Counter(bridgerpc.EventSource):
    ...     def __init__(self):
    ...         super().__init__()
    ...         self.value = 0
    ...     def increment(self):
    ...         self.value += 1
    ...         self.emit("changed", self.value)
    ...         return self.value
    >>> async def main():
    ...     server = bridgerpc.Server()
    ...     server.register_factory(Counter)
    ...     channel = bridgerpc.LocalChannel()
    ...     await server.attach(channel)
    ...     counter = await channel.rpc.create("Counter")
    ...     counter.on("changed", print)
    ...     return await counter.increment()
    >>> asyncio.run(main())
    1
    1
"""

from ._internal.channels import LocalChannel, TransportChannel
from ._internal.client import Client, RemoteProxy, install_client
from ._internal.registry import parse_object_id
from ._internal.remote_context import RemoteContext
from ._internal.transports import JSONSocketTransport, QueueTransport, RPCTransport, socket_pair
from .config import ClientConfig, ServerConfig
from .errors import (
    BridgeError,
    CallTimeout,
    ChannelClosed,
    DuplicateRegistration,
    MethodInvocationError,
    ProtocolViolation,
    UnknownFactory,
    UnknownMethod,
    UnknownObject,
    UnknownService,
)
from .host import Server
from .interfaces import ChannelAdapter, EventSourceProtocol
from .shared import EventSource, local_only

__version__ = "0.1.0"

__all__ = [
    "Server",
    "ServerConfig",
    "ClientConfig",
    "EventSource",
    "EventSourceProtocol",
    "local_only",
    "ChannelAdapter",
    "LocalChannel",
    "TransportChannel",
    "RemoteContext",
    "RPCTransport",
    "QueueTransport",
    "JSONSocketTransport",
    "socket_pair",
    "Client",
    "RemoteProxy",
    "install_client",
    "parse_object_id",
    "BridgeError",
    "UnknownFactory",
    "UnknownService",
    "UnknownObject",
    "UnknownMethod",
    "DuplicateRegistration",
    "ProtocolViolation",
    "MethodInvocationError",
    "CallTimeout",
    "ChannelClosed",
]
