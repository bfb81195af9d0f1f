from __future__ import annotations

from typing import TypedDict


class ServerConfig(TypedDict, total=False):
    """Configuration for the host-side :class:`~bridgerpc.host.Server`.

    Every key is optional; missing keys fall back to :data:`DEFAULT_SERVER_CONFIG`.
    """

    reject_duplicates: bool
    """Raise ``DuplicateRegistration`` on a repeated factory/service name instead of overwriting."""

    global_name: str
    """Name under which the bootstrap publishes the client surface in the remote context."""


class ClientConfig(TypedDict, total=False):
    """Configuration for the remote-side client installed by the bootstrap."""

    call_timeout: float | None
    """Seconds to wait for a reply before failing with ``CallTimeout``. ``None`` waits forever."""


DEFAULT_SERVER_CONFIG: ServerConfig = {
    "reject_duplicates": False,
    "global_name": "rpc",
}

DEFAULT_CLIENT_CONFIG: ClientConfig = {
    "call_timeout": None,
}


def resolve_server_config(config: ServerConfig | None) -> ServerConfig:
    """Merge a partial server config over the defaults."""
    resolved: ServerConfig = {**DEFAULT_SERVER_CONFIG, **(config or {})}
    unknown = set(resolved) - set(ServerConfig.__annotations__)
    if unknown:
        raise ValueError(f"Unknown ServerConfig keys: {sorted(unknown)}")
    return resolved


def resolve_client_config(config: ClientConfig | None) -> ClientConfig:
    """Merge a partial client config over the defaults."""
    resolved: ClientConfig = {**DEFAULT_CLIENT_CONFIG, **(config or {})}
    unknown = set(resolved) - set(ClientConfig.__annotations__)
    if unknown:
        raise ValueError(f"Unknown ClientConfig keys: {sorted(unknown)}")
    timeout = resolved.get("call_timeout")
    if timeout is not None and timeout <= 0:
        raise ValueError(f"call_timeout must be positive or None, got {timeout!r}")
    return resolved
