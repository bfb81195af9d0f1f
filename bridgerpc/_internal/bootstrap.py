"""Bootstrap script injected once into each remote context.

The host never ships the client engine itself: the remote context imports
it from its own ``bridgerpc`` installation. The injected script only wires
the exposed send function into a fresh :class:`~bridgerpc._internal.client.Client`
and publishes the resulting surface under the configured global name.
"""

from __future__ import annotations

import keyword
import logging
from typing import Any

from ..config import ClientConfig, resolve_client_config

logger = logging.getLogger(__name__)

SEND_FUNCTION = "rpc_send"
"""Name under which channels expose the host's inbound handler to the remote context."""

BOOTSTRAP_FILENAME = "<bridgerpc-bootstrap>"

_TEMPLATE = """\
from bridgerpc._internal.client import install_client as _bridgerpc_install_client

{global_name} = _bridgerpc_install_client({send_function}, {client_config!r})
del _bridgerpc_install_client
"""


def build_bootstrap_script(global_name: str = "rpc", client_config: ClientConfig | None = None) -> str:
    """Return the Python source that installs the client in a remote context.

    Args:
        global_name: Name the client surface is published under.
        client_config: Passed to the client; must hold only literal values.

    Raises:
        ValueError: If *global_name* is not a usable identifier.
    """
    if not global_name.isidentifier() or keyword.iskeyword(global_name):
        raise ValueError(f"global_name must be a Python identifier, got {global_name!r}")
    if global_name == SEND_FUNCTION:
        raise ValueError(f"global_name may not shadow the send function '{SEND_FUNCTION}'")
    config = dict(resolve_client_config(client_config))
    return _TEMPLATE.format(global_name=global_name, send_function=SEND_FUNCTION, client_config=config)


def run_bootstrap(script_source: str, namespace: dict[str, Any]) -> None:
    """Execute *script_source* inside *namespace*, the remote context's globals.

    Raises:
        RuntimeError: If the namespace has no exposed send function.
    """
    if not callable(namespace.get(SEND_FUNCTION)):
        raise RuntimeError(f"Remote context has no '{SEND_FUNCTION}' function to bootstrap against")
    code = compile(script_source, BOOTSTRAP_FILENAME, "exec")
    exec(code, namespace)
    logger.debug("Bootstrap executed in remote context")
