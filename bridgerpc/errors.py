"""Error types raised by bridgerpc on either side of the channel."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all bridgerpc errors."""


class UnknownFactory(BridgeError, LookupError):
    """Raised when a create request names an unregistered factory."""


class UnknownService(BridgeError, LookupError):
    """Raised when a lookup request names an unregistered service."""


class UnknownObject(BridgeError, LookupError):
    """Raised when a request references an ObjectId that is not registered."""


class UnknownMethod(BridgeError, LookupError):
    """Raised when a request names a method the object does not expose."""


class DuplicateRegistration(BridgeError, ValueError):
    """Raised when a factory or service name is registered twice in reject mode."""


class ProtocolViolation(BridgeError):
    """Raised for messages that break the wire protocol.

    Covers replies whose id has no pending call and messages that do not
    match any known shape. Not locally recoverable.
    """


class ChannelClosed(BridgeError, ConnectionError):
    """Raised when the channel is torn down while calls are outstanding."""


class CallTimeout(BridgeError, TimeoutError):
    """Raised when a pending call sees no reply within ``call_timeout``."""


class MethodInvocationError(BridgeError):
    """Raised when the invoked host method itself raised.

    Distinguishes a failure of the method from a failure of the bridge.
    """

    remote_type: str
    remote_message: str
    remote_traceback: str

    def __init__(self, remote_type: str, remote_message: str, remote_traceback: str = "") -> None:
        self.remote_type = remote_type
        self.remote_message = remote_message
        self.remote_traceback = remote_traceback
        formatted = f"Remote method raised {remote_type}: {remote_message}"
        if remote_traceback:
            formatted += f"\nRemote traceback:\n{remote_traceback}"
        super().__init__(formatted)


# Bridge-origin errors that can be rebuilt by name from an error reply.
BRIDGE_ERRORS: dict[str, type[BridgeError]] = {
    cls.__name__: cls
    for cls in (
        UnknownFactory,
        UnknownService,
        UnknownObject,
        UnknownMethod,
        ProtocolViolation,
        BridgeError,
    )
}
