"""
Error taxonomy for the bridge server.

ProtocolError, ValidationError, UnknownMethodError and ExecutionError are
converted into ``{"ok": false, "error": ...}`` responses at the dispatch
boundary. TransportError is logged per connection. BindError is fatal to a
start attempt only.
"""

from typing import Iterable, Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ProtocolError(BridgeError):
    """Request body is not a decodable JSON object."""


class ValidationError(BridgeError):
    """A known method was called with missing or invalid parameters."""


class UnknownMethodError(BridgeError):
    """Method is not in the command table."""

    def __init__(self, method, available: Iterable[str], hint: Optional[str] = None):
        self.method = method
        self.available = list(available)
        self.hint = hint
        message = f"Unknown method: {method}. Available methods: {', '.join(self.available)}"
        if hint:
            message = f"{message}. Hint: {hint}"
        super().__init__(message)


class ExecutionError(BridgeError):
    """The delegated action failed."""


class TransportError(BridgeError):
    """Socket-level failure."""


class BindError(BridgeError):
    """Listening socket could not be bound (port already in use)."""

    def __init__(self, port: int, hint: Optional[str] = None):
        self.port = port
        self.hint = hint or f"Run: lsof -ti :{port} | xargs kill -9"
        super().__init__(f"Port {port} already in use. {self.hint}")


class BridgeAlreadyRunning(BridgeError):
    """A bridge server is already running in this process."""
