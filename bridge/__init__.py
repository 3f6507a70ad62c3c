"""
Local command bridge.

Exposes a host application's capabilities to external processes over TCP
(one JSON request and one JSON response per connection) and pushes state-change
events to webhook subscribers.
"""

__version__ = "0.1.0"
SERVER_NAME = "bridge"

from bridge.collaborators import Collaborators
from bridge.config import BridgeConfig
from bridge.dispatcher import KNOWN_METHODS, Method, Response
from bridge.errors import (
    BindError,
    BridgeAlreadyRunning,
    BridgeError,
    ExecutionError,
    ProtocolError,
    TransportError,
    UnknownMethodError,
    ValidationError,
)
from bridge.events import BroadcastEvent, ExecutingEvent, ReadyEvent
from bridge.server import ServerHandle, start_server, stop_server

__all__ = [
    "BindError",
    "BridgeAlreadyRunning",
    "BridgeConfig",
    "BridgeError",
    "BroadcastEvent",
    "Collaborators",
    "ExecutingEvent",
    "ExecutionError",
    "KNOWN_METHODS",
    "Method",
    "ProtocolError",
    "ReadyEvent",
    "Response",
    "ServerHandle",
    "TransportError",
    "UnknownMethodError",
    "ValidationError",
    "start_server",
    "stop_server",
]
