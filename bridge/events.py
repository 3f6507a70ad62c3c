"""
Event types emitted by the bridge.

BroadcastEvent is pushed to webhook subscribers. ProgressEvent variants are an
in-process observability hook delivered synchronously to ``on_progress``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class BroadcastEvent:
    """Structured state-change notification, immutable once constructed."""
    event: str
    timestamp: int
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.event, str) or not self.event:
            raise ValueError("event name must be a non-empty string")
        # Freeze a private copy so later edits by the caller cannot leak in
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    @classmethod
    def create(cls, event: str, data: Optional[Mapping[str, Any]] = None) -> "BroadcastEvent":
        """Build an event stamped with the current time."""
        return cls(event=event, timestamp=now_ms(), data=data or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


@dataclass(frozen=True)
class ExecutingEvent:
    """A request for ``method`` is about to be dispatched."""
    method: Any
    type: str = field(default="executing", init=False)


@dataclass(frozen=True)
class ReadyEvent:
    """The listener is bound and accepting connections on ``port``."""
    port: int
    type: str = field(default="ready", init=False)


ProgressEvent = Union[ExecutingEvent, ReadyEvent]
