"""
Bounded output history for the bridge server.

Holds human-readable diagnostic lines (request/response tracing, eval console
output, broadcast failures) so they can be fetched remotely with ``getOutput``.
Oldest lines are evicted first once capacity is reached.
"""

from __future__ import annotations

import json
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List

DEFAULT_CAPACITY = 1000


def timestamped(text: str) -> str:
    """Prefix a line with a local wall-clock timestamp (millisecond precision)."""
    return f"[{datetime.now().isoformat(timespec='milliseconds')}] {text}"


class OutputBuffer:
    """
    Fixed-capacity FIFO of output lines.

    Not thread-safe: mutated only from the event loop thread, and no mutation
    spans an await.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"OutputBuffer capacity must be > 0, got {capacity}")
        self._capacity = capacity
        self._lines: deque[str] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._lines)

    def append(self, line: str) -> None:
        self._lines.append(line)

    def tail(self, count: int) -> List[str]:
        """
        Return the last ``min(count, len(self))`` lines in insertion order.

        Args:
            count: Number of lines requested (values <= 0 return nothing)
        """
        if count <= 0:
            return []
        if count >= len(self._lines):
            return list(self._lines)
        return list(self._lines)[-count:]

    def snapshot(self, count: int) -> Dict[str, Any]:
        """Return ``{"output": [...], "total": n}`` where total is the retained line count."""
        return {
            "output": self.tail(count),
            "total": len(self._lines),
        }

    def clear(self) -> None:
        self._lines.clear()


class OutputConsole:
    """
    log/warn/error channel that writes into the output history.

    Handed to evaluated scripts in place of the process's own stdout. Lines are
    tagged ``[<prefix>]``, ``[<prefix>:warn]`` and ``[<prefix>:error]``.
    """

    def __init__(self, write: Callable[[str], None], prefix: str = "eval"):
        self._write = write
        self._prefix = prefix

    @staticmethod
    def _format(args) -> str:
        parts = []
        for arg in args:
            if isinstance(arg, (dict, list, tuple)):
                parts.append(json.dumps(arg, indent=2, default=str))
            else:
                parts.append(str(arg))
        return " ".join(parts)

    def log(self, *args: Any) -> None:
        self._write(f"[{self._prefix}] {self._format(args)}")

    def warn(self, *args: Any) -> None:
        self._write(f"[{self._prefix}:warn] {self._format(args)}")

    def error(self, *args: Any) -> None:
        self._write(f"[{self._prefix}:error] {self._format(args)}")
