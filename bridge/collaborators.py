"""
Interfaces the bridge consumes from the host application.

The server never depends on collaborator internals. Every method may return a
plain value or an awaitable; the dispatcher awaits awaitables.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class EvalConsole(Protocol):
    def log(self, *args: Any) -> None: ...

    def warn(self, *args: Any) -> None: ...

    def error(self, *args: Any) -> None: ...


@runtime_checkable
class HostSurface(Protocol):
    """Host capability surface: script execution, state snapshot, restart."""

    def eval_context(self, code: str, console: EvalConsole) -> Any:
        """Execute ``code`` and return its value. Raises on script error."""
        ...

    def query_status(self) -> Any:
        """Return a mapping with ``terminals``, ``editor`` and ``workspace`` entries."""
        ...

    def restart(self) -> Any:
        ...


@runtime_checkable
class WebviewManager(Protocol):
    def open_view(self, view_name: str, title: Optional[str] = None, custom_path: Optional[str] = None) -> Any:
        ...


@runtime_checkable
class ConfigHandlers(Protocol):
    def register(self, name: str, file_path: str) -> Any: ...

    def unregister(self, name: str) -> Any: ...

    def list(self) -> Any: ...


@dataclass
class Collaborators:
    """External collaborators handed to the server at start."""
    host: HostSurface
    webview: Optional[WebviewManager] = None
    configs: Optional[ConfigHandlers] = None


async def resolve(value: Any) -> Any:
    """Await ``value`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value
