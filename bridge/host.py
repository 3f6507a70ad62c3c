"""
Default host capability surface.

ScriptHost runs eval scripts as Python: the (already return-wrapped) code
becomes the body of an ``async def`` whose only names beyond builtins are a
fixed set of bindings: ``console``, ``host``, ``print`` (routed to
``console.log``) and whatever the embedding application passes in
``bindings``. Scripts may ``await``. Nothing is sandboxed; the bridge is a
local, unauthenticated control channel.
"""

from __future__ import annotations

import logging
import os
import platform
import textwrap
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from bridge.collaborators import EvalConsole

logger = logging.getLogger(__name__)

_ENTRY = "__bridge_script__"
_FILENAME = "<bridge-eval>"


def build_script_source(code: str) -> str:
    """Wrap ``code`` as the body of an async function taking the bindings."""
    # Lines inside multi-line string literals are re-indented too
    body = textwrap.dedent(code).strip("\n")
    return f"async def {_ENTRY}(console, host, print):\n{textwrap.indent(body, '    ')}\n"


def console_print(console: EvalConsole) -> Callable[..., None]:
    """Build a ``print`` replacement that writes one line to ``console.log``."""
    def _print(*args: Any, sep: Optional[str] = " ", end: Optional[str] = "\n", file: Any = None, flush: bool = False) -> None:
        # end, file and flush are accepted for compatibility; each call is one line
        console.log((" " if sep is None else sep).join(str(arg) for arg in args))
    return _print


class ScriptHost:
    """Host surface backed by the current Python process."""

    def __init__(
        self,
        workspace: Optional[str] = None,
        bindings: Optional[Mapping[str, Any]] = None,
        on_restart: Optional[Callable[[], Any]] = None,
        status_provider: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        """
        Args:
            workspace: Workspace root reported by status (default: current directory)
            bindings: Extra names visible to scripts
            on_restart: Called by restart(); may return an awaitable
            status_provider: Replaces the default status snapshot
        """
        self.workspace = workspace or os.getcwd()
        self.bindings: Dict[str, Any] = dict(bindings or {})
        self._on_restart = on_restart
        self._status_provider = status_provider

    async def eval_context(self, code: str, console: EvalConsole) -> Any:
        namespace: Dict[str, Any] = {"__name__": "__bridge_eval__"}
        namespace.update(self.bindings)
        exec(compile(build_script_source(code), _FILENAME, "exec"), namespace)
        return await namespace[_ENTRY](console, self, console_print(console))

    def query_status(self) -> Dict[str, Any]:
        if self._status_provider is not None:
            return self._status_provider()

        return {
            "terminals": {"count": 0, "active": None, "list": []},
            "editor": None,
            "workspace": {
                "folders": [{"name": Path(self.workspace).name, "path": self.workspace}],
                "openFiles": 0,
            },
            "process": {
                "pid": os.getpid(),
                "python": platform.python_version(),
            },
        }

    def restart(self) -> Any:
        if self._on_restart is None:
            logger.warning("[HOST] Restart requested but no restart handler is configured")
            return None
        logger.info("[HOST] Restarting")
        return self._on_restart()
