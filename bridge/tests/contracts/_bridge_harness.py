"""
Test harness for bridge contract tests.

Responsibilities:
- Fake collaborators that record how the dispatcher drives them
- Start a bridge on an ephemeral port and close it on teardown
- Raw socket exchanges (split writes, no half-close, empty connections)
- An httpx.MockTransport webhook recorder with configurable failures
"""

import asyncio
import json
import socket
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Dict, List, Optional, Sequence, Set

import httpx

from bridge.collaborators import Collaborators
from bridge.config import BridgeConfig
from bridge.host import ScriptHost
from bridge.server import ServerHandle, start_server


def find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        s.listen(1)
        port = s.getsockname()[1]
    return port


@contextmanager
def occupied_port():
    """Hold a listening socket on an ephemeral port and yield the port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(('127.0.0.1', 0))
        sock.listen(1)
        yield sock.getsockname()[1]
    finally:
        sock.close()


def make_config(**overrides) -> BridgeConfig:
    values = {"host": "127.0.0.1", "port": 0, "read_timeout": 2.0}
    values.update(overrides)
    return BridgeConfig(**values)


class FakeHost:
    """Host surface that runs scripts through ScriptHost and records restarts."""

    def __init__(self, status: Optional[Dict[str, Any]] = None):
        self.script = ScriptHost(workspace="/tmp/workspace")
        self.status = status if status is not None else {
            "terminals": {"count": 1, "active": "zsh", "list": [{"name": "zsh", "processId": 4242}]},
            "editor": None,
            "workspace": {"folders": [], "openFiles": 0},
        }
        self.codes: List[str] = []
        self.restarts = 0

    async def eval_context(self, code, console):
        self.codes.append(code)
        return await self.script.eval_context(code, console)

    def query_status(self):
        return dict(self.status)

    def restart(self):
        self.restarts += 1


class FakeWebview:
    def __init__(self):
        self.opened: List[Dict[str, Any]] = []

    def open_view(self, view_name, title=None, custom_path=None):
        self.opened.append({"viewName": view_name, "title": title, "customPath": custom_path})


class FakeConfigs:
    def __init__(self):
        self.configs: Dict[str, str] = {}

    def register(self, name, file_path):
        self.configs[name] = file_path
        return {"success": True, "message": f"Config '{name}' registered"}

    def unregister(self, name):
        if name not in self.configs:
            return {"error": f"Config '{name}' not found"}
        del self.configs[name]
        return {"success": True, "message": f"Config '{name}' unregistered"}

    def list(self):
        return {"configs": [{"name": n, "filePath": p} for n, p in self.configs.items()]}


def make_collaborators(webview: bool = True, configs: bool = True) -> Collaborators:
    return Collaborators(
        host=FakeHost(),
        webview=FakeWebview() if webview else None,
        configs=FakeConfigs() if configs else None,
    )


class WebhookRecorder:
    """httpx.MockTransport handler recording webhook deliveries."""

    def __init__(self, unreachable: Sequence[str] = (), failing: Sequence[str] = ()):
        self.unreachable: Set[str] = set(unreachable)
        self.failing: Set[str] = set(failing)
        self.received: List[tuple] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        if url in self.failing:
            return httpx.Response(500, text="boom")
        self.received.append((url, request.headers.get("content-type"), json.loads(request.content)))
        return httpx.Response(200, json={"received": True})

    def events_for(self, url: str) -> List[str]:
        return [body["event"] for target, _, body in self.received if target == url]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@asynccontextmanager
async def running_bridge(config: Optional[BridgeConfig] = None, collaborators: Optional[Collaborators] = None, **kwargs):
    """Start a bridge on an ephemeral port; close it on exit."""
    handle = await start_server(config or make_config(), collaborators or make_collaborators(), **kwargs)
    try:
        yield handle
    finally:
        await handle.close()


async def exchange(
    port: int,
    payload: Any = None,
    raw: Optional[bytes] = None,
    chunks: Optional[Sequence[bytes]] = None,
    delay: float = 0.0,
    half_close: bool = True,
) -> Optional[Dict[str, Any]]:
    """
    Send one request and read the response until the server closes.

    Args:
        payload: JSON-serializable request
        raw: Raw bytes to send instead of payload
        chunks: Send these byte chunks in order, sleeping ``delay`` between them
        half_close: Signal end of input after writing

    Returns:
        Decoded response, or None if the server closed without writing
    """
    reader, writer = await asyncio.open_connection('127.0.0.1', port)
    try:
        if chunks is None:
            data = raw if raw is not None else json.dumps(payload).encode("utf-8")
            chunks = [data] if data else []
        for i, chunk in enumerate(chunks):
            if i and delay:
                await asyncio.sleep(delay)
            writer.write(chunk)
            await writer.drain()
        if half_close:
            writer.write_eof()
        data = await reader.read()
    finally:
        writer.close()
        await writer.wait_closed()
    if not data:
        return None
    return json.loads(data.decode("utf-8"))


async def call(port: int, method: Any, params: Optional[Dict[str, Any]] = None, **kwargs) -> Optional[Dict[str, Any]]:
    payload: Dict[str, Any] = {"method": method}
    if params is not None:
        payload["params"] = params
    return await exchange(port, payload, **kwargs)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class BackgroundBridge:
    """
    Run a bridge on its own event loop thread so blocking clients can talk to it.

    Usage:
        with BackgroundBridge() as bridge:
            client.call("status", port=bridge.port)
    """

    def __init__(self, collaborators: Optional[Collaborators] = None):
        self.collaborators = collaborators or make_collaborators()
        self.loop = asyncio.new_event_loop()
        self.handle: Optional[ServerHandle] = None
        self._thread = threading.Thread(target=self.loop.run_forever, daemon=True)

    @property
    def port(self) -> int:
        return self.handle.port

    def __enter__(self) -> "BackgroundBridge":
        self._thread.start()
        future = asyncio.run_coroutine_threadsafe(start_server(make_config(), self.collaborators), self.loop)
        self.handle = future.result(timeout=5.0)
        return self

    def __exit__(self, *exc_info) -> None:
        try:
            if self.handle is not None:
                asyncio.run_coroutine_threadsafe(self.handle.close(), self.loop).result(timeout=5.0)
        finally:
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join(timeout=5.0)
            self.loop.close()
