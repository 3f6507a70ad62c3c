"""
TCP listener for the bridge.

One JSON request per connection, one JSON response, then close. A
``ServerHandle`` owns the listening socket, the subscriber registry and the
output history for one running period; ``start_server()`` creates it and
``ServerHandle.close()`` tears it down.

Framing: no delimiter or length prefix. The request is complete as soon as the
accumulated bytes decode to a JSON value (trailing bytes are ignored), or when
the peer half-closes. Data that still does not decode at end of input, after
``read_timeout`` seconds of silence, or past ``max_request_bytes`` is answered
with a protocol error.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import math
import time
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

import httpx

from bridge import SERVER_NAME, __version__
from bridge.broadcaster import Broadcaster
from bridge.collaborators import Collaborators, resolve
from bridge.config import BridgeConfig
from bridge.dispatcher import KNOWN_METHODS, CommandDispatcher, Response
from bridge.errors import BindError, ProtocolError, TransportError
from bridge.events import BroadcastEvent, ProgressEvent, ReadyEvent
from bridge.output_buffer import OutputBuffer, timestamped
from bridge.subscribers import SubscriberRegistry

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

_decoder = json.JSONDecoder()
_INCOMPLETE = object()


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    PROCESSING = "processing"
    RESPONDING = "responding"
    CLOSED = "closed"


def decode_request(data: bytes, final: bool) -> Any:
    """
    Decode the first JSON value in ``data``.

    Returns ``_INCOMPLETE`` when more bytes may still arrive (``final`` is False)
    and the data does not decode yet.

    Raises:
        ProtocolError: If ``final`` is True and the data is not valid JSON
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        if not final and e.reason == "unexpected end of data":
            return _INCOMPLETE
        raise ProtocolError(f"Invalid JSON: request is not valid UTF-8 ({e.reason})")

    text = text.lstrip()
    try:
        value, _ = _decoder.raw_decode(text)
    except json.JSONDecodeError as e:
        if not final:
            return _INCOMPLETE
        raise ProtocolError(f"Invalid JSON: {e.msg} (line {e.lineno} column {e.colno})")
    return value


def parse_request(value: Any) -> Tuple[Any, Dict[str, Any]]:
    """
    Split a decoded request into (method, params).

    Raises:
        ProtocolError: If the request or its params is not a JSON object
    """
    if not isinstance(value, dict):
        raise ProtocolError("Invalid request: expected a JSON object with 'method' and 'params'")
    params = value.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise ProtocolError("Invalid request: 'params' must be a JSON object")
    return value.get("method"), params


def _finite(value: Any) -> Any:
    """Replace NaN and infinities with None, recursing into dicts, lists and tuples."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _finite(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite(item) for item in value]
    return value


def to_json(value: Any) -> str:
    """Strict JSON text: non-finite floats become null, other unknown values use str()."""
    return json.dumps(_finite(value), default=str, allow_nan=False)


def encode_response(response: Response) -> bytes:
    """Serialize a response. Values JSON cannot represent are rendered with str()."""
    try:
        return to_json(response.to_dict()).encode("utf-8")
    except (TypeError, ValueError, RecursionError) as e:
        fallback = Response.failure(f"Result is not JSON serializable: {e}")
        return json.dumps(fallback.to_dict()).encode("utf-8")


class ServerHandle:
    """
    A running bridge server.

    Attributes:
        start_time: Epoch seconds at which the handle was created
        subscribers: Webhook registry (owned exclusively by this handle)
        output: Output history (owned exclusively by this handle)
    """

    def __init__(
        self,
        config: BridgeConfig,
        collaborators: Collaborators,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.start_time = time.time()
        self.output = OutputBuffer(config.output_capacity)
        self.subscribers = SubscriberRegistry()
        self.broadcaster = Broadcaster(
            self.subscribers,
            self.write_output,
            timeout=config.broadcast_timeout,
            transport=transport,
        )
        self.dispatcher = CommandDispatcher(
            collaborators,
            self.subscribers,
            self.output,
            self.write_output,
            self.status_info,
            on_progress=on_progress,
            default_output_lines=config.default_output_lines,
        )
        self._on_progress = on_progress
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    # -- introspection -----------------------------------------------------

    @property
    def port(self) -> int:
        """Port actually bound (differs from config.port when it is 0)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self.config.port

    @property
    def running(self) -> bool:
        return self._server is not None and not self._closed

    def uptime(self) -> float:
        return time.time() - self.start_time

    def status_info(self) -> Dict[str, Any]:
        return {
            "name": SERVER_NAME,
            "version": __version__,
            "host": self.config.host,
            "port": self.port,
            "uptime": int(self.uptime()),
            "subscribers": len(self.subscribers),
            "methods": list(KNOWN_METHODS),
        }

    def write_output(self, text: str, level: int = logging.INFO) -> None:
        """Append a timestamped line to the output history and mirror it to the log."""
        self.output.append(timestamped(text))
        logger.log(level, f"[BRIDGE] {text}")

    # -- operations --------------------------------------------------------

    async def dispatch(self, method: Any, params: Optional[Mapping[str, Any]] = None) -> Response:
        """
        Run one command in-process.

        A ``Response.on_sent`` action is not run here; callers outside the
        connection handler decide when to run it.
        """
        return await self.dispatcher.dispatch(method, params)

    def broadcast(self, event: BroadcastEvent) -> int:
        """Fan ``event`` out to all current subscribers without waiting."""
        return self.broadcaster.broadcast(event)

    # -- lifecycle ---------------------------------------------------------

    async def listen(self) -> None:
        """
        Bind and start accepting connections.

        Raises:
            BindError: The port is already in use
            TransportError: Any other listen failure
        """
        host, port = self.config.host, self.config.port
        try:
            self._server = await asyncio.start_server(self._handle_connection, host=host, port=port)
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                error = BindError(port)
                self.write_output(f"Port {port} already in use", logging.ERROR)
                self.write_output(error.hint, logging.ERROR)
                raise error from e
            self.write_output(f"Server error: {e}", logging.ERROR)
            raise TransportError(f"Failed to listen on {host}:{port}: {e}") from e

        self.write_output("=== Bridge Started ===")
        self.write_output(f"Listening on {host}:{self.port}")
        self.write_output("Server is ready")
        if self._on_progress is not None:
            try:
                self._on_progress(ReadyEvent(self.port))
            except Exception as e:
                logger.warning(f"[BRIDGE] Progress callback failed on ready: {e}")

    async def close(self) -> None:
        """
        Stop listening and release the port. Idempotent.

        Returns after the listening socket is closed, in-flight connections have
        finished, and pending webhook deliveries have settled.
        """
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

        await self.broadcaster.aclose()

        current = asyncio.current_task()
        others = [task for task in self._tasks if task is not current]
        if others:
            await asyncio.gather(*others, return_exceptions=True)

        self.write_output("Server closed")

    # -- connection handling -----------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _read_request(self, reader: asyncio.StreamReader) -> Any:
        buffer = b""
        while True:
            try:
                chunk = await asyncio.wait_for(reader.read(READ_CHUNK_SIZE), timeout=self.config.read_timeout)
            except asyncio.TimeoutError:
                if not buffer.strip():
                    raise ProtocolError(f"No request received within {self.config.read_timeout:g}s")
                return decode_request(buffer, final=True)

            if not chunk:
                if not buffer.strip():
                    raise ProtocolError("Empty request")
                return decode_request(buffer, final=True)

            buffer += chunk
            if len(buffer) > self.config.max_request_bytes:
                raise ProtocolError(f"Request exceeds {self.config.max_request_bytes} bytes")

            value = decode_request(buffer, final=False)
            if value is not _INCOMPLETE:
                return value

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        state = ConnectionState.CONNECTED
        response: Optional[Response] = None
        logger.debug(f"[BRIDGE] Connection from {peer}")

        try:
            try:
                request = await self._read_request(reader)
                self.write_output(f"INPUT: {to_json(request)}", logging.DEBUG)
                method, params = parse_request(request)
            except ProtocolError as e:
                response = Response.failure(str(e))
                self.write_output(f"ERROR: {json.dumps(response.to_dict())}", logging.WARNING)
            else:
                state = ConnectionState.PROCESSING
                response = await self.dispatcher.dispatch(method, params)
                self.write_output(f"OUTPUT: {encode_response(response).decode('utf-8')}", logging.DEBUG)

            state = ConnectionState.RESPONDING
            writer.write(encode_response(response))
            await writer.drain()
        except OSError as e:
            error = TransportError(f"{type(e).__name__}: {e}")
            self.write_output(f"SOCKET ERROR ({state.value}, peer={peer}): {error}", logging.WARNING)
            response = None
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"[BRIDGE] Error closing connection from {peer}: {e}")
            logger.debug(f"[BRIDGE] Connection from {peer} {ConnectionState.CLOSED.value} after {state.value}")

        if response is not None and response.on_sent is not None:
            self._spawn(self._run_after_send(response.on_sent))

    async def _run_after_send(self, action: Callable[[], Any]) -> None:
        try:
            await resolve(action())
        except Exception as e:
            logger.error(f"[BRIDGE] Post-response action failed: {e}", exc_info=True)
            self.write_output(f"Post-response action failed: {e}", logging.ERROR)


async def start_server(
    config: Optional[BridgeConfig] = None,
    collaborators: Optional[Collaborators] = None,
    on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServerHandle:
    """
    Create a ServerHandle and start listening.

    Does not guard against a second running server in the same process; that is
    the caller's job (see ``bridge.service.BridgeService``).

    Args:
        config: Listener settings (defaults to BridgeConfig())
        collaborators: Host collaborators (defaults to a ScriptHost only)
        on_progress: Optional callback for ExecutingEvent / ReadyEvent
        transport: Optional httpx transport for webhook delivery

    Raises:
        BindError: The port is already in use
        TransportError: Any other listen failure
    """
    if config is None:
        config = BridgeConfig()
    if collaborators is None:
        from bridge.host import ScriptHost
        collaborators = Collaborators(host=ScriptHost(workspace=config.workspace))

    handle = ServerHandle(config, collaborators, on_progress=on_progress, transport=transport)
    await handle.listen()
    return handle


async def stop_server(handle: Optional[ServerHandle]) -> None:
    """Close ``handle``; a None or already-closed handle is a no-op."""
    if handle is not None:
        await handle.close()
