"""
Client for the bridge wire protocol.

Sends one JSON request per connection, half-closes the socket and reads the
response until the server closes it.

    python -m bridge.client status
    python -m bridge.client eval --code "40 + 2"
    python -m bridge.client subscribe --params '{"url": "http://127.0.0.1:8000/hook"}'
"""

from __future__ import annotations

import argparse
import asyncio
import json
import socket
import sys
from typing import Any, Dict, List, Mapping, Optional

from bridge.config import DEFAULT_PORT
from bridge.errors import TransportError

DEFAULT_HOST = "127.0.0.1"


def _encode(method: str, params: Optional[Mapping[str, Any]]) -> bytes:
    return json.dumps({"method": method, "params": dict(params or {})}).encode("utf-8")


def _decode(data: bytes) -> Dict[str, Any]:
    if not data:
        raise TransportError("Connection closed without a response")
    return json.loads(data.decode("utf-8"))


def call(
    method: str,
    params: Optional[Mapping[str, Any]] = None,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    timeout: float = 10.0,
) -> Dict[str, Any]:
    """Send one request and return the decoded response (``{"ok": ..., ...}``)."""
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(_encode(method, params))
        sock.shutdown(socket.SHUT_WR)
        chunks = []
        while True:
            chunk = sock.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
    return _decode(b"".join(chunks))


async def request(
    method: str,
    params: Optional[Mapping[str, Any]] = None,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> Dict[str, Any]:
    """Async variant of call() for use inside an event loop."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        writer.write(_encode(method, params))
        await writer.drain()
        if writer.can_write_eof():
            writer.write_eof()
        data = await reader.read()
    finally:
        writer.close()
        await writer.wait_closed()
    return _decode(data)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m bridge.client", description="Send a command to the bridge")
    parser.add_argument("method", help="Method name (status, eval, subscribe, getOutput, ...)")
    parser.add_argument("--params", default="{}", help="Params as a JSON object")
    parser.add_argument("--code", help="Shortcut for eval: sets params.code")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--timeout", type=float, default=10.0)
    args = parser.parse_args(argv)

    try:
        params = json.loads(args.params)
    except json.JSONDecodeError as e:
        parser.error(f"--params is not valid JSON: {e}")
    if not isinstance(params, dict):
        parser.error("--params must be a JSON object")
    if args.code is not None:
        params["code"] = args.code

    try:
        response = call(args.method, params, host=args.host, port=args.port, timeout=args.timeout)
    except (OSError, TransportError) as e:
        print(f"Bridge not reachable at {args.host}:{args.port}: {e}", file=sys.stderr)
        return 2

    print(json.dumps(response, indent=2))
    return 0 if response.get("ok") else 1


if __name__ == "__main__":
    sys.exit(main())
