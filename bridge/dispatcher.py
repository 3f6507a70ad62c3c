"""
Command dispatcher for the bridge server.

Maps each method in the closed ``Method`` set to a handler. Handlers validate
their parameters through a typed params class, perform the action (often by
delegating to a collaborator) and return a JSON-compatible result. Failures are
raised as BridgeErrors; ``CommandDispatcher.dispatch`` converts every failure
into a ``Response`` and never raises.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from bridge.collaborators import Collaborators, resolve
from bridge.errors import BridgeError, ExecutionError, UnknownMethodError, ValidationError
from bridge.events import ExecutingEvent, ProgressEvent
from bridge.output_buffer import OutputBuffer, OutputConsole
from bridge.subscribers import SubscriberRegistry

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_LINES = 100
USAGE_HINT = 'Run "python -m bridge.client --help" for examples'


class Method(str, Enum):
    STATUS = "status"
    EVAL = "eval"
    WEBVIEW = "webview"
    REGISTER_CONFIG = "registerConfig"
    UNREGISTER_CONFIG = "unregisterConfig"
    LIST_CONFIGS = "listConfigs"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    LIST_SUBSCRIBERS = "listSubscribers"
    GET_OUTPUT = "getOutput"
    RESTART_EXTENSION = "restartExtension"


KNOWN_METHODS = [m.value for m in Method]


# ---------------------------------------------------------------------------
# Parameter shapes
# ---------------------------------------------------------------------------

def _required_str(params: Mapping[str, Any], key: str, message: str) -> str:
    value = params.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(message)
    return value


def _optional_str(params: Mapping[str, Any], key: str) -> Optional[str]:
    value = params.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


@dataclass(frozen=True)
class EvalParams:
    code: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "EvalParams":
        code = params.get("code")
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("code parameter required")
        return cls(code=code)


@dataclass(frozen=True)
class WebviewParams:
    view_name: str
    title: Optional[str] = None
    custom_path: Optional[str] = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "WebviewParams":
        return cls(
            view_name=_required_str(params, "viewName", "viewName parameter required"),
            title=_optional_str(params, "title"),
            custom_path=_optional_str(params, "customPath"),
        )


@dataclass(frozen=True)
class RegisterConfigParams:
    name: str
    file_path: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "RegisterConfigParams":
        message = "name and filePath required"
        return cls(
            name=_required_str(params, "name", message),
            file_path=_required_str(params, "filePath", message),
        )


@dataclass(frozen=True)
class UnregisterConfigParams:
    name: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "UnregisterConfigParams":
        return cls(name=_required_str(params, "name", "name required"))


@dataclass(frozen=True)
class UrlParams:
    url: str

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "UrlParams":
        return cls(url=_required_str(params, "url", "url parameter required"))


@dataclass(frozen=True)
class GetOutputParams:
    lines: int

    @classmethod
    def from_params(cls, params: Mapping[str, Any], default: int = DEFAULT_OUTPUT_LINES) -> "GetOutputParams":
        lines = params.get("lines")
        # Absent, null and 0 all mean "use the default"
        if lines is None or (lines == 0 and not isinstance(lines, bool)):
            return cls(lines=default)
        if isinstance(lines, bool):
            raise ValidationError("lines must be a positive integer")
        if isinstance(lines, float) and lines.is_integer():
            lines = int(lines)
        if not isinstance(lines, int) or lines < 0:
            raise ValidationError("lines must be a positive integer")
        return cls(lines=lines)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass
class Response:
    """
    Tagged result of one request.

    ``on_sent`` is not serialized. The connection handler runs it after the
    response has been written and the socket closed.
    """
    ok: bool
    result: Any = None
    error: Optional[str] = None
    on_sent: Optional[Callable[[], Any]] = field(default=None, repr=False, compare=False)

    @classmethod
    def success(cls, result: Any, on_sent: Optional[Callable[[], Any]] = None) -> "Response":
        return cls(ok=True, result=result, on_sent=on_sent)

    @classmethod
    def failure(cls, message: str) -> "Response":
        return cls(ok=False, error=message)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "result": self.result}
        return {"ok": False, "error": self.error}


@dataclass(frozen=True)
class AfterResponse:
    """Handler result whose side effect must wait until the response is delivered."""
    result: Any
    action: Callable[[], Any]


def prepare_eval_code(code: str) -> str:
    """
    Wrap single-expression input in an implicit return.

    Input with no newline, no semicolon and no ``return`` keyword is treated as
    one expression and becomes ``return (<code>)``. Anything else runs as-is.
    The check is purely textual, so a one-liner whose string literal contains a
    semicolon is not wrapped. Clients rely on this behavior; keep it.

    Unwrapped scripts keep their original indentation; the host dedents them.
    """
    stripped = code.strip()
    has_return = re.search(r"\breturn\b", stripped) is not None
    single_expression = "\n" not in stripped and ";" not in stripped
    if single_expression and not has_return:
        return f"return ({stripped})"
    return code


def _check_collaborator_result(result: Any) -> Any:
    if isinstance(result, Mapping) and "error" in result:
        raise ExecutionError(str(result["error"]))
    return result


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]


class CommandDispatcher:
    """
    Fixed command table executing bridge requests.

    Shares the subscriber registry and output buffer with its owning server;
    neither is touched across an await, so concurrent connections on one event
    loop never observe a partial mutation.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        subscribers: SubscriberRegistry,
        output: OutputBuffer,
        write_output: Callable[[str], None],
        status_info: Callable[[], Dict[str, Any]],
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        default_output_lines: int = DEFAULT_OUTPUT_LINES,
    ):
        self._collaborators = collaborators
        self._subscribers = subscribers
        self._output = output
        self._write_output = write_output
        self._status_info = status_info
        self._on_progress = on_progress
        self._default_output_lines = default_output_lines

        self._handlers: Dict[Method, Handler] = {
            Method.STATUS: self._status,
            Method.EVAL: self._eval,
            Method.WEBVIEW: self._webview,
            Method.REGISTER_CONFIG: self._register_config,
            Method.UNREGISTER_CONFIG: self._unregister_config,
            Method.LIST_CONFIGS: self._list_configs,
            Method.SUBSCRIBE: self._subscribe,
            Method.UNSUBSCRIBE: self._unsubscribe,
            Method.LIST_SUBSCRIBERS: self._list_subscribers,
            Method.GET_OUTPUT: self._get_output,
            Method.RESTART_EXTENSION: self._restart_extension,
        }
        missing = set(Method) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for methods: {sorted(m.value for m in missing)}")

    @staticmethod
    def resolve_method(method: Any) -> Method:
        """Map a wire method name onto ``Method`` or raise UnknownMethodError."""
        if isinstance(method, str):
            try:
                return Method(method)
            except ValueError:
                pass
        raise UnknownMethodError(method, KNOWN_METHODS, USAGE_HINT)

    def _emit_progress(self, event: ProgressEvent) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(event)
        except Exception as e:
            logger.warning(f"[BRIDGE] Progress callback failed for {event}: {e}")

    async def dispatch(self, method: Any, params: Optional[Mapping[str, Any]] = None) -> Response:
        """
        Execute one request. Never raises.

        Args:
            method: Wire method name (anything; unknown names yield an error response)
            params: Request parameters (None is treated as empty)
        """
        self._emit_progress(ExecutingEvent(method))
        try:
            command = self.resolve_method(method)
            outcome = await self._handlers[command](params or {})
        except BridgeError as e:
            logger.debug(f"[BRIDGE] {method} failed: {e}")
            return Response.failure(str(e))
        except Exception as e:
            logger.error(f"[BRIDGE] Unexpected error in {method}: {e}", exc_info=True)
            return Response.failure(str(e) or type(e).__name__)

        if isinstance(outcome, AfterResponse):
            return Response.success(outcome.result, on_sent=outcome.action)
        return Response.success(outcome)

    # -- handlers ----------------------------------------------------------

    async def _status(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        snapshot = await resolve(self._collaborators.host.query_status())
        now = time.time()
        result: Dict[str, Any] = {
            "timestamp": int(now * 1000),
            "datetime": datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
        }
        result.update(dict(snapshot or {}))
        result["bridge"] = self._status_info()
        return result

    async def _eval(self, params: Mapping[str, Any]) -> Any:
        args = EvalParams.from_params(params)
        code = prepare_eval_code(args.code)
        console = OutputConsole(self._write_output, "eval")
        try:
            return await resolve(self._collaborators.host.eval_context(code, console))
        except Exception as e:
            raise ExecutionError(f"{type(e).__name__}: {e}") from e

    async def _webview(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        webview = self._collaborators.webview
        if webview is None:
            raise ExecutionError("WebviewManager not initialized")
        args = WebviewParams.from_params(params)
        await resolve(webview.open_view(
            args.view_name,
            title=args.title or args.view_name,
            custom_path=args.custom_path,
        ))
        return {"success": True, "webview": args.view_name}

    def _configs(self):
        configs = self._collaborators.configs
        if configs is None:
            raise ExecutionError("Config handlers not initialized")
        return configs

    async def _register_config(self, params: Mapping[str, Any]) -> Any:
        args = RegisterConfigParams.from_params(params)
        result = await resolve(self._configs().register(args.name, args.file_path))
        return _check_collaborator_result(result)

    async def _unregister_config(self, params: Mapping[str, Any]) -> Any:
        args = UnregisterConfigParams.from_params(params)
        result = await resolve(self._configs().unregister(args.name))
        return _check_collaborator_result(result)

    async def _list_configs(self, params: Mapping[str, Any]) -> Any:
        result = await resolve(self._configs().list())
        return _check_collaborator_result(result)

    async def _subscribe(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        args = UrlParams.from_params(params)
        if self._subscribers.add(args.url):
            self._write_output(f"Subscribed: {args.url}")
        return {
            "success": True,
            "message": f"Subscribed to {args.url}",
            "subscribers": self._subscribers.list(),
        }

    async def _unsubscribe(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        args = UrlParams.from_params(params)
        if self._subscribers.remove(args.url):
            self._write_output(f"Unsubscribed: {args.url}")
        return {
            "success": True,
            "message": f"Unsubscribed from {args.url}",
            "subscribers": self._subscribers.list(),
        }

    async def _list_subscribers(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "success": True,
            "message": f"{len(self._subscribers)} subscriber(s)",
            "subscribers": self._subscribers.list(),
        }

    async def _get_output(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        args = GetOutputParams.from_params(params, default=self._default_output_lines)
        return self._output.snapshot(args.lines)

    async def _restart_extension(self, params: Mapping[str, Any]) -> AfterResponse:
        self._write_output("Restart requested; host restarts after this response")
        return AfterResponse(
            result={"success": True, "message": "Host will restart"},
            action=self._collaborators.host.restart,
        )
