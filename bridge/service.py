# bridge/service.py

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from bridge.collaborators import Collaborators
from bridge.config import BridgeConfig, load_config
from bridge.config_registry import ConfigRegistry
from bridge.errors import BindError, BridgeAlreadyRunning
from bridge.events import BroadcastEvent, ProgressEvent
from bridge.host import ScriptHost
from bridge.server import ServerHandle, start_server

logger = logging.getLogger(__name__)


class BridgeService:
    """
    Owns at most one running ServerHandle for the process.

    start() refuses to start a second server; stop() and broadcast() are no-ops
    while nothing is running.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        collaborators: Optional[Collaborators] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        """
        Args:
            config: Bridge configuration (default: loaded from environment)
            collaborators: Host collaborators (default: ScriptHost whose restart
                           restarts this service, plus a file-backed ConfigRegistry)
            on_progress: Optional progress callback passed to each server
        """
        self.config = config or load_config()
        if collaborators is None:
            collaborators = Collaborators(
                host=ScriptHost(workspace=self.config.workspace, on_restart=self.restart),
                configs=ConfigRegistry(self.config.config_registry_path),
            )
        self.collaborators = collaborators
        self.on_progress = on_progress
        self.handle: Optional[ServerHandle] = None

    @property
    def running(self) -> bool:
        return self.handle is not None

    async def start(self) -> ServerHandle:
        """
        Start the bridge server.

        Raises:
            BridgeAlreadyRunning: A server from this service is already running
            BindError: The port is in use (message carries the remediation hint)
        """
        if self.handle is not None:
            logger.info(f"Bridge already running on port {self.handle.port}")
            raise BridgeAlreadyRunning(f"Bridge already running on port {self.handle.port}")

        logger.info("=== Bridge starting ===")
        try:
            self.handle = await start_server(self.config, self.collaborators, on_progress=self.on_progress)
        except BindError as e:
            logger.error(f"Failed to start bridge: {e}")
            raise

        logger.info(f"Bridge started on {self.config.host}:{self.handle.port}")
        return self.handle

    async def stop(self) -> bool:
        """
        Stop the running server.

        Returns:
            True if a server was stopped, False if none was running
        """
        if self.handle is None:
            logger.info("Bridge not running")
            return False

        handle, self.handle = self.handle, None
        logger.info("Shutting down bridge...")
        await handle.close()
        logger.info("Bridge stopped")
        return True

    async def restart(self) -> ServerHandle:
        await self.stop()
        return await self.start()

    def broadcast(self, event: str, data: Optional[Mapping[str, Any]] = None) -> int:
        """
        Broadcast a named event to subscribers of the running server.

        Returns:
            Number of deliveries scheduled (0 when the bridge is not running)
        """
        if self.handle is None:
            logger.debug(f"Bridge not running; dropping event '{event}'")
            return 0
        return self.handle.broadcast(BroadcastEvent.create(event, data))

    async def run_forever(self) -> None:
        """Start and serve until cancelled, then stop."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
