"""
Webhook fan-out for bridge events.

Each broadcast snapshots the current subscriber list and schedules one detached
POST per URL. Delivery is at-most-once and best-effort: failures are recorded
in the output history and never reach the caller of ``broadcast()``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

import httpx

from bridge.events import BroadcastEvent
from bridge.subscribers import SubscriberRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class Broadcaster:
    """
    Pushes BroadcastEvents to every subscriber independently.

    Must be used from the event loop that owns the server; ``broadcast()``
    schedules tasks on the running loop and returns immediately.
    """

    def __init__(
        self,
        subscribers: SubscriberRegistry,
        output: Callable[[str], None],
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            subscribers: Registry whose URLs receive each event
            output: Sink for failure lines (the server's output history)
            timeout: Per-request timeout in seconds for webhook POSTs
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self._subscribers = subscribers
        self._output = output
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._pending: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of deliveries still in flight."""
        return len(self._pending)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    def broadcast(self, event: BroadcastEvent) -> int:
        """
        Schedule delivery of ``event`` to all current subscribers.

        Subscribers added after this call are not included.

        Returns:
            Number of deliveries scheduled
        """
        if self._closed:
            logger.debug(f"[BROADCAST] Dropping '{event.event}': broadcaster closed")
            return 0

        urls = self._subscribers.list()
        if not urls:
            logger.debug(f"[BROADCAST] No subscribers for '{event.event}'")
            return 0

        loop = asyncio.get_running_loop()
        payload = event.to_dict()
        for url in urls:
            task = loop.create_task(self._deliver(url, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.debug(f"[BROADCAST] '{event.event}' scheduled for {len(urls)} subscriber(s)")
        return len(urls)

    async def _deliver(self, url: str, payload: dict) -> None:
        try:
            response = await self._get_client().post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self._output(f"Broadcast failed to {url}: {type(e).__name__}: {e}")
        except Exception as e:
            logger.error(f"[BROADCAST] Unexpected error delivering to {url}: {e}", exc_info=True)
            self._output(f"Broadcast failed to {url}: {type(e).__name__}: {e}")

    async def wait_idle(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop accepting broadcasts, drain in-flight deliveries and close the HTTP client."""
        self._closed = True
        await self.wait_idle()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
