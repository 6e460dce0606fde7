import asyncio
from typing import Set

import httpx

from .errors import EventDeliveryFailure
from .logger import logger
from .schemas import Event


class EventReporter:
    """Fire-and-forget delivery of funnel events. No retry, no backpressure."""

    def __init__(self, http: httpx.AsyncClient, shop_domain: str):
        self._http = http
        self._shop_domain = shop_domain
        self._pending: Set[asyncio.Task] = set()

    def send(self, event: Event) -> None:
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for deliveries already in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _deliver(self, event: Event) -> None:
        try:
            await self._post(event)
        except EventDeliveryFailure as e:
            logger.debug(f"Dropped {event.type} event for nudge {event.nudge_id}: {e}")

    async def _post(self, event: Event) -> None:
        try:
            resp = await self._http.post("/api/events", json=event.to_payload(self._shop_domain))
        except httpx.HTTPError as e:
            raise EventDeliveryFailure(str(e)) from e
        if resp.is_error:
            raise EventDeliveryFailure(f"unexpected status {resp.status_code}")
