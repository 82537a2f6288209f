"""
Live view of a campaign's confirmed donations.

Every change event on ``campaign_donations`` triggers a full re-query; the
event payload itself is never merged into the snapshot. When the subscription
is cut the feed resubscribes with exponential backoff and re-queries, so
events missed during the gap are still reflected.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog

from denasetu.core.config import get_settings
from denasetu.core.exceptions import StoreError
from denasetu.database.database import SessionLocal
from denasetu.middleware.metrics import feed_reconnects_total
from denasetu.schemas.campaign import CampaignDonationResponse
from denasetu.services.campaign import CampaignService
from denasetu.store.changes import ChangeBus, Subscription, SubscriptionDropped, change_bus
from denasetu.store.data_store import DataStore

logger = structlog.get_logger(__name__)
settings = get_settings()

Snapshot = List[CampaignDonationResponse]


class Backoff:
    """Exponential delay: initial, x2 per failure, capped; reset() after a success"""

    def __init__(self, initial: float, maximum: float, factor: float = 2.0):
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self.current = initial

    def next_delay(self) -> float:
        delay = self.current
        self.current = min(self.current * self.factor, self.maximum)
        return delay

    def reset(self):
        self.current = self.initial


class CampaignDonationFeed:
    """Pushes a fresh donation list for one campaign to a listener after every change"""

    relation = "campaign_donations"

    def __init__(
        self,
        campaign_id: str,
        listener: Callable[[Snapshot], Awaitable[None]],
        session_factory=SessionLocal,
        bus: Optional[ChangeBus] = None,
        backoff_initial: Optional[float] = None,
        backoff_max: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.campaign_id = campaign_id
        self.listener = listener
        self.session_factory = session_factory
        self.bus = bus or change_bus
        self.backoff = Backoff(
            backoff_initial if backoff_initial is not None else settings.feed_backoff_initial_seconds,
            backoff_max if backoff_max is not None else settings.feed_backoff_max_seconds,
        )
        self._sleep = sleep
        self._subscription: Optional[Subscription] = None
        self._running = False
        self.snapshot: Snapshot = []
        self.reconnects = 0

    def query(self) -> Snapshot:
        with self.session_factory() as db:
            store = DataStore(db, self.bus)
            return CampaignService.list_campaign_donations(store, self.campaign_id)

    async def refresh(self) -> Snapshot:
        """Re-query and push; also the manual fallback when live updates stall"""
        self.snapshot = self.query()
        await self.listener(self.snapshot)
        return self.snapshot

    async def run(self):
        """Subscribe, push the initial snapshot and keep pushing until stop()"""
        self._running = True
        logger.info("Campaign feed started", campaign_id=self.campaign_id)
        try:
            while self._running:
                self._subscription = self.bus.subscribe(self.relation)
                try:
                    await self.refresh()
                    self.backoff.reset()
                    async for event in self._subscription:
                        logger.debug("Change event received, re-querying",
                                     campaign_id=self.campaign_id,
                                     event_type=event.event_type.value,
                                     row_id=event.row_id)
                        await self.refresh()
                    # Iteration ends only on close()
                    return
                except (SubscriptionDropped, StoreError) as e:
                    if not self._running:
                        return
                    delay = self.backoff.next_delay()
                    self.reconnects += 1
                    feed_reconnects_total.labels(relation=self.relation).inc()
                    logger.warning("Campaign feed interrupted, reconnecting",
                                   campaign_id=self.campaign_id,
                                   error=str(e),
                                   retry_in_seconds=delay,
                                   attempt=self.reconnects)
                    await self._sleep(delay)
                finally:
                    self.bus.unsubscribe(self._subscription)
        finally:
            self._running = False
            logger.info("Campaign feed stopped", campaign_id=self.campaign_id)

    def stop(self):
        self._running = False
        if self._subscription is not None:
            self._subscription.close()
