"""
Kafka relay for store change events.

The relay forwards events this instance produced to a topic; the source reads
the topic and republishes other instances' events on the local bus. Together
they let a subscriber in any process see every committed change.
"""
import asyncio
import json
from typing import Optional

import structlog
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from aiokafka.errors import KafkaError

from denasetu.core.config import get_settings
from denasetu.realtime.feed import Backoff
from denasetu.schemas.events import ChangeEvent
from denasetu.store.changes import ALL_RELATIONS, ChangeBus, Subscription, SubscriptionDropped, change_bus

logger = structlog.get_logger(__name__)
settings = get_settings()


class KafkaChangeRelay:
    """Publishes locally produced change events to Kafka"""

    def __init__(self, bus: ChangeBus = change_bus):
        self.bus = bus
        self.producer: Optional[AIOKafkaProducer] = None
        self.bootstrap_servers = settings.kafka_bootstrap_servers
        self.topic = settings.kafka_topic_store_changes
        self._subscription: Optional[Subscription] = None

    async def start(self):
        """Initialize and start Kafka producer"""
        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: v.encode('utf-8'),
                compression_type='gzip',
                acks='all',
                retry_backoff_ms=500,
                request_timeout_ms=30000,
            )
            await self.producer.start()
            logger.info("Kafka producer started", bootstrap_servers=self.bootstrap_servers)
        except KafkaError as e:
            logger.error("Failed to start Kafka producer", error=str(e))
            raise
        self._subscription = self.bus.subscribe(ALL_RELATIONS)

    async def stop(self):
        """Stop Kafka producer gracefully"""
        if self._subscription is not None:
            self._subscription.close()
        if self.producer:
            try:
                await self.producer.stop()
                logger.info("Kafka producer stopped")
            except KafkaError as e:
                logger.error("Error stopping Kafka producer", error=str(e))

    async def publish(self, event: ChangeEvent) -> bool:
        """Send one event; failures are logged, the local bus already delivered it"""
        if not self.producer:
            logger.error("Kafka producer not initialized")
            return False
        try:
            await self.producer.send_and_wait(
                self.topic,
                value=event.model_dump_json(),
                key=event.relation.encode('utf-8'),
            )
            logger.debug("Published change event",
                         relation=event.relation,
                         row_id=event.row_id,
                         topic=self.topic)
            return True
        except KafkaError as e:
            logger.error("Failed to publish change event",
                         relation=event.relation,
                         row_id=event.row_id,
                         error=str(e))
            return False

    async def forward_events(self):
        """Forward every event that originated here; events relayed in from Kafka are skipped"""
        if self._subscription is None:
            logger.error("Kafka relay not started")
            return
        while True:
            try:
                async for event in self._subscription:
                    if event.origin != self.bus.origin:
                        continue
                    await self.publish(event)
                return
            except SubscriptionDropped:
                logger.warning("Relay subscription dropped, resubscribing")
                self._subscription = self.bus.subscribe(ALL_RELATIONS)


class KafkaChangeSource:
    """Republishes other instances' change events on the local bus"""

    def __init__(self, bus: ChangeBus = change_bus):
        self.bus = bus
        self.consumer: Optional[AIOKafkaConsumer] = None
        self.bootstrap_servers = settings.kafka_bootstrap_servers
        self.topic = settings.kafka_topic_store_changes
        self.backoff = Backoff(settings.feed_backoff_initial_seconds, settings.feed_backoff_max_seconds)
        self._running = False

    async def start(self):
        """Initialize and start Kafka consumer"""
        try:
            self.consumer = AIOKafkaConsumer(
                self.topic,
                bootstrap_servers=self.bootstrap_servers,
                # One group per instance: every instance must see every event
                group_id=f"denasetu-{self.bus.origin}",
                value_deserializer=lambda v: json.loads(v.decode('utf-8')),
                auto_offset_reset='latest',
                enable_auto_commit=True,
            )
            await self.consumer.start()
            self._running = True
            logger.info("Kafka consumer started",
                        bootstrap_servers=self.bootstrap_servers,
                        topic=self.topic)
        except KafkaError as e:
            logger.error("Failed to start Kafka consumer", error=str(e))
            raise

    async def stop(self):
        """Stop Kafka consumer gracefully"""
        self._running = False
        if self.consumer:
            try:
                await self.consumer.stop()
                logger.info("Kafka consumer stopped")
            except KafkaError as e:
                logger.error("Error stopping Kafka consumer", error=str(e))

    def handle_message(self, value: dict) -> bool:
        """Put a relayed event on the local bus unless this instance produced it"""
        try:
            event = ChangeEvent.model_validate(value)
        except ValueError as e:
            logger.warning("Discarding malformed change event", error=str(e))
            return False
        if event.origin == self.bus.origin:
            return False
        self.bus.publish(event)
        return True

    async def consume_events(self):
        """Consume until stopped; a broken consumer drops local subscriptions and restarts"""
        while self._running:
            try:
                async for message in self.consumer:
                    self.handle_message(message.value)
                    self.backoff.reset()
                return
            except KafkaError as e:
                if not self._running:
                    return
                delay = self.backoff.next_delay()
                logger.error("Kafka consumer error, restarting",
                             error=str(e),
                             retry_in_seconds=delay)
                # Subscribers may have missed events; dropping them forces a re-query
                self.bus.drop_all()
                await asyncio.sleep(delay)


# Global relay instances
kafka_relay = KafkaChangeRelay()
kafka_source = KafkaChangeSource()
