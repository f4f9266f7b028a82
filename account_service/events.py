import json
from typing import Any, Optional

import aio_pika
import structlog

from . import config

logger = structlog.get_logger(__name__)

TRANSACTION_URGENT = "transaction.urgent"
SYNC_REQUESTED = "sync.requested"
SYNC_COMPLETED = "sync.completed"


class EventPublisher:
    """Publishes domain events to the topic exchange.

    Events are best effort: without a broker connection they are logged and
    dropped, never failing the request that produced them.
    """

    def __init__(self, url: str = config.RABBITMQ_URL, exchange_name: str = config.EXCHANGE_NAME):
        self.url = url
        self.exchange_name = exchange_name
        self.connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self.exchange: Optional[aio_pika.abc.AbstractExchange] = None

    async def connect(self) -> None:
        self.connection = await aio_pika.connect_robust(self.url)
        channel = await self.connection.channel()
        self.exchange = await channel.declare_exchange(self.exchange_name, aio_pika.ExchangeType.TOPIC)
        # worker queue must exist before the first webhook arrives
        q = await channel.declare_queue(SYNC_REQUESTED, durable=True)
        await q.bind(self.exchange, routing_key=SYNC_REQUESTED)
        logger.info("event_publisher_connected", exchange=self.exchange_name)

    async def publish(self, key: str, payload: dict[str, Any]) -> None:
        if self.exchange is None:
            logger.warning("event_dropped", routing_key=key)
            return
        body = json.dumps({"type": key, **payload}, default=str).encode()
        try:
            await self.exchange.publish(
                aio_pika.Message(
                    body=body,
                    content_type="application/json",
                    delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                ),
                routing_key=key,
            )
        except Exception as e:
            logger.warning("event_publish_failed", routing_key=key, error=str(e))
            return
        logger.debug("event_published", routing_key=key)

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
        self.connection = None
        self.exchange = None


publisher = EventPublisher()


def get_publisher() -> EventPublisher:
    return publisher
