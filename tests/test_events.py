"""
Event publisher tests
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from account_service.events import SYNC_REQUESTED, TRANSACTION_URGENT, EventPublisher


class TestEventPublisher:
    @pytest.mark.asyncio
    async def test_publish_without_connection_drops(self) -> None:
        publisher = EventPublisher(url="amqp://nowhere/")

        await publisher.publish(TRANSACTION_URGENT, {"transaction_id": 1})

        assert publisher.exchange is None

    @pytest.mark.asyncio
    async def test_publish_routes_by_key(self) -> None:
        publisher = EventPublisher(url="amqp://nowhere/")
        publisher.exchange = AsyncMock()

        await publisher.publish(TRANSACTION_URGENT, {"transaction_id": 1, "amount": "1500.00"})

        message = publisher.exchange.publish.await_args.args[0]
        assert publisher.exchange.publish.await_args.kwargs["routing_key"] == TRANSACTION_URGENT
        assert json.loads(message.body) == {"type": TRANSACTION_URGENT, "transaction_id": 1, "amount": "1500.00"}

    @pytest.mark.asyncio
    async def test_publish_error_is_logged_not_raised(self) -> None:
        publisher = EventPublisher(url="amqp://nowhere/")
        publisher.exchange = AsyncMock()
        publisher.exchange.publish.side_effect = ConnectionError("channel closed")

        with patch("account_service.events.logger") as logger:
            await publisher.publish(TRANSACTION_URGENT, {"transaction_id": 1})

        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs["routing_key"] == TRANSACTION_URGENT

    @pytest.mark.asyncio
    async def test_connect_declares_worker_queue(self) -> None:
        connection = AsyncMock()
        channel = connection.channel.return_value
        queue = channel.declare_queue.return_value
        publisher = EventPublisher(url="amqp://nowhere/", exchange_name="finance")

        with patch("account_service.events.aio_pika.connect_robust", AsyncMock(return_value=connection)):
            await publisher.connect()

        channel.declare_queue.assert_awaited_once_with(SYNC_REQUESTED, durable=True)
        queue.bind.assert_awaited_once_with(channel.declare_exchange.return_value, routing_key=SYNC_REQUESTED)

        await publisher.close()
        connection.close.assert_awaited_once()
        assert publisher.exchange is None
