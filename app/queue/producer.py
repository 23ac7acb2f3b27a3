import asyncio
import json
from datetime import datetime
from typing import Any, Dict

from aio_pika import DeliveryMode, ExchangeType, Message, connect_robust

from app.config.config import settings
from app.utils.logger_config import setup_logger

logger = setup_logger()


def routing_key_for(channel: str) -> str:
    """
    Map a notification channel onto a topic routing key.

    "admin" stays "admin"; "rider:<id>" becomes "rider.<id>" so consumers can
    bind to "rider.*" or to a single rider.
    """
    audience, separator, target = channel.partition(":")
    if not audience or (separator and not target):
        raise ValueError(f"Malformed notification channel: {channel!r}")
    return f"{audience}.{target}" if target else audience


class LifecycleEventProducer:
    """Publishes order lifecycle events to a durable topic exchange."""

    def __init__(self, url: str | None = None, exchange_name: str | None = None):
        self.url = url or settings.RABBITMQ_URL
        self.exchange_name = exchange_name or settings.RABBITMQ_EXCHANGE
        self._connection = None
        self._channel = None
        self._exchange = None
        self._connect_lock = asyncio.Lock()

    async def connect(self):
        # concurrent publishers share one connection
        async with self._connect_lock:
            if self._exchange is not None:
                return
            self._connection = await connect_robust(self.url)
            self._channel = await self._connection.channel()
            self._exchange = await self._channel.declare_exchange(
                self.exchange_name, ExchangeType.TOPIC, durable=True
            )
            logger.info(f"Connected to exchange {self.exchange_name}")

    def build_message(self, channel: str, payload: Dict[str, Any]) -> Message:
        event_type = payload.get("type")
        body = {
            "channel": channel,
            "event": payload,
            "published_at": datetime.now().isoformat(),
        }
        return Message(
            json.dumps(body, default=str).encode(),
            delivery_mode=DeliveryMode.PERSISTENT,
            content_type="application/json",
            type=event_type,
            headers={"channel": channel},
        )

    async def publish_message(self, channel: str, payload: Dict[str, Any]):
        routing_key = routing_key_for(channel)
        await self.connect()
        try:
            await self._exchange.publish(
                self.build_message(channel, payload), routing_key=routing_key
            )
        except Exception as e:
            logger.error(f"Publishing {payload.get('type')} to {routing_key} failed: {e}")
            raise
        logger.debug(f"Published {payload.get('type')} to {routing_key}")

    async def close(self):
        if self._connection:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchange = None


producer = LifecycleEventProducer()
