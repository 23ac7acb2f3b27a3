"""Notification sinks for order lifecycle events.

Business code only sees ``NotificationSink.publish(channel, event)``. Channels
are plain strings: ``"admin"``, ``"user:<id>"``, ``"vendor:<id>"`` and
``"rider:<id>"``. Delivery is best effort; see :func:`notify`.
"""

from abc import ABC, abstractmethod

from app.config.config import settings
from app.queue.producer import LifecycleEventProducer, producer
from app.schemas.notification_schemas import LifecycleEvent
from app.schemas.status_schema import EventType
from app.utils.logger_config import setup_logger
from app.utils.utils import ADMIN_CHANNEL
from app.ws_manager.ws_manager import ConnectionManager, manager

logger = setup_logger()


class NotificationSink(ABC):
    @abstractmethod
    async def publish(self, channel: str, event: LifecycleEvent) -> None: ...

    async def close(self) -> None:
        return None


class WebSocketNotificationSink(NotificationSink):
    def __init__(self, connection_manager: ConnectionManager = manager):
        self.manager = connection_manager

    async def publish(self, channel: str, event: LifecycleEvent) -> None:
        message = event.to_message()
        if channel == ADMIN_CHANNEL:
            await self.manager.broadcast_to_admins(message)
            return

        _, _, user_id = channel.partition(":")
        if not user_id:
            raise ValueError(f"Unknown notification channel: {channel}")
        await self.manager.send_personal_message(message, user_id)


class RabbitMQNotificationSink(NotificationSink):
    def __init__(self, event_producer: LifecycleEventProducer = producer):
        self.producer = event_producer

    async def publish(self, channel: str, event: LifecycleEvent) -> None:
        await self.producer.publish_message(channel, event.to_message())

    async def close(self) -> None:
        await self.producer.close()


class NullNotificationSink(NotificationSink):
    async def publish(self, channel: str, event: LifecycleEvent) -> None:
        logger.debug(f"Dropped {event.type.value} event for {channel}")


def build_notification_sink(transport: str | None = None) -> NotificationSink:
    transport = (transport or settings.NOTIFICATION_TRANSPORT).lower()
    if transport == "websocket":
        return WebSocketNotificationSink()
    if transport == "rabbitmq":
        return RabbitMQNotificationSink()
    if transport == "none":
        return NullNotificationSink()
    raise ValueError(f"Unsupported notification transport: {transport}")


async def notify(
    sink: NotificationSink | None, channels: list[str], event: LifecycleEvent
) -> None:
    """Publish to each channel; a failing channel never fails the caller."""
    if sink is None:
        return
    for channel in channels:
        try:
            await sink.publish(channel, event)
        except Exception as e:
            logger.error(
                f"Failed to publish {event.type.value} for order {event.order_id} to {channel}: {str(e)}"
            )


def order_event(
    order, event_type: EventType, message: str = "", expires_at=None, **data
) -> LifecycleEvent:
    return LifecycleEvent(
        type=event_type,
        order_id=order.id,
        status=order.status,
        message=message,
        data=data,
        expires_at=expires_at,
    )
