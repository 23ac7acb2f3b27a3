from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings
from app.models.models import DeliveryPartner, Order
from app.schemas.status_schema import EventType, OrderStatus, RiderOrderStatus
from app.services.notification_service import NotificationSink, notify, order_event
from app.utils.errors import (
    ConflictAlreadyClaimed,
    InvalidStateTransition,
    NotFoundError,
    NotOrderHolder,
    RiderUnavailable,
)
from app.utils.logger_config import setup_logger
from app.utils.utils import (
    ADMIN_CHANNEL,
    close_unchanged,
    fetch_order,
    rider_channel,
    user_channel,
    vendor_channel,
)

logger = setup_logger()


async def get_idle_rider_ids(db: AsyncSession) -> list[UUID]:
    result = await db.execute(
        select(DeliveryPartner.user_id).where(
            DeliveryPartner.is_online.is_(True),
            DeliveryPartner.is_available.is_(True),
            DeliveryPartner.current_order_id.is_(None),
        )
    )
    return list(result.scalars().all())


async def broadcast_ready_order(
    db: AsyncSession, order: Order, notifier: NotificationSink | None = None
) -> list[UUID]:
    """
    Offer a ready order to every online idle rider.

    The offer expiry is advisory for the client; the order stays claimable
    until somebody wins the conditional update in :func:`claim_order`.
    """
    rider_ids = await get_idle_rider_ids(db)
    expires_at = datetime.now() + timedelta(seconds=settings.CLAIM_OFFER_TTL_SECONDS)

    offer = order_event(
        order,
        EventType.FOOD_READY,
        "Food is ready for pickup",
        expires_at=expires_at,
        vendor_ids=[str(vendor_id) for vendor_id in order.vendor_ids],
        total=str(order.total),
        delivery_fee=str(settings.RIDER_DELIVERY_FEE),
    )
    await notify(notifier, [rider_channel(rider_id) for rider_id in rider_ids], offer)
    await notify(
        notifier,
        [user_channel(order.user_id), ADMIN_CHANNEL],
        order_event(order, EventType.FOOD_READY, "Your food is ready for pickup"),
    )

    logger.info(f"Order {order.id} offered to {len(rider_ids)} rider(s)")
    return rider_ids


async def list_ready_orders(db: AsyncSession, skip: int = 0, limit: int = 20) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(
            Order.status == OrderStatus.READY_FOR_PICKUP,
            Order.assigned_rider_id.is_(None),
        )
        .order_by(Order.ready_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


async def _raise_claim_failure(db: AsyncSession, order_id: UUID, rider_id: UUID):
    order = await fetch_order(db, order_id, fresh=True)
    if order.assigned_rider_id is not None and order.assigned_rider_id != rider_id:
        raise ConflictAlreadyClaimed()
    if order.assigned_rider_id == rider_id:
        raise InvalidStateTransition("You have already claimed this order.")
    raise InvalidStateTransition(
        f"Order is {order.status.value} and cannot be claimed."
    )


async def _raise_rider_failure(db: AsyncSession, rider_id: UUID):
    rider = await db.scalar(
        select(DeliveryPartner)
        .where(DeliveryPartner.user_id == rider_id)
        .execution_options(populate_existing=True)
    )
    if rider is None:
        raise NotFoundError("Delivery partner not found.")
    if not rider.is_online:
        raise RiderUnavailable("Go online to claim orders.")
    raise RiderUnavailable("Finish your current delivery before claiming another order.")


async def claim_order(
    db: AsyncSession,
    order_id: UUID,
    rider_id: UUID,
    notifier: NotificationSink | None = None,
) -> Order:
    """
    Grant a ready order to exactly one rider.

    Two conditional updates in one transaction: the order is taken only if
    nobody holds it, the rider only if idle. Either failing rolls both back.
    """
    now = datetime.now()
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.READY_FOR_PICKUP,
            Order.assigned_rider_id.is_(None),
        )
        .values(
            status=OrderStatus.OUT_FOR_DELIVERY,
            assigned_rider_id=rider_id,
            assigned_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        await _raise_claim_failure(db, order_id, rider_id)

    result = await db.execute(
        update(DeliveryPartner)
        .where(
            DeliveryPartner.user_id == rider_id,
            DeliveryPartner.is_online.is_(True),
            DeliveryPartner.is_available.is_(True),
            DeliveryPartner.current_order_id.is_(None),
        )
        .values(
            current_order_id=order_id,
            current_order_status=RiderOrderStatus.ASSIGNED,
            is_available=False,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        await _raise_rider_failure(db, rider_id)

    await db.commit()

    order = await fetch_order(db, order_id, fresh=True)
    logger.info(f"Order {order_id} claimed by rider {rider_id}")

    await notify(
        notifier,
        [user_channel(order.user_id), ADMIN_CHANNEL, rider_channel(rider_id)]
        + [vendor_channel(vendor_id) for vendor_id in order.vendor_ids],
        order_event(
            order,
            EventType.ORDER_CLAIMED,
            "A rider is on the way",
            rider_id=str(rider_id),
        ),
    )
    return order


async def _raise_holder_failure(db: AsyncSession, order_id: UUID, rider_id: UUID, action: str):
    order = await fetch_order(db, order_id, fresh=True)
    if order.assigned_rider_id != rider_id:
        raise NotOrderHolder()
    if order.picked_up_at is not None:
        raise InvalidStateTransition("Order was already picked up.")
    raise InvalidStateTransition(
        f"Cannot {action} an order that is {order.status.value}."
    )


async def confirm_pickup(
    db: AsyncSession,
    order_id: UUID,
    rider_id: UUID,
    notifier: NotificationSink | None = None,
) -> Order:
    now = datetime.now()
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.OUT_FOR_DELIVERY,
            Order.assigned_rider_id == rider_id,
            Order.picked_up_at.is_(None),
        )
        .values(picked_up_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        await _raise_holder_failure(db, order_id, rider_id, "pick up")

    await db.execute(
        update(DeliveryPartner)
        .where(
            DeliveryPartner.user_id == rider_id,
            DeliveryPartner.current_order_id == order_id,
        )
        .values(current_order_status=RiderOrderStatus.PICKED_UP, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    order = await fetch_order(db, order_id, fresh=True)
    await notify(
        notifier,
        [user_channel(order.user_id)]
        + [vendor_channel(vendor_id) for vendor_id in order.vendor_ids],
        order_event(order, EventType.ORDER_PICKED_UP, "Order picked up"),
    )
    return order


async def reject_claim(
    db: AsyncSession,
    order_id: UUID,
    rider_id: UUID,
    notifier: NotificationSink | None = None,
) -> Order:
    """
    Release a claimed order before pickup.

    The order goes back to confirmed with ``ready_at`` kept, so the vendor
    has to announce it again but can no longer be charged a late fee for it.
    """
    now = datetime.now()
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.OUT_FOR_DELIVERY,
            Order.assigned_rider_id == rider_id,
            Order.picked_up_at.is_(None),
        )
        .values(
            status=OrderStatus.CONFIRMED,
            assigned_rider_id=None,
            assigned_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        await _raise_holder_failure(db, order_id, rider_id, "reject")

    await db.execute(
        update(DeliveryPartner)
        .where(DeliveryPartner.user_id == rider_id)
        .values(
            current_order_id=None,
            current_order_status=RiderOrderStatus.CANCELLED,
            is_available=True,
            total_cancellations=DeliveryPartner.total_cancellations + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    order = await fetch_order(db, order_id, fresh=True)
    logger.info(f"Rider {rider_id} released order {order_id}")

    await notify(
        notifier,
        [ADMIN_CHANNEL, user_channel(order.user_id)]
        + [vendor_channel(vendor_id) for vendor_id in order.vendor_ids],
        order_event(
            order,
            EventType.CLAIM_RELEASED,
            "Rider released the order, mark it ready again to find another rider",
            rider_id=str(rider_id),
        ),
    )
    return order
