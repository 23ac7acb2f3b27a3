from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings
from app.models.models import DeliveryPartner, Order, OrderItem, Product, User, Vendor
from app.schemas.order_schema import OrderCreate
from app.schemas.status_schema import (
    CANCELLABLE_STATUSES,
    EventType,
    OrderStatus,
    PaymentMethod,
    PREPARATION_STATUSES,
)
from app.services import assignment_service, settlement_service
from app.services.deadline_service import PreparationDeadlineMonitor, preparation_deadline
from app.services.notification_service import NotificationSink, notify, order_event
from app.services.payment_service import PaymentProvider, verify_payment
from app.utils.errors import (
    AlreadyDelivered,
    InvalidRequest,
    InvalidStateTransition,
    NotFoundError,
    NotOrderHolder,
    PaymentVerificationFailed,
    VendorOffline,
)
from app.utils.logger_config import setup_logger
from app.utils.utils import (
    ADMIN_CHANNEL,
    close_unchanged,
    fetch_order,
    rider_channel,
    to_money,
    user_channel,
    vendor_channel,
)

logger = setup_logger()


def _order_channels(order: Order, admin: bool = True) -> list[str]:
    channels = [user_channel(order.user_id)]
    channels += [vendor_channel(vendor_id) for vendor_id in order.vendor_ids]
    if admin:
        channels.append(ADMIN_CHANNEL)
    return channels


async def _ensure_vendors_online(db: AsyncSession, vendor_ids: list[UUID]) -> None:
    result = await db.execute(
        select(Vendor)
        .where(Vendor.user_id.in_(vendor_ids))
        .execution_options(populate_existing=True)
    )
    vendors = {vendor.user_id: vendor for vendor in result.scalars().all()}

    missing = [vendor_id for vendor_id in vendor_ids if vendor_id not in vendors]
    if missing:
        raise NotFoundError(f"Vendor {missing[0]} not found.")

    offline = [vendor_id for vendor_id in vendor_ids if not vendors[vendor_id].is_online]
    if offline:
        logger.warning(f"Order rejected, vendor(s) offline: {offline}")
        raise VendorOffline(offline)


async def _transition(
    db: AsyncSession,
    order_id: UUID,
    allowed: tuple[OrderStatus, ...],
    values: dict,
    action: str,
) -> Order:
    """Move the order only if its current status is an allowed predecessor."""
    values.setdefault("updated_at", datetime.now())
    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status.in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        order = await fetch_order(db, order_id, fresh=True)
        raise InvalidStateTransition(
            f"Cannot {action} an order that is {order.status.value}."
        )

    await db.commit()
    return await fetch_order(db, order_id, fresh=True)


async def _ensure_vendor_owns(db: AsyncSession, order_id: UUID, vendor_id: UUID) -> Order:
    order = await fetch_order(db, order_id)
    if vendor_id not in order.vendor_ids:
        raise NotOrderHolder("This order has no items from your kitchen.")
    return order


async def create_order(
    db: AsyncSession,
    data: OrderCreate,
    payment_provider: PaymentProvider | None = None,
    notifier: NotificationSink | None = None,
) -> Order:
    """
    Place an order priced from the catalog.

    Nothing is written if a product is unknown or unavailable, a vendor is
    offline, or an online payment cannot be verified.
    """
    if not await db.get(User, data.user_id):
        raise NotFoundError("Customer not found.")

    product_ids = {item.product_id for item in data.items}
    result = await db.execute(
        select(Product)
        .where(Product.id.in_(product_ids))
        .execution_options(populate_existing=True)
    )
    products = {product.id: product for product in result.scalars().all()}

    lines = []
    for position, item in enumerate(data.items):
        product = products.get(item.product_id)
        if product is None:
            raise NotFoundError(f"Product {item.product_id} not found.")
        if product.vendor_id != item.vendor_id:
            raise InvalidRequest(
                f"Product {product.name} is not sold by vendor {item.vendor_id}."
            )
        if not product.in_stock:
            raise InvalidRequest(f"{product.name} is currently unavailable.")
        lines.append((position, item, product))

    vendor_ids = list(dict.fromkeys(item.vendor_id for item in data.items))
    await _ensure_vendors_online(db, vendor_ids)

    payment_reference = None
    if data.payment_method == PaymentMethod.ONLINE_PREPAID:
        if data.payment is None or payment_provider is None:
            raise PaymentVerificationFailed(
                "Online orders require a verified payment."
            )
        payment_reference = verify_payment(payment_provider, data.payment)

    subtotal = to_money(
        sum(
            (product.price * item.quantity for _, item, product in lines),
            Decimal("0"),
        )
    )
    if data.subtotal is not None and to_money(data.subtotal) != subtotal:
        logger.warning(
            f"Client subtotal {data.subtotal} differs from catalog subtotal {subtotal} for user {data.user_id}"
        )

    order = Order(
        user_id=data.user_id,
        subtotal=subtotal,
        delivery_charge=settings.DELIVERY_CHARGE,
        platform_fee=settings.PLATFORM_FEE,
        total=subtotal + settings.DELIVERY_CHARGE + settings.PLATFORM_FEE,
        client_subtotal=data.subtotal,
        payment_method=data.payment_method,
        payment_reference=payment_reference,
        status=OrderStatus.PENDING,
        items=[
            OrderItem(
                product_id=product.id,
                vendor_id=product.vendor_id,
                position=position,
                quantity=item.quantity,
                unit_price=product.price,
                product_name=product.name,
            )
            for position, item, product in lines
        ],
    )
    db.add(order)
    await db.commit()

    order = await fetch_order(db, order.id, fresh=True)
    logger.info(f"Order {order.id} created for user {data.user_id}, total {order.total}")

    await notify(
        notifier,
        _order_channels(order),
        order_event(order, EventType.ORDER_CREATED, "New order received"),
    )
    return order


async def get_order(db: AsyncSession, order_id: UUID) -> Order:
    return await fetch_order(db, order_id, fresh=True)


async def list_user_orders(
    db: AsyncSession, user_id: UUID, skip: int = 0, limit: int = 20
) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


async def list_vendor_orders(
    db: AsyncSession,
    vendor_id: UUID,
    status: OrderStatus | None = None,
    skip: int = 0,
    limit: int = 20,
) -> list[Order]:
    stmt = select(Order).where(
        Order.id.in_(select(OrderItem.order_id).where(OrderItem.vendor_id == vendor_id))
    )
    if status:
        stmt = stmt.where(Order.status == status)
    result = await db.execute(
        stmt.order_by(Order.created_at.desc()).offset(skip).limit(limit)
    )
    return result.scalars().all()


async def confirm_order(
    db: AsyncSession,
    order_id: UUID,
    vendor_id: UUID | None = None,
    monitor: PreparationDeadlineMonitor | None = None,
    notifier: NotificationSink | None = None,
) -> Order:
    order = await fetch_order(db, order_id)
    if vendor_id and vendor_id not in order.vendor_ids:
        raise NotOrderHolder("This order has no items from your kitchen.")
    await _ensure_vendors_online(db, order.vendor_ids)

    now = datetime.now()
    order = await _transition(
        db,
        order_id,
        (OrderStatus.PENDING,),
        {
            "status": OrderStatus.CONFIRMED,
            "accepted_at": now,
            "preparation_deadline": preparation_deadline(now),
        },
        "confirm",
    )
    if monitor:
        monitor.arm(order.id, order.preparation_deadline, now=now)

    logger.info(f"Order {order_id} confirmed, deadline {order.preparation_deadline}")
    await notify(
        notifier,
        [user_channel(order.user_id), ADMIN_CHANNEL],
        order_event(
            order,
            EventType.ORDER_CONFIRMED,
            "Your order was accepted by the kitchen",
            preparation_deadline=order.preparation_deadline.isoformat(),
        ),
    )
    return order


async def start_preparing(
    db: AsyncSession,
    order_id: UUID,
    vendor_id: UUID,
    notifier: NotificationSink | None = None,
) -> Order:
    await _ensure_vendor_owns(db, order_id, vendor_id)
    order = await _transition(
        db,
        order_id,
        (OrderStatus.CONFIRMED,),
        {"status": OrderStatus.PREPARING},
        "start preparing",
    )
    await notify(
        notifier,
        [user_channel(order.user_id)],
        order_event(order, EventType.ORDER_PREPARING, "Your food is being prepared"),
    )
    return order


async def mark_ready(
    db: AsyncSession,
    order_id: UUID,
    vendor_id: UUID,
    monitor: PreparationDeadlineMonitor | None = None,
    notifier: NotificationSink | None = None,
) -> tuple[Order, list[UUID]]:
    """Mark the order ready and offer it to idle riders."""
    await _ensure_vendor_owns(db, order_id, vendor_id)
    order = await _transition(
        db,
        order_id,
        PREPARATION_STATUSES,
        {"status": OrderStatus.READY_FOR_PICKUP, "ready_at": datetime.now()},
        "mark ready",
    )
    if monitor:
        monitor.disarm(order_id)

    rider_ids = await assignment_service.broadcast_ready_order(db, order, notifier)
    return order, rider_ids


async def cancel_order(
    db: AsyncSession,
    order_id: UUID,
    reason: str | None = None,
    monitor: PreparationDeadlineMonitor | None = None,
    notifier: NotificationSink | None = None,
) -> Order:
    now = datetime.now()
    order = await _transition(
        db,
        order_id,
        CANCELLABLE_STATUSES,
        {"status": OrderStatus.CANCELLED, "cancelled_at": now, "cancel_reason": reason},
        "cancel",
    )
    if monitor:
        monitor.disarm(order_id)

    logger.info(f"Order {order_id} cancelled: {reason or 'no reason given'}")
    await notify(
        notifier,
        _order_channels(order),
        order_event(order, EventType.ORDER_CANCELLED, reason or "Order cancelled"),
    )
    return order


async def _raise_delivery_failure(db: AsyncSession, order_id: UUID, rider_id: UUID):
    order = await fetch_order(db, order_id, fresh=True)
    if order.status == OrderStatus.DELIVERED:
        raise AlreadyDelivered()
    if order.assigned_rider_id != rider_id:
        raise NotOrderHolder()
    raise InvalidStateTransition(
        f"Cannot deliver an order that is {order.status.value}."
    )


async def deliver_order(
    db: AsyncSession,
    order_id: UUID,
    rider_id: UUID,
    rating: int | None = None,
    notifier: NotificationSink | None = None,
) -> Order:
    """
    Complete the delivery and settle earnings exactly once.

    The status change, the rider credit and the pending vendor rows share one
    transaction. Vendors are credited after commit; a vendor failure is kept
    on its settlement row and does not affect the delivery.
    """
    settlement_service.validate_rating(rating)

    now = datetime.now()
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status == OrderStatus.OUT_FOR_DELIVERY,
            Order.assigned_rider_id == rider_id,
        )
        .values(
            status=OrderStatus.DELIVERED,
            delivered_at=now,
            picked_up_at=func.coalesce(Order.picked_up_at, now),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        await _raise_delivery_failure(db, order_id, rider_id)

    try:
        order = await fetch_order(db, order_id, fresh=True)
        await settlement_service.settle_rider(db, order, rider_id, rating)
        await settlement_service.record_pending_vendor_settlements(db, order)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Order {order_id} delivered by rider {rider_id}")
    await settlement_service.apply_vendor_settlements(db, order_id, notifier)

    order = await fetch_order(db, order_id, fresh=True)
    await notify(
        notifier,
        _order_channels(order) + [rider_channel(rider_id)],
        order_event(
            order,
            EventType.ORDER_DELIVERED,
            "Order delivered",
            rider_id=str(rider_id),
            rating=rating,
        ),
    )
    return order


async def get_rider_current_order(db: AsyncSession, rider_id: UUID) -> Order | None:
    rider = await db.get(DeliveryPartner, rider_id, populate_existing=True)
    if rider is None:
        raise NotFoundError("Delivery partner not found.")
    if rider.current_order_id is None:
        return None
    return await fetch_order(db, rider.current_order_id, fresh=True)
