"""Earnings settlement at the Delivered transition.

The rider is settled inside the delivery transaction. Vendors are settled
through ``Settlement`` rows: written as pending in that same transaction and
applied right after commit, one transaction per row, so a vendor-side failure
never undoes the delivery and can be retried by reconciliation.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.config import settings
from app.models.models import DeliveryPartner, Order, Settlement, Vendor
from app.schemas.notification_schemas import LifecycleEvent
from app.schemas.status_schema import (
    AccountType,
    EventType,
    PaymentMethod,
    RiderOrderStatus,
    SettlementStatus,
)
from app.services.notification_service import NotificationSink, notify
from app.utils.errors import InvalidRequest, NotFoundError
from app.utils.logger_config import setup_logger
from app.utils.utils import ADMIN_CHANNEL, close_unchanged, to_money, vendor_channel

logger = setup_logger()


@dataclass
class VendorSplit:
    vendor_id: UUID
    item_total: Decimal
    commission: Decimal
    income: Decimal


def compute_vendor_splits(order: Order) -> list[VendorSplit]:
    """Group the order lines by vendor and take the platform commission off each."""
    totals: dict[UUID, Decimal] = {}
    for item in order.items:
        totals[item.vendor_id] = totals.get(item.vendor_id, Decimal("0")) + (
            item.unit_price * item.quantity
        )

    splits = []
    for vendor_id, item_total in totals.items():
        item_total = to_money(item_total)
        commission = to_money(item_total * settings.VENDOR_COMMISSION_RATE)
        splits.append(
            VendorSplit(
                vendor_id=vendor_id,
                item_total=item_total,
                commission=commission,
                income=item_total - commission,
            )
        )
    return splits


def validate_rating(rating: int | None) -> None:
    if rating is not None and not 1 <= rating <= 5:
        raise InvalidRequest("Rating must be between 1 and 5.")


RATING_PLACES = Decimal("0.000001")


def running_mean(old_average: Decimal, rating: int, deliveries: int) -> Decimal:
    """new = (old * (n - 1) + rating) / n where n already counts this delivery"""
    if deliveries <= 1:
        return Decimal(rating).quantize(RATING_PLACES)
    # six places, the stored mean feeds the next update
    return (
        (Decimal(old_average) * (deliveries - 1) + rating) / deliveries
    ).quantize(RATING_PLACES, rounding=ROUND_HALF_UP)


async def settle_rider(
    db: AsyncSession, order: Order, rider_id: UUID, rating: int | None = None
) -> DeliveryPartner:
    """Credit the delivery fee and free the rider. Caller owns the transaction."""
    fee = settings.RIDER_DELIVERY_FEE
    result = await db.execute(
        update(DeliveryPartner)
        .where(DeliveryPartner.user_id == rider_id)
        .values(
            total_earnings=DeliveryPartner.total_earnings + fee,
            wallet_balance=DeliveryPartner.wallet_balance + fee,
            total_deliveries=DeliveryPartner.total_deliveries + 1,
            current_order_id=None,
            current_order_status=RiderOrderStatus.DELIVERED,
            is_available=True,
            updated_at=datetime.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Delivery partner not found.")

    # The row is write locked by the update above, so this read is stable
    rider = await db.scalar(
        select(DeliveryPartner)
        .where(DeliveryPartner.user_id == rider_id)
        .execution_options(populate_existing=True)
    )
    if rating is not None:
        rider.average_rating = running_mean(
            rider.average_rating, rating, rider.total_deliveries
        )

    db.add(
        Settlement(
            order_id=order.id,
            party_type=AccountType.RIDER,
            party_id=rider_id,
            amount=fee,
            payment_method=order.payment_method,
            credits_wallet=True,
            status=SettlementStatus.COMPLETED,
            attempts=1,
            settled_at=datetime.now(),
        )
    )
    await db.flush()
    return rider


async def record_pending_vendor_settlements(
    db: AsyncSession, order: Order
) -> list[Settlement]:
    """One pending row per vendor; the unique key makes a second write impossible."""
    online = order.payment_method == PaymentMethod.ONLINE_PREPAID
    rows = [
        Settlement(
            order_id=order.id,
            party_type=AccountType.VENDOR,
            party_id=split.vendor_id,
            item_total=split.item_total,
            commission=split.commission,
            amount=split.income,
            payment_method=order.payment_method,
            credits_wallet=online,
            status=SettlementStatus.PENDING,
        )
        for split in compute_vendor_splits(order)
    ]
    db.add_all(rows)
    await db.flush()
    return rows


async def _credit_vendor(db: AsyncSession, settlement: Settlement) -> None:
    values = {
        "total_earnings": Vendor.total_earnings + settlement.amount,
        "updated_at": datetime.now(),
    }
    if settlement.credits_wallet:
        values["wallet_balance"] = Vendor.wallet_balance + settlement.amount
        values["online_earnings"] = Vendor.online_earnings + settlement.amount

    result = await db.execute(
        update(Vendor)
        .where(Vendor.user_id == settlement.party_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Vendor {settlement.party_id} not found.")


async def _record_failure(db: AsyncSession, settlement_id: UUID, reason: str):
    await db.execute(
        update(Settlement)
        .where(
            Settlement.id == settlement_id,
            Settlement.status != SettlementStatus.COMPLETED,
        )
        .values(
            status=SettlementStatus.FAILED,
            failure_reason=reason[:500],
            attempts=Settlement.attempts + 1,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _apply_settlement(
    db: AsyncSession, settlement_id: UUID, notifier: NotificationSink | None
) -> bool:
    """
    Apply one vendor settlement row in its own transaction.

    Returns True if this call credited the vendor, False if the row was already
    completed or the credit failed. A failure is written back to the row.
    """
    settlement = await db.scalar(
        select(Settlement)
        .where(Settlement.id == settlement_id)
        .execution_options(populate_existing=True)
    )
    if settlement is None:
        return False
    # keep a detached snapshot so rollbacks below do not expire it
    db.expunge(settlement)

    now = datetime.now()
    try:
        claimed = await db.execute(
            update(Settlement)
            .where(
                Settlement.id == settlement_id,
                Settlement.status.in_(
                    [SettlementStatus.PENDING, SettlementStatus.FAILED]
                ),
            )
            .values(
                status=SettlementStatus.COMPLETED,
                settled_at=now,
                failure_reason=None,
                attempts=Settlement.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await close_unchanged(db)
            return False

        await _credit_vendor(db, settlement)
        await db.commit()
    except Exception as e:
        await db.rollback()
        reason = str(e) or type(e).__name__
        logger.error(
            f"Vendor settlement {settlement_id} for order {settlement.order_id} failed: {reason}"
        )
        try:
            await _record_failure(db, settlement_id, reason)
        except Exception as record_error:
            # row stays pending, reconciliation picks it up
            await db.rollback()
            logger.error(
                f"Could not mark settlement {settlement_id} as failed: {record_error}"
            )
        await notify(
            notifier,
            [ADMIN_CHANNEL],
            LifecycleEvent(
                type=EventType.SETTLEMENT_FAILED,
                order_id=settlement.order_id,
                message="Vendor earnings could not be credited",
                data={
                    "settlement_id": str(settlement_id),
                    "vendor_id": str(settlement.party_id),
                    "amount": str(settlement.amount),
                    "reason": reason,
                },
            ),
        )
        return False

    logger.info(
        f"Credited vendor {settlement.party_id} {settlement.amount} for order {settlement.order_id}"
    )
    await notify(
        notifier,
        [vendor_channel(settlement.party_id)],
        LifecycleEvent(
            type=EventType.EARNINGS_SETTLED,
            order_id=settlement.order_id,
            message="Earnings credited",
            data={
                "amount": str(settlement.amount),
                "commission": str(settlement.commission),
                "credits_wallet": settlement.credits_wallet,
            },
        ),
    )
    return True


async def apply_vendor_settlements(
    db: AsyncSession, order_id: UUID, notifier: NotificationSink | None = None
) -> list[bool]:
    """Apply every outstanding vendor row of a delivered order."""
    result = await db.execute(
        select(Settlement.id).where(
            Settlement.order_id == order_id,
            Settlement.party_type == AccountType.VENDOR,
            Settlement.status != SettlementStatus.COMPLETED,
        )
    )
    return [
        await _apply_settlement(db, settlement_id, notifier)
        for settlement_id in result.scalars().all()
    ]


async def reconcile_settlements(
    session_factory: async_sessionmaker,
    notifier: NotificationSink | None = None,
    order_id: UUID | None = None,
) -> dict:
    """Retry every pending or failed vendor settlement."""
    async with session_factory() as db:
        stmt = select(Settlement.id).where(
            Settlement.party_type == AccountType.VENDOR,
            Settlement.status.in_([SettlementStatus.PENDING, SettlementStatus.FAILED]),
        )
        if order_id:
            stmt = stmt.where(Settlement.order_id == order_id)
        settlement_ids = (await db.execute(stmt.order_by(Settlement.created_at))).scalars().all()

        completed = 0
        for settlement_id in settlement_ids:
            if await _apply_settlement(db, settlement_id, notifier):
                completed += 1

    attempted = len(settlement_ids)
    if attempted:
        logger.info(
            f"Settlement reconciliation: {completed} of {attempted} rows completed"
        )
    return {
        "attempted": attempted,
        "completed": completed,
        "failed": attempted - completed,
    }


async def list_settlements(
    db: AsyncSession,
    status: SettlementStatus | None = None,
    order_id: UUID | None = None,
) -> list[Settlement]:
    stmt = select(Settlement).order_by(Settlement.created_at.desc())
    if status:
        stmt = stmt.where(Settlement.status == status)
    if order_id:
        stmt = stmt.where(Settlement.order_id == order_id)
    result = await db.execute(stmt)
    return result.scalars().all()
