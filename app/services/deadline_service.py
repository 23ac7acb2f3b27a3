"""Preparation deadline enforcement.

Every confirmed order gets a one-shot APScheduler job at its persisted
``preparation_deadline``. The job only calls :func:`apply_late_fee`, whose
conditional update is what actually guarantees the fee is charged at most
once and never after the order left {confirmed, preparing}. Jobs are memory
only; :meth:`PreparationDeadlineMonitor.rearm_pending` rebuilds them from the
database on start-up.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.config import settings
from app.models.models import Order, Vendor
from app.schemas.status_schema import EventType, PREPARATION_STATUSES
from app.services.notification_service import NotificationSink, notify, order_event
from app.utils.logger_config import setup_logger
from app.utils.utils import (
    ADMIN_CHANNEL,
    close_unchanged,
    fetch_order,
    to_money,
    vendor_channel,
)

logger = setup_logger()


def preparation_deadline(accepted_at: datetime) -> datetime:
    return accepted_at + timedelta(minutes=settings.PREPARATION_WINDOW_MINUTES)


def remaining_delay(deadline: datetime, now: datetime) -> timedelta:
    return max(deadline - now, timedelta(0))


def split_late_fee(order: Order, fee: Decimal) -> dict[UUID, Decimal]:
    """Share the fee by each vendor's item total; the last vendor takes the rounding."""
    totals: dict[UUID, Decimal] = {}
    for item in order.items:
        totals[item.vendor_id] = totals.get(item.vendor_id, Decimal("0")) + (
            item.unit_price * item.quantity
        )

    shares: dict[UUID, Decimal] = {}
    vendor_ids = list(totals)
    remaining = fee
    for vendor_id in vendor_ids[:-1]:
        share = Decimal("0.00")
        if order.subtotal:
            share = to_money(fee * totals[vendor_id] / order.subtotal)
        shares[vendor_id] = share
        remaining -= share
    if vendor_ids:
        shares[vendor_ids[-1]] = remaining
    return shares


async def apply_late_fee(
    db: AsyncSession,
    order_id: UUID,
    now: datetime | None = None,
    notifier: NotificationSink | None = None,
) -> Decimal | None:
    """
    Charge the late fee if the order is still being prepared past its deadline.

    Returns the fee charged, or None when this call was a no-op (order ready,
    cancelled, already charged, or deadline not reached yet).
    """
    now = now or datetime.now()
    order = await fetch_order(db, order_id, fresh=True)
    fee = to_money(order.subtotal * settings.LATE_FEE_RATE)

    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.status.in_(PREPARATION_STATUSES),
            Order.ready_at.is_(None),
            Order.late_fee_applied.is_(False),
            Order.preparation_deadline.is_not(None),
            Order.preparation_deadline <= now,
        )
        .values(late_fee_applied=True, late_fee_amount=fee, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        logger.info(f"Late fee check for order {order_id}: nothing to charge")
        return None

    shares = split_late_fee(order, fee)
    for vendor_id, share in shares.items():
        await db.execute(
            update(Vendor)
            .where(Vendor.user_id == vendor_id)
            .values(
                wallet_balance=Vendor.wallet_balance - share,
                late_fee_deducted=Vendor.late_fee_deducted + share,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
    await db.commit()

    order = await fetch_order(db, order_id, fresh=True)
    logger.warning(f"Late fee {fee} applied to order {order_id}")

    for vendor_id, share in shares.items():
        await notify(
            notifier,
            [vendor_channel(vendor_id)],
            order_event(
                order,
                EventType.LATE_FEE_APPLIED,
                "Preparation deadline missed, late fee deducted",
                amount=str(share),
            ),
        )
    await notify(
        notifier,
        [ADMIN_CHANNEL],
        order_event(
            order,
            EventType.LATE_FEE_APPLIED,
            "Preparation deadline missed",
            amount=str(fee),
        ),
    )
    return fee


class PreparationDeadlineMonitor:
    def __init__(
        self,
        scheduler,
        session_factory: async_sessionmaker,
        notifier: NotificationSink | None = None,
    ):
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.notifier = notifier

    @staticmethod
    def job_id(order_id) -> str:
        return f"prep-deadline:{order_id}"

    def arm(self, order_id: UUID, deadline: datetime, now: datetime | None = None):
        """Schedule the late fee check; overdue deadlines fire immediately."""
        now = now or datetime.now()
        run_date = now + remaining_delay(deadline, now)
        self.scheduler.add_job(
            self._fire,
            trigger=DateTrigger(run_date=run_date),
            args=[order_id],
            id=self.job_id(order_id),
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info(f"Armed preparation deadline for order {order_id} at {run_date}")

    def disarm(self, order_id: UUID) -> None:
        try:
            self.scheduler.remove_job(self.job_id(order_id))
        except JobLookupError:
            # already fired or never armed
            return
        logger.info(f"Disarmed preparation deadline for order {order_id}")

    async def rearm_pending(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Re-create jobs from persisted deadlines after a restart."""
        now = now or datetime.now()
        result = await db.execute(
            select(Order.id, Order.preparation_deadline).where(
                Order.status.in_(PREPARATION_STATUSES),
                Order.ready_at.is_(None),
                Order.late_fee_applied.is_(False),
                Order.preparation_deadline.is_not(None),
            )
        )
        rows = result.all()
        for order_id, deadline in rows:
            self.arm(order_id, deadline, now=now)

        logger.info(f"Re-armed {len(rows)} preparation deadline(s)")
        return len(rows)

    async def _fire(self, order_id: UUID) -> None:
        try:
            async with self.session_factory() as db:
                await apply_late_fee(db, order_id, notifier=self.notifier)
        except Exception as e:
            logger.error(f"Late fee check for order {order_id} failed: {str(e)}")
