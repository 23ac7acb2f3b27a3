from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from uuid import UUID
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Order
from app.utils.errors import NotFoundError

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantise any numeric value to two decimal places (half up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def generate_reference(prefix: str = "FD") -> str:
    return f"{prefix}-{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8].upper()}"


async def fetch_order(db: AsyncSession, order_id: UUID, fresh: bool = False) -> Order:
    """Load an order with its items; ``fresh`` overwrites any stale copy in the session."""
    stmt = select(Order).where(Order.id == order_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    order = await db.scalar(stmt)
    if not order:
        raise NotFoundError("Order not found.")
    return order


async def close_unchanged(db: AsyncSession) -> None:
    """End a transaction whose guarded write matched no rows."""
    # commit leaves loaded objects intact (expire_on_commit=False), rollback expires them
    await db.commit()


# Notification channels


def user_channel(user_id) -> str:
    return f"user:{user_id}"


def vendor_channel(vendor_id) -> str:
    return f"vendor:{vendor_id}"


def rider_channel(rider_id) -> str:
    return f"rider:{rider_id}"


ADMIN_CHANNEL = "admin"
