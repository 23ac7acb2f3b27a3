from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import DeliveryPartner, Product, User, Vendor
from app.schemas.status_schema import EventType
from app.schemas.user_schemas import (
    AccountCreate,
    CustomerCreate,
    ProductCreate,
    RiderCreate,
    UserCoords,
    VendorCreate,
)
from app.services.notification_service import NotificationSink, notify, order_event
from app.utils.errors import AlreadyExists, NotFoundError
from app.utils.logger_config import setup_logger
from app.utils.utils import fetch_order, to_money, user_channel, vendor_channel

logger = setup_logger()


async def register_account(db: AsyncSession, data: AccountCreate) -> User:
    """
    Create a user and, for vendors and riders, the matching variant record.

    Args:
        db: Database session
        data: One of the role tagged account payloads
    Returns:
        The new user with its variant loaded
    """
    existing = await db.scalar(select(User.id).where(User.email == data.email))
    if existing:
        raise AlreadyExists("An account with this email already exists.")

    user = User(
        role=data.role,
        email=data.email,
        full_name=data.full_name,
        phone_number=data.phone_number,
    )

    if isinstance(data, CustomerCreate):
        user.address = data.address
    elif isinstance(data, VendorCreate):
        user.vendor = Vendor(
            shop_name=data.shop_name,
            shop_address=data.shop_address,
            bank_account_number=data.bank_account_number,
            bank_ifsc_code=data.bank_ifsc_code,
            bank_account_holder=data.bank_account_holder,
        )
    elif isinstance(data, RiderCreate):
        user.delivery_partner = DeliveryPartner(
            vehicle_type=data.vehicle_type,
            vehicle_number=data.vehicle_number,
            bank_account_number=data.bank_account_number,
            bank_ifsc_code=data.bank_ifsc_code,
            bank_account_holder=data.bank_account_holder,
        )

    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info(f"Registered {data.role.value} account {user.id}")
    return user


async def get_account(db: AsyncSession, user_id: UUID) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("Account not found.")
    return user


async def get_vendor(db: AsyncSession, vendor_id: UUID) -> Vendor:
    vendor = await db.get(Vendor, vendor_id, populate_existing=True)
    if not vendor:
        raise NotFoundError("Vendor not found.")
    return vendor


async def get_rider(db: AsyncSession, rider_id: UUID) -> DeliveryPartner:
    rider = await db.get(DeliveryPartner, rider_id, populate_existing=True)
    if not rider:
        raise NotFoundError("Delivery partner not found.")
    return rider


async def set_vendor_online(db: AsyncSession, vendor_id: UUID, is_online: bool) -> Vendor:
    vendor = await get_vendor(db, vendor_id)
    vendor.is_online = is_online
    if is_online:
        vendor.last_online_at = datetime.now()

    await db.commit()
    await db.refresh(vendor)
    logger.info(f"Vendor {vendor_id} is now {'online' if is_online else 'offline'}")
    return vendor


async def set_rider_online(
    db: AsyncSession, rider_id: UUID, is_online: bool
) -> DeliveryPartner:
    """
    Toggle a rider's online flag. Availability follows the back reference:
    a rider holding an order stays unavailable whatever the toggle says.
    """
    rider = await get_rider(db, rider_id)
    rider.is_online = is_online
    rider.is_available = rider.current_order_id is None
    if is_online:
        rider.last_online_at = datetime.now()

    await db.commit()
    await db.refresh(rider)
    logger.info(f"Rider {rider_id} is now {'online' if is_online else 'offline'}")
    return rider


async def update_rider_location(
    db: AsyncSession,
    rider_id: UUID,
    coords: UserCoords,
    notifier: NotificationSink | None = None,
) -> DeliveryPartner:
    """Store the rider's position and stream it to whoever awaits their current order."""
    rider = await get_rider(db, rider_id)
    rider.latitude = coords.latitude
    rider.longitude = coords.longitude
    rider.location_updated_at = datetime.now()

    await db.commit()
    await db.refresh(rider)

    if rider.current_order_id is not None:
        order = await fetch_order(db, rider.current_order_id)
        await notify(
            notifier,
            [user_channel(order.user_id)]
            + [vendor_channel(vendor_id) for vendor_id in order.vendor_ids],
            order_event(
                order,
                EventType.RIDER_LOCATION,
                "Rider location updated",
                rider_id=str(rider_id),
                latitude=coords.latitude,
                longitude=coords.longitude,
                timestamp=rider.location_updated_at.isoformat(),
            ),
        )
    return rider


async def add_product(db: AsyncSession, vendor_id: UUID, data: ProductCreate) -> Product:
    await get_vendor(db, vendor_id)

    product = Product(
        vendor_id=vendor_id,
        name=data.name,
        description=data.description,
        price=to_money(data.price),
        in_stock=data.in_stock,
    )
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product


async def list_products(db: AsyncSession, vendor_id: UUID) -> list[Product]:
    result = await db.execute(
        select(Product)
        .where(Product.vendor_id == vendor_id)
        .order_by(Product.created_at.desc())
    )
    return result.scalars().all()
