from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.schemas.order_schema import OrderResponse
from app.schemas.status_schema import OrderStatus
from app.schemas.user_schemas import (
    OnlineStatusUpdate,
    ProductCreate,
    ProductResponse,
    VendorProfile,
)
from app.services import order_service, user_service

router = APIRouter(prefix="/api/vendors", tags=["Vendors"])


@router.put("/{vendor_id}/online-status", status_code=status.HTTP_200_OK)
async def toggle_vendor_online(
    vendor_id: UUID,
    data: OnlineStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> VendorProfile:
    """Open or close the kitchen. Orders are refused while any of their vendors is offline."""
    return await user_service.set_vendor_online(
        db=db, vendor_id=vendor_id, is_online=data.is_online
    )


@router.post("/{vendor_id}/products", status_code=status.HTTP_201_CREATED)
async def add_product(
    vendor_id: UUID,
    data: ProductCreate,
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    return await user_service.add_product(db=db, vendor_id=vendor_id, data=data)


@router.get("/{vendor_id}/products", status_code=status.HTTP_200_OK)
async def list_products(
    vendor_id: UUID, db: AsyncSession = Depends(get_db)
) -> list[ProductResponse]:
    return await user_service.list_products(db=db, vendor_id=vendor_id)


@router.get("/{vendor_id}/orders", status_code=status.HTTP_200_OK)
async def list_vendor_orders(
    vendor_id: UUID,
    order_status: OrderStatus | None = None,
    db: AsyncSession = Depends(get_db),
    skip: int = 0,
    limit: int = 20,
) -> list[OrderResponse]:
    return await order_service.list_vendor_orders(
        db=db, vendor_id=vendor_id, status=order_status, skip=skip, limit=limit
    )
