from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.schemas.order_schema import OrderResponse
from app.schemas.user_schemas import AccountCreate, AccountResponse
from app.services import order_service, user_service

router = APIRouter(prefix="/api/accounts", tags=["Accounts"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_account(
    data: AccountCreate, db: AsyncSession = Depends(get_db)
) -> AccountResponse:
    """Register a customer, vendor, rider or admin; the payload is keyed by role."""
    return await user_service.register_account(db=db, data=data)


@router.get("/{user_id}", status_code=status.HTTP_200_OK)
async def get_account(user_id: UUID, db: AsyncSession = Depends(get_db)) -> AccountResponse:
    return await user_service.get_account(db=db, user_id=user_id)


@router.get("/{user_id}/orders", status_code=status.HTTP_200_OK)
async def get_user_orders(
    user_id: UUID,
    db: AsyncSession = Depends(get_db),
    skip: int = 0,
    limit: int = 20,
) -> list[OrderResponse]:
    return await order_service.list_user_orders(
        db=db, user_id=user_id, skip=skip, limit=limit
    )
