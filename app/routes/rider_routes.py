from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.schemas.order_schema import OrderResponse
from app.schemas.user_schemas import OnlineStatusUpdate, RiderProfile, UserCoords
from app.services import order_service, user_service
from app.services.notification_service import NotificationSink
from app.utils.dependencies import get_notifier

router = APIRouter(prefix="/api/riders", tags=["Riders"])


@router.put("/{rider_id}/online-status", status_code=status.HTTP_200_OK)
async def toggle_rider_online(
    rider_id: UUID,
    data: OnlineStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> RiderProfile:
    return await user_service.set_rider_online(
        db=db, rider_id=rider_id, is_online=data.is_online
    )


@router.put("/{rider_id}/location", status_code=status.HTTP_200_OK)
async def update_rider_location(
    rider_id: UUID,
    coords: UserCoords,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> RiderProfile:
    return await user_service.update_rider_location(
        db=db, rider_id=rider_id, coords=coords, notifier=notifier
    )


@router.get("/{rider_id}/current-order", status_code=status.HTTP_200_OK)
async def get_current_order(
    rider_id: UUID, db: AsyncSession = Depends(get_db)
) -> OrderResponse | None:
    return await order_service.get_rider_current_order(db=db, rider_id=rider_id)
