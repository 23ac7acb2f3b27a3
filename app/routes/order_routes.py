from uuid import UUID

from fastapi import APIRouter, Body, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.schemas.order_schema import (
    CancelOrderSchema,
    DeliverOrderSchema,
    OrderCreate,
    OrderResponse,
    ReadyOrderResponse,
    RiderActionSchema,
    VendorActionSchema,
)
from app.services import assignment_service, order_service
from app.services.deadline_service import PreparationDeadlineMonitor
from app.services.notification_service import NotificationSink
from app.services.payment_service import PaymentProvider
from app.utils.dependencies import (
    get_deadline_monitor,
    get_notifier,
    get_payment_provider,
)
from app.utils.limiter import limiter

router = APIRouter(prefix="/api/orders", tags=["Orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_order(
    request: Request,
    data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    payment_provider: PaymentProvider = Depends(get_payment_provider),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await order_service.create_order(
        db=db, data=data, payment_provider=payment_provider, notifier=notifier
    )


@router.get("/ready-for-pickup", status_code=status.HTTP_200_OK)
async def list_ready_orders(
    db: AsyncSession = Depends(get_db),
    skip: int = 0,
    limit: int = 20,
) -> list[OrderResponse]:
    return await assignment_service.list_ready_orders(db=db, skip=skip, limit=limit)


@router.get("/{order_id}", status_code=status.HTTP_200_OK)
async def get_order(order_id: UUID, db: AsyncSession = Depends(get_db)) -> OrderResponse:
    return await order_service.get_order(db=db, order_id=order_id)


@router.put("/{order_id}/confirm", status_code=status.HTTP_200_OK)
async def confirm_order(
    order_id: UUID,
    data: VendorActionSchema | None = Body(None),
    db: AsyncSession = Depends(get_db),
    monitor: PreparationDeadlineMonitor = Depends(get_deadline_monitor),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await order_service.confirm_order(
        db=db,
        order_id=order_id,
        vendor_id=data.vendor_id if data else None,
        monitor=monitor,
        notifier=notifier,
    )


@router.put("/{order_id}/preparing", status_code=status.HTTP_200_OK)
async def start_preparing(
    order_id: UUID,
    data: VendorActionSchema,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await order_service.start_preparing(
        db=db, order_id=order_id, vendor_id=data.vendor_id, notifier=notifier
    )


@router.put("/{order_id}/ready", status_code=status.HTTP_200_OK)
async def mark_ready(
    order_id: UUID,
    data: VendorActionSchema,
    db: AsyncSession = Depends(get_db),
    monitor: PreparationDeadlineMonitor = Depends(get_deadline_monitor),
    notifier: NotificationSink = Depends(get_notifier),
) -> ReadyOrderResponse:
    order, rider_ids = await order_service.mark_ready(
        db=db,
        order_id=order_id,
        vendor_id=data.vendor_id,
        monitor=monitor,
        notifier=notifier,
    )
    response = ReadyOrderResponse.model_validate(order)
    response.notified_riders = rider_ids
    return response


@router.put("/{order_id}/cancel", status_code=status.HTTP_200_OK)
async def cancel_order(
    order_id: UUID,
    data: CancelOrderSchema | None = Body(None),
    db: AsyncSession = Depends(get_db),
    monitor: PreparationDeadlineMonitor = Depends(get_deadline_monitor),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await order_service.cancel_order(
        db=db,
        order_id=order_id,
        reason=data.reason if data else None,
        monitor=monitor,
        notifier=notifier,
    )


@router.put("/{order_id}/claim", status_code=status.HTTP_200_OK)
@limiter.limit("30/minute")
async def claim_order(
    request: Request,
    order_id: UUID,
    data: RiderActionSchema,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await assignment_service.claim_order(
        db=db, order_id=order_id, rider_id=data.rider_id, notifier=notifier
    )


@router.put("/{order_id}/pickup", status_code=status.HTTP_200_OK)
async def confirm_pickup(
    order_id: UUID,
    data: RiderActionSchema,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await assignment_service.confirm_pickup(
        db=db, order_id=order_id, rider_id=data.rider_id, notifier=notifier
    )


@router.put("/{order_id}/reject", status_code=status.HTTP_200_OK)
async def reject_claim(
    order_id: UUID,
    data: RiderActionSchema,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await assignment_service.reject_claim(
        db=db, order_id=order_id, rider_id=data.rider_id, notifier=notifier
    )


@router.put("/{order_id}/deliver", status_code=status.HTTP_200_OK)
async def deliver_order(
    order_id: UUID,
    data: DeliverOrderSchema,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> OrderResponse:
    return await order_service.deliver_order(
        db=db,
        order_id=order_id,
        rider_id=data.rider_id,
        rating=data.rating,
        notifier=notifier,
    )
