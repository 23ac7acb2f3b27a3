from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database.database import get_db
from app.schemas.status_schema import SettlementStatus
from app.schemas.transaction_schema import (
    ReconcileResult,
    SettlementResponse,
    WithdrawalResponse,
    WithdrawalStatusUpdate,
)
from app.services import settlement_service, wallet_service
from app.services.notification_service import NotificationSink
from app.utils.dependencies import get_notifier, get_session_factory

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.put("/withdrawals/{withdrawal_id}", status_code=status.HTTP_200_OK)
async def update_withdrawal_status(
    withdrawal_id: UUID,
    data: WithdrawalStatusUpdate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> WithdrawalResponse:
    return await wallet_service.update_withdrawal_status(
        db=db, withdrawal_id=withdrawal_id, data=data, notifier=notifier
    )


@router.get("/settlements", status_code=status.HTTP_200_OK)
async def list_settlements(
    settlement_status: SettlementStatus | None = SettlementStatus.FAILED,
    order_id: UUID | None = None,
    db: AsyncSession = Depends(get_db),
) -> list[SettlementResponse]:
    return await settlement_service.list_settlements(
        db=db, status=settlement_status, order_id=order_id
    )


@router.post("/settlements/reconcile", status_code=status.HTTP_200_OK)
async def reconcile_settlements(
    order_id: UUID | None = None,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    notifier: NotificationSink = Depends(get_notifier),
) -> ReconcileResult:
    """Retry vendor credits that are still pending or failed."""
    return await settlement_service.reconcile_settlements(
        session_factory=session_factory, notifier=notifier, order_id=order_id
    )
