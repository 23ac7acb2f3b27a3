from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.schemas.transaction_schema import (
    WalletSummary,
    WithdrawalCreate,
    WithdrawalResponse,
)
from app.services import wallet_service
from app.services.notification_service import NotificationSink
from app.utils.dependencies import get_notifier
from app.utils.limiter import limiter

router = APIRouter(prefix="/api/wallets", tags=["Wallets"])


@router.get("/{account_id}", status_code=status.HTTP_200_OK)
async def get_wallet(account_id: UUID, db: AsyncSession = Depends(get_db)) -> WalletSummary:
    return await wallet_service.get_wallet_summary(db=db, account_id=account_id)


@router.post("/{account_id}/withdrawals", status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def request_withdrawal(
    request: Request,
    account_id: UUID,
    data: WithdrawalCreate,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> WithdrawalResponse:
    return await wallet_service.request_withdrawal(
        db=db,
        account_id=account_id,
        amount=data.amount,
        notes=data.notes,
        notifier=notifier,
    )


@router.get("/{account_id}/withdrawals", status_code=status.HTTP_200_OK)
async def list_withdrawals(
    account_id: UUID,
    db: AsyncSession = Depends(get_db),
    skip: int = 0,
    limit: int = 20,
) -> list[WithdrawalResponse]:
    return await wallet_service.list_withdrawals(
        db=db, account_id=account_id, skip=skip, limit=limit
    )
