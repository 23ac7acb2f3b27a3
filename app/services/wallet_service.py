from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings
from app.models.models import DeliveryPartner, Vendor, Withdrawal
from app.schemas.notification_schemas import LifecycleEvent
from app.schemas.status_schema import AccountType, EventType, WithdrawalStatus
from app.schemas.transaction_schema import WalletSummary, WithdrawalStatusUpdate
from app.services.notification_service import NotificationSink, notify
from app.utils.errors import (
    InsufficientBalance,
    InvalidRequest,
    InvalidStateTransition,
    NotFoundError,
)
from app.utils.logger_config import setup_logger
from app.utils.utils import (
    ADMIN_CHANNEL,
    close_unchanged,
    generate_reference,
    to_money,
    user_channel,
)

logger = setup_logger()

ACCOUNT_MODELS = {AccountType.VENDOR: Vendor, AccountType.RIDER: DeliveryPartner}
BANK_FIELDS = ("bank_account_number", "bank_ifsc_code", "bank_account_holder")


async def _get_account(
    db: AsyncSession, account_id: UUID, fresh: bool = False
) -> tuple[AccountType, Vendor | DeliveryPartner]:
    for account_type, model in ACCOUNT_MODELS.items():
        stmt = select(model).where(model.user_id == account_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        account = await db.scalar(stmt)
        if account is not None:
            return account_type, account
    raise NotFoundError("Wallet account not found.")


def available_balance(account: Vendor | DeliveryPartner) -> Decimal:
    # cash earnings count too, see DESIGN.md
    return to_money(account.total_earnings - account.total_withdrawn)


async def get_wallet_summary(db: AsyncSession, account_id: UUID) -> WalletSummary:
    account_type, account = await _get_account(db, account_id, fresh=True)
    summary = WalletSummary(
        account_id=account_id,
        account_type=account_type,
        wallet_balance=account.wallet_balance,
        total_earnings=account.total_earnings,
        total_withdrawn=account.total_withdrawn,
        available_balance=available_balance(account),
    )
    if account_type == AccountType.VENDOR:
        summary.online_earnings = account.online_earnings
        summary.late_fee_deducted = account.late_fee_deducted
    else:
        summary.total_deliveries = account.total_deliveries
    return summary


async def request_withdrawal(
    db: AsyncSession,
    account_id: UUID,
    amount: Decimal,
    notes: str | None = None,
    notifier: NotificationSink | None = None,
) -> Withdrawal:
    """
    Pay out part of the available balance.

    Args:
        db: Database session
        account_id: Vendor or rider user id
        amount: Gross amount; the payout fee is taken from it
    Returns:
        The completed withdrawal
    """
    amount = to_money(amount)
    if amount < settings.MINIMUM_WITHDRAWAL:
        raise InvalidRequest(
            f"Minimum withdrawal amount is {settings.MINIMUM_WITHDRAWAL}."
        )

    account_type, account = await _get_account(db, account_id)
    if not all(getattr(account, field) for field in BANK_FIELDS):
        raise InvalidRequest("Please add your bank account details before withdrawing.")

    model = ACCOUNT_MODELS[account_type]
    now = datetime.now()

    result = await db.execute(
        update(model)
        .where(
            model.user_id == account_id,
            model.total_earnings - model.total_withdrawn >= amount,
        )
        .values(total_withdrawn=model.total_withdrawn + amount, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        _, account = await _get_account(db, account_id, fresh=True)
        raise InsufficientBalance(
            f"Insufficient balance. Available: {available_balance(account)}"
        )

    # row is locked by the update above
    _, account = await _get_account(db, account_id, fresh=True)
    wallet_debit = min(max(account.wallet_balance, Decimal("0.00")), amount)
    account.wallet_balance = account.wallet_balance - wallet_debit

    fee = to_money(amount * settings.PAYOUT_FEE_RATE)
    withdrawal = Withdrawal(
        account_id=account_id,
        account_type=account_type,
        amount=amount,
        fee_amount=fee,
        transfer_amount=amount - fee,
        wallet_debit=wallet_debit,
        status=WithdrawalStatus.COMPLETED,
        bank_account_number=account.bank_account_number,
        bank_ifsc_code=account.bank_ifsc_code,
        bank_account_holder=account.bank_account_holder,
        transaction_id=generate_reference("FD-WD"),
        notes=notes,
        requested_at=now,
        processed_at=now,
    )
    db.add(withdrawal)
    await db.commit()
    await db.refresh(withdrawal)

    logger.info(
        f"Withdrawal {withdrawal.id} of {amount} completed for {account_type.value} {account_id}"
    )
    await notify(
        notifier,
        [user_channel(account_id), ADMIN_CHANNEL],
        LifecycleEvent(
            type=EventType.WITHDRAWAL_PROCESSED,
            message="Withdrawal processed",
            data={
                "withdrawal_id": str(withdrawal.id),
                "amount": str(amount),
                "transfer_amount": str(withdrawal.transfer_amount),
                "status": withdrawal.status.value,
            },
        ),
    )
    return withdrawal


async def list_withdrawals(
    db: AsyncSession, account_id: UUID, skip: int = 0, limit: int = 20
) -> list[Withdrawal]:
    await _get_account(db, account_id)
    result = await db.execute(
        select(Withdrawal)
        .where(Withdrawal.account_id == account_id)
        .order_by(Withdrawal.requested_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


ALLOWED_WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.COMPLETED: (WithdrawalStatus.PENDING,),
    WithdrawalStatus.FAILED: (WithdrawalStatus.PENDING, WithdrawalStatus.COMPLETED),
    WithdrawalStatus.CANCELLED: (WithdrawalStatus.PENDING, WithdrawalStatus.COMPLETED),
}


async def update_withdrawal_status(
    db: AsyncSession,
    withdrawal_id: UUID,
    data: WithdrawalStatusUpdate,
    notifier: NotificationSink | None = None,
) -> Withdrawal:
    """Admin update; failing or cancelling a payout gives the money back once."""
    withdrawal = await db.get(Withdrawal, withdrawal_id)
    if withdrawal is None:
        raise NotFoundError("Withdrawal not found.")

    current_status = withdrawal.status
    allowed = ALLOWED_WITHDRAWAL_TRANSITIONS.get(data.status)
    if allowed is None:
        raise InvalidRequest(f"Cannot set a withdrawal to {data.status.value}.")

    now = datetime.now()
    values = {"status": data.status, "processed_at": now}
    if data.transaction_id is not None:
        values["transaction_id"] = data.transaction_id
    if data.failure_reason is not None:
        values["failure_reason"] = data.failure_reason
    if data.notes is not None:
        values["notes"] = data.notes

    result = await db.execute(
        update(Withdrawal)
        .where(Withdrawal.id == withdrawal_id, Withdrawal.status.in_(allowed))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await close_unchanged(db)
        raise InvalidStateTransition(
            f"Withdrawal is already {current_status.value}."
        )

    if data.status in (WithdrawalStatus.FAILED, WithdrawalStatus.CANCELLED):
        model = ACCOUNT_MODELS[withdrawal.account_type]
        await db.execute(
            update(model)
            .where(model.user_id == withdrawal.account_id)
            .values(
                total_withdrawn=model.total_withdrawn - withdrawal.amount,
                wallet_balance=model.wallet_balance + withdrawal.wallet_debit,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        logger.warning(
            f"Withdrawal {withdrawal_id} {data.status.value}, {withdrawal.amount} returned to {withdrawal.account_id}"
        )

    await db.commit()
    await db.refresh(withdrawal)

    await notify(
        notifier,
        [user_channel(withdrawal.account_id), ADMIN_CHANNEL],
        LifecycleEvent(
            type=EventType.WITHDRAWAL_PROCESSED,
            message=f"Withdrawal {withdrawal.status.value}",
            data={
                "withdrawal_id": str(withdrawal.id),
                "amount": str(withdrawal.amount),
                "status": withdrawal.status.value,
            },
        ),
    )
    return withdrawal
