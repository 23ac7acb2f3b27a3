from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from typing import Optional
from app.schemas.status_schema import (
    AccountType,
    PaymentMethod,
    SettlementStatus,
    WithdrawalStatus,
)


class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    notes: Optional[str] = Field(None, max_length=255)


class WithdrawalResponse(BaseModel):
    id: UUID
    account_id: UUID
    account_type: AccountType
    amount: Decimal
    fee_amount: Decimal
    transfer_amount: Decimal
    wallet_debit: Decimal
    status: WithdrawalStatus
    bank_account_number: Optional[str] = None
    bank_ifsc_code: Optional[str] = None
    bank_account_holder: Optional[str] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None
    requested_at: datetime
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WithdrawalStatusUpdate(BaseModel):
    """Admin update of a processed payout"""

    status: WithdrawalStatus
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None


class WalletSummary(BaseModel):
    account_id: UUID
    account_type: AccountType
    wallet_balance: Decimal
    total_earnings: Decimal
    total_withdrawn: Decimal
    available_balance: Decimal
    online_earnings: Optional[Decimal] = None
    late_fee_deducted: Optional[Decimal] = None
    total_deliveries: Optional[int] = None


class SettlementResponse(BaseModel):
    id: UUID
    order_id: UUID
    party_type: AccountType
    party_id: UUID
    item_total: Decimal
    commission: Decimal
    amount: Decimal
    payment_method: PaymentMethod
    credits_wallet: bool
    status: SettlementStatus
    failure_reason: Optional[str] = None
    attempts: int
    created_at: datetime
    settled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReconcileResult(BaseModel):
    attempted: int
    completed: int
    failed: int
