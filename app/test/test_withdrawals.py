import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from app.schemas.status_schema import AccountType, WithdrawalStatus
from app.schemas.transaction_schema import WithdrawalStatusUpdate
from app.services import wallet_service
from app.utils.errors import (
    InsufficientBalance,
    InvalidRequest,
    InvalidStateTransition,
    NotFoundError,
)
from app.test.factories import VendorFactory


pytestmark = pytest.mark.settlement


@pytest.fixture
def earning_vendor(save):
    async def _earning_vendor(total_earnings, wallet_balance=Decimal("0.00")):
        return await save(
            VendorFactory(
                total_earnings=Decimal(total_earnings),
                wallet_balance=Decimal(wallet_balance),
            )
        )

    return _earning_vendor


async def withdraw_in_own_session(session_factory, account_id, amount):
    async with session_factory() as db:
        return await wallet_service.request_withdrawal(db, account_id, amount)


class TestRequestWithdrawal:
    @pytest.mark.asyncio
    async def test_full_available_balance_can_be_withdrawn(self, session, earning_vendor):
        vendor = await earning_vendor("250.00", wallet_balance="250.00")

        withdrawal = await wallet_service.request_withdrawal(
            session, vendor.user_id, Decimal("250.00")
        )

        assert withdrawal.status == WithdrawalStatus.COMPLETED
        assert withdrawal.account_type == AccountType.VENDOR
        assert withdrawal.fee_amount == Decimal("5.00")
        assert withdrawal.transfer_amount == Decimal("245.00")
        assert withdrawal.transaction_id.startswith("FD-WD-")
        assert withdrawal.bank_account_number == vendor.bank_account_number

        summary = await wallet_service.get_wallet_summary(session, vendor.user_id)
        assert summary.available_balance == Decimal("0.00")
        assert summary.total_withdrawn == Decimal("250.00")
        assert summary.wallet_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_one_paisa_over_is_rejected(self, session, earning_vendor):
        vendor = await earning_vendor("250.00")

        with pytest.raises(InsufficientBalance, match="250.00"):
            await wallet_service.request_withdrawal(session, vendor.user_id, Decimal("250.01"))

        summary = await wallet_service.get_wallet_summary(session, vendor.user_id)
        assert summary.total_withdrawn == Decimal("0.00")
        assert vendor.total_earnings == Decimal("250.00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "missing", ["bank_account_number", "bank_ifsc_code", "bank_account_holder"]
    )
    async def test_payout_needs_bank_details(self, session, make_rider, missing):
        rider = await make_rider(
            total_earnings=Decimal("400.00"),
            wallet_balance=Decimal("400.00"),
            **{missing: None},
        )

        with pytest.raises(InvalidRequest, match="bank account details"):
            await wallet_service.request_withdrawal(session, rider.user_id, Decimal("200.00"))

        summary = await wallet_service.get_wallet_summary(session, rider.user_id)
        assert summary.total_withdrawn == Decimal("0.00")
        assert await wallet_service.list_withdrawals(session, rider.user_id) == []

    @pytest.mark.asyncio
    async def test_below_minimum_is_rejected(self, session, earning_vendor):
        vendor = await earning_vendor("500.00")

        with pytest.raises(InvalidRequest, match="Minimum"):
            await wallet_service.request_withdrawal(session, vendor.user_id, Decimal("99.99"))

    @pytest.mark.asyncio
    async def test_cash_earnings_are_withdrawable(self, session, earning_vendor):
        vendor = await earning_vendor("150.00")

        withdrawal = await wallet_service.request_withdrawal(
            session, vendor.user_id, Decimal("150.00")
        )

        assert withdrawal.wallet_debit == Decimal("0.00")
        await session.refresh(vendor)
        assert vendor.wallet_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_wallet_debit_is_capped_at_wallet_balance(self, session, earning_vendor):
        vendor = await earning_vendor("300.00", wallet_balance="80.00")

        withdrawal = await wallet_service.request_withdrawal(
            session, vendor.user_id, Decimal("200.00")
        )

        assert withdrawal.wallet_debit == Decimal("80.00")
        await session.refresh(vendor)
        assert vendor.wallet_balance == Decimal("0.00")
        assert vendor.total_withdrawn == Decimal("200.00")

    @pytest.mark.asyncio
    async def test_negative_wallet_is_not_debited_further(self, session, earning_vendor):
        vendor = await earning_vendor("300.00", wallet_balance="-20.00")

        withdrawal = await wallet_service.request_withdrawal(
            session, vendor.user_id, Decimal("100.00")
        )

        assert withdrawal.wallet_debit == Decimal("0.00")
        await session.refresh(vendor)
        assert vendor.wallet_balance == Decimal("-20.00")

    @pytest.mark.asyncio
    async def test_rider_can_withdraw(self, session, make_rider):
        rider = await make_rider(
            total_earnings=Decimal("400.00"), wallet_balance=Decimal("400.00")
        )

        withdrawal = await wallet_service.request_withdrawal(
            session, rider.user_id, Decimal("120.00")
        )

        assert withdrawal.account_type == AccountType.RIDER
        summary = await wallet_service.get_wallet_summary(session, rider.user_id)
        assert summary.available_balance == Decimal("280.00")
        assert summary.wallet_balance == Decimal("280.00")
        assert summary.total_deliveries == 0

    @pytest.mark.asyncio
    async def test_unknown_account_is_not_found(self, session):
        with pytest.raises(NotFoundError):
            await wallet_service.request_withdrawal(session, uuid4(), Decimal("150.00"))

    @pytest.mark.concurrency
    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_cannot_overdraw(
        self, session, session_factory, earning_vendor
    ):
        vendor = await earning_vendor("300.00")

        results = await asyncio.gather(
            *[
                withdraw_in_own_session(session_factory, vendor.user_id, Decimal("200.00"))
                for _ in range(3)
            ],
            return_exceptions=True,
        )

        completed = [result for result in results if not isinstance(result, Exception)]
        rejected = [result for result in results if isinstance(result, Exception)]
        assert len(completed) == 1
        assert all(isinstance(error, InsufficientBalance) for error in rejected)

        summary = await wallet_service.get_wallet_summary(session, vendor.user_id)
        assert summary.total_withdrawn == Decimal("200.00")
        assert summary.available_balance == Decimal("100.00")


class TestWithdrawalStatus:
    @pytest.mark.asyncio
    async def test_failed_payout_restores_balance_once(self, session, earning_vendor):
        vendor = await earning_vendor("300.00", wallet_balance="120.00")
        withdrawal = await wallet_service.request_withdrawal(
            session, vendor.user_id, Decimal("200.00")
        )

        updated = await wallet_service.update_withdrawal_status(
            session,
            withdrawal.id,
            WithdrawalStatusUpdate(status=WithdrawalStatus.FAILED, failure_reason="Bank rejected"),
        )
        assert updated.status == WithdrawalStatus.FAILED
        assert updated.failure_reason == "Bank rejected"

        with pytest.raises(InvalidStateTransition, match="failed"):
            await wallet_service.update_withdrawal_status(
                session,
                withdrawal.id,
                WithdrawalStatusUpdate(status=WithdrawalStatus.CANCELLED),
            )

        summary = await wallet_service.get_wallet_summary(session, vendor.user_id)
        assert summary.total_withdrawn == Decimal("0.00")
        assert summary.wallet_balance == Decimal("120.00")
        assert summary.available_balance == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_completed_payout_cannot_go_back_to_pending(self, session, earning_vendor):
        vendor = await earning_vendor("300.00")
        withdrawal = await wallet_service.request_withdrawal(
            session, vendor.user_id, Decimal("100.00")
        )

        with pytest.raises(InvalidRequest):
            await wallet_service.update_withdrawal_status(
                session,
                withdrawal.id,
                WithdrawalStatusUpdate(status=WithdrawalStatus.PENDING),
            )

    @pytest.mark.asyncio
    async def test_history_lists_newest_first(self, session, earning_vendor):
        vendor = await earning_vendor("500.00")
        first = await wallet_service.request_withdrawal(session, vendor.user_id, Decimal("100.00"))
        second = await wallet_service.request_withdrawal(session, vendor.user_id, Decimal("150.00"))

        history = await wallet_service.list_withdrawals(session, vendor.user_id)

        assert {item.id for item in history} == {first.id, second.id}
        assert len(history) == 2
