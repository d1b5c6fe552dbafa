"""Settlement engine against the database."""

from __future__ import annotations

import pytest

from bettask.errors import InsufficientBalanceError, StateConflictError
from bettask.wallet.service import recent_transactions
from bettask.wallet.settlement import SettlementEngine

pytestmark = pytest.mark.asyncio


def _engine(uow, record_refund: bool = True) -> SettlementEngine:
    return SettlementEngine(uow.challenges, uow.wallets, record_refund)


async def _balance(uow, owner_id: str) -> int:
    wallet = await uow.wallets.get_for_update(owner_id)
    return wallet.balance if wallet is not None else 0


class TestSettleFailure:
    async def test_deducts_stake_once(self, uow, owner, make_challenge):
        challenge = await make_challenge(stake=500, balance=1000, status="failed")

        result = await _engine(uow).settle_failure(challenge)
        await uow.commit()

        assert result.outcome == "deducted"
        assert result.amount == 500
        assert result.balance_after == 500
        assert challenge.settlement_outcome == "deducted"
        assert await _balance(uow, owner.id) == 500

        rows = await recent_transactions(uow, owner.id)
        deductions = [t for t in rows if t.type == "deduction"]
        assert len(deductions) == 1
        assert deductions[0].challenge_id == challenge.id
        assert deductions[0].amount == 500

    async def test_second_settlement_is_a_no_op(self, uow, owner, make_challenge):
        challenge = await make_challenge(stake=500, balance=1000, status="failed")
        engine = _engine(uow)
        await engine.settle_failure(challenge)
        await uow.commit()

        again = await engine.settle_failure(challenge)
        await uow.commit()

        assert again.outcome == "already_settled"
        assert await _balance(uow, owner.id) == 500
        rows = await recent_transactions(uow, owner.id)
        assert sum(1 for t in rows if t.type == "deduction") == 1

    async def test_shortfall_leaves_balance_untouched(self, uow, owner, make_challenge):
        challenge = await make_challenge(stake=500, balance=200, status="failed")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _engine(uow).settle_failure(challenge)
        await uow.commit()

        assert exc_info.value.required == 500
        assert exc_info.value.available == 200
        assert challenge.settlement_outcome == "shortfall"
        assert await _balance(uow, owner.id) == 200
        refreshed = await uow.challenges.get(challenge.id)
        assert refreshed.status == "failed"
        assert refreshed.settled_at is not None

    async def test_shortfall_without_wallet(self, uow, make_challenge):
        challenge = await make_challenge(stake=100, status="failed")
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _engine(uow).settle_failure(challenge)
        assert exc_info.value.available == 0

    async def test_rejects_open_challenge(self, uow, make_challenge):
        challenge = await make_challenge(status="active")
        with pytest.raises(StateConflictError):
            await _engine(uow).settle_failure(challenge)


class TestSettleSuccess:
    async def test_records_refund_without_moving_money(self, uow, owner, make_challenge):
        challenge = await make_challenge(stake=300, balance=1000, status="completed")

        result = await _engine(uow).settle_success(challenge)
        await uow.commit()

        assert result.outcome == "refund_recorded"
        assert await _balance(uow, owner.id) == 1000
        rows = await recent_transactions(uow, owner.id)
        refunds = [t for t in rows if t.type == "refund"]
        assert len(refunds) == 1
        assert refunds[0].amount == 300

    async def test_refund_record_disabled(self, uow, owner, make_challenge):
        challenge = await make_challenge(stake=300, balance=1000, status="completed")

        result = await _engine(uow, record_refund=False).settle_success(challenge)
        await uow.commit()

        assert result.outcome == "no_change"
        assert challenge.settlement_outcome == "no_change"
        rows = await recent_transactions(uow, owner.id)
        assert [t.type for t in rows] == ["deposit"]

    async def test_success_settles_once(self, uow, make_challenge):
        challenge = await make_challenge(status="completed")
        engine = _engine(uow)
        await engine.settle_success(challenge)
        await uow.commit()
        assert (await engine.settle_success(challenge)).outcome == "already_settled"

    async def test_rejects_failed_challenge(self, uow, make_challenge):
        challenge = await make_challenge(status="failed")
        with pytest.raises(StateConflictError):
            await _engine(uow).settle_success(challenge)
