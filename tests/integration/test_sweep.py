"""Deadline sweep: expire, settle and notify."""

from __future__ import annotations

from datetime import timedelta

import pytest

from bettask.challenges.service import sweep_expired_challenges
from bettask.wallet.service import recent_transactions
from support import IST, NOW

pytestmark = pytest.mark.asyncio


class TestDeadlineSweep:
    async def test_expired_challenge_failed_and_deducted(self, uow, owner, make_challenge, notifications,
                                                         recording_provider):
        challenge = await make_challenge(stake=500, balance=800, deadline=NOW - timedelta(minutes=5))

        summary = await sweep_expired_challenges(uow, notifications=notifications, tz=IST, now=NOW)

        assert summary == {"total": 1, "deducted": 1, "shortfall": 0}
        refreshed = await uow.challenges.get(challenge.id)
        assert refreshed.status == "failed"
        assert refreshed.settlement_outcome == "deducted"
        assert (await uow.wallets.get_for_update(owner.id)).balance == 300
        assert len(recording_provider.sent) == 1
        phone, body = recording_provider.sent[0]
        assert phone == owner.phone
        assert "₹500 has been deducted" in body

    async def test_pending_verification_also_expires(self, uow, make_challenge):
        challenge = await make_challenge(
            balance=1000, deadline=NOW - timedelta(hours=1), status="pending_verification"
        )
        summary = await sweep_expired_challenges(uow, now=NOW)
        assert summary["deducted"] == 1
        assert (await uow.challenges.get(challenge.id)).status == "failed"

    async def test_shortfall_does_not_stop_the_batch(self, uow, owner, make_challenge, notifications,
                                                     recording_provider):
        await make_challenge(stake=5000, balance=600, deadline=NOW - timedelta(hours=2), title="Big")
        await make_challenge(stake=500, deadline=NOW - timedelta(hours=1), title="Small")

        summary = await sweep_expired_challenges(uow, notifications=notifications, tz=IST, now=NOW)

        assert summary == {"total": 2, "deducted": 1, "shortfall": 1}
        assert (await uow.wallets.get_for_update(owner.id)).balance == 100
        bodies = [body for _, body in recording_provider.sent]
        assert any("could not cover the ₹5,000 stake" in b for b in bodies)
        assert any("₹500 has been deducted" in b for b in bodies)

    async def test_leaves_future_and_terminal_challenges(self, uow, make_challenge):
        await make_challenge(deadline=NOW + timedelta(minutes=1))
        await make_challenge(deadline=NOW - timedelta(days=1), status="completed")
        await make_challenge(deadline=NOW - timedelta(days=1), status="failed")

        summary = await sweep_expired_challenges(uow, now=NOW)
        assert summary["total"] == 0

    async def test_rerun_is_idempotent(self, uow, owner, make_challenge):
        await make_challenge(stake=200, balance=1000, deadline=NOW - timedelta(minutes=1))

        await sweep_expired_challenges(uow, now=NOW)
        second = await sweep_expired_challenges(uow, now=NOW)

        assert second["total"] == 0
        rows = await recent_transactions(uow, owner.id)
        assert sum(1 for t in rows if t.type == "deduction") == 1
