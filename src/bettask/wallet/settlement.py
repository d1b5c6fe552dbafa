"""Settlement engine: the financial consequence of a terminal verdict.

Failure deducts the stake from the owner's wallet; success moves no money
(the stake was never escrowed) and can record an informational refund entry.
Both are idempotent per challenge through ``claim_settlement``, which flips
``challenges.settled_at`` exactly once. Callers own the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import structlog

from bettask.db.models import Challenge, Transaction
from bettask.db.repositories import ChallengeRepository, WalletRepository
from bettask.errors import InsufficientBalanceError, StateConflictError
from bettask.time_utils import utcnow

logger = structlog.get_logger()

SettlementOutcome = Literal["deducted", "shortfall", "refund_recorded", "no_change", "already_settled"]


@dataclass(frozen=True)
class SettlementResult:
    challenge_id: str
    outcome: SettlementOutcome
    amount: int = 0
    balance_after: int | None = None


class SettlementEngine:
    def __init__(
        self,
        challenges: ChallengeRepository,
        wallets: WalletRepository,
        record_refund_on_success: bool = True,
    ) -> None:
        self.challenges = challenges
        self.wallets = wallets
        self.record_refund_on_success = record_refund_on_success

    async def settle_failure(self, challenge: Challenge) -> SettlementResult:
        """Deduct the stake for a failed challenge.

        Raises InsufficientBalanceError when the wallet cannot cover the stake;
        the challenge stays failed and is marked with a ``shortfall`` outcome.
        """
        if challenge.status != "failed":
            raise StateConflictError(f"Cannot settle a {challenge.status} challenge as failed.")

        now = utcnow()
        if not await self.challenges.claim_settlement(challenge.id, now):
            logger.info("settlement_skipped", challenge_id=challenge.id, reason="already_settled")
            return SettlementResult(challenge.id, "already_settled")

        wallet = await self.wallets.get_for_update(challenge.owner_id)
        available = wallet.balance if wallet is not None else 0
        if wallet is None or wallet.balance < challenge.stake:
            challenge.settlement_outcome = "shortfall"
            logger.warning(
                "settlement_shortfall",
                challenge_id=challenge.id,
                owner_id=challenge.owner_id,
                stake=challenge.stake,
                balance=available,
            )
            raise InsufficientBalanceError(challenge.owner_id, challenge.stake, available)

        wallet.balance -= challenge.stake
        wallet.updated_at = now
        await self.wallets.add_transaction(Transaction(
            owner_id=challenge.owner_id,
            amount=challenge.stake,
            type="deduction",
            description=f"Challenge failed: {challenge.title}"[:256],
            challenge_id=challenge.id,
            created_at=now,
        ))
        challenge.settlement_outcome = "deducted"
        logger.info(
            "settlement_deducted",
            challenge_id=challenge.id,
            owner_id=challenge.owner_id,
            amount=challenge.stake,
            balance_after=wallet.balance,
        )
        return SettlementResult(challenge.id, "deducted", challenge.stake, wallet.balance)

    async def settle_success(self, challenge: Challenge) -> SettlementResult:
        """No balance change; optionally append an informational refund entry."""
        if challenge.status != "completed":
            raise StateConflictError(f"Cannot settle a {challenge.status} challenge as completed.")

        now = utcnow()
        if not await self.challenges.claim_settlement(challenge.id, now):
            logger.info("settlement_skipped", challenge_id=challenge.id, reason="already_settled")
            return SettlementResult(challenge.id, "already_settled")

        if not self.record_refund_on_success:
            challenge.settlement_outcome = "no_change"
            return SettlementResult(challenge.id, "no_change")

        await self.wallets.add_transaction(Transaction(
            owner_id=challenge.owner_id,
            amount=challenge.stake,
            type="refund",
            description=f"Challenge completed: {challenge.title}"[:256],
            challenge_id=challenge.id,
            created_at=now,
        ))
        challenge.settlement_outcome = "refund_recorded"
        logger.info("settlement_refund_recorded", challenge_id=challenge.id, amount=challenge.stake)
        return SettlementResult(challenge.id, "refund_recorded", challenge.stake)
