"""Repository interfaces and their SQLAlchemy implementations.

Engine components receive a ``UnitOfWork`` instead of reaching for a global
session, so tests can hand them a throwaway database or a fake.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bettask.db.models import Challenge, Reminder, Submission, Transaction, User, Wallet
from bettask.errors import StateConflictError

OPEN_STATUSES = ("active", "pending_verification")


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class UserRepository(Protocol):
    async def get(self, user_id: str) -> User | None: ...
    async def get_by_phone(self, phone: str) -> User | None: ...
    async def upsert_by_phone(self, phone: str) -> User: ...


class ChallengeRepository(Protocol):
    async def add(self, challenge: Challenge) -> Challenge: ...
    async def get(self, challenge_id: str) -> Challenge | None: ...
    async def list_for_owner(self, owner_id: str) -> Sequence[Challenge]: ...
    async def latest_open_for_owner(self, owner_id: str) -> Challenge | None: ...
    async def list_expired(self, now: datetime, limit: int) -> Sequence[Challenge]: ...
    async def claim_settlement(self, challenge_id: str, now: datetime) -> bool: ...


class SubmissionRepository(Protocol):
    async def get_for_challenge(self, challenge_id: str) -> Submission | None: ...
    async def claim(self, challenge_id: str, now: datetime, stale_before: datetime) -> Submission: ...
    async def release(self, submission: Submission) -> None: ...
    async def release_claim(self, challenge_id: str) -> None: ...


class WalletRepository(Protocol):
    async def get_or_create(self, owner_id: str) -> Wallet: ...
    async def get_for_update(self, owner_id: str) -> Wallet | None: ...
    async def add_transaction(self, transaction: Transaction) -> Transaction: ...
    async def list_transactions(self, owner_id: str, limit: int = 20) -> Sequence[Transaction]: ...


class ReminderRepository(Protocol):
    async def add(self, reminder: Reminder) -> Reminder: ...
    async def list_due(self, now: datetime, limit: int) -> Sequence[tuple[Reminder, Challenge, User]]: ...
    async def mark_sent(self, reminder_id: str, now: datetime, *, delivered: bool = True) -> bool: ...
    async def record_failure(self, reminder_id: str) -> int: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------


class SqlUserRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> User | None:
        return await self.session.get(User, user_id)

    async def get_by_phone(self, phone: str) -> User | None:
        result = await self.session.execute(select(User).where(User.phone == phone))
        return result.scalar_one_or_none()

    async def upsert_by_phone(self, phone: str) -> User:
        user = await self.get_by_phone(phone)
        if user is None:
            user = User(phone=phone)
            self.session.add(user)
            await self.session.flush()
        return user


class SqlChallengeRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, challenge: Challenge) -> Challenge:
        self.session.add(challenge)
        await self.session.flush()
        return challenge

    async def get(self, challenge_id: str) -> Challenge | None:
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.id == challenge_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_id: str) -> Sequence[Challenge]:
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.owner_id == owner_id)
            .order_by(Challenge.created_at.desc())
        )
        return result.scalars().all()

    async def latest_open_for_owner(self, owner_id: str) -> Challenge | None:
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.owner_id == owner_id, Challenge.status.in_(OPEN_STATUSES))
            .order_by(Challenge.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_expired(self, now: datetime, limit: int) -> Sequence[Challenge]:
        result = await self.session.execute(
            select(Challenge)
            .where(Challenge.status.in_(OPEN_STATUSES), Challenge.deadline < now)
            .order_by(Challenge.deadline.asc())
            .limit(limit)
        )
        return result.scalars().all()

    async def claim_settlement(self, challenge_id: str, now: datetime) -> bool:
        """Mark the challenge settled. Returns False if another caller already did."""
        result = await self.session.execute(
            update(Challenge)
            .where(Challenge.id == challenge_id, Challenge.settled_at.is_(None))
            .values(settled_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1


class SqlSubmissionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_challenge(self, challenge_id: str) -> Submission | None:
        result = await self.session.execute(
            select(Submission)
            .where(Submission.challenge_id == challenge_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim(self, challenge_id: str, now: datetime, stale_before: datetime) -> Submission:
        """Take the per-challenge verification claim and commit it.

        The first submission inserts the row already claimed. A concurrent
        caller either loses the conditional UPDATE or hits the unique
        constraint on challenge_id; both surface as StateConflictError.
        """
        existing = await self.get_for_challenge(challenge_id)
        if existing is None:
            submission = Submission(challenge_id=challenge_id, claimed_at=now)
            self.session.add(submission)
            try:
                await self.session.commit()
            except IntegrityError as exc:
                await self.session.rollback()
                raise _busy() from exc
            return submission

        result = await self.session.execute(
            update(Submission)
            .where(
                Submission.challenge_id == challenge_id,
                or_(Submission.claimed_at.is_(None), Submission.claimed_at < stale_before),
            )
            .values(claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise _busy()
        await self.session.commit()
        claimed = await self.get_for_challenge(challenge_id)
        assert claimed is not None
        return claimed

    async def release(self, submission: Submission) -> None:
        submission.claimed_at = None
        await self.session.flush()

    async def release_claim(self, challenge_id: str) -> None:
        """Drop the claim without touching any pending ORM state."""
        await self.session.execute(
            update(Submission)
            .where(Submission.challenge_id == challenge_id)
            .values(claimed_at=None)
            .execution_options(synchronize_session=False)
        )


def _busy() -> StateConflictError:
    return StateConflictError(
        "A proof for this challenge is already being verified.",
        hint="Wait for the current verification to finish before submitting again.",
    )


class SqlWalletRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_or_create(self, owner_id: str) -> Wallet:
        result = await self.session.execute(select(Wallet).where(Wallet.owner_id == owner_id))
        wallet = result.scalar_one_or_none()
        if wallet is None:
            wallet = Wallet(owner_id=owner_id, balance=0)
            self.session.add(wallet)
            await self.session.flush()
        return wallet

    async def get_for_update(self, owner_id: str) -> Wallet | None:
        """Read the wallet row under a row lock (no-op on SQLite)."""
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.owner_id == owner_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def list_transactions(self, owner_id: str, limit: int = 20) -> Sequence[Transaction]:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.owner_id == owner_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return result.scalars().all()


class SqlReminderRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, reminder: Reminder) -> Reminder:
        self.session.add(reminder)
        await self.session.flush()
        return reminder

    async def list_due(self, now: datetime, limit: int) -> Sequence[tuple[Reminder, Challenge, User]]:
        """Due, unsent reminders; ones that already failed go behind fresh ones."""
        result = await self.session.execute(
            select(Reminder, Challenge, User)
            .join(Challenge, Challenge.id == Reminder.challenge_id)
            .join(User, User.id == Reminder.owner_id)
            .where(Reminder.sent == False, Reminder.remind_at <= now)  # noqa: E712
            .order_by(Reminder.attempts.asc(), Reminder.remind_at.asc())
            .limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def mark_sent(self, reminder_id: str, now: datetime, *, delivered: bool = True) -> bool:
        """Flip sent=True once. Returns False if it was already sent.

        A reminder retired without delivery keeps ``sent_at`` empty.
        """
        result = await self.session.execute(
            update(Reminder)
            .where(Reminder.id == reminder_id, Reminder.sent == False)  # noqa: E712
            .values(sent=True, sent_at=now if delivered else None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    async def record_failure(self, reminder_id: str) -> int:
        """Count a failed delivery and return the new attempt count."""
        await self.session.execute(
            update(Reminder)
            .where(Reminder.id == reminder_id)
            .values(attempts=Reminder.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(select(Reminder.attempts).where(Reminder.id == reminder_id))
        return result.scalar_one()


class UnitOfWork:
    """One session, one set of repositories, one commit."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = SqlUserRepository(session)
        self.challenges = SqlChallengeRepository(session)
        self.submissions = SqlSubmissionRepository(session)
        self.wallets = SqlWalletRepository(session)
        self.reminders = SqlReminderRepository(session)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
