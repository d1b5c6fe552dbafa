"""
Outbound chat message texts.

Each function returns the plain-text body sent through the messaging
gateway. Amounts are whole rupees.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from bettask.time_utils import ensure_utc

if TYPE_CHECKING:
    from bettask.db.models import Challenge


def format_amount(amount: int) -> str:
    return f"₹{amount:,}"


def format_deadline(deadline: datetime, tz: ZoneInfo) -> str:
    """UTC (or naive UTC) timestamp shown in ``tz``, e.g. ``Mon, 5 Jun, 06:00 PM``."""
    local = ensure_utc(deadline).astimezone(tz)
    return f"{local:%a}, {local.day} {local:%b}, {local:%I:%M %p}"


def challenge_created(title: str, stake: int, deadline: datetime, tz: ZoneInfo) -> str:
    return (
        "✅ Challenge created successfully!\n\n"
        f"*Title:* {title}\n"
        f"*Stake:* {format_amount(stake)}\n"
        f"*Deadline:* {format_deadline(deadline, tz)}\n\n"
        "Remember to submit proof before the deadline to keep your money! "
        'Send a photo with "proof for challenge" when you\'re done.'
    )


def verification_passed(title: str, stake: int) -> str:
    return (
        "✅ Proof verified successfully!\n\n"
        f"*Challenge:* {title}\n"
        "*Status:* Completed\n"
        f"*Amount saved:* {format_amount(stake)}\n\n"
        "Great job completing your challenge! Your money is safe. 🎉"
    )


def verification_retry(title: str, notes: str | None, attempts_left: int) -> str:
    plural = "attempt" if attempts_left == 1 else "attempts"
    reason = f"\n*Reason:* {notes}" if notes else ""
    return (
        "⚠️ Your proof couldn't be verified.\n\n"
        f"*Challenge:* {title}{reason}\n\n"
        f"You have {attempts_left} {plural} left. Please take a new photo today that clearly "
        "shows something related to your task and submit it again."
    )


def verification_failed(title: str, stake: int, notes: str | None, deducted: bool) -> str:
    reason = f"\n*Reason:* {notes}" if notes else ""
    money = (
        f"{format_amount(stake)} has been deducted from your wallet."
        if deducted
        else f"Your wallet could not cover the {format_amount(stake)} stake. Please add funds to settle it."
    )
    return (
        "❌ Challenge failed.\n\n"
        f"*Challenge:* {title}{reason}\n\n"
        f"You have no verification attempts left. {money}\n"
        "Create a new challenge to keep going. 💪"
    )


def verification_manual_review(title: str) -> str:
    return (
        "⏳ We couldn't check your proof automatically right now.\n\n"
        f"*Challenge:* {title}\n\n"
        "Your proof is saved and will be reviewed manually. No money has been deducted."
    )


def deadline_missed(title: str, stake: int, deducted: bool) -> str:
    money = (
        f"{format_amount(stake)} has been deducted from your wallet."
        if deducted
        else f"Your wallet could not cover the {format_amount(stake)} stake. Please add funds to settle it."
    )
    return (
        "⌛ The deadline has passed.\n\n"
        f"*Challenge:* {title}\n\n"
        f"No verified proof was submitted in time. {money}"
    )


def reminder(title: str, deadline: datetime, tz: ZoneInfo) -> str:
    return (
        "⏰ *Reminder*\n\n"
        f'Don\'t forget your challenge: "{title}"\n'
        f"*Deadline:* {format_deadline(deadline, tz)}\n\n"
        'Send a photo with "proof for challenge" once you\'ve completed it.'
    )


def error_reply(message: str, hint: str) -> str:
    return f"⚠️ {message}\n\n{hint}"


def help_text(support_email: str) -> str:
    return f"""*Welcome to BetTask!* 🚀

BetTask helps you achieve your goals by putting money on the line. Here's how to use this service:

*Create a Challenge* 📝
"Create a challenge: Go to the gym for 1 hour
Amount: ₹500
Deadline: tomorrow at 6pm"

*Submit Proof* 📸
Send a photo with "proof for my challenge"

*Check Your Challenges* 📋
"list challenges" or "show my challenges"

*Check Your Balance* 💰
"balance" or "show balance"

*Set a Reminder* ⏰
"remind me about my challenge tomorrow at 9am"

*Need More Help?* 💬
Email us at {support_email}

Good luck with your goals! 💪"""


def reminder_set(title: str, remind_at: datetime, tz: ZoneInfo) -> str:
    return f'✅ Reminder set for "{title}" on {format_deadline(remind_at, tz)}.'


def balance(amount: int) -> str:
    return (
        "*Your BetTask Wallet*\n\n"
        f"💰 *Balance:* {format_amount(amount)}\n\n"
        "Stakes are not reserved when you create a challenge. "
        "The stake is deducted only if the challenge fails."
    )


def challenge_list(challenges: Sequence[Challenge], tz: ZoneInfo) -> str:
    if not challenges:
        return "You don't have any challenges yet. Send 'create challenge' to get started!"

    open_ = [c for c in challenges if c.status in ("active", "pending_verification")]
    completed = [c for c in challenges if c.status == "completed"]
    failed = [c for c in challenges if c.status == "failed"]

    lines = ["*Your Challenges*", ""]
    if open_:
        lines.append("🟢 *Active Challenges:*")
        for i, c in enumerate(open_, start=1):
            lines.append(f'{i}. "{c.title}" - {format_amount(c.stake)} - Due: {format_deadline(c.deadline, tz)}')
        lines.append("")
    for heading, group in (("✅ *Completed Challenges:*", completed), ("❌ *Failed Challenges:*", failed)):
        if not group:
            continue
        lines.append(heading)
        for i, c in enumerate(group[:3], start=1):
            lines.append(f'{i}. "{c.title}" - {format_amount(c.stake)}')
        if len(group) > 3:
            lines.append(f"   ...and {len(group) - 3} more")
        lines.append("")
    lines.append("To submit proof for an active challenge, send a photo with 'proof for challenge'.")
    lines.append("To create a new challenge, send 'create challenge'.")
    return "\n".join(lines)
