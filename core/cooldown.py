"""
Eligibility gate for new submissions.

Checked in priority order against a user's applications of one type:
approved, on hold and pending block permanently; a rejection blocks only
until the cooldown window after the review has passed.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional

import discord

from constants import STATUS_APPROVED, STATUS_ON_HOLD, STATUS_PENDING, STATUS_REJECTED
from core.forms import tables_for_type
from core.transformer import classify_job_type
from utils import format_date, format_duration, parse_timestamp, utc_iso

logger = logging.getLogger(__name__)

# Verdict states
BLOCKED_APPROVED = "approved"
BLOCKED_ON_HOLD = "on_hold"
BLOCKED_PENDING = "pending"
BLOCKED_COOLDOWN = "cooldown"
ALLOWED = "allowed"

DATE_FORMAT = "%b %d, %Y"


@dataclass(frozen=True)
class Eligibility:
    """The gate's verdict for one user and application type."""
    state: str
    application_type: str
    cooldown_hours: float
    evaluated_at: datetime
    message: Optional[str] = None
    record_id: Optional[str] = None
    reference_at: Optional[datetime] = None
    cooldown_ends_at: Optional[datetime] = None

    @property
    def can_submit(self) -> bool:
        return self.state == ALLOWED

    @property
    def is_on_cooldown(self) -> bool:
        return self.state == BLOCKED_COOLDOWN

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        """Time left on the cooldown (zero when not on cooldown or already elapsed)."""
        if self.cooldown_ends_at is None:
            return timedelta(0)
        now = now or self.evaluated_at
        return max(self.cooldown_ends_at - now, timedelta(0))

    def at(self, now: datetime) -> "Eligibility":
        """
        Re-derive the verdict for a later moment without querying again.

        Only the cooldown state depends on time; it turns into ALLOWED once
        the window has elapsed.
        """
        if self.is_on_cooldown and now >= self.cooldown_ends_at:
            return replace(self, state=ALLOWED, message=None, evaluated_at=now)
        return replace(self, evaluated_at=now)

    def to_dict(self) -> dict:
        remaining = self.remaining()
        return {
            "state": self.state,
            "canSubmit": self.can_submit,
            "applicationType": self.application_type,
            "message": self.message,
            "cooldownHours": self.cooldown_hours,
            "cooldownEndsAt": utc_iso(self.cooldown_ends_at) if self.cooldown_ends_at else None,
            "remainingSeconds": int(remaining.total_seconds()),
        }


def _latest(records, status: str, *columns: str):
    """Most recent record with a status, ordered by the first present timestamp column."""
    def sort_key(record):
        for column in columns:
            moment = parse_timestamp(record.get(column))
            if moment is not None:
                return moment.timestamp()
        return 0.0

    matching = [record for record in records if record.get("status") == status]
    if not matching:
        return None
    return max(matching, key=sort_key)


def evaluate_eligibility(records: Iterable[Mapping[str, Any]], application_type: str,
                         cooldown_hours: float, now: datetime) -> Eligibility:
    """
    Decide whether a user may submit a new application of a type.

    Args:
        records: The user's rows of this application type
        application_type: Type being applied for (used in messages)
        cooldown_hours: Window after a rejection during which resubmission is blocked
        now: Current time (aware UTC)

    Returns:
        Eligibility verdict
    """
    records = list(records)
    label = application_type.replace("_", " ")
    verdict = dict(application_type=application_type, cooldown_hours=cooldown_hours, evaluated_at=now)

    approved = _latest(records, STATUS_APPROVED, "reviewed_at", "created_at")
    if approved:
        approved_at = parse_timestamp(approved.get("reviewed_at")) or parse_timestamp(approved.get("created_at"))
        return Eligibility(
            state=BLOCKED_APPROVED,
            message=(f"Congratulations! Your {label} application was approved on "
                     f"{format_date(approved_at, DATE_FORMAT)}. Welcome to the team!"),
            record_id=approved.get("id"),
            reference_at=approved_at,
            **verdict,
        )

    on_hold = _latest(records, STATUS_ON_HOLD, "created_at")
    if on_hold:
        return Eligibility(
            state=BLOCKED_ON_HOLD,
            message=(f"Your {label} application submitted on {format_date(on_hold.get('created_at'), DATE_FORMAT)} "
                     "is currently on hold. Our team is reviewing additional details. Please wait for further updates."),
            record_id=on_hold.get("id"),
            reference_at=parse_timestamp(on_hold.get("created_at")),
            **verdict,
        )

    pending = _latest(records, STATUS_PENDING, "created_at")
    if pending:
        return Eligibility(
            state=BLOCKED_PENDING,
            message=(f"You already have a pending {label} application submitted on "
                     f"{format_date(pending.get('created_at'), DATE_FORMAT)}. "
                     "Please wait for a response before submitting another."),
            record_id=pending.get("id"),
            reference_at=parse_timestamp(pending.get("created_at")),
            **verdict,
        )

    rejected = _latest(records, STATUS_REJECTED, "updated_at", "reviewed_at", "created_at")
    if rejected:
        rejected_at = parse_timestamp(rejected.get("reviewed_at")) or parse_timestamp(rejected.get("updated_at"))
        if rejected_at is not None:
            ends_at = rejected_at + timedelta(hours=cooldown_hours)
            if now < ends_at:
                return Eligibility(
                    state=BLOCKED_COOLDOWN,
                    message=(f"Your previous {label} application was not approved. "
                             f"You can reapply in {format_duration((ends_at - now).total_seconds())}."),
                    record_id=rejected.get("id"),
                    reference_at=rejected_at,
                    cooldown_ends_at=ends_at,
                    **verdict,
                )

    return Eligibility(state=ALLOWED, **verdict)


class EligibilityGate:
    """Runs evaluate_eligibility against the database."""

    def __init__(self, db, cooldown_hours: float, clock: Callable[[], datetime] = discord.utils.utcnow):
        self.db = db
        self.cooldown_hours = cooldown_hours
        self.clock = clock

    async def records_for(self, application_type: str, user_id: str):
        records = []
        for table in tables_for_type(application_type):
            rows = await self.db.select(table, {"user_id": str(user_id)})
            if table == "job_applications":
                # Every department shares one table, bucketed by job_type
                rows = [row for row in rows if classify_job_type(row.get("job_type")) == application_type]
            records.extend(rows)
        return records

    async def evaluate(self, application_type: str, user_id: str) -> Eligibility:
        rows = await self.records_for(application_type, user_id)
        eligibility = evaluate_eligibility(rows, application_type, self.cooldown_hours, self.clock())
        logger.debug(f"Eligibility for {user_id} ({application_type}): {eligibility.state}")
        return eligibility
