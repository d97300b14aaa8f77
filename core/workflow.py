"""
Application review workflow.

Status changes are two-phase: the row is committed first, then the decision
notification is dispatched best-effort. A failed Discord post never undoes or
blocks the status change; it is reported in the TransitionResult and kept in
the notification ledger for replay.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import discord

from constants import (
    APPLICATION_STATUSES,
    STATUS_APPROVED,
    STATUS_CLOSED,
    STATUS_ON_HOLD,
    STATUS_PENDING,
    STATUS_REJECTED,
)
from core.cooldown import EligibilityGate
from core.errors import NotFoundError, SubmissionBlockedError, ValidationError
from core.forms import APPLICATION_TABLES, parse_application_form, tables_for_type
from core.notifications import (
    SKIPPED,
    ApplicationDecision,
    ApplicationNotifier,
    NotificationLedger,
    NotificationOutcome,
    deliver,
)
from core.transformer import (
    CATEGORY_TYPES,
    TRANSFORMERS,
    UnifiedApplication,
    combine_all_applications,
    filter_applications_by_type,
)
from utils import utc_iso

logger = logging.getLogger(__name__)

DECISION_STATUSES = (STATUS_APPROVED, STATUS_REJECTED)

# Actions offered to reviewers per current status
REVIEW_ACTIONS = {
    STATUS_PENDING: (STATUS_APPROVED, STATUS_REJECTED, STATUS_ON_HOLD, STATUS_CLOSED),
    STATUS_ON_HOLD: (STATUS_APPROVED, STATUS_REJECTED, STATUS_CLOSED),
}


def review_actions(status: str) -> tuple:
    """Statuses a reviewer can move an application to from its current status."""
    return REVIEW_ACTIONS.get(status, ())


@dataclass(frozen=True)
class Reviewer:
    name: str
    user_id: Optional[str] = None
    discord_id: Optional[str] = None

    @classmethod
    def from_member(cls, member) -> "Reviewer":
        return cls(name=member.display_name, user_id=str(member.id), discord_id=str(member.id))


@dataclass
class TransitionResult:
    application: Dict[str, Any]
    application_type: str
    previous_status: str
    notification: NotificationOutcome
    table: str

    @property
    def status(self) -> str:
        return self.application["status"]

    def to_dict(self) -> dict:
        return {
            "success": True,
            "application": self.application,
            "applicationType": self.application_type,
            "previousStatus": self.previous_status,
            "notification": self.notification.to_dict(),
        }


class ApplicationWorkflow:
    """Submission, review and listing of applications across every type."""

    def __init__(self, db, notifier: ApplicationNotifier, gate: EligibilityGate,
                 ledger: Optional[NotificationLedger] = None, clock: Callable[[], datetime] = discord.utils.utcnow):
        self.db = db
        self.notifier = notifier
        self.gate = gate
        self.ledger = ledger
        self.clock = clock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, user_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and store a new application.

        Args:
            user_id: Owning account (the Discord user id for bot submissions)
            payload: Raw form data including application_type

        Returns:
            The inserted row

        Raises:
            ValidationError: invalid form, nothing is written
            SubmissionBlockedError: the eligibility gate refused the submission
        """
        form = parse_application_form(payload)
        eligibility = await self.gate.evaluate(form.application_type, user_id)
        if not eligibility.can_submit:
            logger.info(f"Blocked {form.application_type} submission from {user_id}: {eligibility.state}")
            raise SubmissionBlockedError(eligibility)

        row = form.to_row()
        row["user_id"] = str(user_id)
        row["status"] = STATUS_PENDING
        stored = await self.db.insert(form.table, row)
        logger.info(f"New {form.application_type} application {stored['id']} from {user_id}")
        return stored

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def locate(self, application_type: str, application_id: str) -> Tuple[str, Dict[str, Any]]:
        """
        Find an application by id among the tables its type can be stored in.

        Returns:
            (table, row)

        Raises:
            NotFoundError: no such application of that type
        """
        tables = tables_for_type(application_type)
        for table in tables:
            row = await self.db.select_one(table, {"id": application_id})
            if row is None:
                continue
            if table == tables[0] or self.application_type_of(table, row) == application_type:
                return table, row
        raise NotFoundError(f"{application_type} application {application_id} not found")

    async def get(self, application_type: str, application_id: str) -> Dict[str, Any]:
        _, row = await self.locate(application_type, application_id)
        return row

    async def update_status(self, application_type: str, application_id: str, status: str,
                            reviewer: Reviewer, notes: Optional[str] = None) -> TransitionResult:
        """
        Move an application to a new status.

        approved and rejected record the reviewer and review time in the same
        write. Notes are only written when given. Any status may be set;
        concurrent reviewers are last-write-wins.

        Raises:
            ValidationError: unknown status
            NotFoundError: the application does not exist
        """
        if status not in APPLICATION_STATUSES:
            raise ValidationError(f"Unknown status: {status}", {"status": "Unknown status"})

        table, current = await self.locate(application_type, application_id)

        values = {"status": status}
        if status in DECISION_STATUSES:
            values["reviewed_by"] = reviewer.name
            values["reviewed_at"] = utc_iso(self.clock())
        if notes is not None and notes.strip():
            values["admin_notes"] = notes.strip()

        updated = await self.db.update(table, application_id, values)
        logger.info(f"{application_type} application {application_id}: {current['status']} -> {status} "
                    f"by {reviewer.name}")

        if status in DECISION_STATUSES:
            notification = await self.notify_decision(table, updated, reviewer)
        else:
            notification = SKIPPED

        return TransitionResult(
            application=updated,
            application_type=self.application_type_of(table, updated),
            previous_status=current["status"],
            notification=notification,
            table=table,
        )

    @staticmethod
    def application_type_of(table: str, row: Dict[str, Any]) -> str:
        return TRANSFORMERS[table](row).application_type

    def decision_for(self, table: str, row: Dict[str, Any], reviewer: Reviewer) -> ApplicationDecision:
        unified = TRANSFORMERS[table](row)
        return ApplicationDecision(
            application_type=unified.application_type,
            applicant_name=unified.applicant_name,
            applicant_discord_id=row.get("discord_id") or None,
            status=row["status"],
            reviewer_name=reviewer.name,
            reviewer_discord_id=reviewer.discord_id,
            admin_notes=row.get("admin_notes"),
        )

    async def notify_decision(self, table: str, row: Dict[str, Any], reviewer: Reviewer) -> NotificationOutcome:
        decision = self.decision_for(table, row, reviewer)
        payload = {"kind": "application", "decision": decision.to_dict()}
        return await deliver(self.ledger, table, row["id"], row["status"], payload,
                             lambda: self.notifier.send_application_decision(decision))

    async def redeliver(self, payload: Dict[str, Any]) -> str:
        """Re-send a decision recorded in the notification ledger."""
        return await self.notifier.send_application_decision(ApplicationDecision(**payload["decision"]))

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_applications(self, category: str = "all", user_id: Optional[str] = None,
                                status: Optional[str] = None) -> List[UnifiedApplication]:
        """Unified applications in a category, newest first."""
        filters = {}
        if user_id is not None:
            filters["user_id"] = str(user_id)
        if status is not None:
            filters["status"] = status

        rows_by_table = {}
        for table in sorted(set(APPLICATION_TABLES.values())):
            rows_by_table[table] = await self.db.select(table, filters or None)

        return filter_applications_by_type(combine_all_applications(rows_by_table), category)

    async def pending_counts(self) -> Dict[str, int]:
        """Pending applications per category, for the queue board."""
        pending = await self.list_applications(status=STATUS_PENDING)
        counts = Counter()
        for app in pending:
            for category, types in CATEGORY_TYPES.items():
                if app.application_type in types:
                    counts[category] += 1
                    break
        return {category: counts.get(category, 0) for category in CATEGORY_TYPES}

    async def status_counts(self) -> Dict[str, int]:
        apps = await self.list_applications()
        counts = Counter(app.status for app in apps)
        return {status: counts.get(status, 0) for status in APPLICATION_STATUSES}

