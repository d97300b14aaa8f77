"""
Support ticket service.

Tickets carry a sequential human-readable number (TKT-000001). Resolution
text exists only on resolved tickets. Status changes follow the same
commit-then-notify policy as applications.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import aiosqlite
import discord

from constants import (
    TICKET_NUMBER_PREFIX,
    TICKET_NUMBER_RETRIES,
    TICKET_OPEN,
    TICKET_RESOLVED,
    TICKET_STATUSES,
)
from core.errors import NotFoundError, ValidationError, WorkflowError
from core.forms import parse_ticket_form
from core.notifications import NotificationLedger, NotificationOutcome, TicketNotifier, deliver
from utils import utc_iso

logger = logging.getLogger(__name__)

TABLE = "support_tickets"


def format_ticket_number(sequence: int) -> str:
    return f"{TICKET_NUMBER_PREFIX}-{sequence:06d}"


def parse_ticket_number(ticket_number: Optional[str]) -> int:
    """Sequence part of a ticket number, 0 when it is not in the expected format."""
    prefix = f"{TICKET_NUMBER_PREFIX}-"
    if not ticket_number or not ticket_number.startswith(prefix):
        return 0
    try:
        return int(ticket_number[len(prefix):])
    except ValueError:
        return 0


@dataclass
class TicketResult:
    ticket: Dict[str, Any]
    previous_status: Optional[str]
    notification: NotificationOutcome

    def to_dict(self) -> dict:
        return {
            "success": True,
            "ticket": self.ticket,
            "previousStatus": self.previous_status,
            "notification": self.notification.to_dict(),
        }


class TicketService:

    def __init__(self, db, notifier: TicketNotifier, ledger: Optional[NotificationLedger] = None,
                 clock: Callable[[], datetime] = discord.utils.utcnow):
        self.db = db
        self.notifier = notifier
        self.ledger = ledger
        self.clock = clock

    async def next_ticket_number(self) -> str:
        latest = await self.db.last_numbered(TABLE, "ticket_number")
        return format_ticket_number(parse_ticket_number(latest) + 1)

    async def create_ticket(self, user_id: str, payload: Dict[str, Any]) -> TicketResult:
        """
        Validate and open a new ticket, then notify staff.

        The ticket number is retried when another ticket took it first.

        Raises:
            ValidationError: invalid form, nothing is written
        """
        form = parse_ticket_form(payload)
        row = form.model_dump()
        row["user_id"] = str(user_id)
        row["status"] = TICKET_OPEN

        ticket = None
        for attempt in range(TICKET_NUMBER_RETRIES):
            row["ticket_number"] = await self.next_ticket_number()
            try:
                ticket = await self.db.insert(TABLE, row)
                break
            except aiosqlite.IntegrityError:
                logger.warning(f"Ticket number {row['ticket_number']} taken, retrying ({attempt + 1})")
        if ticket is None:
            raise WorkflowError("Could not allocate a ticket number, please try again")

        logger.info(f"Ticket {ticket['ticket_number']} opened by {user_id}")
        notification = await self.notify(ticket, TICKET_OPEN, is_new=True)
        return TicketResult(ticket=ticket, previous_status=None, notification=notification)

    async def get(self, ticket_id: str) -> Dict[str, Any]:
        return await self.db.get(TABLE, ticket_id)

    async def get_by_number(self, ticket_number: str) -> Dict[str, Any]:
        ticket = await self.db.select_one(TABLE, {"ticket_number": ticket_number.strip().upper()})
        if ticket is None:
            raise NotFoundError(f"Ticket {ticket_number} not found")
        return ticket

    async def list_tickets(self, status: Optional[str] = None, user_id: Optional[str] = None,
                           limit: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = {}
        if status:
            filters["status"] = status
        if user_id:
            filters["user_id"] = str(user_id)
        return await self.db.select(TABLE, filters or None, limit=limit)

    async def update_status(self, ticket_id: str, status: str, resolved_by: Optional[str] = None,
                            admin_notes: Optional[str] = None, resolution: Optional[str] = None) -> TicketResult:
        """
        Change a ticket's status.

        resolved requires resolution text and records who resolved it. Any
        other status clears the resolution.

        Raises:
            ValidationError: unknown status or a resolution rule violation
            NotFoundError: the ticket does not exist
        """
        if status not in TICKET_STATUSES:
            raise ValidationError(f"Unknown ticket status: {status}", {"status": "Unknown status"})

        resolution = (resolution or "").strip() or None
        if status == TICKET_RESOLVED and not resolution:
            raise ValidationError("A resolution is required to resolve a ticket",
                                  {"resolution": "Required when resolving"})
        if status != TICKET_RESOLVED and resolution:
            raise ValidationError("Only resolved tickets can have a resolution",
                                  {"resolution": "Only allowed when resolving"})

        current = await self.get(ticket_id)

        values = {"status": status}
        if status == TICKET_RESOLVED:
            values["resolution"] = resolution
            values["resolved_by"] = resolved_by
            values["resolved_at"] = utc_iso(self.clock())
        else:
            values["resolution"] = None
            values["resolved_at"] = None
        if admin_notes is not None and admin_notes.strip():
            values["admin_notes"] = admin_notes.strip()

        ticket = await self.db.update(TABLE, ticket_id, values)
        logger.info(f"Ticket {ticket['ticket_number']}: {current['status']} -> {status}")

        notification = await self.notify(ticket, status, admin_notes=values.get("admin_notes"),
                                         resolution=resolution)
        return TicketResult(ticket=ticket, previous_status=current["status"], notification=notification)

    async def notify(self, ticket: Dict[str, Any], status: str, admin_notes: Optional[str] = None,
                     resolution: Optional[str] = None, is_new: bool = False) -> NotificationOutcome:
        payload = {
            "kind": "ticket",
            "ticket_id": ticket["id"],
            "status": status,
            "admin_notes": admin_notes,
            "resolution": resolution,
            "is_new": is_new,
        }
        # Tickets may revisit a status, so each committed write is its own ledger entry
        ledger_key = "new" if is_new else f"{status}@{ticket['updated_at']}"
        return await deliver(
            self.ledger, TABLE, ticket["id"], ledger_key, payload,
            lambda: self.notifier.send_ticket_update(ticket, status, admin_notes, resolution, is_new),
        )

    async def redeliver(self, payload: Dict[str, Any]) -> str:
        """Re-send a ticket update recorded in the notification ledger."""
        ticket = await self.get(payload["ticket_id"])
        return await self.notifier.send_ticket_update(
            ticket, payload["status"], payload.get("admin_notes"), payload.get("resolution"),
            payload.get("is_new", False),
        )
