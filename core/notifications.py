"""
Discord notification dispatch.

ApplicationNotifier posts review decisions to the per-department channel and
TicketNotifier posts support ticket updates. Both go through a discord.py
client (only fetch_user and get_partial_messageable are used), read their
channel ids from the environment at dispatch time and raise WorkflowError
subclasses instead of discord exceptions.

NotificationLedger records every dispatch per (table, row id, status) so a
retried transition is not posted twice and failed posts can be replayed.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import discord

import config
from constants import (
    STATUS_APPROVED,
    STATUS_REJECTED,
    TICKET_IN_PROGRESS,
    TICKET_ON_HOLD,
    TICKET_OPEN,
    TICKET_RESOLVED,
    TICKET_TEXT_PREVIEW_MAX,
    truncate_for_embed_field,
)
from core.errors import ConfigurationError, RemoteServiceError, WorkflowError, unknown_application_type

logger = logging.getLogger(__name__)

REJECTED_COLOR = 0xED4245


@dataclass(frozen=True)
class DepartmentConfig:
    key: str
    channel_env: str
    title: str
    department_name: str
    approved_color: int
    emoji: str
    image_key: str
    rejected_color: int = REJECTED_COLOR

    def color(self, status: str) -> int:
        return self.approved_color if status == STATUS_APPROVED else self.rejected_color


DEPARTMENTS: Dict[str, DepartmentConfig] = {
    dept.key: dept for dept in (
        DepartmentConfig("police", "DISCORD_PD_CHANNEL_ID", "Police Department Application",
                         "Police Department", 0x3B82F6, "🚔", "pd"),
        DepartmentConfig("ems", "DISCORD_EMS_CHANNEL_ID", "EMS Application",
                         "EMS", 0xEF4444, "🚑", "ems"),
        DepartmentConfig("mechanic", "DISCORD_MECHANIC_CHANNEL_ID", "Mechanic Application",
                         "Mechanic Shop", 0xF97316, "🔧", "mechanic"),
        DepartmentConfig("judge", "DISCORD_DOJ_JUDGE_CHANNEL_ID", "DOJ Judge Application",
                         "Department of Justice", 0x8B5CF6, "⚖️", "doj-judge"),
        DepartmentConfig("attorney", "DISCORD_DOJ_ATTORNEY_CHANNEL_ID", "DOJ Attorney Application",
                         "Department of Justice", 0x8B5CF6, "⚖️", "doj-attorney"),
        DepartmentConfig("state", "DISCORD_STATE_CHANNEL_ID", "State Department Application",
                         "State Department", 0x10B981, "🏛️", "state"),
        DepartmentConfig("gang", "DISCORD_GANG_CHANNEL_ID", "Gang RP Application",
                         "Gang RP", 0x991B1B, "🔫", "gang"),
        DepartmentConfig("pdm", "DISCORD_PDM_CHANNEL_ID", "PDM Dealership Application",
                         "Premium Deluxe Motorsport", 0xEAB308, "🚗", "pdm"),
        DepartmentConfig("firefighter", "DISCORD_FIREFIGHTER_CHANNEL_ID", "Firefighter Application",
                         "Fire Department", 0xDC2626, "🚒", "firefighter"),
        DepartmentConfig("weazel_news", "DISCORD_WEAZEL_CHANNEL_ID", "Weazel News Application",
                         "Weazel News", 0x06B6D4, "📰", "weazel"),
        DepartmentConfig("creator", "DISCORD_CREATOR_CHANNEL_ID", "Creator Program Application",
                         "Creator Program", 0xA855F7, "🎥", "creator"),
        DepartmentConfig("staff", "DISCORD_STAFF_CHANNEL_ID", "Staff Application",
                         "Staff Team", 0x22C55E, "🛡️", "staff"),
        DepartmentConfig("whitelist", "DISCORD_WHITELIST_CHANNEL_ID", "Whitelist Application",
                         "Whitelist", 0x57F287, "📜", "whitelist"),
        DepartmentConfig("ban_appeal", "DISCORD_BAN_APPEAL_CHANNEL_ID", "Ban Appeal",
                         "Appeals Team", 0x5865F2, "🔓", "ban-appeal"),
    )
}

# Display keys used by existing callers, lowercased
DEPARTMENT_ALIASES = {
    "police department": "police",
    "pd": "police",
    "doj - judge": "judge",
    "doj - attorney": "attorney",
    "state department": "state",
    "gang rp": "gang",
    "weazel news": "weazel_news",
    "weazel": "weazel_news",
    "ban appeal": "ban_appeal",
}


def normalize_application_type(application_type: Optional[str]) -> Optional[str]:
    """Map an internal or display application type onto a DEPARTMENTS key, None if unknown."""
    if not application_type:
        return None
    key = application_type.strip().lower()
    key = DEPARTMENT_ALIASES.get(key, key)
    return key if key in DEPARTMENTS else None


def resolve_department(application_type: str) -> DepartmentConfig:
    key = normalize_application_type(application_type)
    if key is None:
        raise unknown_application_type(application_type)
    return DEPARTMENTS[key]


def decision_image_url(department: DepartmentConfig, status: str, base_url: Optional[str] = None) -> str:
    base_url = (base_url or config.IMAGE_BASE_URL).rstrip("/")
    suffix = "approved" if status == STATUS_APPROVED else "rejected"
    return f"{base_url}/{department.image_key}-{suffix}.jpg"


@dataclass(frozen=True)
class ApplicationDecision:
    """Everything the decision message needs."""
    application_type: str
    applicant_name: str
    status: str
    reviewer_name: str
    applicant_discord_id: Optional[str] = None
    reviewer_discord_id: Optional[str] = None
    admin_notes: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class NotificationOutcome:
    """Result of a best-effort dispatch attached to a committed transition."""
    state: str  # sent, duplicate, skipped or failed
    message_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.state in ("sent", "duplicate")

    def to_dict(self) -> dict:
        return asdict(self)


SKIPPED = NotificationOutcome("skipped")


def _mention(discord_id: Optional[str], fallback: str) -> str:
    return f"<@{discord_id}>" if discord_id else fallback


class DiscordNotifier:
    """Shared plumbing: env channel lookup, reviewer lookup and posting."""

    def __init__(self, client, environ: Optional[Mapping[str, str]] = None,
                 clock: Callable[[], datetime] = discord.utils.utcnow):
        self.client = client
        self._environ = environ
        self.clock = clock

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    def env_channel_id(self, *keys: str) -> Optional[int]:
        """First configured channel id among the env keys, None when none is set."""
        for key in keys:
            value = (self.environ.get(key) or "").strip()
            if not value:
                continue
            try:
                return int(value)
            except ValueError:
                raise ConfigurationError(f"{key} must be a Discord channel id, got {value!r}")
        return None

    async def lookup_user(self, discord_id: Optional[str]):
        """Best-effort user fetch; None on any Discord failure."""
        if not discord_id:
            return None
        try:
            return await self.client.fetch_user(int(discord_id))
        except (discord.HTTPException, ValueError) as e:
            logger.warning(f"Could not fetch Discord user {discord_id}: {e}")
            return None

    async def post(self, channel_id: int, *, content: Optional[str], embed: discord.Embed,
                   allowed_mentions: Optional[discord.AllowedMentions] = None) -> str:
        channel = self.client.get_partial_messageable(channel_id)
        try:
            message = await channel.send(content=content, embed=embed, allowed_mentions=allowed_mentions)
        except discord.HTTPException as e:
            logger.error(f"Discord API error posting to {channel_id} ({e.status}): {e.text}")
            raise RemoteServiceError("Failed to send Discord notification", status=e.status, body=e.text) from e
        return str(message.id)


# ============================================================================
# Application decisions
# ============================================================================

def build_application_embed(department: DepartmentConfig, decision: ApplicationDecision, now: datetime,
                            reviewer_display: Optional[str] = None, reviewer_avatar: Optional[str] = None,
                            image_url: Optional[str] = None) -> discord.Embed:
    approved = decision.status == STATUS_APPROVED
    reviewer_display = reviewer_display or decision.reviewer_name
    notes = (decision.admin_notes or "").strip()

    if approved:
        title = f"🎉 {department.title} Approved!"
        description = (f"Congratulations! Your {department.department_name} application has been **approved**!"
                       "\n\n✨ Welcome to the team! We're excited to have you.")
    else:
        title = f"📋 {department.title} Status Update"
        description = (f"Your {department.department_name} application has been **reviewed** "
                       "and unfortunately was not approved at this time.")

    embed = discord.Embed(title=title, description=description, color=department.color(decision.status),
                          timestamp=now)
    embed.add_field(name="👤 Applicant",
                    value=_mention(decision.applicant_discord_id, f"@{decision.applicant_name}"), inline=True)
    embed.add_field(name="📊 Status",
                    value="```diff\n+ APPROVED\n```" if approved else "```diff\n- REJECTED\n```", inline=True)
    embed.add_field(name="\u200b", value="\u200b", inline=True)
    embed.add_field(name="🛡️ Reviewed By",
                    value=_mention(decision.reviewer_discord_id, reviewer_display), inline=True)
    embed.add_field(name="⏰ Review Time", value=f"`{now.strftime('%m/%d/%Y %H:%M:%S')}`", inline=True)
    embed.add_field(name="\u200b", value="\u200b", inline=True)

    if notes:
        embed.add_field(name="📝 Notes from Staff" if approved else "📝 Reason / Feedback",
                        value=truncate_for_embed_field(f">>> {notes}"), inline=False)

    if approved:
        embed.add_field(
            name="📌 Next Steps",
            value=(f"1. Welcome to the **{department.department_name}**!\n"
                   "2. Check your Discord for role updates\n"
                   "3. Report for duty and enjoy your new role!"),
            inline=False,
        )
    else:
        embed.add_field(
            name="💡 What's Next?",
            value=("Please review the feedback above. You may reapply after addressing the concerns mentioned."
                   if notes else
                   "You may reapply after reviewing your application. Take your time to improve and try again!"),
            inline=False,
        )

    embed.set_image(url=image_url or decision_image_url(department, decision.status))
    embed.set_footer(text=f"{config.BRAND_NAME} • {department.department_name}", icon_url=config.BRAND_LOGO_URL)
    if reviewer_avatar:
        embed.set_author(name=f"Reviewed by {reviewer_display}", icon_url=reviewer_avatar)
    return embed


class ApplicationNotifier(DiscordNotifier):

    def channel_for(self, department: DepartmentConfig) -> int:
        channel_id = self.env_channel_id(department.channel_env)
        if channel_id is None:
            raise ConfigurationError(f"Discord channel not configured for {department.key} ({department.channel_env})")
        return channel_id

    async def send_application_decision(self, decision: ApplicationDecision) -> str:
        """
        Post an approval or rejection to the department's channel.

        Args:
            decision: The decision to announce

        Returns:
            The created Discord message id

        Raises:
            ConfigurationError: unknown type, missing channel or a non-decision status
            RemoteServiceError: Discord rejected the post
        """
        department = resolve_department(decision.application_type)
        if decision.status not in (STATUS_APPROVED, STATUS_REJECTED):
            raise ConfigurationError(f"Cannot announce status {decision.status!r}", 400)
        channel_id = self.channel_for(department)

        reviewer_display = decision.reviewer_name
        reviewer_avatar = None
        reviewer = await self.lookup_user(decision.reviewer_discord_id)
        if reviewer is not None:
            reviewer_display = getattr(reviewer, "display_name", None) or reviewer_display
            if getattr(reviewer, "avatar", None):
                reviewer_avatar = reviewer.avatar.url

        embed = build_application_embed(department, decision, self.clock(), reviewer_display, reviewer_avatar)
        content = _mention(decision.applicant_discord_id, f"@{decision.applicant_name}")
        mentions = discord.AllowedMentions(
            users=[discord.Object(int(decision.applicant_discord_id))] if decision.applicant_discord_id else False,
            roles=False,
            everyone=False,
        )

        logger.info(f"Sending {department.key} {decision.status} notification for {decision.applicant_name}")
        message_id = await self.post(channel_id, content=content, embed=embed, allowed_mentions=mentions)
        logger.info(f"Application notification sent: {message_id}")
        return message_id


# ============================================================================
# Support tickets
# ============================================================================

TICKET_CATEGORY_LABELS = {
    "whitelist": "Whitelist Issue",
    "refund": "Refund Request",
    "account": "Account Issue",
    "technical": "Technical Support",
    "staff_complaint": "Staff Complaint",
    "ban_inquiry": "Ban Inquiry",
    "other": "Other",
}

TICKET_PRIORITY_LABELS = {
    "critical": "🔴 Critical",
    "high": "🟠 High",
    "normal": "🟡 Normal",
    "low": "🟢 Low",
}


@dataclass(frozen=True)
class TicketTemplate:
    color: int
    emoji: str
    title: str
    message: str


TICKET_TEMPLATES = {
    TICKET_IN_PROGRESS: TicketTemplate(0xF39C12, "🔧", "Ticket In Progress",
                                       "A staff member is now working on this ticket."),
    TICKET_ON_HOLD: TicketTemplate(0xE67E22, "⏸️", "Ticket On Hold",
                                   "This ticket has been placed on hold. The user will be notified "
                                   "with additional information if needed."),
    TICKET_RESOLVED: TicketTemplate(0x2ECC71, "✅", "Ticket Resolved",
                                    "This ticket has been successfully resolved and closed."),
}
NEW_TICKET_TEMPLATE = TicketTemplate(0x3498DB, "📋", "New Support Ticket Created",
                                     "A new support ticket has been submitted and requires attention.")
REOPENED_TICKET_TEMPLATE = TicketTemplate(0x3498DB, "📋", "Ticket Reopened",
                                          "This ticket has been reopened for further review.")


def ticket_template(status: str, is_new: bool = False) -> TicketTemplate:
    if status == TICKET_OPEN:
        return NEW_TICKET_TEMPLATE if is_new else REOPENED_TICKET_TEMPLATE
    try:
        return TICKET_TEMPLATES[status]
    except KeyError:
        raise ConfigurationError(f"Unknown ticket status: {status}", 400)


def _preview(text: str) -> str:
    if len(text) <= TICKET_TEXT_PREVIEW_MAX:
        return text
    return text[:TICKET_TEXT_PREVIEW_MAX] + "..."


def build_ticket_embed(ticket: Mapping[str, Any], status: str, now: datetime, admin_notes: Optional[str] = None,
                       resolution: Optional[str] = None, is_new: bool = False) -> discord.Embed:
    template = ticket_template(status, is_new)
    user = _mention(ticket.get("discord_id"), ticket.get("discord_username") or "Unknown User")

    embed = discord.Embed(title=f"{template.emoji} {template.title}", description=template.message,
                          color=template.color, timestamp=now)
    embed.add_field(name="🎫 Ticket Number", value=f"`{ticket['ticket_number']}`", inline=True)
    embed.add_field(name="📁 Category",
                    value=TICKET_CATEGORY_LABELS.get(ticket.get("category"), ticket.get("category")), inline=True)
    embed.add_field(name="⚡ Priority",
                    value=TICKET_PRIORITY_LABELS.get(ticket.get("priority"), ticket.get("priority")), inline=True)
    embed.add_field(name="👤 User", value=user, inline=True)
    embed.add_field(name="📋 Subject", value=truncate_for_embed_field(ticket.get("subject") or "-"), inline=False)

    if is_new and ticket.get("description"):
        embed.add_field(name="📝 Description", value=_preview(ticket["description"]), inline=False)
    if status == TICKET_RESOLVED and resolution:
        embed.add_field(name="✅ Resolution", value=_preview(resolution), inline=False)
    if status == TICKET_ON_HOLD and admin_notes:
        embed.add_field(name="📌 On Hold Reason", value=_preview(admin_notes), inline=False)

    embed.set_thumbnail(url=config.BRAND_LOGO_URL)
    embed.set_image(url=config.TICKET_IMAGE_URL)
    embed.set_footer(text=f"{config.BRAND_NAME} • Ticket Support System", icon_url=config.BRAND_LOGO_URL)
    return embed


def ticket_message_content(ticket: Mapping[str, Any], status: str, is_new: bool,
                           role_id: Optional[int]) -> Optional[str]:
    user = _mention(ticket.get("discord_id"), ticket.get("discord_username") or "Unknown User")
    number = ticket["ticket_number"]
    if is_new:
        if not role_id:
            return None
        return (f"<@&{role_id}> 📋 **New Support Ticket Submitted**\n\n"
                f"{user} has submitted a new support ticket requiring attention.")
    if status == TICKET_RESOLVED:
        return f"{user} Your ticket **{number}** has been resolved! 🎉"
    if status == TICKET_ON_HOLD:
        return f"{user} Your ticket **{number}** has been placed on hold. Our team will update you soon."
    if status == TICKET_IN_PROGRESS:
        return f"{user} Your ticket **{number}** is now being handled by our staff."
    return f"{user} Your ticket **{number}** has been reopened."


class TicketNotifier(DiscordNotifier):

    def staff_channel(self) -> int:
        channel_id = self.env_channel_id("DISCORD_TICKET_CHANNEL_ID", "DISCORD_SUPPORT_CHANNEL_ID")
        if channel_id is None:
            raise ConfigurationError("Discord ticket channel not configured (DISCORD_TICKET_CHANNEL_ID)")
        return channel_id

    def response_channel(self) -> int:
        channel_id = self.env_channel_id("DISCORD_TICKET_RESPONSE_CHANNEL_ID")
        return channel_id if channel_id is not None else self.staff_channel()

    def support_role(self) -> Optional[int]:
        return self.env_channel_id("DISCORD_TICKET_ROLE_ID", "DISCORD_SUPPORT_ROLE_ID")

    async def send_ticket_update(self, ticket: Mapping[str, Any], status: str, admin_notes: Optional[str] = None,
                                 resolution: Optional[str] = None, is_new: bool = False) -> str:
        """
        Post a ticket update.

        New tickets go to the staff channel with an optional support role ping;
        every other update goes to the response channel and mentions the owner.

        Returns:
            The created Discord message id
        """
        is_new = bool(is_new) and status == TICKET_OPEN
        role_id = self.support_role() if is_new else None
        channel_id = self.staff_channel() if is_new else self.response_channel()

        embed = build_ticket_embed(ticket, status, self.clock(), admin_notes, resolution, is_new)
        content = ticket_message_content(ticket, status, is_new, role_id)
        owner = ticket.get("discord_id")
        mentions = discord.AllowedMentions(
            users=[discord.Object(int(owner))] if owner else False,
            roles=[discord.Object(role_id)] if role_id else False,
            everyone=False,
        )

        logger.info(f"Sending ticket notification for {ticket['ticket_number']} ({status}, new={is_new})")
        message_id = await self.post(channel_id, content=content, embed=embed, allowed_mentions=mentions)
        logger.info(f"Ticket notification sent: {message_id}")
        return message_id


# ============================================================================
# Delivery ledger
# ============================================================================

LEDGER_SENT = "sent"
LEDGER_FAILED = "failed"


class NotificationLedger:
    """One notification_log row per (table, row id, status)."""

    table = "notification_log"

    def __init__(self, db):
        self.db = db

    async def entry(self, subject_table: str, subject_id: str, status: str) -> Optional[dict]:
        return await self.db.select_one(self.table, {
            "subject_table": subject_table, "subject_id": subject_id, "status": status,
        })

    async def already_sent(self, subject_table: str, subject_id: str, status: str) -> Optional[dict]:
        entry = await self.entry(subject_table, subject_id, status)
        if entry and entry["state"] == LEDGER_SENT:
            return entry
        return None

    async def _record(self, subject_table: str, subject_id: str, status: str, values: dict) -> dict:
        existing = await self.entry(subject_table, subject_id, status)
        if existing:
            values["attempts"] = existing["attempts"] + 1
            return await self.db.update(self.table, existing["id"], values)
        return await self.db.insert(self.table, {
            "subject_table": subject_table,
            "subject_id": subject_id,
            "status": status,
            "attempts": 1,
            **values,
        })

    async def record_sent(self, subject_table: str, subject_id: str, status: str, message_id: str,
                          payload: Optional[dict] = None) -> dict:
        values = {"state": LEDGER_SENT, "message_id": message_id, "error": None}
        if payload is not None:
            values["payload"] = json.dumps(payload)
        return await self._record(subject_table, subject_id, status, values)

    async def record_failure(self, subject_table: str, subject_id: str, status: str, error: str,
                             payload: Optional[dict] = None) -> dict:
        values = {"state": LEDGER_FAILED, "error": error}
        if payload is not None:
            values["payload"] = json.dumps(payload)
        return await self._record(subject_table, subject_id, status, values)

    async def failures(self, limit: Optional[int] = None) -> List[dict]:
        return await self.db.select(self.table, {"state": LEDGER_FAILED}, order_by="updated_at", limit=limit)

    async def retry(self, dispatchers: Mapping[str, Callable[[dict], Awaitable[str]]],
                    limit: Optional[int] = None) -> Dict[str, int]:
        """
        Replay failed notifications.

        Args:
            dispatchers: payload "kind" -> coroutine that re-sends it and returns the message id
            limit: Maximum entries to replay

        Returns:
            {"sent": n, "failed": n}
        """
        counts = {"sent": 0, "failed": 0}
        for entry in await self.failures(limit):
            payload = json.loads(entry["payload"] or "{}")
            dispatcher = dispatchers.get(payload.get("kind"))
            if dispatcher is None:
                logger.warning(f"No dispatcher for notification {entry['id']} ({payload.get('kind')})")
                counts["failed"] += 1
                continue
            outcome = await deliver(self, entry["subject_table"], entry["subject_id"], entry["status"],
                                    payload, lambda: dispatcher(payload))
            counts["sent" if outcome.delivered else "failed"] += 1
        logger.info(f"Notification replay finished: {counts['sent']} sent, {counts['failed']} failed")
        return counts


async def deliver(ledger: Optional[NotificationLedger], subject_table: str, subject_id: str, status: str,
                  payload: dict, send: Callable[[], Awaitable[str]]) -> NotificationOutcome:
    """
    Best-effort dispatch of one notification.

    Never raises: failures are logged, written to the ledger and returned as
    a failed outcome. A transition the ledger already has as sent is not
    posted again. When the ledger itself cannot be read the notification is
    sent anyway.
    """
    subject = f"{subject_table}/{subject_id} ({status})"

    if ledger is not None:
        try:
            sent = await ledger.already_sent(subject_table, subject_id, status)
        except Exception as e:
            logger.error(f"Could not read notification ledger for {subject}: {e}", exc_info=True)
            sent = None
        if sent:
            logger.info(f"Notification for {subject} already sent, skipping")
            return NotificationOutcome("duplicate", message_id=sent["message_id"])

    try:
        message_id = await send()
    except WorkflowError as e:
        error = e.message if not isinstance(e, RemoteServiceError) else f"{e.message}: {e.body}"
        logger.error(f"Notification for {subject} failed: {error}")
    except Exception as e:
        error = str(e) or type(e).__name__
        logger.error(f"Notification for {subject} failed: {error}", exc_info=True)
    else:
        if ledger is not None:
            try:
                await ledger.record_sent(subject_table, subject_id, status, message_id, payload)
            except Exception as e:
                logger.error(f"Could not record sent notification for {subject}: {e}", exc_info=True)
        return NotificationOutcome("sent", message_id=message_id)

    if ledger is not None:
        try:
            await ledger.record_failure(subject_table, subject_id, status, error, payload)
        except Exception as e:
            logger.error(f"Could not record notification failure for {subject}: {e}", exc_info=True)
    return NotificationOutcome("failed", error=error)
