"""
Applications Helper Functions
Embed builders and small checks shared by the review card, DMs and commands.
"""

import discord
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Mapping, Optional

import config
from constants import (
    EMBED_MAX_FIELDS,
    STATUS_APPROVED,
    STATUS_CLOSED,
    STATUS_ON_HOLD,
    STATUS_PENDING,
    STATUS_REJECTED,
    truncate_for_embed_field,
)
from core.exporter import TYPE_LABELS
from core.transformer import CATEGORY_TYPES, UnifiedApplication
from utils import format_date, is_discord_id, parse_timestamp, truncate_text

logger = logging.getLogger(__name__)

STATUS_EMOJI = {
    STATUS_PENDING: "⏳",
    STATUS_APPROVED: "✅",
    STATUS_REJECTED: "❌",
    STATUS_ON_HOLD: "⏸️",
    STATUS_CLOSED: "🔒",
}

# Departments whose approval never grants a Discord role
NO_ROLE_TYPES = ("staff", "gang", "ban_appeal", "whitelist")

QUEUE_BOARD_TITLE = "📥 Application Queue"

# Fields kept free on the review card for status, reviewer and notes
CARD_RESERVED_FIELDS = 4


def get_embed_colors(settings: Mapping[str, Any]) -> Dict[str, int]:
    """Get embed colors from the branch settings."""
    embed_colors = settings.get("ui", {}).get("embed_colors", {})
    return {
        "info": embed_colors.get("info", 0x5865F2),       # Blurple
        "success": embed_colors.get("success", 0x57F287),  # Green
        "warning": embed_colors.get("warning", 0xFEE75C),  # Yellow
        "error": embed_colors.get("error", 0xED4245)       # Red
    }


def status_color(status: str, colors: Mapping[str, int]) -> int:
    if status == STATUS_APPROVED:
        return colors["success"]
    if status == STATUS_REJECTED:
        return colors["error"]
    if status == STATUS_ON_HOLD:
        return colors["warning"]
    return colors["info"]


def status_label(status: Optional[str]) -> str:
    status = status or "unknown"
    return f"{STATUS_EMOJI.get(status, '❓')} {status.replace('_', ' ').title()}"


def type_label(application_type: str) -> str:
    return TYPE_LABELS.get(application_type, application_type.replace("_", " ").title())


def applicant_discord_id(row: Mapping[str, Any]) -> Optional[int]:
    """Discord id to DM for an application row: the form's discord_id, else a snowflake user_id."""
    for key in ("discord_id", "user_id"):
        value = row.get(key)
        if is_discord_id(value):
            return int(value)
    return None


def department_role_id(department_roles: Mapping[str, int], application_type: str) -> Optional[int]:
    """Role granted on approval, None for role-less departments or unset roles."""
    if application_type in NO_ROLE_TYPES:
        return None
    role_id = department_roles.get(application_type) or 0
    return int(role_id) or None


def cooldown_expired(row: Mapping[str, Any], cooldown_hours: float, now: datetime) -> bool:
    """True once a rejected application's cooldown has passed and its owner was not told yet."""
    if row.get("status") != STATUS_REJECTED or row.get("cooldown_notified"):
        return False
    rejected_at = parse_timestamp(row.get("reviewed_at")) or parse_timestamp(row.get("updated_at"))
    if rejected_at is None:
        return False
    return now >= rejected_at + timedelta(hours=cooldown_hours)


def build_review_embed(app: UnifiedApplication, colors: Mapping[str, int]) -> discord.Embed:
    """The review card posted for every submission and refreshed on each status change."""
    embed = discord.Embed(
        title=f"📝 {type_label(app.application_type)} Application",
        description=f"**{app.applicant_name}**" + (f" • {app.organization}" if app.organization else ""),
        color=status_color(app.status, colors)
    )

    for item in app.fields[:EMBED_MAX_FIELDS - CARD_RESERVED_FIELDS]:
        embed.add_field(
            name=truncate_text(item.label, 256),
            value=truncate_for_embed_field(item.display) or "*No response*",
            inline=len(item.display) <= 40
        )

    embed.add_field(name="Status", value=status_label(app.status), inline=True)
    if app.handled_by:
        embed.add_field(name="Handled By", value=app.handled_by, inline=True)
    if app.admin_notes:
        embed.add_field(name="Admin Notes", value=truncate_for_embed_field(app.admin_notes), inline=False)

    embed.set_footer(text=f"ID: {app.id} • Submitted {format_date(app.created_at)} UTC")
    return embed


STATUS_DM_MESSAGES = {
    STATUS_APPROVED: ("🎉 Application Approved",
                      "Congratulations! Your **{label}** application has been **approved**."),
    STATUS_REJECTED: ("📋 Application Update",
                      "Your **{label}** application was reviewed and was not approved at this time."),
    STATUS_ON_HOLD: ("⏸️ Application On Hold",
                     "Your **{label}** application has been placed on hold while our team reviews additional details."),
    STATUS_CLOSED: ("🔒 Application Closed",
                    "Your **{label}** application has been closed."),
    STATUS_PENDING: ("⏳ Application Pending",
                     "Your **{label}** application is back in the review queue."),
}


def build_status_dm_embed(app: UnifiedApplication, colors: Mapping[str, int],
                          cooldown_hours: Optional[float] = None) -> discord.Embed:
    """DM sent to the submitter when their application changes status."""
    title, description = STATUS_DM_MESSAGES.get(
        app.status, ("📋 Application Update", "Your **{label}** application status changed.")
    )
    embed = discord.Embed(
        title=title,
        description=description.format(label=type_label(app.application_type)),
        color=status_color(app.status, colors)
    )
    if app.admin_notes:
        embed.add_field(name="📝 Notes from Staff", value=truncate_for_embed_field(app.admin_notes), inline=False)
    if app.status == STATUS_REJECTED and cooldown_hours:
        embed.add_field(name="🔁 Reapplying",
                        value=f"You can submit a new application in {cooldown_hours:g} hours.", inline=False)
    embed.set_footer(text=config.BRAND_NAME, icon_url=config.BRAND_LOGO_URL)
    return embed


def build_cooldown_expired_embed(application_type: str, colors: Mapping[str, int]) -> discord.Embed:
    return discord.Embed(
        title="🔁 You Can Reapply",
        description=(f"The waiting period after your **{type_label(application_type)}** application "
                     "has ended. You are welcome to apply again!"),
        color=colors["info"]
    )


def build_queue_board_embed(pending: Mapping[str, int], colors: Mapping[str, int],
                            now: Optional[datetime] = None) -> discord.Embed:
    """Pending applications per category."""
    total = sum(pending.values())
    embed = discord.Embed(
        title=QUEUE_BOARD_TITLE,
        description=f"**{total}** application(s) waiting for review",
        color=colors["warning"] if total else colors["success"],
        timestamp=now or discord.utils.utcnow()
    )
    for category in CATEGORY_TYPES:
        embed.add_field(name=category.replace("_", " ").title(), value=str(pending.get(category, 0)), inline=True)
    embed.set_footer(text="Updates live")
    return embed


def build_history_embed(title: str, apps: Iterable[UnifiedApplication], colors: Mapping[str, int],
                        limit: int = 10) -> discord.Embed:
    apps = list(apps)
    embed = discord.Embed(
        title=title,
        description=f"Found **{len(apps)}** application(s)." if apps else "No applications on record.",
        color=colors["info"]
    )
    for app in apps[:limit]:
        value = f"**Status:** {status_label(app.status)}\n**Date:** {format_date(app.created_at, '%Y-%m-%d')}"
        if app.handled_by:
            value += f"\n**Reviewed by:** {app.handled_by}"
        if app.status == STATUS_REJECTED and app.admin_notes:
            value += f"\n**Reason:** {truncate_text(app.admin_notes, 100)}"
        embed.add_field(name=type_label(app.application_type), value=value, inline=True)
    if len(apps) > limit:
        embed.set_footer(text=f"Showing the latest {limit}")
    return embed


def is_reviewer(member, reviewer_role_ids: Iterable[int]) -> bool:
    """Check if member may review applications (reviewer role or administrator)."""
    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and permissions.administrator:
        return True
    reviewer_role_ids = set(reviewer_role_ids)
    return any(role.id in reviewer_role_ids for role in getattr(member, "roles", []))
