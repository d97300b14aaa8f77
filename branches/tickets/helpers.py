"""
Ticket System Helper Functions
Embed builders and permission checks for the support ticket commands.
"""

import discord
import logging
from typing import Any, Dict, Iterable, Mapping

from constants import TICKET_ON_HOLD, TICKET_RESOLVED, TICKET_STATUSES, truncate_for_embed_field
from core.notifications import TICKET_CATEGORY_LABELS, TICKET_PRIORITY_LABELS, ticket_template
from utils import format_date, truncate_text

logger = logging.getLogger(__name__)

STATUS_EMOJI = {
    "open": "📬",
    "in_progress": "🔧",
    "on_hold": "⏸️",
    "resolved": "✅",
}

MAX_LISTED_TICKETS = 15


def get_embed_colors(settings: Mapping[str, Any]) -> Dict[str, int]:
    """Get embed colors from config."""
    colors = settings.get("ui", {}).get("colors", {})
    return {
        "open": colors.get("open", 0x5865F2),
        "success": colors.get("success", 0x57F287),
        "error": colors.get("error", 0xED4245),
    }


def is_staff(member, staff_role_ids: Iterable[int]) -> bool:
    """
    Check if a member has ticket staff permissions.

    Args:
        member: Discord member (interaction.user)
        staff_role_ids: Role IDs that may manage tickets

    Returns:
        True if user is staff, False otherwise
    """
    permissions = getattr(member, "guild_permissions", None)
    if permissions is not None and permissions.administrator:
        return True
    staff_role_ids = set(staff_role_ids)
    return any(role.id in staff_role_ids for role in getattr(member, "roles", []))


def status_label(status: str) -> str:
    return f"{STATUS_EMOJI.get(status, '❓')} {status.replace('_', ' ').title()}"


def ticket_line(ticket: Mapping[str, Any]) -> str:
    category = TICKET_CATEGORY_LABELS.get(ticket.get("category"), ticket.get("category"))
    priority = TICKET_PRIORITY_LABELS.get(ticket.get("priority"), ticket.get("priority"))
    return (f"{status_label(ticket['status'])} • {category} • {priority}\n"
            f"{truncate_text(ticket.get('subject') or '-', 80)} • {format_date(ticket.get('created_at'))}")


def build_ticket_list_embed(title: str, tickets: Iterable[Mapping[str, Any]], color: int) -> discord.Embed:
    tickets = list(tickets)
    embed = discord.Embed(
        title=title,
        description=f"**{len(tickets)}** ticket(s)" if tickets else "No tickets found.",
        color=color
    )
    for ticket in tickets[:MAX_LISTED_TICKETS]:
        embed.add_field(name=f"🎫 {ticket['ticket_number']}", value=ticket_line(ticket), inline=False)
    if len(tickets) > MAX_LISTED_TICKETS:
        embed.set_footer(text=f"Showing {MAX_LISTED_TICKETS} of {len(tickets)}")
    return embed


def build_owner_dm_embed(ticket: Mapping[str, Any]) -> discord.Embed:
    """DM sent to a ticket's owner when its status changes."""
    status = ticket["status"]
    template = ticket_template(status)
    embed = discord.Embed(
        title=f"{template.emoji} {template.title}",
        description=f"Your ticket **{ticket['ticket_number']}** is now **{status.replace('_', ' ')}**.",
        color=template.color
    )
    embed.add_field(name="📋 Subject", value=truncate_for_embed_field(ticket.get("subject") or "-"), inline=False)
    if status == TICKET_RESOLVED and ticket.get("resolution"):
        embed.add_field(name="✅ Resolution", value=truncate_for_embed_field(ticket["resolution"]), inline=False)
    if status == TICKET_ON_HOLD and ticket.get("admin_notes"):
        embed.add_field(name="📌 On Hold Reason", value=truncate_for_embed_field(ticket["admin_notes"]), inline=False)
    return embed


def status_counts(tickets: Iterable[Mapping[str, Any]]) -> Dict[str, int]:
    counts = {status: 0 for status in TICKET_STATUSES}
    for ticket in tickets:
        counts[ticket["status"]] = counts.get(ticket["status"], 0) + 1
    return counts
