"""
Tickets Branch - Main Module
Support tickets from Discord: opening, staff status changes and owner DMs.
"""

import discord
from discord import app_commands
from discord.ext import commands
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from constants import TICKET_RESOLVED
from core.errors import ValidationError, WorkflowError
from core.notifications import TICKET_CATEGORY_LABELS, TICKET_PRIORITY_LABELS
from core.realtime import EVENT_UPDATE, ChangeEvent
from core.tickets import TABLE as TICKETS_TABLE
from utils import is_discord_id, load_branch_config

from .helpers import (
    build_owner_dm_embed,
    build_ticket_list_embed,
    get_embed_colors,
    is_staff,
    status_counts,
    status_label,
)
from .modals import ResolutionModal, TicketModal

logger = logging.getLogger(__name__)

# Default configuration for this branch
DEFAULT_CONFIG = {
    "enabled": True,
    "version": "1.0.0",
    "settings": {
        "staff_role_ids": [],
        "dm_status_updates": True,
        "ui": {
            "colors": {
                "open": 0x5865F2,
                "success": 0x57F287,
                "error": 0xED4245,
            }
        },
    },
}

CATEGORY_CHOICES = [app_commands.Choice(name=label, value=key) for key, label in TICKET_CATEGORY_LABELS.items()]
PRIORITY_CHOICES = [app_commands.Choice(name=label, value=key) for key, label in TICKET_PRIORITY_LABELS.items()]
STATUS_CHOICES = [
    app_commands.Choice(name="Open", value="open"),
    app_commands.Choice(name="In Progress", value="in_progress"),
    app_commands.Choice(name="On Hold", value="on_hold"),
    app_commands.Choice(name="Resolved", value="resolved"),
]


class Tickets(commands.Cog):
    """Support ticket commands backed by the ticket service."""

    def __init__(self, bot):
        self.bot = bot

        self.config = self.load_config()
        settings = self.config.get("settings", {})

        self.staff_role_ids = settings.get("staff_role_ids", [])
        self.dm_status_updates: bool = settings.get("dm_status_updates", True)
        self.colors = get_embed_colors(settings)
        self._subscription = None

        logger.info(f"Tickets branch initialized (staff roles: {len(self.staff_role_ids)})")

    def load_config(self) -> Dict[str, Any]:
        """Load config from config.yml in this branch's folder."""
        config_path = Path(__file__).parent / "config.yml"
        return load_branch_config(config_path, DEFAULT_CONFIG, "Tickets")

    async def cog_load(self):
        self._subscription = self.bot.feed.subscribe(TICKETS_TABLE, self.on_ticket_updated, event=EVENT_UPDATE)

    async def cog_unload(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        logger.info("Tickets branch unloaded")

    async def on_ticket_updated(self, change: ChangeEvent):
        """DM the owner whenever their ticket changes status."""
        if not self.dm_status_updates or not change.status_changed:
            return

        ticket = change.new
        owner_id = ticket.get("discord_id") or ticket.get("user_id")
        if not is_discord_id(owner_id):
            return

        try:
            user = self.bot.get_user(int(owner_id)) or await self.bot.fetch_user(int(owner_id))
            await user.send(embed=build_owner_dm_embed(ticket))
            logger.info(f"Sent ticket update DM for {ticket['ticket_number']} to {owner_id}")
        except discord.Forbidden:
            logger.warning(f"Could not DM user {owner_id} - DMs closed")
        except discord.HTTPException as e:
            logger.error(f"Failed to DM user {owner_id}: {e}")

    def _deny_message(self) -> discord.Embed:
        return discord.Embed(description="❌ You don't have permission to manage tickets.", color=self.colors["error"])

    # ========================================================================
    # Opening tickets
    # ========================================================================

    @app_commands.command(name="ticket", description="Open a support ticket")
    @app_commands.describe(category="What the ticket is about", priority="How urgent it is")
    @app_commands.choices(category=CATEGORY_CHOICES, priority=PRIORITY_CHOICES)
    async def open_ticket(self, interaction: discord.Interaction, category: str = "other", priority: str = "normal"):
        await interaction.response.send_modal(TicketModal(self.create_ticket, category, priority))

    async def create_ticket(self, interaction: discord.Interaction, payload: Dict[str, Any]):
        try:
            result = await self.bot.tickets.create_ticket(str(interaction.user.id), payload)
        except ValidationError as e:
            problems = "\n".join(f"• **{field}**: {message}" for field, message in e.field_errors.items())
            await interaction.response.send_message(
                embed=discord.Embed(title="❌ Ticket Not Created", description=problems or e.message,
                                    color=self.colors["error"]),
                ephemeral=True
            )
            return

        ticket = result.ticket
        embed = discord.Embed(
            title="🎫 Ticket Created",
            description=(f"Your ticket **{ticket['ticket_number']}** has been submitted.\n\n"
                         "Our support team will get back to you soon. You will receive a DM when its status changes."),
            color=self.colors["success"]
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="mytickets", description="View your support tickets")
    async def my_tickets(self, interaction: discord.Interaction):
        tickets = await self.bot.tickets.list_tickets(user_id=str(interaction.user.id))
        await interaction.response.send_message(
            embed=build_ticket_list_embed("📋 Your Tickets", tickets, self.colors["open"]),
            ephemeral=True
        )

    # ========================================================================
    # Staff
    # ========================================================================

    @app_commands.command(name="tickets", description="List support tickets (Staff only)")
    @app_commands.describe(status="Only show tickets with this status")
    @app_commands.choices(status=STATUS_CHOICES)
    @app_commands.guild_only()
    async def list_tickets(self, interaction: discord.Interaction, status: Optional[str] = None):
        if not is_staff(interaction.user, self.staff_role_ids):
            await interaction.response.send_message(embed=self._deny_message(), ephemeral=True)
            return

        await interaction.response.defer(ephemeral=True)
        tickets = await self.bot.tickets.list_tickets(status=status)
        title = f"🎫 {status_label(status)} Tickets" if status else "🎫 All Tickets"
        embed = build_ticket_list_embed(title, tickets, self.colors["open"])
        if not status:
            counts = status_counts(tickets)
            embed.description += "\n" + " • ".join(f"{status_label(s)}: {n}" for s, n in counts.items())
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="ticketstatus", description="Change a ticket's status (Staff only)")
    @app_commands.describe(ticket_number="Ticket number, e.g. TKT-000001", status="New status",
                           notes="Internal notes (used as the hold reason for on hold)")
    @app_commands.choices(status=STATUS_CHOICES)
    @app_commands.guild_only()
    async def ticket_status(self, interaction: discord.Interaction, ticket_number: str, status: str,
                            notes: Optional[str] = None):
        if not is_staff(interaction.user, self.staff_role_ids):
            await interaction.response.send_message(embed=self._deny_message(), ephemeral=True)
            return

        try:
            ticket = await self.bot.tickets.get_by_number(ticket_number)
        except WorkflowError as e:
            await interaction.response.send_message(f"❌ {e.message}", ephemeral=True)
            return

        if status == TICKET_RESOLVED:
            async def resolve(modal_interaction: discord.Interaction, resolution: str, modal_notes: Optional[str]):
                await self.change_status(modal_interaction, ticket, status, modal_notes or notes, resolution)

            await interaction.response.send_modal(ResolutionModal(resolve))
            return

        await self.change_status(interaction, ticket, status, notes)

    async def change_status(self, interaction: discord.Interaction, ticket: Dict[str, Any], status: str,
                            notes: Optional[str] = None, resolution: Optional[str] = None):
        await interaction.response.defer(ephemeral=True)
        try:
            result = await self.bot.tickets.update_status(
                ticket["id"], status, resolved_by=interaction.user.display_name,
                admin_notes=notes, resolution=resolution
            )
        except WorkflowError as e:
            await interaction.followup.send(f"❌ {e.message}", ephemeral=True)
            return
        except Exception as e:
            logger.error(f"Failed to set {ticket['ticket_number']} to {status}: {e}", exc_info=True)
            await interaction.followup.send("❌ Could not update the ticket. Please try again.", ephemeral=True)
            return

        logger.info(f"{interaction.user} set {ticket['ticket_number']} to {status}")
        message = f"{status_label(status)} • **{ticket['ticket_number']}** updated."
        if result.notification.state == "failed":
            message += f"\n⚠️ Saved, but the Discord announcement failed: {result.notification.error}"
        await interaction.followup.send(message, ephemeral=True)
