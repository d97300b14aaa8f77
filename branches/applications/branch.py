"""
Applications Branch - Main Module
Discord side of the review workflow: review cards, submitter DMs, department
roles, the live queue board, cooldown expiry notices and staff commands.
"""

import asyncio
import io
import discord
from discord import app_commands
from discord.ext import commands, tasks
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from config import GUILD_ID
from constants import (
    DEFAULT_COOLDOWN_CHECK_MINUTES,
    DEFAULT_QUEUE_BOARD_INTERVAL,
    STATUS_APPROVED,
    STATUS_REJECTED,
)
from core.errors import WorkflowError
from core.exporter import export_applications_to_csv, export_filename
from core.forms import APPLICATION_TABLES
from core.realtime import EVENT_INSERT, EVENT_UPDATE, ChangeEvent, LiveQuery
from core.transformer import CATEGORY_TYPES, TRANSFORMERS
from core.workflow import Reviewer
from utils import load_branch_config

from .helpers import (
    QUEUE_BOARD_TITLE,
    applicant_discord_id,
    build_cooldown_expired_embed,
    build_history_embed,
    build_queue_board_embed,
    build_review_embed,
    build_status_dm_embed,
    cooldown_expired,
    department_role_id,
    get_embed_colors,
    is_reviewer,
    status_label,
    type_label,
)
from .modals import WhitelistApplicationModal
from .views import ReviewView

logger = logging.getLogger(__name__)

REVIEW_MESSAGES = "review_messages"

# Default configuration for this branch
DEFAULT_CONFIG = {
    "enabled": True,
    "version": "1.0.0",
    "settings": {
        "review_channel_id": 0,
        "queue_board_channel_id": 0,
        "reviewer_role_ids": [],
        "dm_status_updates": True,
        "queue_board_interval_seconds": DEFAULT_QUEUE_BOARD_INTERVAL,
        "cooldown_check_minutes": DEFAULT_COOLDOWN_CHECK_MINUTES,
        # application type -> role granted on approval (0 = none)
        "department_roles": {
            "police": 0,
            "ems": 0,
            "mechanic": 0,
            "judge": 0,
            "attorney": 0,
            "state": 0,
            "pdm": 0,
            "firefighter": 0,
            "weazel_news": 0,
            "creator": 0,
        },
        "ui": {
            "embed_colors": {
                "info": 0x5865F2,
                "success": 0x57F287,
                "warning": 0xFEE75C,
                "error": 0xED4245,
            }
        },
    },
}

CATEGORY_CHOICES = [app_commands.Choice(name="All", value="all")] + [
    app_commands.Choice(name=category.title(), value=category) for category in CATEGORY_TYPES
]


class Applications(commands.Cog):
    """Application review workflow in Discord."""

    def __init__(self, bot):
        self.bot = bot

        self.config = self.load_config()
        settings = self.config.get("settings", {})

        self.review_channel_id: int = settings.get("review_channel_id", 0)
        self.queue_board_channel_id: int = settings.get("queue_board_channel_id", 0)
        self.reviewer_role_ids = settings.get("reviewer_role_ids", [])
        self.dm_status_updates: bool = settings.get("dm_status_updates", True)
        self.department_roles: Dict[str, int] = settings.get("department_roles", {})
        self.queue_board_interval = settings.get("queue_board_interval_seconds", DEFAULT_QUEUE_BOARD_INTERVAL)
        self.cooldown_check_minutes = settings.get("cooldown_check_minutes", DEFAULT_COOLDOWN_CHECK_MINUTES)
        self.colors = get_embed_colors(settings)

        self._review_view = ReviewView(self)
        self._subscriptions = []
        self.queue_board: Optional[LiveQuery] = None
        self.queue_board_message_id: Optional[int] = None
        self._queue_board_task: Optional[asyncio.Task] = None

        logger.info(f"Applications branch initialized (review channel: {self.review_channel_id})")

    def load_config(self) -> Dict[str, Any]:
        """Load config from config.yml in this branch's folder."""
        config_path = Path(__file__).parent / "config.yml"
        return load_branch_config(config_path, DEFAULT_CONFIG, "Applications")

    async def cog_load(self):
        self.bot.add_view(self._review_view)

        feed = self.bot.feed
        for table in sorted(set(APPLICATION_TABLES.values())):
            self._subscriptions.append(feed.subscribe(table, self.on_application_submitted, event=EVENT_INSERT))
            self._subscriptions.append(feed.subscribe(table, self.on_application_updated, event=EVENT_UPDATE))

        if self.queue_board_channel_id:
            self.queue_board = LiveQuery(
                feed,
                sorted(set(APPLICATION_TABLES.values())),
                self.bot.workflow.pending_counts,
                self.queue_board_interval,
                on_change=self.update_queue_board,
            )
            self._queue_board_task = asyncio.create_task(self._start_queue_board())

        self.check_cooldown_expiry.change_interval(minutes=self.cooldown_check_minutes)
        self.check_cooldown_expiry.start()
        logger.info(f"Applications branch listening on {len(self._subscriptions)} realtime subscriptions")

    async def cog_unload(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        if self._queue_board_task is not None:
            self._queue_board_task.cancel()
            try:
                await self._queue_board_task
            except asyncio.CancelledError:
                pass
            self._queue_board_task = None
        if self.queue_board is not None:
            await self.queue_board.stop()
        if self.check_cooldown_expiry.is_running():
            self.check_cooldown_expiry.cancel()
        logger.info("Applications branch unloaded")

    # ========================================================================
    # Review cards
    # ========================================================================

    async def on_application_submitted(self, change: ChangeEvent):
        """Post a review card for a new application."""
        if not self.review_channel_id:
            return

        app = TRANSFORMERS[change.table](change.new)
        channel = self.bot.get_partial_messageable(self.review_channel_id)
        try:
            message = await channel.send(
                embed=build_review_embed(app, self.colors),
                view=ReviewView(self, status=app.status)
            )
        except discord.HTTPException as e:
            logger.error(f"Failed to post review card for {app.application_type} {app.id}: {e}")
            return

        await self.bot.db.insert(REVIEW_MESSAGES, {
            "message_id": str(message.id),
            "channel_id": str(self.review_channel_id),
            "application_type": app.application_type,
            "application_id": app.id,
        })
        logger.info(f"Posted review card {message.id} for {app.application_type} application {app.id}")

    async def refresh_review_card(self, table: str, row: Dict[str, Any]):
        """Redraw every card of an application with its current status."""
        app = TRANSFORMERS[table](row)
        cards = await self.bot.db.select(REVIEW_MESSAGES, {"application_id": app.id})
        for card in cards:
            message = self.bot.get_partial_messageable(int(card["channel_id"])).get_partial_message(
                int(card["message_id"])
            )
            try:
                await message.edit(embed=build_review_embed(app, self.colors), view=ReviewView(self, status=app.status))
            except discord.HTTPException as e:
                logger.warning(f"Could not refresh review card {card['message_id']}: {e}")

    async def review_target(self, interaction: discord.Interaction):
        """(application_type, application_id) behind the pressed card, None after answering the user."""
        if not is_reviewer(interaction.user, self.reviewer_role_ids):
            await interaction.response.send_message(
                embed=discord.Embed(description="❌ You don't have permission to review applications.",
                                    color=self.colors["error"]),
                ephemeral=True
            )
            return None

        card = await self.bot.db.select_one(REVIEW_MESSAGES, {"message_id": str(interaction.message.id)})
        if card is None:
            await interaction.response.send_message("No application data found for this card.", ephemeral=True)
            return None
        return card["application_type"], card["application_id"]

    async def apply_review(self, interaction: discord.Interaction, application_type: str, application_id: str,
                           status: str, notes: Optional[str] = None):
        """
        Write a reviewer's decision from a card.

        The card's buttons are disabled before the write so a second click
        cannot submit twice; on failure they are re-enabled for the status
        the application still has.
        """
        await interaction.response.edit_message(view=ReviewView(self, disabled=True))

        previous_status = None
        try:
            current = await self.bot.workflow.get(application_type, application_id)
            previous_status = current["status"]
            result = await self.bot.workflow.update_status(
                application_type, application_id, status, Reviewer.from_member(interaction.user), notes
            )
        except WorkflowError as e:
            logger.warning(f"Review of {application_type} {application_id} -> {status} failed: {e.message}")
            await self.restore_review_card(interaction, previous_status, f"❌ {e.message}")
            return
        except Exception as e:
            logger.error(f"Review of {application_type} {application_id} -> {status} failed: {e}", exc_info=True)
            await self.restore_review_card(interaction, previous_status,
                                           "❌ Could not save the review. Please try again.")
            return

        await self.refresh_review_card(result.table, result.application)

        message = f"{status_label(result.status)} • {type_label(result.application_type)} application updated."
        if result.notification.state == "failed":
            message += f"\n⚠️ Saved, but the Discord announcement failed: {result.notification.error}"
        await interaction.followup.send(message, ephemeral=True)

    async def restore_review_card(self, interaction: discord.Interaction, previous_status: Optional[str],
                                  message: str):
        """Re-enable a card's buttons after a failed review and tell the reviewer."""
        try:
            await interaction.edit_original_response(
                view=ReviewView(self, status=previous_status, disabled=previous_status is None)
            )
        except discord.HTTPException as edit_error:
            logger.warning(f"Could not re-enable review card: {edit_error}")
        await interaction.followup.send(message, ephemeral=True)

    # ========================================================================
    # Submitter DMs and department roles
    # ========================================================================

    async def on_application_updated(self, change: ChangeEvent):
        if not change.status_changed:
            return

        app = TRANSFORMERS[change.table](change.new)
        await self.refresh_review_card(change.table, change.new)

        discord_id = applicant_discord_id(change.new)
        if discord_id is None:
            return

        if self.dm_status_updates:
            cooldown = self.bot.gate.cooldown_hours if app.status == STATUS_REJECTED else None
            await self.send_dm(discord_id, build_status_dm_embed(app, self.colors, cooldown))

        if app.status == STATUS_APPROVED:
            await self.grant_department_role(discord_id, app.application_type)

    async def send_dm(self, discord_id: int, embed: discord.Embed) -> bool:
        try:
            user = self.bot.get_user(discord_id) or await self.bot.fetch_user(discord_id)
            await user.send(embed=embed)
            return True
        except discord.Forbidden:
            logger.warning(f"Could not DM user {discord_id} - DMs closed")
        except discord.HTTPException as e:
            logger.error(f"Failed to DM user {discord_id}: {e}")
        return False

    async def grant_department_role(self, discord_id: int, application_type: str):
        role_id = department_role_id(self.department_roles, application_type)
        if role_id is None:
            return

        guild = self.bot.get_guild(GUILD_ID)
        if not guild:
            logger.error(f"Guild {GUILD_ID} not found")
            return
        role = guild.get_role(role_id)
        if role is None:
            logger.warning(f"Department role {role_id} for {application_type} not found")
            return

        try:
            member = guild.get_member(discord_id) or await guild.fetch_member(discord_id)
            await member.add_roles(role, reason=f"{type_label(application_type)} application approved")
            logger.info(f"Granted {role.name} to {discord_id}")
        except discord.HTTPException as e:
            logger.warning(f"Could not grant {application_type} role to {discord_id}: {e}")

    # ========================================================================
    # Queue board
    # ========================================================================

    async def _start_queue_board(self):
        await self.bot.wait_until_ready()
        await self.queue_board.start()
        logger.info(f"Queue board live in channel {self.queue_board_channel_id}")

    async def _find_queue_board_message(self, channel) -> Optional[discord.Message]:
        async for message in channel.history(limit=10):
            if message.author == self.bot.user and message.embeds and message.embeds[0].title == QUEUE_BOARD_TITLE:
                return message
        return None

    async def update_queue_board(self, pending: Dict[str, int]):
        channel = self.bot.get_channel(self.queue_board_channel_id)
        if channel is None:
            logger.warning(f"Queue board channel {self.queue_board_channel_id} not found")
            return

        embed = build_queue_board_embed(pending, self.colors)
        if self.queue_board_message_id is None:
            existing = await self._find_queue_board_message(channel)
            if existing:
                self.queue_board_message_id = existing.id

        if self.queue_board_message_id is not None:
            try:
                await channel.get_partial_message(self.queue_board_message_id).edit(embed=embed)
                return
            except discord.NotFound:
                self.queue_board_message_id = None

        message = await channel.send(embed=embed)
        self.queue_board_message_id = message.id
        logger.info("Created new queue board message")

    # ========================================================================
    # Cooldown expiry notices
    # ========================================================================

    @tasks.loop(minutes=DEFAULT_COOLDOWN_CHECK_MINUTES)
    async def check_cooldown_expiry(self):
        """DM users whose rejection cooldown has ended, once per application."""
        try:
            now = discord.utils.utcnow()
            cooldown_hours = self.bot.gate.cooldown_hours
            notified = 0

            for table in sorted(set(APPLICATION_TABLES.values())):
                rows = await self.bot.db.select(table, {"status": STATUS_REJECTED, "cooldown_notified": 0})
                for row in rows:
                    if not cooldown_expired(row, cooldown_hours, now):
                        continue
                    discord_id = applicant_discord_id(row)
                    if discord_id is not None:
                        application_type = TRANSFORMERS[table](row).application_type
                        await self.send_dm(discord_id, build_cooldown_expired_embed(application_type, self.colors))
                    # Marked even when the DM fails
                    await self.bot.db.update(table, row["id"], {"cooldown_notified": 1})
                    notified += 1

            if notified:
                logger.info(f"Cooldown check: notified {notified} user(s)")
        except Exception as e:
            logger.error(f"Error in check_cooldown_expiry: {e}", exc_info=True)

    @check_cooldown_expiry.before_loop
    async def before_check_cooldown_expiry(self):
        await self.bot.wait_until_ready()

    # ========================================================================
    # Commands
    # ========================================================================

    async def _deny(self, interaction: discord.Interaction) -> bool:
        """Answer non-reviewers and return True when the user may not continue."""
        if is_reviewer(interaction.user, self.reviewer_role_ids):
            return False
        await interaction.response.send_message(
            embed=discord.Embed(description="❌ You don't have permission to use this command.",
                                color=self.colors["error"]),
            ephemeral=True
        )
        return True

    @app_commands.command(name="whitelist", description="Apply for the server whitelist")
    @app_commands.guild_only()
    async def whitelist(self, interaction: discord.Interaction):
        eligibility = await self.bot.gate.evaluate("whitelist", str(interaction.user.id))
        if not eligibility.can_submit:
            await interaction.response.send_message(
                embed=discord.Embed(description=eligibility.message, color=self.colors["warning"]),
                ephemeral=True
            )
            return
        await interaction.response.send_modal(WhitelistApplicationModal(self))

    @app_commands.command(name="appstatus", description="Check the status of your applications")
    async def application_status(self, interaction: discord.Interaction):
        apps = await self.bot.workflow.list_applications(user_id=str(interaction.user.id))
        embed = build_history_embed("📋 Your Applications", apps, self.colors)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="apphistory", description="View a user's application history")
    @app_commands.describe(user="The user whose application history you want to view")
    @app_commands.guild_only()
    async def application_history(self, interaction: discord.Interaction, user: discord.Member):
        if await self._deny(interaction):
            return

        apps = await self.bot.workflow.list_applications(user_id=str(user.id))
        embed = build_history_embed(f"📜 Application History: {user.display_name}", apps, self.colors)
        embed.set_thumbnail(url=user.display_avatar.url)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="appstats", description="Show application statistics")
    @app_commands.guild_only()
    async def application_stats(self, interaction: discord.Interaction):
        if await self._deny(interaction):
            return

        await interaction.response.defer(ephemeral=True)
        status_counts = await self.bot.workflow.status_counts()
        pending = await self.bot.workflow.pending_counts()

        embed = discord.Embed(title="📊 Application Statistics", color=self.colors["info"])
        embed.add_field(name="Total Applications", value=f"**{sum(status_counts.values())}**", inline=True)
        embed.add_field(name="Pending", value=f"**{sum(pending.values())}**", inline=True)
        embed.add_field(
            name="Status Breakdown",
            value="\n".join(f"{status_label(status)}: {count}" for status, count in status_counts.items()),
            inline=False
        )
        embed.add_field(
            name="Pending by Category",
            value="\n".join(f"**{category.title()}:** {count}" for category, count in pending.items()),
            inline=False
        )
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="appexport", description="Export applications as CSV")
    @app_commands.describe(category="Which applications to export")
    @app_commands.choices(category=CATEGORY_CHOICES)
    @app_commands.guild_only()
    async def application_export(self, interaction: discord.Interaction, category: str = "all"):
        if await self._deny(interaction):
            return

        await interaction.response.defer(ephemeral=True)
        apps = await self.bot.workflow.list_applications(category)
        try:
            content = export_applications_to_csv(apps)
        except ValueError:
            await interaction.followup.send("No applications to export.", ephemeral=True)
            return

        filename = export_filename(f"{category}-applications")
        logger.info(f"{interaction.user} exported {len(apps)} {category} applications")
        await interaction.followup.send(
            f"📤 Exported **{len(apps)}** application(s).",
            file=discord.File(io.BytesIO(content.encode("utf-8")), filename=filename),
            ephemeral=True
        )
