"""
Ticket System Modals
Discord modals for opening and resolving tickets.
"""

import discord
import logging

from constants import MODAL_TEXT_INPUT_VALUE_MAX

logger = logging.getLogger(__name__)


class TicketModal(discord.ui.Modal, title="🎫 Open a Support Ticket"):
    """Collects the subject and description of a new ticket."""

    subject = discord.ui.TextInput(
        label="Subject",
        placeholder="Short summary of your issue",
        min_length=3,
        max_length=200
    )
    description = discord.ui.TextInput(
        label="Description",
        style=discord.TextStyle.paragraph,
        placeholder="Describe the issue in as much detail as possible...",
        min_length=10,
        max_length=MODAL_TEXT_INPUT_VALUE_MAX
    )
    attachment_url = discord.ui.TextInput(
        label="Screenshot / evidence link (optional)",
        required=False,
        max_length=500
    )

    def __init__(self, submit_callback, category: str, priority: str):
        """
        Initialize the modal.

        Args:
            submit_callback: Async function called with (interaction, payload) when submitted
            category: Ticket category picked in the command
            priority: Ticket priority picked in the command
        """
        super().__init__()
        self.submit_callback = submit_callback
        self.category = category
        self.priority = priority

    async def on_submit(self, interaction: discord.Interaction):
        payload = {
            "subject": self.subject.value,
            "description": self.description.value,
            "category": self.category,
            "priority": self.priority,
            "attachment_url": self.attachment_url.value.strip() or None,
            "discord_id": str(interaction.user.id),
            "discord_username": str(interaction.user),
        }
        try:
            await self.submit_callback(interaction, payload)
        except Exception as e:
            logger.error(f"Error in TicketModal.on_submit: {e}", exc_info=True)
            if not interaction.response.is_done():
                await interaction.response.send_message("❌ An error occurred while opening your ticket.",
                                                        ephemeral=True)


class ResolutionModal(discord.ui.Modal, title="Resolve Ticket"):
    """Resolution text is required to resolve a ticket."""

    resolution = discord.ui.TextInput(
        label="Resolution",
        style=discord.TextStyle.paragraph,
        placeholder="How was this ticket resolved?",
        required=True,
        max_length=1000
    )
    notes = discord.ui.TextInput(
        label="Internal notes (optional)",
        style=discord.TextStyle.paragraph,
        required=False,
        max_length=1000
    )

    def __init__(self, resolve_callback):
        """
        Initialize the modal.

        Args:
            resolve_callback: Async function called with (interaction, resolution, notes) when submitted
        """
        super().__init__()
        self.resolve_callback = resolve_callback

    async def on_submit(self, interaction: discord.Interaction):
        try:
            await self.resolve_callback(interaction, str(self.resolution.value), str(self.notes.value) or None)
        except Exception as e:
            logger.error(f"Error in ResolutionModal.on_submit: {e}", exc_info=True)
            if not interaction.response.is_done():
                await interaction.response.send_message("❌ An error occurred while resolving the ticket.",
                                                        ephemeral=True)
