"""
Applications Modals
Reviewer notes and the in-Discord whitelist form.
"""

import discord
from discord.ui import Modal, TextInput
import logging

from constants import MODAL_TEXT_INPUT_VALUE_MAX, STATUS_APPROVED
from core.errors import SubmissionBlockedError, ValidationError, WorkflowError
from utils import sanitize_text

logger = logging.getLogger(__name__)


class ReviewNotesModal(Modal):
    """Optional notes attached to an approval or rejection."""

    def __init__(self, cog, application_type: str, application_id: str, status: str):
        approving = status == STATUS_APPROVED
        super().__init__(title="Approve Application" if approving else "Reject Application")
        self.cog = cog
        self.application_type = application_type
        self.application_id = application_id
        self.status = status

        self.notes = TextInput(
            label="Notes for the applicant" if approving else "Reason / feedback",
            style=discord.TextStyle.paragraph,
            required=False,
            max_length=1000,
            placeholder="Optional, shown to the applicant"
        )
        self.add_item(self.notes)

    async def on_submit(self, interaction: discord.Interaction):
        notes = sanitize_text(self.notes.value, max_length=1000) or None
        await self.cog.apply_review(interaction, self.application_type, self.application_id, self.status, notes)


class WhitelistApplicationModal(Modal, title="📜 Whitelist Application"):
    """Whitelist form submitted straight from Discord."""

    steam_id = TextInput(
        label="Steam ID / Hex (optional)",
        required=False,
        max_length=100,
        placeholder="steam:110000100000000"
    )
    age = TextInput(
        label="Age",
        max_length=3,
        placeholder="18"
    )
    experience = TextInput(
        label="Roleplay experience",
        style=discord.TextStyle.paragraph,
        max_length=MODAL_TEXT_INPUT_VALUE_MAX,
        placeholder="Servers you played on and what you did there"
    )
    backstory = TextInput(
        label="Character backstory",
        style=discord.TextStyle.paragraph,
        max_length=MODAL_TEXT_INPUT_VALUE_MAX,
        placeholder="Who is your character?"
    )

    def __init__(self, cog):
        super().__init__()
        self.cog = cog

    def payload(self, user) -> dict:
        return {
            "application_type": "whitelist",
            "discord": str(user),
            "discord_id": str(user.id),
            "steam_id": sanitize_text(self.steam_id.value, 100) or None,
            "age": self.age.value.strip(),
            "experience": sanitize_text(self.experience.value, MODAL_TEXT_INPUT_VALUE_MAX),
            "backstory": sanitize_text(self.backstory.value, MODAL_TEXT_INPUT_VALUE_MAX),
        }

    async def on_submit(self, interaction: discord.Interaction):
        colors = self.cog.colors
        try:
            await self.cog.bot.workflow.submit(str(interaction.user.id), self.payload(interaction.user))
        except ValidationError as e:
            problems = "\n".join(f"• **{field}**: {message}" for field, message in e.field_errors.items())
            await interaction.response.send_message(
                embed=discord.Embed(
                    title="❌ Please Review Your Answers",
                    description=problems or e.message,
                    color=colors["error"]
                ),
                ephemeral=True
            )
            return
        except SubmissionBlockedError as e:
            await interaction.response.send_message(
                embed=discord.Embed(description=e.message, color=colors["warning"]),
                ephemeral=True
            )
            return
        except WorkflowError as e:
            logger.error(f"Whitelist submission from {interaction.user.id} failed: {e.message}")
            await interaction.response.send_message("Failed to submit your application. Please try again later.",
                                                    ephemeral=True)
            return

        logger.info(f"Whitelist application submitted by {interaction.user} ({interaction.user.id})")
        await interaction.response.send_message(
            embed=discord.Embed(
                title="✅ Application Submitted",
                description=("Your whitelist application was received and is now in the review queue.\n\n"
                             "You will get a DM as soon as a staff member reviews it."),
                color=colors["success"]
            ),
            ephemeral=True
        )
