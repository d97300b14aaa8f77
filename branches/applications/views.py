"""
Applications Views
Persistent review card buttons.
"""

import discord
from discord.ui import View, button
import logging

from constants import STATUS_APPROVED, STATUS_CLOSED, STATUS_ON_HOLD, STATUS_REJECTED
from core.workflow import review_actions

logger = logging.getLogger(__name__)

# custom_id -> status the button moves the application to
REVIEW_BUTTONS = {
    "review_approve": STATUS_APPROVED,
    "review_reject": STATUS_REJECTED,
    "review_hold": STATUS_ON_HOLD,
    "review_close": STATUS_CLOSED,
}


class ReviewView(View):
    """
    Approve / Reject / Hold / Close buttons on a review card.

    The same custom_ids are used on every card; the application behind a
    card is looked up from the message id. Only the actions allowed from
    the application's current status are enabled, and every button is
    disabled while a decision is being written.
    """

    def __init__(self, cog=None, status: str = None, disabled: bool = False):
        super().__init__(timeout=None)
        self.cog = cog

        allowed = review_actions(status) if status else tuple(REVIEW_BUTTONS.values())
        for item in self.children:
            target = REVIEW_BUTTONS.get(getattr(item, "custom_id", None))
            item.disabled = disabled or target not in allowed

    @button(label="Approve", style=discord.ButtonStyle.success, custom_id="review_approve", emoji="✅")
    async def approve(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self._ask_notes(interaction, STATUS_APPROVED)

    @button(label="Reject", style=discord.ButtonStyle.danger, custom_id="review_reject", emoji="❌")
    async def reject(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self._ask_notes(interaction, STATUS_REJECTED)

    @button(label="Hold", style=discord.ButtonStyle.secondary, custom_id="review_hold", emoji="⏸️")
    async def hold(self, interaction: discord.Interaction, button: discord.ui.Button):
        target = await self.cog.review_target(interaction)
        if target:
            await self.cog.apply_review(interaction, *target, STATUS_ON_HOLD)

    @button(label="Close", style=discord.ButtonStyle.secondary, custom_id="review_close", emoji="🔒")
    async def close(self, interaction: discord.Interaction, button: discord.ui.Button):
        target = await self.cog.review_target(interaction)
        if target:
            await self.cog.apply_review(interaction, *target, STATUS_CLOSED)

    async def _ask_notes(self, interaction: discord.Interaction, status: str):
        from .modals import ReviewNotesModal

        target = await self.cog.review_target(interaction)
        if target:
            await interaction.response.send_modal(ReviewNotesModal(self.cog, *target, status))
