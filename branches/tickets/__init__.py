"""
Tickets Branch
Support ticket commands on top of the ticket service.

Structure:
- branch.py: Tickets cog, owner DMs and commands
- modals.py: TicketModal, ResolutionModal
- helpers.py: Embed builders and permission checks
"""

from .branch import Tickets

__all__ = ['Tickets', 'setup']

async def setup(bot):
    """Load the Tickets branch."""
    await bot.add_cog(Tickets(bot))
