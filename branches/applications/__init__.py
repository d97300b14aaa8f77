"""
Applications Branch
Discord side of the application review workflow.

Structure:
- branch.py: Applications cog, realtime handlers and commands
- modals.py: ReviewNotesModal, WhitelistApplicationModal
- views.py: ReviewView (persistent review card buttons)
- helpers.py: Embed builders and small checks
"""

from .branch import Applications

__all__ = ['Applications', 'setup']

async def setup(bot):
    """Load the Applications branch."""
    await bot.add_cog(Applications(bot))
