"""
Admin Branch
Branch loading/reloading and notification ledger commands.
"""

from .branch import Admin

__all__ = ['Admin', 'setup']

async def setup(bot):
    """Load the Admin branch."""
    await bot.add_cog(Admin(bot))
