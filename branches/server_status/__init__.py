"""
Server Status Branch
Polls the FiveM server and keeps member/player counter channels up to date.
"""

from .branch import ServerStatusChannels

__all__ = ['ServerStatusChannels', 'setup']

async def setup(bot):
    """Load the ServerStatus branch."""
    await bot.add_cog(ServerStatusChannels(bot))
