import discord
from discord import app_commands
from discord.ext import commands, tasks
import aiohttp
import logging
from pathlib import Path
import random
import asyncio
from typing import Dict, Any, Optional
from config import GUILD_ID
from constants import HTTP_RATE_LIMITED
from utils import load_branch_config

from .helpers import ServerStatus, fetch_server_status

logger = logging.getLogger(__name__)

# Default configuration for this branch
DEFAULT_CONFIG = {
    "enabled": True,
    "version": "1.0.0",
    "settings": {
        "player_count_channel_id": 0,
        "member_count_channel_id": 0,
        "server": {
            "host": "localhost",
            "port": 30120
        },
        "update_interval_minutes": 6,
        "players_list_max": 30,
        "formats": {
            "member_count": "Total Members: {count:,}",
            "player_count": "Online: {online}/{max}",
            "offline": "Server: Offline"
        }
    }
}


class ServerStatusChannels(commands.Cog):
    """Renames counter channels with FiveM and guild statistics and answers /players."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

        # Load config
        self.config = self.load_config()
        settings = self.config.get("settings", {})

        self.player_count_channel_id: int = settings.get("player_count_channel_id", 0)
        self.member_count_channel_id: int = settings.get("member_count_channel_id", 0)

        server_config = settings.get("server", {})
        self.server_host: str = server_config.get("host", "localhost")
        self.server_port: int = server_config.get("port", 30120)

        self.update_interval: float = settings.get("update_interval_minutes", 6)
        self.players_list_max: int = settings.get("players_list_max", 30)

        # Load format strings
        formats = settings.get("formats", {})
        self.member_count_format: str = formats.get("member_count", "Total Members: {count:,}")
        self.player_count_format: str = formats.get("player_count", "Online: {online}/{max}")
        self.offline_format: str = formats.get("offline", "Server: Offline")

        self.session: Optional[aiohttp.ClientSession] = None

        logger.info(f"ServerStatus initialized ({self.server_host}:{self.server_port}, "
                    f"player: {self.player_count_channel_id}, member: {self.member_count_channel_id})")

    def load_config(self) -> Dict[str, Any]:
        """Load config from config.yml in this branch's folder."""
        config_path = Path(__file__).parent / "config.yml"
        return load_branch_config(config_path, DEFAULT_CONFIG, "ServerStatus")

    async def cog_load(self) -> None:
        self.session = aiohttp.ClientSession()
        self.update_status_channels.change_interval(minutes=self.update_interval)
        self.update_status_channels.start()

    async def cog_unload(self) -> None:
        """Cancel background tasks and close the HTTP session when branch is unloaded."""
        logger.info("ServerStatus branch unloading - cancelling background tasks")
        self.update_status_channels.cancel()
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def get_status(self) -> ServerStatus:
        return await fetch_server_status(self.session, self.server_host, self.server_port)

    def player_channel_name(self, status: ServerStatus) -> str:
        if not status.online:
            return self.offline_format
        return self.player_count_format.format(online=status.player_count, max=status.max_players)

    async def rename_channel(self, channel, new_name: str, label: str) -> None:
        if channel.name == new_name:
            return
        try:
            logger.info(f"Updating {label} channel: '{channel.name}' -> '{new_name}'")
            await channel.edit(name=new_name)
        except discord.HTTPException as e:
            if e.status == HTTP_RATE_LIMITED:
                logger.warning(f"Rate limited updating {label} channel, will retry next cycle")
            else:
                logger.error(f"Failed to update {label} channel: {e}")

    @tasks.loop(minutes=6)
    async def update_status_channels(self):
        # Add jitter (±10%) to avoid synchronized spikes
        jitter = random.uniform(-0.1, 0.1) * self.update_interval * 60
        if jitter > 0:
            await asyncio.sleep(jitter)

        guild = self.bot.get_guild(GUILD_ID)
        if not guild:
            logger.error(f"Could not find guild with ID {GUILD_ID}")
            return

        member_channel = guild.get_channel(self.member_count_channel_id)
        if not member_channel:
            logger.warning(f"Member channel {self.member_count_channel_id} not found")
        else:
            await self.rename_channel(member_channel, self.member_count_format.format(count=guild.member_count or 0),
                                      "member")

        player_channel = guild.get_channel(self.player_count_channel_id)
        if not player_channel:
            logger.warning(f"Player channel {self.player_count_channel_id} not found")
            return

        status = await self.get_status()
        await self.rename_channel(player_channel, self.player_channel_name(status), "player")

    @update_status_channels.before_loop
    async def before_status_update(self) -> None:
        """Wait for bot to be ready before starting status updates."""
        await self.bot.wait_until_ready()

    @update_status_channels.error
    async def on_status_update_error(self, error: BaseException) -> None:
        logger.error(f"Critical error in update_status_channels: {error}", exc_info=error)

    @app_commands.command(name="players", description="Show who is online on the FiveM server")
    async def players(self, interaction: discord.Interaction):
        await interaction.response.defer()
        status = await self.get_status()

        if not status.online:
            embed = discord.Embed(
                title="🔴 Server Offline",
                description="The server could not be reached. Try again in a few minutes.",
                color=discord.Color.red()
            )
            await interaction.followup.send(embed=embed)
            return

        embed = discord.Embed(
            title=f"🟢 {status.server_name}",
            description=f"**{status.player_count}/{status.max_players}** players online ({status.load}%)",
            color=discord.Color.green()
        )
        embed.add_field(name="⏱️ Uptime", value=status.uptime, inline=True)
        embed.add_field(name="🗺️ Map", value=status.mapname, inline=True)
        embed.add_field(name="🎮 Mode", value=status.gametype, inline=True)

        if status.players:
            shown = sorted(status.players, key=lambda p: p.id)[:self.players_list_max]
            lines = "\n".join(f"`{p.id:>3}` {discord.utils.escape_markdown(p.name)} • {p.ping}ms" for p in shown)
            if len(status.players) > len(shown):
                lines += f"\n... and {len(status.players) - len(shown)} more"
            embed.add_field(name="👥 Players", value=lines[:1024], inline=False)

        embed.timestamp = discord.utils.utcnow()
        await interaction.followup.send(embed=embed)
