"""
Admin commands for SkyLife.
Branch management plus notification ledger inspection and replay.
"""

import discord
from discord import app_commands
from discord.ext import commands
import logging

import config
from constants import truncate_for_message
from utils import format_date, truncate_text

logger = logging.getLogger(__name__)

PROTECTED_BRANCHES = ("admin",)
MAX_LISTED_FAILURES = 10


def failure_line(entry: dict) -> str:
    """One line of /notifyfailures output for a notification_log row."""
    error = truncate_text(entry.get("error") or "unknown error", 120)
    return (f"• `{entry['subject_table']}` `{entry['subject_id'][:8]}` ({entry['status']}) "
            f"- {entry['attempts']} attempt(s), last {format_date(entry.get('updated_at'))}\n  {error}")


class Admin(commands.Cog):
    """Bot administration commands"""

    def __init__(self, bot):
        self.bot = bot

    async def branch_autocomplete(
        self,
        interaction: discord.Interaction,
        current: str,
    ) -> list[app_commands.Choice[str]]:
        """Autocomplete for branch names (folder names under branches/)."""
        from core.branch_loader import get_branch_loader

        all_branches = get_branch_loader().discover_branches()
        filtered = [b for b in all_branches if current.lower() in b.lower()]

        return [
            app_commands.Choice(name=branch, value=branch)
            for branch in sorted(filtered)[:25]
        ]

    # ========================================================================
    # Branch management
    # Restricted by Administrator permission - only admins can see them
    # ========================================================================

    @app_commands.command(name="reload", description="Reload a branch and its config")
    @app_commands.describe(branch_name="Name of the branch to reload")
    @app_commands.autocomplete(branch_name=branch_autocomplete)
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_reload(self, interaction: discord.Interaction, branch_name: str):
        from core.branch_loader import get_branch_loader

        if branch_name.lower() in PROTECTED_BRANCHES:
            await interaction.response.send_message("❌ Cannot reload the admin branch. Restart the bot instead.",
                                                    ephemeral=True)
            return

        logger.info(f"Reload requested by {interaction.user} for branch: {branch_name}")

        loader = get_branch_loader()
        load_path = loader.get_load_path(branch_name)
        if not load_path:
            await interaction.response.send_message(f"❌ Branch **{branch_name}** not found", ephemeral=True)
            return

        branch_config = loader.reload_config(branch_name)
        if not branch_config.get("enabled", True):
            await interaction.response.send_message(f"⚠️ Branch **{branch_name}** is disabled in config.yml",
                                                    ephemeral=True)
            return

        try:
            await self.bot.reload_extension(load_path)
        except commands.ExtensionError as e:
            await interaction.response.send_message(f"❌ Failed to reload **{branch_name}**: {e}", ephemeral=True)
            logger.error(f"Failed to reload {branch_name}: {e}")
            return

        await interaction.response.send_message(f"✅ Reloaded **{branch_name}** successfully!", ephemeral=True)
        logger.info(f"Reloaded {branch_name}")

    @app_commands.command(name="load", description="Load a branch")
    @app_commands.describe(branch_name="Name of the branch to load")
    @app_commands.autocomplete(branch_name=branch_autocomplete)
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_load(self, interaction: discord.Interaction, branch_name: str):
        from core.branch_loader import get_branch_loader

        load_path = get_branch_loader().get_load_path(branch_name)
        if not load_path:
            await interaction.response.send_message(f"❌ Branch **{branch_name}** not found", ephemeral=True)
            return

        try:
            await self.bot.load_extension(load_path)
        except commands.ExtensionError as e:
            await interaction.response.send_message(f"❌ Failed to load **{branch_name}**: {e}", ephemeral=True)
            logger.error(f"Failed to load {branch_name}: {e}")
            return

        await interaction.response.send_message(f"✅ Loaded **{branch_name}** successfully!", ephemeral=True)
        logger.info(f"Loaded {branch_name}")

    @app_commands.command(name="reloadall", description="Reload every loaded branch except admin")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_reloadall(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)

        protected = {f"branches.{name}" for name in PROTECTED_BRANCHES}
        extensions = [ext for ext in self.bot.extensions if ext not in protected]
        success_count = 0
        failed_branches = []

        for extension in extensions:
            try:
                await self.bot.reload_extension(extension)
                success_count += 1
            except commands.ExtensionError as e:
                failed_branches.append((extension, str(e)))
                logger.error(f"Failed to reload {extension}: {e}")

        result = f"✅ Reloaded {success_count}/{len(extensions)} branches"
        if failed_branches:
            result += "\n\n❌ Failed:\n" + "\n".join(f"• {ext}: {err}" for ext, err in failed_branches)
        await interaction.followup.send(truncate_for_message(result), ephemeral=True)
        logger.info(f"Reload all by {interaction.user}: {success_count} ok, {len(failed_branches)} failed")

    @app_commands.command(name="unload", description="Unload a branch")
    @app_commands.describe(branch_name="Name of the branch to unload")
    @app_commands.autocomplete(branch_name=branch_autocomplete)
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_unload(self, interaction: discord.Interaction, branch_name: str):
        from core.branch_loader import get_branch_loader

        if branch_name.lower() in PROTECTED_BRANCHES:
            await interaction.response.send_message("❌ Cannot unload the admin branch.", ephemeral=True)
            return

        load_path = get_branch_loader().get_load_path(branch_name)
        if not load_path:
            await interaction.response.send_message(f"❌ Branch **{branch_name}** not found", ephemeral=True)
            return

        try:
            await self.bot.unload_extension(load_path)
        except commands.ExtensionError as e:
            await interaction.response.send_message(f"❌ Failed to unload **{branch_name}**: {e}", ephemeral=True)
            logger.error(f"Failed to unload {branch_name}: {e}")
            return

        await interaction.response.send_message(f"✅ Unloaded **{branch_name}** successfully!", ephemeral=True)
        logger.info(f"Unloaded {branch_name}")

    @app_commands.command(name="branches", description="List all branches and whether they are loaded")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_branches(self, interaction: discord.Interaction):
        from core.branch_loader import get_branch_loader

        lines = []
        for branch in get_branch_loader().list_branches():
            if f"branches.{branch.name}" in self.bot.extensions:
                marker = "🟢"
            elif branch.enabled:
                marker = "🔴"
            else:
                marker = "⚪"
            lines.append(f"{marker} **{branch.name}** v{branch.version}")

        embed = discord.Embed(
            title="🌿 Branches",
            description="\n".join(lines) or "None",
            color=discord.Color.green()
        )
        embed.set_footer(text="🟢 loaded • 🔴 enabled, not loaded • ⚪ disabled")

        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="botinfo", description="Display bot information and workflow statistics")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_botinfo(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)

        pending = await self.bot.workflow.pending_counts()
        failures = await self.bot.ledger.failures()

        embed = discord.Embed(
            title=f"🤖 {config.BRAND_NAME} Bot Information",
            color=discord.Color.blurple()
        )
        embed.add_field(name="Branches Loaded", value=len(self.bot.extensions), inline=True)
        embed.add_field(name="Guilds", value=len(self.bot.guilds), inline=True)
        embed.add_field(name="Commands", value=len(self.bot.tree.get_commands()), inline=True)
        embed.add_field(name="Pending Applications", value=sum(pending.values()), inline=True)
        embed.add_field(name="Failed Notifications", value=len(failures), inline=True)
        embed.add_field(name="API", value=f"{config.API_HOST}:{config.API_PORT}" if config.API_ENABLED else "Disabled",
                        inline=True)

        await interaction.followup.send(embed=embed, ephemeral=True)

    # ========================================================================
    # Notification ledger
    # ========================================================================

    @app_commands.command(name="notifyfailures", description="List notifications that failed to post")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_notifyfailures(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        failures = await self.bot.ledger.failures()

        if not failures:
            await interaction.followup.send("✅ No failed notifications.", ephemeral=True)
            return

        embed = discord.Embed(
            title="📭 Failed Notifications",
            description="\n".join(failure_line(entry) for entry in failures[:MAX_LISTED_FAILURES]),
            color=discord.Color.orange()
        )
        if len(failures) > MAX_LISTED_FAILURES:
            embed.set_footer(text=f"Showing {MAX_LISTED_FAILURES} of {len(failures)} • /notifyretry to replay")
        else:
            embed.set_footer(text="/notifyretry to replay")

        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="notifyretry", description="Replay notifications that failed to post")
    @app_commands.describe(limit="Maximum number of notifications to replay")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def slash_notifyretry(self, interaction: discord.Interaction,
                                limit: app_commands.Range[int, 1, 100] = 25):
        await interaction.response.defer(ephemeral=True)
        logger.info(f"Notification replay requested by {interaction.user} (limit {limit})")

        counts = await self.bot.ledger.retry(self.bot.notification_dispatchers, limit)

        message = f"✅ Replayed **{counts['sent']}** notification(s)"
        if counts["failed"]:
            message += f"\n❌ **{counts['failed']}** still failing, see /notifyfailures"
        await interaction.followup.send(message, ephemeral=True)
