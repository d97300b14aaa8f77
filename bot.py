"""
SkyLife - application review and support bot for the SkyLife RP community.

Runs the Discord bot and, when API_ENABLED, the HTTP API in the same
process. Both share one database client, change feed and set of services.
"""

import asyncio
import discord
from discord import app_commands
from discord.ext import commands
import config
from constants import LOG_FORMAT, LOG_DATE_FORMAT
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import uvicorn

from database import Database
from core.cooldown import EligibilityGate
from core.errors import WorkflowError
from core.notifications import ApplicationNotifier, NotificationLedger, TicketNotifier
from core.realtime import ChangeFeed
from core.tickets import TicketService
from core.workflow import ApplicationWorkflow

# Create logs directory if it doesn't exist
logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    datefmt=LOG_DATE_FORMAT,
    handlers=[
        logging.FileHandler(logs_dir / f'skylife_{datetime.now().strftime("%Y%m%d")}.log', encoding="utf-8"),
        logging.StreamHandler(sys.stdout)
    ]
)

# Set discord.py logging level
logging.getLogger('discord').setLevel(logging.WARNING)
logging.getLogger('discord.http').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Configure Discord intents
intents = discord.Intents.default()
intents.guilds = True            # Required for guild information
intents.members = True           # Required for member counts and department roles

REQUIRED_INTENTS = {
    "guilds": "Required for accessing guild information",
    "members": "Required for member count and department role grants"
}

for intent_name, reason in REQUIRED_INTENTS.items():
    if not getattr(intents, intent_name, False):
        logger.error(f"Missing required intent: {intent_name}")
        logger.error(f"Reason: {reason}")
        logger.error("Please enable this intent in the Discord Developer Portal:")
        logger.error("https://discord.com/developers/applications")
        sys.exit(1)


class SkyLife(commands.Bot):
    """Discord bot hosting the application workflow, tickets and the HTTP API."""

    def __init__(self):
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)

        self.feed = ChangeFeed()
        self.db = Database(config.DATABASE_PATH, self.feed)
        self.ledger = NotificationLedger(self.db)
        self.application_notifier = ApplicationNotifier(self)
        self.ticket_notifier = TicketNotifier(self)
        self.gate = EligibilityGate(self.db, config.APPLICATION_COOLDOWN_HOURS)
        self.workflow = ApplicationWorkflow(self.db, self.application_notifier, self.gate, self.ledger)
        self.tickets = TicketService(self.db, self.ticket_notifier, self.ledger)

        self.api_server: Optional[uvicorn.Server] = None
        self.api_task: Optional[asyncio.Task] = None

        self.tree.on_error = self.on_app_command_error

    @property
    def notification_dispatchers(self):
        """Ledger payload kind -> re-send coroutine, used when replaying failed notifications."""
        return {"application": self.workflow.redeliver, "ticket": self.tickets.redeliver}

    async def setup_hook(self):
        try:
            await self.db.connect()

            logger.info("Loading branches...")
            await self.load_branches()

            if config.API_ENABLED:
                await self.start_api()

            logger.info("SkyLife setup complete!")
        except Exception as e:
            logger.critical(f"Failed to setup SkyLife: {e}", exc_info=True)
            raise

    async def start_api(self):
        from api import create_app

        app = create_app(
            workflow=self.workflow,
            tickets=self.tickets,
            application_notifier=self.application_notifier,
            ticket_notifier=self.ticket_notifier,
            api_token=config.API_TOKEN,
        )
        # log_config=None keeps uvicorn on the logging set up above
        server_config = uvicorn.Config(app, host=config.API_HOST, port=config.API_PORT, log_config=None)
        self.api_server = uvicorn.Server(server_config)
        self.api_task = asyncio.create_task(self.api_server.serve())
        logger.info(f"HTTP API listening on {config.API_HOST}:{config.API_PORT}")

    async def load_branches(self):
        """Automatically load all branches with auto-config generation."""
        from core.branch_loader import get_branch_loader

        loader = get_branch_loader()
        branch_names = loader.discover_branches()

        loaded_branches = []
        skipped_branches = []
        failed_branches = []

        logger.info(f"Discovered {len(branch_names)} branches")

        for branch_name in branch_names:
            try:
                branch_config = loader.load_config(branch_name)

                if not branch_config.get("enabled", True):
                    skipped_branches.append(branch_name)
                    logger.info(f"⏭️  Skipped {branch_name} (disabled in config)")
                    continue

                load_path = loader.get_load_path(branch_name)
                if not load_path:
                    failed_branches.append((branch_name, "Could not determine load path"))
                    continue

                await self.load_extension(load_path)
                loaded_branches.append(branch_name)
                logger.info(f"✅ Loaded branch: {branch_name}")

            except Exception as e:
                failed_branches.append((branch_name, str(e)))
                logger.error(f"❌ Failed to load branch {branch_name}: {e}")

        logger.info(f"Loaded {len(loaded_branches)}/{len(branch_names)} branches: {', '.join(loaded_branches)}")

        if skipped_branches:
            logger.info(f"Skipped {len(skipped_branches)} disabled branches: {', '.join(skipped_branches)}")

        if failed_branches:
            logger.warning(f"Failed to load {len(failed_branches)} branches:")
            for branch_name, error in failed_branches:
                logger.warning(f"  - {branch_name}: {error}")

    async def on_ready(self):
        logger.info(f"Logged in as {self.user} (ID: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")

        # Sync slash commands to Discord
        try:
            logger.info("Syncing slash commands...")
            guild = discord.Object(id=config.GUILD_ID)
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info(f"Synced {len(synced)} slash commands to guild {config.GUILD_ID}")
        except Exception as e:
            logger.error(f"Failed to sync slash commands: {e}")

        logger.info("Bot is ready!")

    async def on_error(self, event_method: str, *args, **kwargs):
        logger.error(f"Error in {event_method}", exc_info=True)

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        original = getattr(error, "original", error)
        if isinstance(error, app_commands.CheckFailure):
            message = "❌ You don't have permission to use this command."
        elif isinstance(original, WorkflowError):
            message = f"❌ {original.message}"
        else:
            logger.error(f"Command error in {interaction.command.name if interaction.command else '?'}: {error}",
                         exc_info=error)
            message = "❌ An error occurred while executing the command."

        try:
            if interaction.response.is_done():
                await interaction.followup.send(message, ephemeral=True)
            else:
                await interaction.response.send_message(message, ephemeral=True)
        except discord.HTTPException as e:
            logger.warning(f"Could not report command error: {e}")

    async def close(self):
        if self.api_server is not None:
            self.api_server.should_exit = True
            if self.api_task is not None:
                try:
                    await asyncio.wait_for(self.api_task, timeout=5)
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    self.api_task.cancel()
        await super().close()
        self.feed.close()
        await self.db.close()


def main():
    try:
        config.validate_startup_config()

        logger.info("Starting SkyLife...")
        bot = SkyLife()
        bot.run(config.DISCORD_TOKEN, log_handler=None)  # We handle logging ourselves
    except KeyboardInterrupt:
        logger.info("SkyLife shutting down...")
    except Exception as e:
        logger.critical(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
