"""
Global configuration loader for the SkyLife bot and API.
Loads environment variables from .env file.
"""
from dotenv import load_dotenv
import os
import sys

from constants import DEFAULT_COOLDOWN_HOURS

load_dotenv()

def get_env(key: str, required: bool = True, default=None):
    """Safely get environment variable with validation."""
    value = os.getenv(key, default)
    if required and value is None:
        print(f"ERROR: Missing required environment variable: {key}")
        print(f"Please add {key} to your .env file")
        sys.exit(1)
    return value

def get_env_int(key: str, required: bool = True, default=None):
    """Get environment variable as integer."""
    value = get_env(key, required, default)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        print(f"ERROR: Environment variable {key} must be a valid integer, got: {value}")
        sys.exit(1)

def get_env_float(key: str, required: bool = True, default=None):
    """Get environment variable as float."""
    value = get_env(key, required, default)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        print(f"ERROR: Environment variable {key} must be a number, got: {value}")
        sys.exit(1)

def get_env_bool(key: str, default: bool = False) -> bool:
    """Get environment variable as boolean (1/true/yes/on)."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")

# ============================================================================
# Global Bot Configuration (from .env)
# ============================================================================
# Discord Bot Token and Guild ID are validated at startup, see validate_startup_config()
DISCORD_TOKEN = get_env("DISCORD_TOKEN", required=False)
GUILD_ID = get_env_int("GUILD_ID", required=False, default="0")

PLACEHOLDER_TOKENS = ["your_bot_token_here", "your_token_here", "placeholder", ""]

# Persistence
DATABASE_PATH = get_env("DATABASE_PATH", required=False, default="data/skylife.db")

# Eligibility gate
APPLICATION_COOLDOWN_HOURS = get_env_float(
    "APPLICATION_COOLDOWN_HOURS", required=False, default=str(DEFAULT_COOLDOWN_HOURS)
)

# Embedded HTTP API
API_ENABLED = get_env_bool("API_ENABLED", default=True)
API_HOST = get_env("API_HOST", required=False, default="0.0.0.0")
API_PORT = get_env_int("API_PORT", required=False, default="8000")
API_TOKEN = get_env("API_TOKEN", required=False)

# Branding used in notification embeds
BRAND_NAME = get_env("BRAND_NAME", required=False, default="SkyLife RP")
BRAND_LOGO_URL = get_env("BRAND_LOGO_URL", required=False, default="https://skyliferoleplay.com/images/slrp-logo.png")
IMAGE_BASE_URL = get_env("IMAGE_BASE_URL", required=False, default="https://skyliferoleplay.com/images/applications")
TICKET_IMAGE_URL = get_env("TICKET_IMAGE_URL", required=False, default="https://skyliferoleplay.com/images/support-request.jpg")


def validate_startup_config():
    """Exit with a helpful message when the bot cannot start with the current .env."""
    if not DISCORD_TOKEN or DISCORD_TOKEN in PLACEHOLDER_TOKENS:
        print("ERROR: DISCORD_TOKEN is missing or still set to a placeholder value!")
        print("Please update your .env file with a real Discord bot token.")
        print("Get one from: https://discord.com/developers/applications")
        sys.exit(1)

    if not GUILD_ID:
        print("ERROR: GUILD_ID is still set to 0 (placeholder)!")
        print("Please update your .env file with your Discord server ID.")
        sys.exit(1)

# ============================================================================
# Configuration Validation Helpers
# ============================================================================

def validate_channel_id(channel_id: int, name: str = "channel_id") -> bool:
    """
    Validate a Discord channel ID.

    Args:
        channel_id: The channel ID to validate
        name: Name of the setting (for error messages)

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(channel_id, int):
        print(f"ERROR: {name} must be an integer, got {type(channel_id)}")
        return False

    if channel_id != 0 and (channel_id < 0 or channel_id > 2**63):
        print(f"ERROR: {name} must be a valid Discord ID (got {channel_id})")
        return False

    return True


def validate_role_ids(role_ids: list, name: str = "role_ids") -> bool:
    """
    Validate a list of Discord role IDs.

    Args:
        role_ids: List of role IDs to validate
        name: Name of the setting (for error messages)

    Returns:
        True if valid, False otherwise
    """
    if not isinstance(role_ids, list):
        print(f"ERROR: {name} must be a list, got {type(role_ids)}")
        return False

    for i, role_id in enumerate(role_ids):
        if not isinstance(role_id, int):
            print(f"ERROR: {name}[{i}] must be an integer, got {type(role_id)}")
            return False

        if role_id != 0 and (role_id < 0 or role_id > 2**63):
            print(f"ERROR: {name}[{i}] must be a valid Discord ID (got {role_id})")
            return False

    return True
