"""Utility functions for the bot."""

import re
import logging
import yaml
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional
from constants import DISCORD_ID_PATTERN

logger = logging.getLogger(__name__)


def load_branch_config(config_path: Path, default_config: Dict[str, Any], branch_name: str) -> Dict[str, Any]:
    """
    Load branch configuration from YAML file with fallback to defaults.

    Args:
        config_path: Path to config.yml file
        default_config: Default configuration dictionary
        branch_name: Name of the branch (for logging)

    Returns:
        Loaded configuration or default config if file doesn't exist
    """
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
            logger.info(f"Loaded config for {branch_name}")
            return config
        except Exception as e:
            logger.error(f"Failed to load config for {branch_name}: {e}")

    return default_config


def sanitize_text(text: str, max_length: int = 2000) -> str:
    """
    Sanitize user input text.

    Args:
        text: The text to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text:
        return ""

    # Truncate to max length
    text = text[:max_length]

    # Remove null bytes
    text = text.replace('\x00', '')

    return text.strip()


def is_discord_id(value) -> bool:
    """Check if a value looks like a Discord snowflake."""
    if value is None:
        return False
    return bool(re.match(DISCORD_ID_PATTERN, str(value)))


def truncate_text(text: str, limit: int = 1024, suffix: str = '...') -> str:
    """
    Truncate text to a specified limit with a suffix.

    Args:
        text: The text to truncate
        limit: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if not text:
        return ""

    if len(text) <= limit:
        return text

    return text[:limit - len(suffix)] + suffix


def format_duration(seconds: int) -> str:
    """
    Format seconds into a human-readable duration.

    Args:
        seconds: Number of seconds

    Returns:
        Formatted string like "2h 30m"
    """
    seconds = max(int(seconds), 0)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    if days > 0:
        return f"{days}d {hours}h"
    elif hours > 0:
        return f"{hours}h {minutes}m"
    elif minutes > 0:
        return f"{minutes}m"
    else:
        return f"{seconds}s"


def utc_iso(moment: datetime) -> str:
    """Serialize a datetime as an ISO-8601 UTC string (naive values are taken as UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without offset, with a trailing
    "Z") and SQLite's "YYYY-MM-DD HH:MM:SS" format. Returns None for empty or
    unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(f"Unparseable timestamp: {value!r}")
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_date(value, fmt: str = "%b %d, %Y %H:%M") -> str:
    """Format a stored timestamp for display, empty string when missing."""
    moment = parse_timestamp(value)
    if moment is None:
        return ""
    return moment.strftime(fmt)
