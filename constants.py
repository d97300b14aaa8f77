"""
Global constants for the SkyLife community bot.

Contains Discord API limits, HTTP status codes, workflow defaults and other
constant values used throughout the bot, the API and the branches.
"""

# ============================================================================
# Discord API Limits
# ============================================================================

# Embed Limits (from Discord API documentation)
EMBED_TITLE_MAX = 256
EMBED_DESCRIPTION_MAX = 4096
EMBED_FIELD_NAME_MAX = 256
EMBED_FIELD_VALUE_MAX = 1024
EMBED_FOOTER_MAX = 2048
EMBED_AUTHOR_MAX = 256
EMBED_TOTAL_MAX = 6000  # Total characters across all embed fields
EMBED_MAX_FIELDS = 25  # Maximum number of fields in an embed

# Message Limits
MESSAGE_CONTENT_MAX = 2000

# Modal Limits
MODAL_TITLE_MAX = 45
MODAL_TEXT_INPUT_LABEL_MAX = 45
MODAL_TEXT_INPUT_VALUE_MAX = 4000

# Select / Choice Limits
SELECT_MAX_OPTIONS = 25
COMMAND_MAX_CHOICES = 25

# Channel Name Limits
CHANNEL_NAME_MAX = 100

# Discord snowflake ids are 17-19 digits
DISCORD_ID_PATTERN = r"^\d{17,19}$"

# ============================================================================
# HTTP Status Codes
# ============================================================================
HTTP_OK = 200
HTTP_CREATED = 201
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409
HTTP_UNPROCESSABLE = 422
HTTP_RATE_LIMITED = 429
HTTP_INTERNAL_ERROR = 500
HTTP_BAD_GATEWAY = 502
HTTP_SERVICE_UNAVAILABLE = 503

# ============================================================================
# Framework Constants
# ============================================================================

# Branch Configuration
BRANCH_CONFIG_FILE = "config.yml"

# Logging
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Default Timeouts (in seconds)
DEFAULT_VIEW_TIMEOUT = 180  # 3 minutes
DEFAULT_MODAL_TIMEOUT = 300  # 5 minutes
FIVEM_REQUEST_TIMEOUT = 5

# Common Validation Ranges
MIN_AGE_DISCORD_TOS = 13  # Discord's minimum age requirement
MAX_AGE_REASONABLE = 100  # Maximum reasonable age for validation

# ============================================================================
# Workflow Defaults
# ============================================================================
DEFAULT_COOLDOWN_HOURS = 24
DEFAULT_QUEUE_BOARD_INTERVAL = 60  # seconds, poll backstop for the queue board
DEFAULT_COOLDOWN_CHECK_MINUTES = 15
TICKET_TEXT_PREVIEW_MAX = 500
TICKET_NUMBER_PREFIX = "TKT"
TICKET_NUMBER_RETRIES = 3

# ============================================================================
# Helper Functions
# ============================================================================

def truncate_for_embed_field(text: str, suffix: str = "...") -> str:
    """
    Truncate text to fit in an embed field value.

    Args:
        text: Text to truncate
        suffix: Suffix to add if truncated (default: "...")

    Returns:
        Truncated text that fits within EMBED_FIELD_VALUE_MAX
    """
    if not text:
        return ""

    if len(text) <= EMBED_FIELD_VALUE_MAX:
        return text

    return text[:EMBED_FIELD_VALUE_MAX - len(suffix)] + suffix


def truncate_for_message(text: str, suffix: str = "...") -> str:
    """Truncate text to fit in a Discord message."""
    if not text:
        return ""

    if len(text) <= MESSAGE_CONTENT_MAX:
        return text

    return text[:MESSAGE_CONTENT_MAX - len(suffix)] + suffix


# ============================================================================
# Workflow States
# ============================================================================
STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_ON_HOLD = "on_hold"
STATUS_CLOSED = "closed"
APPLICATION_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_ON_HOLD, STATUS_CLOSED)

TICKET_OPEN = "open"
TICKET_IN_PROGRESS = "in_progress"
TICKET_ON_HOLD = "on_hold"
TICKET_RESOLVED = "resolved"
TICKET_STATUSES = (TICKET_OPEN, TICKET_IN_PROGRESS, TICKET_ON_HOLD, TICKET_RESOLVED)
