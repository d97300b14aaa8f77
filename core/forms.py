"""
Typed submission forms.

Each source shape gets one pydantic model tagged by ``application_type``. The
model knows which table it is stored in and how to turn itself into a row.
Validation happens here, before anything is written.
"""

import logging
from typing import Annotated, Any, ClassVar, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from constants import DISCORD_ID_PATTERN, MAX_AGE_REASONABLE, MIN_AGE_DISCORD_TOS
from core.errors import ValidationError, unknown_application_type
from core.transformer import JOB_TYPE_CLASSES, classify_job_type
from utils import is_discord_id

logger = logging.getLogger(__name__)

JobType = Literal["police", "ems", "mechanic", "judge", "attorney", "state"]

# job_type stored when the submitter does not name one
JOB_TYPE_LABELS = {
    "police": "Police Department",
    "ems": "EMS",
    "mechanic": "Mechanic",
    "judge": "DOJ - Judge",
    "attorney": "DOJ - Attorney",
    "state": "State Department",
}

Age = Annotated[int, Field(ge=MIN_AGE_DISCORD_TOS, le=MAX_AGE_REASONABLE)]
Text = Annotated[str, Field(min_length=1, max_length=4000)]
ShortText = Annotated[str, Field(min_length=1, max_length=200)]


class ApplicationForm(BaseModel):
    """Fields every application shape shares."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    table: ClassVar[str]

    application_type: str
    discord_id: Optional[str] = Field(default=None, pattern=DISCORD_ID_PATTERN)

    @field_validator("discord_id", mode="before")
    @classmethod
    def _blank_discord_id(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return str(value).strip()

    def to_row(self) -> Dict[str, Any]:
        """Column values for the type's table (status and timestamps are added by the workflow)."""
        return self.model_dump(exclude={"application_type"})


class WhitelistForm(ApplicationForm):
    table: ClassVar[str] = "whitelist_applications"

    application_type: Literal["whitelist"]
    discord: ShortText
    steam_id: Optional[str] = None
    age: Age
    experience: Text
    backstory: Text


class StaffForm(ApplicationForm):
    table: ClassVar[str] = "staff_applications"

    application_type: Literal["staff"]
    full_name: ShortText
    discord_username: Optional[str] = None
    in_game_name: Optional[str] = None
    age: Age
    position: ShortText
    availability: Optional[str] = None
    playtime: Optional[str] = None
    experience: Text
    previous_experience: Optional[str] = None
    why_join: Text


class JobForm(ApplicationForm):
    table: ClassVar[str] = "job_applications"

    application_type: JobType
    character_name: ShortText
    age: Age
    phone_number: Optional[str] = None
    job_type: Optional[str] = None
    previous_experience: Optional[str] = None
    availability: Optional[str] = None
    character_background: Text
    strengths: Optional[str] = None
    why_join: Text
    additional_info: Optional[str] = None

    @model_validator(mode="after")
    def _job_type_matches(self):
        if not self.job_type:
            self.job_type = JOB_TYPE_LABELS[self.application_type]
        elif classify_job_type(self.job_type) != self.application_type:
            raise ValueError(f"job_type {self.job_type!r} does not describe a {self.application_type} application")
        return self


class BanAppealForm(ApplicationForm):
    table: ClassVar[str] = "ban_appeals"

    application_type: Literal["ban_appeal"]
    discord_username: ShortText
    steam_id: Optional[str] = None
    ban_reason: Text
    appeal_reason: Text
    additional_info: Optional[str] = None


class CreatorForm(ApplicationForm):
    table: ClassVar[str] = "creator_applications"

    application_type: Literal["creator"]
    full_name: ShortText
    discord_username: Optional[str] = None
    platform: ShortText
    channel_url: ShortText
    average_viewers: Optional[str] = None
    content_frequency: Optional[str] = None
    content_style: Optional[str] = None
    rp_experience: Optional[str] = None
    why_join: Text
    social_links: Optional[str] = None


class FirefighterForm(ApplicationForm):
    table: ClassVar[str] = "firefighter_applications"

    application_type: Literal["firefighter"]
    real_name: ShortText
    in_game_name: ShortText
    steam_id: Optional[str] = None
    weekly_availability: Text


class WeazelNewsForm(ApplicationForm):
    table: ClassVar[str] = "weazel_news_applications"

    application_type: Literal["weazel_news"]
    character_name: ShortText
    age: Age
    phone_number: Optional[str] = None
    previous_experience: Optional[str] = None
    journalism_experience: Optional[str] = None
    camera_skills: Optional[str] = None
    writing_sample: Text
    interview_scenario: Optional[str] = None
    availability: Optional[str] = None
    character_background: Text
    why_join: Text
    additional_info: Optional[str] = None


class PDMForm(ApplicationForm):
    table: ClassVar[str] = "pdm_applications"

    application_type: Literal["pdm"]
    character_name: ShortText
    age: Age
    phone_number: Optional[str] = None
    previous_experience: Optional[str] = None
    sales_experience: Optional[str] = None
    vehicle_knowledge: Optional[str] = None
    customer_scenario: Optional[str] = None
    availability: Optional[str] = None
    character_background: Text
    why_join: Text
    additional_info: Optional[str] = None


class GangForm(ApplicationForm):
    table: ClassVar[str] = "gang_applications"

    application_type: Literal["gang"]
    gang_name: ShortText
    leader_name: ShortText
    member_count: int = Field(ge=1)
    gang_backstory: Text
    territory_plans: Optional[str] = None
    activity_level: Optional[str] = None


AnyApplicationForm = Annotated[
    Union[WhitelistForm, StaffForm, JobForm, BanAppealForm, CreatorForm,
          FirefighterForm, WeazelNewsForm, PDMForm, GangForm],
    Field(discriminator="application_type"),
]

APPLICATION_FORM_ADAPTER = TypeAdapter(AnyApplicationForm)

FORM_MODELS = {
    "whitelist": WhitelistForm,
    "staff": StaffForm,
    "police": JobForm,
    "ems": JobForm,
    "mechanic": JobForm,
    "judge": JobForm,
    "attorney": JobForm,
    "state": JobForm,
    "ban_appeal": BanAppealForm,
    "creator": CreatorForm,
    "firefighter": FirefighterForm,
    "weazel_news": WeazelNewsForm,
    "pdm": PDMForm,
    "gang": GangForm,
}


def parse_application_form(payload: Dict[str, Any]) -> AnyApplicationForm:
    """
    Validate a raw submission into its typed form.

    Raises:
        ConfigurationError: application_type is missing or unknown (400)
        ValidationError: one or more fields are invalid (422)
    """
    application_type = payload.get("application_type")
    if application_type not in FORM_MODELS:
        raise unknown_application_type(application_type)

    try:
        return APPLICATION_FORM_ADAPTER.validate_python(payload)
    except PydanticValidationError as e:
        logger.debug(f"Rejected {application_type} form: {e}")
        raise ValidationError.from_pydantic(e, tagged=True) from e


# ============================================================================
# Support tickets
# ============================================================================

TicketCategory = Literal["whitelist", "refund", "account", "technical", "staff_complaint", "ban_inquiry", "other"]
TicketPriority = Literal["low", "normal", "high", "critical"]


class TicketForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    subject: Annotated[str, Field(min_length=3, max_length=200)]
    category: TicketCategory = "other"
    priority: TicketPriority = "normal"
    description: Annotated[str, Field(min_length=10, max_length=4000)]
    attachment_url: Optional[str] = None
    discord_id: Optional[str] = None
    discord_username: Optional[str] = None

    @field_validator("discord_id", mode="before")
    @classmethod
    def _check_discord_id(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        if not is_discord_id(value):
            raise ValueError("discord_id must be a Discord snowflake")
        return str(value).strip()


def parse_ticket_form(payload: Dict[str, Any]) -> TicketForm:
    try:
        return TicketForm.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


# application_type -> table
APPLICATION_TABLES = {application_type: model.table for application_type, model in FORM_MODELS.items()}


def table_for_type(application_type: str) -> str:
    """Resolve the table an application type lives in, 400 for unknown types."""
    try:
        return APPLICATION_TABLES[application_type]
    except KeyError:
        raise unknown_application_type(application_type)


def tables_for_type(application_type: str) -> tuple:
    """
    Every table rows of an application type can be stored in.

    Rows in job_applications are bucketed by their free-text job_type, so a
    type with its own table (gang) can also have rows there.
    """
    table = table_for_type(application_type)
    if table != JobForm.table and application_type in JOB_TYPE_CLASSES:
        return table, JobForm.table
    return (table,)
