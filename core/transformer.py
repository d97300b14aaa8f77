"""
Application transformer.

Normalizes the per-type application rows into one UnifiedApplication shape
for the staff list, stats and CSV export. One transform function per source
table; TRANSFORMERS is the exhaustive table -> function mapping.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from utils import parse_timestamp

# Coarse filter categories -> fine-grained application types
CATEGORY_TYPES = {
    "whitelist": ("whitelist",),
    "job": ("police", "ems", "mechanic", "judge", "attorney", "state"),
    "staff": ("staff",),
    "ban": ("ban_appeal",),
    "creator": ("creator",),
    "firefighter": ("firefighter",),
    "weazel": ("weazel_news",),
    "pdm": ("pdm",),
    "gang": ("gang",),
}

# First match wins; checked against the lowercased job_type
JOB_TYPE_RULES = (
    (("police", "pd"), "police"),
    (("ems", "medical"), "ems"),
    (("mechanic",), "mechanic"),
    (("judge",), "judge"),
    (("attorney",), "attorney"),
    (("gang",), "gang"),
    (("state",), "state"),
)
DEFAULT_JOB_TYPE = "police"
# Every type classify_job_type can return
JOB_TYPE_CLASSES = frozenset([application_type for _, application_type in JOB_TYPE_RULES] + [DEFAULT_JOB_TYPE])


def classify_job_type(job_type: Optional[str]) -> str:
    """
    Bucket a free-text job_type into an application type by substring match.

    Existing rows were stored with free-text job types, so this keeps the
    same precedence of checks rather than an exact lookup. Unrecognized
    values fall back to police.
    """
    value = (job_type or "").lower()
    for needles, application_type in JOB_TYPE_RULES:
        if any(needle in value for needle in needles):
            return application_type
    return DEFAULT_JOB_TYPE


@dataclass
class ApplicationField:
    label: str
    value: Any = None

    @property
    def display(self) -> str:
        """Value as shown to staff. Missing values render empty."""
        if self.value is None:
            return ""
        return str(self.value)

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value}


@dataclass
class UnifiedApplication:
    id: str
    applicant_name: str
    status: str
    application_type: str
    created_at: str
    organization: Optional[str] = None
    discord_id: Optional[str] = None
    handled_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    admin_notes: Optional[str] = None
    user_id: Optional[str] = None
    fields: List[ApplicationField] = field(default_factory=list)

    def field_value(self, label: str) -> Any:
        for item in self.fields:
            if item.label == label:
                return item.value
        raise KeyError(label)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "applicantName": self.applicant_name,
            "organization": self.organization,
            "discordId": self.discord_id,
            "status": self.status,
            "handledBy": self.handled_by,
            "reviewedAt": self.reviewed_at,
            "applicationType": self.application_type,
            "fields": [item.to_dict() for item in self.fields],
            "adminNotes": self.admin_notes,
            "createdAt": self.created_at,
        }


def _unified(row: Mapping[str, Any], applicant_name, organization, application_type, labels) -> UnifiedApplication:
    return UnifiedApplication(
        id=row["id"],
        applicant_name=applicant_name or "Unknown",
        organization=organization,
        discord_id=row.get("discord_id") or None,
        status=row.get("status"),
        handled_by=row.get("reviewed_by") or None,
        reviewed_at=row.get("reviewed_at") or None,
        application_type=application_type,
        fields=[ApplicationField(label, row.get(column)) for label, column in labels],
        admin_notes=row.get("admin_notes"),
        created_at=row.get("created_at"),
        user_id=row.get("user_id"),
    )


def transform_whitelist_application(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(row, row.get("discord"), "Whitelist", "whitelist", (
        ("Discord Username", "discord"),
        ("Discord ID", "discord_id"),
        ("Steam ID", "steam_id"),
        ("Age", "age"),
        ("RP Experience", "experience"),
        ("Character Backstory", "backstory"),
    ))


def transform_staff_application(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(row, row.get("full_name"), row.get("position") or "Staff", "staff", (
        ("Full Name", "full_name"),
        ("Discord Username", "discord_username"),
        ("Discord ID", "discord_id"),
        ("In-Game Name", "in_game_name"),
        ("Age", "age"),
        ("Position Applied", "position"),
        ("Availability", "availability"),
        ("Playtime", "playtime"),
        ("Experience", "experience"),
        ("Previous Staff Experience", "previous_experience"),
        ("Why Join", "why_join"),
    ))


def transform_job_application(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(
        row, row.get("character_name"), row.get("job_type") or "Job", classify_job_type(row.get("job_type")), (
            ("Character Name", "character_name"),
            ("Discord ID", "discord_id"),
            ("Age", "age"),
            ("Phone Number", "phone_number"),
            ("Job Type", "job_type"),
            ("Previous Experience", "previous_experience"),
            ("Availability", "availability"),
            ("Character Background", "character_background"),
            ("Strengths", "strengths"),
            ("Why Join", "why_join"),
            ("Additional Info", "additional_info"),
        ))


def transform_ban_appeal(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(row, row.get("discord_username"), "Ban Appeal", "ban_appeal", (
        ("Discord Username", "discord_username"),
        ("Discord ID", "discord_id"),
        ("Steam ID", "steam_id"),
        ("Ban Reason", "ban_reason"),
        ("Appeal Reason", "appeal_reason"),
        ("Additional Info", "additional_info"),
    ))


def transform_creator_application(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(row, row.get("full_name"), row.get("platform") or "Creator", "creator", (
        ("Full Name", "full_name"),
        ("Discord Username", "discord_username"),
        ("Discord ID", "discord_id"),
        ("Platform", "platform"),
        ("Channel URL", "channel_url"),
        ("Average Viewers", "average_viewers"),
        ("Content Frequency", "content_frequency"),
        ("Content Style", "content_style"),
        ("RP Experience", "rp_experience"),
        ("Why Join", "why_join"),
        ("Social Links", "social_links"),
    ))


def transform_firefighter_application(row: Mapping[str, Any]) -> UnifiedApplication:
    name = row.get("real_name") or row.get("in_game_name")
    return _unified(row, name, "Fire Department", "firefighter", (
        ("Real Name", "real_name"),
        ("In-Game Name", "in_game_name"),
        ("Discord ID", "discord_id"),
        ("Steam ID", "steam_id"),
        ("Weekly Availability", "weekly_availability"),
    ))


def transform_weazel_news_application(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(row, row.get("character_name"), "Weazel News", "weazel_news", (
        ("Character Name", "character_name"),
        ("Discord ID", "discord_id"),
        ("Age", "age"),
        ("Phone Number", "phone_number"),
        ("Previous Experience", "previous_experience"),
        ("Journalism Experience", "journalism_experience"),
        ("Camera Skills", "camera_skills"),
        ("Writing Sample", "writing_sample"),
        ("Interview Scenario", "interview_scenario"),
        ("Availability", "availability"),
        ("Character Background", "character_background"),
        ("Why Join", "why_join"),
        ("Additional Info", "additional_info"),
    ))


def transform_pdm_application(row: Mapping[str, Any]) -> UnifiedApplication:
    return _unified(row, row.get("character_name"), "Premium Deluxe Motorsport", "pdm", (
        ("Character Name", "character_name"),
        ("Discord ID", "discord_id"),
        ("Age", "age"),
        ("Phone Number", "phone_number"),
        ("Previous Experience", "previous_experience"),
        ("Sales Experience", "sales_experience"),
        ("Vehicle Knowledge", "vehicle_knowledge"),
        ("Customer Scenario", "customer_scenario"),
        ("Availability", "availability"),
        ("Character Background", "character_background"),
        ("Why Join", "why_join"),
        ("Additional Info", "additional_info"),
    ))


def transform_gang_application(row: Mapping[str, Any]) -> UnifiedApplication:
    name = row.get("gang_name") or row.get("leader_name")
    return _unified(row, name, "Gang RP", "gang", (
        ("Gang Name", "gang_name"),
        ("Leader Name", "leader_name"),
        ("Discord ID", "discord_id"),
        ("Member Count", "member_count"),
        ("Gang Backstory", "gang_backstory"),
        ("Territory Plans", "territory_plans"),
        ("Activity Level", "activity_level"),
    ))


TRANSFORMERS: Dict[str, Callable[[Mapping[str, Any]], UnifiedApplication]] = {
    "whitelist_applications": transform_whitelist_application,
    "staff_applications": transform_staff_application,
    "job_applications": transform_job_application,
    "ban_appeals": transform_ban_appeal,
    "creator_applications": transform_creator_application,
    "firefighter_applications": transform_firefighter_application,
    "weazel_news_applications": transform_weazel_news_application,
    "pdm_applications": transform_pdm_application,
    "gang_applications": transform_gang_application,
}


def transform_rows(table: str, rows: Iterable[Mapping[str, Any]]) -> List[UnifiedApplication]:
    try:
        transform = TRANSFORMERS[table]
    except KeyError:
        raise ValueError(f"No transformer for table {table}")
    return [transform(row) for row in rows]


def _created_sort_key(app: UnifiedApplication):
    moment = parse_timestamp(app.created_at)
    return moment.timestamp() if moment else 0.0


def combine_all_applications(rows_by_table: Mapping[str, Iterable[Mapping[str, Any]]]) -> List[UnifiedApplication]:
    """Transform every table's rows and merge them, newest first."""
    combined = []
    for table, rows in rows_by_table.items():
        combined.extend(transform_rows(table, rows))
    combined.sort(key=_created_sort_key, reverse=True)
    return combined


def filter_applications_by_type(apps: Iterable[UnifiedApplication], category: str) -> List[UnifiedApplication]:
    """Keep applications in a coarse category. "all" keeps everything, unknown categories keep nothing."""
    if category == "all":
        return list(apps)
    allowed = CATEGORY_TYPES.get(category, ())
    return [app for app in apps if app.application_type in allowed]
