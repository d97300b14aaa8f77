import pytest

from core.transformer import (
    TRANSFORMERS,
    ApplicationField,
    classify_job_type,
    combine_all_applications,
    filter_applications_by_type,
)


@pytest.mark.parametrize("job_type, expected", [
    ("LSPD Police Officer", "police"),
    ("EMS Paramedic", "ems"),
    ("Medical Examiner", "ems"),
    ("Judge Applicant", "judge"),
    ("DOJ - Attorney", "attorney"),
    ("Mechanic", "mechanic"),
    ("Gang Member", "gang"),
    ("State Dept Liaison", "state"),
    ("Taxi Driver", "police"),
    (None, "police"),
])
def test_classify_job_type(job_type, expected):
    assert classify_job_type(job_type) == expected


# label -> column for every source shape
DOCUMENTED_FIELDS = {
    "whitelist_applications": {
        "Discord Username": "discord", "Discord ID": "discord_id", "Steam ID": "steam_id", "Age": "age",
        "RP Experience": "experience", "Character Backstory": "backstory",
    },
    "staff_applications": {
        "Full Name": "full_name", "Discord Username": "discord_username", "Discord ID": "discord_id",
        "In-Game Name": "in_game_name", "Age": "age", "Position Applied": "position",
        "Availability": "availability", "Playtime": "playtime", "Experience": "experience",
        "Previous Staff Experience": "previous_experience", "Why Join": "why_join",
    },
    "job_applications": {
        "Character Name": "character_name", "Discord ID": "discord_id", "Age": "age",
        "Phone Number": "phone_number", "Job Type": "job_type", "Previous Experience": "previous_experience",
        "Availability": "availability", "Character Background": "character_background",
        "Strengths": "strengths", "Why Join": "why_join", "Additional Info": "additional_info",
    },
    "ban_appeals": {
        "Discord Username": "discord_username", "Discord ID": "discord_id", "Steam ID": "steam_id",
        "Ban Reason": "ban_reason", "Appeal Reason": "appeal_reason", "Additional Info": "additional_info",
    },
    "creator_applications": {
        "Full Name": "full_name", "Discord Username": "discord_username", "Discord ID": "discord_id",
        "Platform": "platform", "Channel URL": "channel_url", "Average Viewers": "average_viewers",
        "Content Frequency": "content_frequency", "Content Style": "content_style",
        "RP Experience": "rp_experience", "Why Join": "why_join", "Social Links": "social_links",
    },
    "firefighter_applications": {
        "Real Name": "real_name", "In-Game Name": "in_game_name", "Discord ID": "discord_id",
        "Steam ID": "steam_id", "Weekly Availability": "weekly_availability",
    },
    "weazel_news_applications": {
        "Character Name": "character_name", "Discord ID": "discord_id", "Age": "age",
        "Phone Number": "phone_number", "Previous Experience": "previous_experience",
        "Journalism Experience": "journalism_experience", "Camera Skills": "camera_skills",
        "Writing Sample": "writing_sample", "Interview Scenario": "interview_scenario",
        "Availability": "availability", "Character Background": "character_background",
        "Why Join": "why_join", "Additional Info": "additional_info",
    },
    "pdm_applications": {
        "Character Name": "character_name", "Discord ID": "discord_id", "Age": "age",
        "Phone Number": "phone_number", "Previous Experience": "previous_experience",
        "Sales Experience": "sales_experience", "Vehicle Knowledge": "vehicle_knowledge",
        "Customer Scenario": "customer_scenario", "Availability": "availability",
        "Character Background": "character_background", "Why Join": "why_join",
        "Additional Info": "additional_info",
    },
    "gang_applications": {
        "Gang Name": "gang_name", "Leader Name": "leader_name", "Discord ID": "discord_id",
        "Member Count": "member_count", "Gang Backstory": "gang_backstory",
        "Territory Plans": "territory_plans", "Activity Level": "activity_level",
    },
}


def test_every_table_has_a_transformer():
    assert set(TRANSFORMERS) == set(DOCUMENTED_FIELDS)


@pytest.mark.parametrize("table", sorted(DOCUMENTED_FIELDS))
def test_fields_carry_every_documented_label(table):
    columns = DOCUMENTED_FIELDS[table]
    row = {column: f"{column} value" for column in columns.values()}
    row.update(id="app-1", status="pending", created_at="2025-01-01T00:00:00+00:00", user_id="u1")

    app = TRANSFORMERS[table](row)

    assert [item.label for item in app.fields] == list(columns)
    for label, column in columns.items():
        assert app.field_value(label) == row[column]
    assert app.id == "app-1"
    assert app.status == "pending"
    assert app.applicant_name != "Unknown"


@pytest.mark.parametrize("table", sorted(DOCUMENTED_FIELDS))
def test_missing_values_display_empty(table):
    app = TRANSFORMERS[table]({"id": "app-1", "status": "pending", "created_at": None})

    assert app.applicant_name == "Unknown"
    for item in app.fields:
        assert item.value is None
        assert item.display == ""
        assert "undefined" not in item.display


def test_field_display_keeps_falsy_values():
    assert ApplicationField("Age", 0).display == "0"
    assert ApplicationField("Notes", "").display == ""


def test_job_rows_take_type_and_organization_from_job_type():
    app = TRANSFORMERS["job_applications"]({"id": "1", "status": "pending", "job_type": "DOJ - Judge"})
    assert app.application_type == "judge"
    assert app.organization == "DOJ - Judge"


def test_combine_sorts_newest_first_and_filters_by_category():
    rows_by_table = {
        "whitelist_applications": [{"id": "w", "status": "pending", "created_at": "2025-01-02T00:00:00+00:00"}],
        "job_applications": [
            {"id": "j1", "status": "pending", "job_type": "EMS", "created_at": "2025-01-03T00:00:00+00:00"},
            {"id": "j2", "status": "approved", "job_type": "Police", "created_at": "2025-01-01T00:00:00+00:00"},
        ],
        "ban_appeals": [{"id": "b", "status": "pending", "created_at": None}],
    }
    combined = combine_all_applications(rows_by_table)

    assert [app.id for app in combined] == ["j1", "w", "j2", "b"]
    assert [app.id for app in filter_applications_by_type(combined, "job")] == ["j1", "j2"]
    assert [app.id for app in filter_applications_by_type(combined, "ban")] == ["b"]
    assert len(filter_applications_by_type(combined, "all")) == 4
    assert filter_applications_by_type(combined, "nope") == []
