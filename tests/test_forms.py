import pytest

from core.errors import ConfigurationError, ValidationError
from core.forms import (
    FORM_MODELS,
    JobForm,
    WhitelistForm,
    parse_application_form,
    parse_ticket_form,
    table_for_type,
    tables_for_type,
)


def test_whitelist_form_parses_into_its_variant(whitelist_form):
    form = parse_application_form(whitelist_form(discord="  sky_user  "))

    assert isinstance(form, WhitelistForm)
    assert form.table == "whitelist_applications"
    assert form.discord == "sky_user"
    row = form.to_row()
    assert "application_type" not in row
    assert row["age"] == 21


def test_unknown_application_type_is_a_bad_request():
    with pytest.raises(ConfigurationError) as exc_info:
        parse_application_form({"application_type": "pilot"})
    assert exc_info.value.status_code == 400

    with pytest.raises(ConfigurationError):
        parse_application_form({})


@pytest.mark.parametrize("overrides, field", [
    ({"age": 12}, "age"),
    ({"age": 101}, "age"),
    ({"discord_id": "12345"}, "discord_id"),
    ({"experience": ""}, "experience"),
    ({"favourite_color": "blue"}, "favourite_color"),
])
def test_invalid_fields_are_reported_by_name(whitelist_form, overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        parse_application_form(whitelist_form(**overrides))

    assert exc_info.value.status_code == 422
    assert field in exc_info.value.field_errors


def test_missing_required_field(whitelist_form):
    payload = whitelist_form()
    del payload["backstory"]

    with pytest.raises(ValidationError) as exc_info:
        parse_application_form(payload)
    assert "backstory" in exc_info.value.field_errors


def test_blank_discord_id_is_treated_as_missing(whitelist_form):
    assert parse_application_form(whitelist_form(discord_id="  ")).discord_id is None


def test_job_form_defaults_job_type_to_department_label(job_form):
    form = parse_application_form(job_form(application_type="judge"))

    assert isinstance(form, JobForm)
    assert form.job_type == "DOJ - Judge"
    assert form.table == "job_applications"


def test_job_form_accepts_a_matching_free_text_job_type(job_form):
    form = parse_application_form(job_form(application_type="ems", job_type="EMS Paramedic"))
    assert form.job_type == "EMS Paramedic"


def test_job_form_rejects_a_job_type_for_another_department(job_form):
    with pytest.raises(ValidationError) as exc_info:
        parse_application_form(job_form(application_type="ems", job_type="LSPD Police Officer"))
    assert exc_info.value.field_errors


def test_every_application_type_maps_to_a_table():
    for application_type, model in FORM_MODELS.items():
        assert table_for_type(application_type) == model.table
    assert table_for_type("attorney") == "job_applications"
    assert table_for_type("ban_appeal") == "ban_appeals"

    with pytest.raises(ConfigurationError):
        table_for_type("pilot")


def test_ticket_form_defaults(ticket_form):
    payload = ticket_form()
    del payload["category"]
    del payload["priority"]

    form = parse_ticket_form(payload)
    assert form.category == "other"
    assert form.priority == "normal"


@pytest.mark.parametrize("overrides, field", [
    ({"priority": "urgent"}, "priority"),
    ({"category": "billing"}, "category"),
    ({"subject": "no"}, "subject"),
    ({"description": "short"}, "description"),
    ({"discord_id": "not-an-id"}, "discord_id"),
])
def test_ticket_form_validation(ticket_form, overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        parse_ticket_form(ticket_form(**overrides))
    assert field in exc_info.value.field_errors


def test_job_type_errors_are_reported_without_the_tag(job_form):
    with pytest.raises(ValidationError) as exc_info:
        parse_application_form(job_form(application_type="mechanic", age=200))
    assert list(exc_info.value.field_errors) == ["age"]


def test_gang_rows_can_also_live_in_the_job_table():
    assert tables_for_type("gang") == ("gang_applications", "job_applications")
    assert tables_for_type("police") == ("job_applications",)
    assert tables_for_type("creator") == ("creator_applications",)
