import json

import pytest

from conftest import (
    APPLICANT_ID,
    REVIEWER_ID,
    TICKET_CHANNEL_ID,
    TICKET_RESPONSE_CHANNEL_ID,
    TICKET_ROLE_ID,
    FakeUser,
    http_error,
)
from core.errors import ConfigurationError, RemoteServiceError
from core.notifications import (
    DEPARTMENTS,
    ApplicationDecision,
    ApplicationNotifier,
    NotificationLedger,
    TicketNotifier,
    build_ticket_embed,
    deliver,
    normalize_application_type,
    ticket_template,
)


def decision(application_type="police", status="approved", **overrides):
    values = dict(
        application_type=application_type,
        applicant_name="Jack Reed",
        applicant_discord_id=APPLICANT_ID,
        status=status,
        reviewer_name="Alex",
        reviewer_discord_id=REVIEWER_ID,
        admin_notes="Great answers",
    )
    values.update(overrides)
    return ApplicationDecision(**values)


def field_names(embed):
    return [field.name for field in embed.fields]


@pytest.mark.parametrize("key", sorted(DEPARTMENTS))
@pytest.mark.parametrize("status", ["approved", "rejected"])
async def test_every_department_produces_a_complete_message(client, environ, application_notifier, key, status):
    department = DEPARTMENTS[key]

    message_id = await application_notifier.send_application_decision(decision(key, status))

    assert message_id == str(client.next_message_id)
    sent = client.sent[-1]
    assert sent.channel_id == int(environ[department.channel_env])
    assert sent.content == f"<@{APPLICANT_ID}>"
    embed = sent.embed
    assert department.title in embed.title
    assert embed.image.url.endswith(f"/{department.image_key}-{status}.jpg")
    assert department.department_name in embed.footer.text
    assert embed.color.value == department.color(status)
    for name in ("👤 Applicant", "📊 Status", "🛡️ Reviewed By", "⏰ Review Time"):
        assert name in field_names(embed)
    assert all(field.value for field in embed.fields)


@pytest.mark.parametrize("key", sorted(DEPARTMENTS))
async def test_unconfigured_department_fails_with_configuration_error(client, environ, key):
    del environ[DEPARTMENTS[key].channel_env]
    notifier = ApplicationNotifier(client, environ=environ)

    with pytest.raises(ConfigurationError):
        await notifier.send_application_decision(decision(key))
    assert client.sent == []


def test_display_keys_resolve_case_insensitively():
    assert normalize_application_type("Police Department") == "police"
    assert normalize_application_type("doj - attorney") == "attorney"
    assert normalize_application_type("Gang RP") == "gang"
    assert normalize_application_type("Weazel News") == "weazel_news"
    assert normalize_application_type("PDM") == "pdm"
    assert normalize_application_type("Staff") == "staff"
    assert normalize_application_type("Pilot") is None
    assert normalize_application_type(None) is None


async def test_unknown_type_is_a_bad_request(application_notifier):
    with pytest.raises(ConfigurationError) as exc_info:
        await application_notifier.send_application_decision(decision("Pilot"))
    assert exc_info.value.status_code == 400


async def test_only_decisions_are_announced(application_notifier, client):
    with pytest.raises(ConfigurationError):
        await application_notifier.send_application_decision(decision(status="on_hold"))
    assert client.sent == []


async def test_rejection_uses_feedback_wording(application_notifier, client):
    await application_notifier.send_application_decision(decision(status="rejected"))
    embed = client.sent[-1].embed

    assert embed.title.startswith("📋")
    assert "📝 Reason / Feedback" in field_names(embed)
    assert "💡 What's Next?" in field_names(embed)


async def test_reviewer_lookup_adds_author(client, application_notifier):
    client.add_user(FakeUser(REVIEWER_ID, display_name="Alex the Admin", avatar_url="https://cdn/avatar.png"))

    await application_notifier.send_application_decision(decision())
    embed = client.sent[-1].embed

    assert embed.author.name == "Reviewed by Alex the Admin"
    assert embed.author.icon_url == "https://cdn/avatar.png"


async def test_applicant_without_discord_id_is_named(client, application_notifier):
    await application_notifier.send_application_decision(decision(applicant_discord_id=None))
    assert client.sent[-1].content == "@Jack Reed"


async def test_discord_rejection_becomes_remote_service_error(client, application_notifier):
    client.fail_with = http_error(500, "upstream exploded")

    with pytest.raises(RemoteServiceError) as exc_info:
        await application_notifier.send_application_decision(decision())

    assert exc_info.value.status == 500
    assert exc_info.value.body == "upstream exploded"
    assert exc_info.value.status_code == 502


# ---------- Tickets ----------

TICKET = {
    "id": "t1",
    "ticket_number": "TKT-000007",
    "subject": "Cannot connect",
    "description": "x" * 600,
    "category": "technical",
    "priority": "high",
    "discord_id": APPLICANT_ID,
    "discord_username": "sky_user",
}


async def test_new_ticket_goes_to_staff_channel_with_role_ping(client, ticket_notifier):
    await ticket_notifier.send_ticket_update(TICKET, "open", is_new=True)
    sent = client.sent[-1]

    assert sent.channel_id == TICKET_CHANNEL_ID
    assert sent.content.startswith(f"<@&{TICKET_ROLE_ID}>")
    assert sent.embed.title == "📋 New Support Ticket Created"
    description = next(f.value for f in sent.embed.fields if f.name == "📝 Description")
    assert description == "x" * 500 + "..."


async def test_updates_go_to_response_channel_and_mention_owner(client, ticket_notifier):
    await ticket_notifier.send_ticket_update(TICKET, "resolved", resolution="Reinstalled the client")
    sent = client.sent[-1]

    assert sent.channel_id == TICKET_RESPONSE_CHANNEL_ID
    assert sent.content.startswith(f"<@{APPLICANT_ID}>")
    assert "✅ Resolution" in field_names(sent.embed)


async def test_response_channel_falls_back_to_staff_channel(client, environ):
    del environ["DISCORD_TICKET_RESPONSE_CHANNEL_ID"]
    del environ["DISCORD_TICKET_CHANNEL_ID"]
    environ["DISCORD_SUPPORT_CHANNEL_ID"] = "300000000000000001"
    notifier = TicketNotifier(client, environ=environ)

    await notifier.send_ticket_update(TICKET, "on_hold", admin_notes="Waiting on logs")

    assert client.sent[-1].channel_id == 300000000000000001
    assert "📌 On Hold Reason" in field_names(client.sent[-1].embed)


async def test_missing_ticket_channel_is_a_configuration_error(client):
    notifier = TicketNotifier(client, environ={})
    with pytest.raises(ConfigurationError):
        await notifier.send_ticket_update(TICKET, "open", is_new=True)


def test_ticket_templates():
    assert ticket_template("open", is_new=True).title == "New Support Ticket Created"
    assert ticket_template("open").title == "Ticket Reopened"
    assert ticket_template("in_progress").emoji == "🔧"
    with pytest.raises(ConfigurationError):
        ticket_template("archived")


def test_ticket_embed_hides_description_for_updates(clock):
    embed = build_ticket_embed(TICKET, "in_progress", clock())
    assert "📝 Description" not in field_names(embed)
    assert "`TKT-000007`" in [f.value for f in embed.fields]


# ---------- Delivery and ledger ----------

async def test_deliver_is_idempotent_per_transition(db, client, application_notifier):
    ledger = NotificationLedger(db)

    async def send():
        return await application_notifier.send_application_decision(decision())

    first = await deliver(ledger, "job_applications", "a1", "approved", {"kind": "application"}, send)
    second = await deliver(ledger, "job_applications", "a1", "approved", {"kind": "application"}, send)

    assert first.state == "sent"
    assert second.state == "duplicate"
    assert second.message_id == first.message_id
    assert len(client.sent) == 1


async def test_deliver_never_raises_and_records_the_failure(db, client, application_notifier):
    ledger = NotificationLedger(db)
    client.fail_with = http_error(500)

    outcome = await deliver(ledger, "job_applications", "a1", "approved",
                            {"kind": "application", "decision": decision().to_dict()},
                            lambda: application_notifier.send_application_decision(decision()))

    assert outcome.state == "failed"
    assert not outcome.delivered
    [entry] = await ledger.failures()
    assert entry["attempts"] == 1
    assert json.loads(entry["payload"])["kind"] == "application"


async def test_retry_replays_failed_entries(db, client, application_notifier):
    ledger = NotificationLedger(db)
    client.fail_with = http_error(500)
    payload = {"kind": "application", "decision": decision().to_dict()}
    await deliver(ledger, "job_applications", "a1", "approved", payload,
                  lambda: application_notifier.send_application_decision(decision()))

    async def resend(entry_payload):
        return await application_notifier.send_application_decision(ApplicationDecision(**entry_payload["decision"]))

    assert await ledger.retry({"application": resend}) == {"sent": 0, "failed": 1}

    client.fail_with = None
    assert await ledger.retry({"application": resend}) == {"sent": 1, "failed": 0}
    assert await ledger.failures() == []
    entry = await ledger.entry("job_applications", "a1", "approved")
    assert entry["state"] == "sent"
    assert entry["attempts"] == 3


async def test_retry_without_dispatcher_counts_as_failed(db):
    ledger = NotificationLedger(db)
    await ledger.record_failure("support_tickets", "t1", "new", "boom", {"kind": "ticket"})

    assert await ledger.retry({}) == {"sent": 0, "failed": 1}


async def test_ledger_errors_do_not_escape_deliver(db, client, application_notifier, monkeypatch):
    ledger = NotificationLedger(db)

    async def locked(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(ledger, "record_sent", locked)
    sent = await deliver(ledger, "job_applications", "a1", "approved", {"kind": "application"},
                         lambda: application_notifier.send_application_decision(decision()))
    assert sent.state == "sent"
    assert len(client.sent) == 1

    monkeypatch.setattr(ledger, "already_sent", locked)
    monkeypatch.setattr(ledger, "record_failure", locked)
    client.fail_with = http_error(500)
    failed = await deliver(ledger, "job_applications", "a2", "rejected", {"kind": "application"},
                           lambda: application_notifier.send_application_decision(decision()))
    assert failed.state == "failed"
