import pytest

from conftest import TICKET_CHANNEL_ID, TICKET_RESPONSE_CHANNEL_ID, http_error
from core.errors import NotFoundError, ValidationError
from core.tickets import format_ticket_number, parse_ticket_number


def test_ticket_number_format():
    assert format_ticket_number(1) == "TKT-000001"
    assert parse_ticket_number("TKT-000042") == 42
    assert parse_ticket_number("ABC-1") == 0
    assert parse_ticket_number(None) == 0


async def test_tickets_get_sequential_numbers_and_notify_staff(tickets, ticket_form, client):
    first = await tickets.create_ticket("u1", ticket_form())
    second = await tickets.create_ticket("u2", ticket_form(subject="Another issue"))

    assert first.ticket["ticket_number"] == "TKT-000001"
    assert second.ticket["ticket_number"] == "TKT-000002"
    assert first.ticket["status"] == "open"
    assert first.previous_status is None
    assert first.notification.state == "sent"
    assert [sent.channel_id for sent in client.sent] == [TICKET_CHANNEL_ID, TICKET_CHANNEL_ID]


async def test_invalid_ticket_writes_nothing(tickets, ticket_form, db):
    with pytest.raises(ValidationError):
        await tickets.create_ticket("u1", ticket_form(description="short"))
    assert await db.count("support_tickets") == 0


async def test_resolving_requires_a_resolution(tickets, ticket_form):
    ticket = (await tickets.create_ticket("u1", ticket_form())).ticket

    with pytest.raises(ValidationError) as exc_info:
        await tickets.update_status(ticket["id"], "resolved", resolved_by="Alex", resolution="   ")
    assert "resolution" in exc_info.value.field_errors
    assert (await tickets.get(ticket["id"]))["status"] == "open"


async def test_resolution_is_only_allowed_when_resolving(tickets, ticket_form):
    ticket = (await tickets.create_ticket("u1", ticket_form())).ticket

    with pytest.raises(ValidationError):
        await tickets.update_status(ticket["id"], "in_progress", resolution="Fixed it")


async def test_resolve_then_reopen(tickets, ticket_form, client):
    ticket = (await tickets.create_ticket("u1", ticket_form())).ticket

    resolved = await tickets.update_status(ticket["id"], "resolved", resolved_by="Alex",
                                           resolution="Reinstalled the client")
    assert resolved.previous_status == "open"
    assert resolved.ticket["resolution"] == "Reinstalled the client"
    assert resolved.ticket["resolved_by"] == "Alex"
    assert resolved.ticket["resolved_at"] is not None
    assert client.sent[-1].channel_id == TICKET_RESPONSE_CHANNEL_ID

    reopened = await tickets.update_status(ticket["id"], "open")
    assert reopened.ticket["resolution"] is None
    assert reopened.ticket["resolved_at"] is None
    assert reopened.notification.state == "sent"
    assert client.sent[-1].embed.title == "📋 Ticket Reopened"


async def test_revisiting_a_status_notifies_again(tickets, ticket_form, client):
    ticket = (await tickets.create_ticket("u1", ticket_form())).ticket

    await tickets.update_status(ticket["id"], "in_progress")
    await tickets.update_status(ticket["id"], "on_hold", admin_notes="Waiting on logs")
    again = await tickets.update_status(ticket["id"], "in_progress")

    assert again.notification.state == "sent"
    assert len(client.sent) == 4


async def test_failed_notification_keeps_the_status(tickets, ticket_form, client):
    ticket = (await tickets.create_ticket("u1", ticket_form())).ticket
    client.fail_with = http_error(429, "rate limited")

    result = await tickets.update_status(ticket["id"], "on_hold", admin_notes="Waiting on logs")

    assert result.notification.state == "failed"
    stored = await tickets.get(ticket["id"])
    assert stored["status"] == "on_hold"
    assert stored["admin_notes"] == "Waiting on logs"

    client.fail_with = None
    assert await tickets.ledger.retry({"ticket": tickets.redeliver}) == {"sent": 1, "failed": 0}


async def test_lookup_by_number_and_listing(tickets, ticket_form):
    ticket = (await tickets.create_ticket("u1", ticket_form())).ticket
    await tickets.create_ticket("u2", ticket_form())

    assert (await tickets.get_by_number(" tkt-000001 "))["id"] == ticket["id"]
    with pytest.raises(NotFoundError):
        await tickets.get_by_number("TKT-999999")
    with pytest.raises(NotFoundError):
        await tickets.update_status("missing", "in_progress")

    assert len(await tickets.list_tickets()) == 2
    assert len(await tickets.list_tickets(user_id="u1")) == 1
    assert await tickets.list_tickets(status="resolved") == []


async def test_ticket_numbers_keep_counting_past_six_digits(tickets, ticket_form, db):
    for number in ("TKT-000007", "TKT-999999"):
        await db.insert("support_tickets", {
            "ticket_number": number, "user_id": "u0", "subject": "Old", "description": "Imported ticket",
        })

    first = await tickets.create_ticket("u1", ticket_form())
    second = await tickets.create_ticket("u2", ticket_form())

    assert first.ticket["ticket_number"] == "TKT-1000000"
    assert second.ticket["ticket_number"] == "TKT-1000001"
