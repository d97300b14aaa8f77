import httpx
import pytest

from api import create_app
from conftest import APPLICANT_ID, http_error


@pytest.fixture
def make_client(workflow, tickets, application_notifier, ticket_notifier):
    def make(api_token=None):
        app = create_app(workflow=workflow, tickets=tickets, application_notifier=application_notifier,
                         ticket_notifier=ticket_notifier, api_token=api_token)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return make


@pytest.fixture
async def api(make_client):
    async with make_client() as http:
        yield http


async def test_health(api):
    response = await api.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_application_notification_contract(api, client):
    response = await api.post("/send-application-notification", json={
        "applicationType": "Police Department",
        "applicantName": "Jack Reed",
        "applicantDiscordId": APPLICANT_ID,
        "status": "approved",
        "moderatorName": "Alex",
        "adminNotes": "Welcome aboard",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["messageId"] == str(client.next_message_id)
    assert body["imageUrl"].endswith("/pd-approved.jpg")


async def test_application_notification_errors(api, environ, client):
    unknown = await api.post("/send-application-notification", json={
        "applicationType": "Pilot", "applicantName": "x", "status": "approved", "moderatorName": "y",
    })
    assert unknown.status_code == 400
    assert "Unknown application type" in unknown.json()["error"]

    del environ["DISCORD_EMS_CHANNEL_ID"]
    unconfigured = await api.post("/send-application-notification", json={
        "applicationType": "ems", "applicantName": "x", "status": "rejected", "moderatorName": "y",
    })
    assert unconfigured.status_code == 500

    client.fail_with = http_error(403, "Missing Access")
    remote = await api.post("/send-application-notification", json={
        "applicationType": "mechanic", "applicantName": "x", "status": "approved", "moderatorName": "y",
    })
    assert remote.status_code == 502
    assert remote.json()["details"] == "Missing Access"

    bad_status = await api.post("/send-application-notification", json={
        "applicationType": "mechanic", "applicantName": "x", "status": "on_hold", "moderatorName": "y",
    })
    assert bad_status.status_code == 422


async def test_submit_list_review_and_export(api, job_form):
    created = await api.post("/applications", json={"userId": APPLICANT_ID, "form": job_form()})
    assert created.status_code == 201
    application_id = created.json()["application"]["id"]

    duplicate = await api.post("/applications", json={"userId": APPLICANT_ID, "form": job_form()})
    assert duplicate.status_code == 409
    assert duplicate.json()["eligibility"]["state"] == "pending"

    listed = await api.get("/applications", params={"category": "job"})
    assert listed.json()["total"] == 1
    assert listed.json()["applications"][0]["applicationType"] == "police"

    eligibility = await api.get("/applications/police/eligibility", params={"user_id": APPLICANT_ID})
    assert eligibility.json()["canSubmit"] is False

    reviewed = await api.patch(f"/applications/police/{application_id}/status", json={
        "status": "rejected", "reviewerName": "Alex", "adminNotes": "Too short",
    })
    assert reviewed.status_code == 200
    body = reviewed.json()
    assert body["previousStatus"] == "pending"
    assert body["application"]["status"] == "rejected"
    assert body["notification"]["state"] == "sent"

    exported = await api.get("/applications/export.csv", params={"category": "job"})
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    assert "Too short" in exported.text


async def test_invalid_submission_reports_fields(api, whitelist_form):
    response = await api.post("/applications", json={"userId": "u1", "form": whitelist_form(age=9)})
    assert response.status_code == 422
    assert "age" in response.json()["fields"]


async def test_unknown_category_and_empty_export(api):
    assert (await api.get("/applications", params={"category": "nope"})).status_code == 422
    assert (await api.get("/applications/export.csv", params={"category": "gang"})).status_code == 404


async def test_missing_application_is_not_found(api):
    response = await api.patch("/applications/police/missing/status", json={
        "status": "approved", "reviewerName": "Alex",
    })
    assert response.status_code == 404


async def test_ticket_endpoints(api, ticket_form, client):
    created = await api.post("/tickets", json={"userId": "u1", **ticket_form()})
    assert created.status_code == 201
    ticket = created.json()["ticket"]
    assert ticket["ticket_number"] == "TKT-000001"

    listed = await api.get("/tickets", params={"status": "open"})
    assert listed.json()["total"] == 1

    unresolved = await api.patch(f"/tickets/{ticket['id']}/status", json={"status": "resolved"})
    assert unresolved.status_code == 422

    resolved = await api.patch(f"/tickets/{ticket['id']}/status", json={
        "status": "resolved", "resolvedBy": "Alex", "resolution": "Fixed",
    })
    assert resolved.status_code == 200
    assert resolved.json()["ticket"]["resolved_by"] == "Alex"

    notified = await api.post("/send-ticket-notification", json={"ticketId": ticket["id"], "status": "resolved",
                                                                 "resolution": "Fixed"})
    assert notified.status_code == 200
    assert notified.json()["message_id"] == str(client.next_message_id)

    missing = await api.post("/send-ticket-notification", json={"ticketId": "missing", "status": "open"})
    assert missing.status_code == 404


async def test_bearer_token(make_client):
    async with make_client(api_token="s3cret") as http:
        assert (await http.get("/")).status_code == 200
        assert (await http.get("/tickets")).status_code == 401
        assert (await http.get("/tickets", headers={"Authorization": "Bearer wrong"})).status_code == 401
        assert (await http.get("/tickets", headers={"Authorization": "Bearer s3cret"})).status_code == 200
