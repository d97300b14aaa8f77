import pytest

from conftest import APPLICANT_ID, http_error
from core.errors import NotFoundError, SubmissionBlockedError, ValidationError
from core.workflow import Reviewer, review_actions

REVIEWER = Reviewer(name="Alex", discord_id="222222222222222222")


async def submit_police(workflow, job_form, user_id=APPLICANT_ID, **overrides):
    return await workflow.submit(user_id, job_form(**overrides))


async def test_submit_stores_a_pending_row(workflow, job_form, db):
    row = await submit_police(workflow, job_form)

    assert row["status"] == "pending"
    assert row["user_id"] == APPLICANT_ID
    assert row["job_type"] == "Police Department"
    assert row["reviewed_at"] is None
    assert await db.count("job_applications") == 1


async def test_invalid_submission_writes_nothing(workflow, job_form, db):
    with pytest.raises(ValidationError):
        await submit_police(workflow, job_form, age=5)
    assert await db.count("job_applications") == 0


async def test_second_submission_is_blocked_while_pending(workflow, job_form, db):
    await submit_police(workflow, job_form)

    with pytest.raises(SubmissionBlockedError) as exc_info:
        await submit_police(workflow, job_form)

    assert exc_info.value.status_code == 409
    assert exc_info.value.eligibility.state == "pending"
    assert await db.count("job_applications") == 1


async def test_other_departments_are_not_blocked(workflow, job_form):
    await submit_police(workflow, job_form)
    row = await submit_police(workflow, job_form, application_type="ems")
    assert row["job_type"] == "EMS"


async def test_reviewed_at_is_set_only_by_decisions(workflow, job_form, client):
    row = await submit_police(workflow, job_form)

    held = await workflow.update_status("police", row["id"], "on_hold", REVIEWER)
    assert held.application["reviewed_at"] is None
    assert held.notification.state == "skipped"
    assert client.sent == []

    approved = await workflow.update_status("police", row["id"], "approved", REVIEWER, notes="  Welcome  ")
    assert approved.previous_status == "on_hold"
    assert approved.application["reviewed_at"] is not None
    assert approved.application["reviewed_by"] == "Alex"
    assert approved.application["admin_notes"] == "Welcome"
    assert approved.application_type == "police"
    assert approved.notification.state == "sent"
    assert len(client.sent) == 1


async def test_notes_are_kept_when_not_given(workflow, job_form):
    row = await submit_police(workflow, job_form)
    await workflow.update_status("police", row["id"], "on_hold", REVIEWER, notes="Need more detail")

    result = await workflow.update_status("police", row["id"], "rejected", REVIEWER)
    assert result.application["admin_notes"] == "Need more detail"


async def test_failed_notification_does_not_undo_the_transition(workflow, job_form, client, db, ledger):
    row = await submit_police(workflow, job_form)
    client.fail_with = http_error(500)

    result = await workflow.update_status("police", row["id"], "approved", REVIEWER)

    assert result.status == "approved"
    assert result.notification.state == "failed"
    stored = await db.get("job_applications", row["id"])
    assert stored["status"] == "approved"
    assert stored["reviewed_at"] is not None

    [failure] = await ledger.failures()
    assert failure["subject_id"] == row["id"]

    client.fail_with = None
    counts = await ledger.retry({"application": workflow.redeliver})
    assert counts == {"sent": 1, "failed": 0}
    assert len(client.sent) == 1


async def test_missing_channel_does_not_undo_the_transition(workflow, job_form, environ, db):
    row = await submit_police(workflow, job_form)
    del environ["DISCORD_PD_CHANNEL_ID"]

    result = await workflow.update_status("police", row["id"], "rejected", REVIEWER)

    assert result.notification.state == "failed"
    assert "not configured" in result.notification.error
    assert (await db.get("job_applications", row["id"]))["status"] == "rejected"


async def test_repeated_decision_is_not_posted_twice(workflow, job_form, client):
    row = await submit_police(workflow, job_form)

    await workflow.update_status("police", row["id"], "approved", REVIEWER)
    again = await workflow.update_status("police", row["id"], "approved", REVIEWER)

    assert again.notification.state == "duplicate"
    assert len(client.sent) == 1


async def test_unknown_status_and_missing_application(workflow, job_form):
    row = await submit_police(workflow, job_form)

    with pytest.raises(ValidationError):
        await workflow.update_status("police", row["id"], "archived", REVIEWER)
    with pytest.raises(NotFoundError):
        await workflow.update_status("police", "missing", "approved", REVIEWER)


def test_review_actions():
    assert review_actions("pending") == ("approved", "rejected", "on_hold", "closed")
    assert "on_hold" not in review_actions("on_hold")
    assert review_actions("approved") == ()
    assert review_actions("closed") == ()


async def test_listing_and_counts(workflow, job_form, whitelist_form):
    police = await submit_police(workflow, job_form)
    await submit_police(workflow, job_form, application_type="mechanic")
    await workflow.submit("333333333333333333", whitelist_form(discord_id="333333333333333333"))
    await workflow.update_status("police", police["id"], "approved", REVIEWER)

    jobs = await workflow.list_applications("job")
    assert {app.application_type for app in jobs} == {"police", "mechanic"}

    mine = await workflow.list_applications(user_id=APPLICANT_ID)
    assert len(mine) == 2

    pending = await workflow.pending_counts()
    assert pending["job"] == 1
    assert pending["whitelist"] == 1
    assert pending["gang"] == 0

    statuses = await workflow.status_counts()
    assert statuses == {"pending": 2, "approved": 1, "rejected": 0, "on_hold": 0, "closed": 0}


async def test_job_rows_classified_as_gang_can_be_reviewed(workflow, gate, db, client):
    row = await db.insert("job_applications", {
        "user_id": APPLICANT_ID, "discord_id": APPLICANT_ID, "character_name": "Vinnie",
        "job_type": "Gang Member",
    })

    [listed] = await workflow.list_applications("gang")
    assert listed.id == row["id"]
    assert listed.application_type == "gang"
    assert (await workflow.get("gang", row["id"]))["id"] == row["id"]
    assert (await gate.evaluate("gang", APPLICANT_ID)).state == "pending"

    result = await workflow.update_status(listed.application_type, listed.id, "approved", REVIEWER)

    assert result.table == "job_applications"
    assert result.application_type == "gang"
    assert result.notification.state == "sent"
    assert (await db.get("job_applications", row["id"]))["status"] == "approved"
    assert (await gate.evaluate("gang", APPLICANT_ID)).state == "approved"


async def test_gang_lookup_skips_job_rows_of_other_departments(workflow, job_form):
    police = await submit_police(workflow, job_form)

    with pytest.raises(NotFoundError):
        await workflow.update_status("gang", police["id"], "approved", REVIEWER)


async def test_concurrent_reviewers_last_write_wins(workflow, job_form, db):
    row = await submit_police(workflow, job_form)
    first = Reviewer(name="Alex", discord_id="222222222222222222")
    second = Reviewer(name="Sam", discord_id="333333333333333333")

    await workflow.update_status("police", row["id"], "approved", first, notes="Welcome aboard")
    await workflow.update_status("police", row["id"], "rejected", second, notes="Failed background check")

    stored = await db.get("job_applications", row["id"])
    assert stored["status"] == "rejected"
    assert stored["reviewed_by"] == "Sam"
    assert stored["admin_notes"] == "Failed background check"


async def test_ledger_failure_after_commit_keeps_the_transition(workflow, job_form, ledger, db, client,
                                                                monkeypatch):
    row = await submit_police(workflow, job_form)

    async def locked(*args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(ledger, "record_sent", locked)

    result = await workflow.update_status("police", row["id"], "approved", REVIEWER)

    assert result.status == "approved"
    assert result.notification.state == "sent"
    assert len(client.sent) == 1
    assert (await db.get("job_applications", row["id"]))["status"] == "approved"
