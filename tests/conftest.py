"""Shared fixtures: a temporary database, the change feed and a fake Discord client."""

from datetime import datetime, timezone
from types import SimpleNamespace

import discord
import pytest

from core.cooldown import EligibilityGate
from core.notifications import DEPARTMENTS, ApplicationNotifier, NotificationLedger, TicketNotifier
from core.realtime import ChangeFeed
from core.tickets import TicketService
from core.workflow import ApplicationWorkflow
from database import Database

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

TICKET_CHANNEL_ID = 200000000000000001
TICKET_RESPONSE_CHANNEL_ID = 200000000000000002
TICKET_ROLE_ID = 200000000000000003

CHANNEL_ENV = {
    department.channel_env: str(100000000000000000 + index)
    for index, department in enumerate(DEPARTMENTS.values(), start=1)
}
CHANNEL_ENV.update({
    "DISCORD_TICKET_CHANNEL_ID": str(TICKET_CHANNEL_ID),
    "DISCORD_TICKET_RESPONSE_CHANNEL_ID": str(TICKET_RESPONSE_CHANNEL_ID),
    "DISCORD_TICKET_ROLE_ID": str(TICKET_ROLE_ID),
})

APPLICANT_ID = "111111111111111111"
REVIEWER_ID = "222222222222222222"


def http_error(status: int = 500, text: str = "Internal Server Error") -> discord.HTTPException:
    return discord.HTTPException(SimpleNamespace(status=status, reason="Error"), text)


class FakeChannel:
    def __init__(self, client, channel_id):
        self.client = client
        self.id = channel_id

    async def send(self, content=None, embed=None, allowed_mentions=None, **kwargs):
        if self.client.fail_with is not None:
            raise self.client.fail_with
        self.client.next_message_id += 1
        self.client.sent.append(SimpleNamespace(
            channel_id=self.id, content=content, embed=embed, allowed_mentions=allowed_mentions,
            message_id=self.client.next_message_id,
        ))
        return SimpleNamespace(id=self.client.next_message_id)


class FakeUser:
    def __init__(self, user_id, display_name="Reviewer", avatar_url=None):
        self.id = int(user_id)
        self.display_name = display_name
        self.avatar = SimpleNamespace(url=avatar_url) if avatar_url else None


class FakeDiscordClient:
    """Implements the two client calls the notifiers use."""

    def __init__(self):
        self.sent = []
        self.users = {}
        self.fail_with = None
        self.next_message_id = 900000000000000000

    def add_user(self, user: FakeUser):
        self.users[user.id] = user

    async def fetch_user(self, user_id):
        user = self.users.get(int(user_id))
        if user is None:
            raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown User")
        return user

    def get_partial_messageable(self, channel_id):
        return FakeChannel(self, channel_id)


@pytest.fixture
def client():
    return FakeDiscordClient()


@pytest.fixture
def environ():
    return dict(CHANNEL_ENV)


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
async def feed():
    change_feed = ChangeFeed()
    yield change_feed
    change_feed.close()


@pytest.fixture
async def db(tmp_path, feed):
    database = Database(str(tmp_path / "skylife.db"), feed)
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def ledger(db):
    return NotificationLedger(db)


@pytest.fixture
def application_notifier(client, environ, clock):
    return ApplicationNotifier(client, environ=environ, clock=clock)


@pytest.fixture
def ticket_notifier(client, environ, clock):
    return TicketNotifier(client, environ=environ, clock=clock)


@pytest.fixture
def gate(db):
    return EligibilityGate(db, cooldown_hours=24)


@pytest.fixture
def workflow(db, application_notifier, gate, ledger):
    return ApplicationWorkflow(db, application_notifier, gate, ledger)


@pytest.fixture
def tickets(db, ticket_notifier, ledger):
    return TicketService(db, ticket_notifier, ledger)


@pytest.fixture
def whitelist_form():
    def make(**overrides):
        payload = {
            "application_type": "whitelist",
            "discord": "sky_user",
            "discord_id": APPLICANT_ID,
            "steam_id": "steam:110000112345678",
            "age": 21,
            "experience": "Two years on other RP servers",
            "backstory": "Grew up in Sandy Shores.",
        }
        payload.update(overrides)
        return payload
    return make


@pytest.fixture
def job_form():
    def make(**overrides):
        payload = {
            "application_type": "police",
            "discord_id": APPLICANT_ID,
            "character_name": "Jack Reed",
            "age": 25,
            "character_background": "Former security guard.",
            "why_join": "To serve Los Santos.",
        }
        payload.update(overrides)
        return payload
    return make


@pytest.fixture
def ticket_form():
    def make(**overrides):
        payload = {
            "subject": "Cannot connect",
            "description": "The server kicks me on join every time.",
            "category": "technical",
            "priority": "high",
            "discord_id": APPLICANT_ID,
            "discord_username": "sky_user",
        }
        payload.update(overrides)
        return payload
    return make
