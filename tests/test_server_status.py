import aiohttp

from branches.server_status.helpers import (
    DEFAULT_MAX_PLAYERS,
    fetch_server_status,
    format_uptime,
    offline_status,
    parse_server_status,
)

PLAYERS = [
    {"id": 3, "name": "Jack Reed", "ping": 42},
    {"id": 7, "name": "Ava Cole", "ping": 88},
    "garbage",
]
INFO = {
    "server": "SkyLife RP | Serious RP",
    "vars": {"sv_maxClients": "64", "gametype": "Roleplay"},
    "resources": ["qb-core", "qb-phone", "pma-voice"],
}
DYNAMIC = {"hostname": "SkyLife", "sv_maxclients": "48", "uptime": 3 * 86400 + 4 * 3600 + 59, "mapname": "Los Santos"}


def test_parse_full_status():
    status = parse_server_status(PLAYERS, INFO, DYNAMIC)

    assert status.online
    assert [player.name for player in status.players] == ["Jack Reed", "Ava Cole"]
    assert status.player_count == 2
    assert status.max_players == 64
    assert status.load == 3
    assert status.server_name == "SkyLife RP | Serious RP"
    assert status.resources == 3
    assert status.uptime == "3d 4h"


def test_max_players_falls_back_to_dynamic_then_default():
    assert parse_server_status([], {}, DYNAMIC).max_players == 48
    assert parse_server_status([], None, None).max_players == DEFAULT_MAX_PLAYERS


def test_missing_payloads_use_defaults():
    status = parse_server_status(None, None, None)

    assert status.online
    assert status.players == []
    assert status.uptime_seconds == 0
    assert status.server_name == "SLRP Server"


def test_format_uptime():
    assert format_uptime(0) == "0h"
    assert format_uptime(5 * 3600 + 1800) == "5h"
    assert format_uptime(26 * 3600) == "1d 2h"
    assert format_uptime(None) == "0h"


def test_offline_status():
    status = offline_status()
    assert not status.online
    assert status.player_count == 0
    assert status.load == 0


async def test_unreachable_server_is_reported_offline():
    async with aiohttp.ClientSession() as session:
        status = await fetch_server_status(session, "127.0.0.1", 1, timeout=2)
    assert not status.online
