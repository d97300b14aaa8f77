"""
FiveM server status.

Reads the server's public players.json, info.json and dynamic.json
endpoints. Parsing is kept separate from fetching so it can be tested
without a server.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

import aiohttp

from constants import FIVEM_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_MAX_PLAYERS = 32
DEFAULT_SERVER_NAME = "SLRP Server"


@dataclass
class Player:
    id: int
    name: str
    ping: int = 0


@dataclass
class ServerStatus:
    online: bool
    players: List[Player] = field(default_factory=list)
    max_players: int = DEFAULT_MAX_PLAYERS
    uptime_seconds: int = 0
    server_name: str = DEFAULT_SERVER_NAME
    gametype: str = "Roleplay"
    mapname: str = "Los Santos"
    resources: int = 0

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def load(self) -> int:
        """Percentage of slots in use."""
        if not self.max_players:
            return 0
        return round(self.player_count / self.max_players * 100)

    @property
    def uptime(self) -> str:
        return format_uptime(self.uptime_seconds)


def format_uptime(seconds: int) -> str:
    """Readable uptime: 3d 4h for at least a day, 5h otherwise."""
    hours = max(int(seconds or 0), 0) // 3600
    days = hours // 24
    if days > 0:
        return f"{days}d {hours % 24}h"
    return f"{hours}h"


def _int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_server_status(players: Optional[list], info: Optional[Mapping[str, Any]],
                        dynamic: Optional[Mapping[str, Any]]) -> ServerStatus:
    """
    Build a ServerStatus from the three FiveM endpoint payloads.

    Any payload may be missing (None or empty); missing values fall back to
    defaults. Max players comes from info.json's sv_maxClients, then
    dynamic.json's sv_maxclients.
    """
    info = info or {}
    dynamic = dynamic or {}
    server_vars = info.get("vars") or {}

    parsed_players = [
        Player(id=_int(player.get("id")), name=str(player.get("name") or "Unknown"), ping=_int(player.get("ping")))
        for player in (players or [])
        if isinstance(player, Mapping)
    ]

    max_players = _int(server_vars.get("sv_maxClients")) or _int(dynamic.get("sv_maxclients")) or DEFAULT_MAX_PLAYERS

    return ServerStatus(
        online=True,
        players=parsed_players,
        max_players=max_players,
        uptime_seconds=_int(dynamic.get("uptime")),
        server_name=info.get("server") or dynamic.get("hostname") or DEFAULT_SERVER_NAME,
        gametype=info.get("gametype") or dynamic.get("gametype") or "Roleplay",
        mapname=info.get("mapname") or dynamic.get("mapname") or "Los Santos",
        resources=len(info.get("resources") or []),
    )


def offline_status() -> ServerStatus:
    return ServerStatus(online=False)


async def _get_json(session: aiohttp.ClientSession, url: str, timeout: aiohttp.ClientTimeout):
    async with session.get(url, timeout=timeout) as response:
        if response.status != 200:
            logger.debug(f"{url} answered {response.status}")
            return None
        return await response.json(content_type=None)


async def fetch_server_status(session: aiohttp.ClientSession, host: str, port: int,
                              timeout: float = FIVEM_REQUEST_TIMEOUT) -> ServerStatus:
    """
    Query a FiveM server.

    Returns an offline status when the server cannot be reached at all.
    """
    base_url = f"http://{host}:{port}"
    client_timeout = aiohttp.ClientTimeout(total=timeout)

    try:
        players = await _get_json(session, f"{base_url}/players.json", client_timeout)
        info = await _get_json(session, f"{base_url}/info.json", client_timeout)
        dynamic = await _get_json(session, f"{base_url}/dynamic.json", client_timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning(f"FiveM server {base_url} unreachable: {e}")
        return offline_status()

    return parse_server_status(players, info, dynamic)
