"""status/monitor.py — Polls the public status API for the advertised server."""
import asyncio, logging, time
from dataclasses import dataclass, field
from typing import Optional
import aiohttp

log = logging.getLogger(__name__)

STATUS_API = "https://api.mcstatus.io/v2/status/java"


@dataclass
class ServerStatus:
    reachable:      bool           # False → the status API itself failed ("status unknown")
    online:         bool = False
    players_online: int  = 0
    players_max:    int  = 0
    player_names:   list = field(default_factory=list)
    version:        Optional[str] = None
    checked_at:     float = field(default_factory=time.time)

    @property
    def label(self) -> str:
        if not self.reachable: return "Status unknown"
        if not self.online:    return "Offline"
        return f"{self.players_online}/{self.players_max}"

    def to_dict(self) -> dict:
        return {"reachable": self.reachable, "online": self.online,
                "players": {"online": self.players_online, "max": self.players_max,
                            "list": self.player_names},
                "version": self.version, "label": self.label,
                "checked_at": int(self.checked_at)}

def unknown_status() -> ServerStatus:
    return ServerStatus(reachable=False)


def _player_names(raw) -> list:
    names = []
    for entry in raw if isinstance(raw, list) else []:
        if isinstance(entry, str):
            names.append(entry)
        elif isinstance(entry, dict):
            name = entry.get("name_clean") or entry.get("name_raw") or entry.get("name")
            if name: names.append(name)
    return names

def parse_status(data) -> ServerStatus:
    if not isinstance(data, dict):
        return unknown_status()
    if not data.get("online"):
        return ServerStatus(reachable=True, online=False)
    players = data.get("players") or {}
    version = data.get("version") or {}
    return ServerStatus(
        reachable      = True,
        online         = True,
        players_online = int(players.get("online") or 0),
        players_max    = int(players.get("max") or 0),
        player_names   = _player_names(players.get("list")),
        version        = version.get("name_clean") or version.get("name"),
    )

def status_url(host: str, port: Optional[int] = None, api: str = STATUS_API) -> str:
    target = f"{host}:{port}" if port else host
    return f"{api.rstrip('/')}/{target}"

async def fetch_status(session: aiohttp.ClientSession, host: str,
                       port: Optional[int] = None, api: str = STATUS_API) -> ServerStatus:
    url = status_url(host, port, api)
    try:
        async with session.get(url) as resp:
            if resp.status != 200:
                log.warning(f"Status API returned HTTP {resp.status} for {host}")
                return unknown_status()
            data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        log.warning(f"Status check failed for {host}: {e!r}")
        return unknown_status()
    return parse_status(data)


class StatusMonitor:
    def __init__(self, session, host, port=None, api=STATUS_API, interval=30):
        self.session  = session
        self.host     = host
        self.port     = port
        self.api      = api
        self.interval = interval
        self.latest: ServerStatus = unknown_status()

    async def refresh(self) -> ServerStatus:
        self.latest = await fetch_status(self.session, self.host, self.port, self.api)
        return self.latest

    async def run(self):
        log.info(f"Status loop started for {self.host}:{self.port} (every {self.interval}s)")
        while True:
            try:
                s = await self.refresh()
                log.debug(f"Status: {s.label}")
            except Exception as e:
                log.error(f"Status tick error: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
