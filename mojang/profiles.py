"""mojang/profiles.py — Username → profile lookup over public Minecraft APIs.

Providers are tried in order. Each one either returns a PlayerProfile, returns
None ("this provider has no such player"), or raises ProviderError when the
request itself failed. Only ProviderError is retried, and only up to
`retries` extra attempts per provider.
"""
import asyncio, logging, re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote
import aiohttp

log = logging.getLogger(__name__)

USERNAME_RE   = re.compile(r"^[A-Za-z0-9_]{3,16}$")
AVATAR_BASE   = "https://mc-heads.net/avatar"
RENDER_BASE   = "https://crafatar.com/renders/body"
DEFAULT_SKIN  = "MHF_Steve"


class InvalidUsername(ValueError):
    pass

class ProviderError(Exception):
    """Transport-level failure talking to a provider (retryable)."""


def is_valid_username(name) -> bool:
    return isinstance(name, str) and bool(USERNAME_RE.match(name))

def avatar_url(uuid_or_name: Optional[str] = None, size: int = 64) -> str:
    return f"{AVATAR_BASE}/{uuid_or_name or DEFAULT_SKIN}/{size}"

def body_render_url(uuid_or_name: str) -> str:
    return f"{RENDER_BASE}/{uuid_or_name}?overlay"


@dataclass(frozen=True)
class PlayerProfile:
    username: str
    uuid:     str          # 32 hex chars, as the providers hand it out
    source:   str

    @property
    def avatar_url(self) -> str:
        return avatar_url(self.uuid)

    @property
    def skin_url(self) -> str:
        return body_render_url(self.uuid)

    def to_dict(self) -> dict:
        return {"username": self.username, "uuid": self.uuid, "source": self.source,
                "avatar_url": self.avatar_url, "skin_url": self.skin_url}


# ── Providers ─────────────────────────────────────────────────────────────────

class ProfileProvider:
    name     = "base"
    base_url = ""

    def __init__(self, base_url: Optional[str] = None):
        if base_url:
            self.base_url = base_url.rstrip("/")

    def url_for(self, username: str) -> str:
        return f"{self.base_url}/{quote(username)}"

    async def fetch(self, session: aiohttp.ClientSession, username: str):
        """JSON body for username, None on 204/404, ProviderError otherwise."""
        try:
            async with session.get(self.url_for(username)) as resp:
                if resp.status in (204, 404):
                    return None
                if resp.status == 429 or resp.status >= 500:
                    raise ProviderError(f"{self.name}: HTTP {resp.status}")
                if resp.status != 200:
                    return None
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ProviderError(f"{self.name}: {e!r}") from e

    def parse(self, data) -> Optional[PlayerProfile]:
        raise NotImplementedError

    async def lookup(self, session, username) -> Optional[PlayerProfile]:
        data = await self.fetch(session, username)
        return self.parse(data) if data else None


class PlayerDBProvider(ProfileProvider):
    name     = "playerdb"
    base_url = "https://playerdb.co/api/player/minecraft"

    def parse(self, data):
        # {"success": true, "data": {"player": {"id": "...", "raw_id": "...", "username": "..."}}}
        if not isinstance(data, dict) or not data.get("success"):
            return None
        inner  = data.get("data")
        player = inner.get("player") if isinstance(inner, dict) else None
        if not isinstance(player, dict):
            return None
        uid    = player.get("raw_id") or player.get("id")
        name   = player.get("username")
        if not isinstance(uid, str) or not isinstance(name, str) or not uid or not name:
            return None
        return PlayerProfile(name, uid.replace("-", "").lower(), self.name)


class MojangProvider(ProfileProvider):
    name     = "mojang"
    base_url = "https://api.mojang.com/users/profiles/minecraft"

    def parse(self, data):
        # {"id": "069a79f444e94726a5befca90e38aaf5", "name": "Notch"}
        if not isinstance(data, dict):
            return None
        uid, name = data.get("id"), data.get("name")
        if not isinstance(uid, str) or not isinstance(name, str) or not uid or not name:
            return None
        return PlayerProfile(name, uid.replace("-", "").lower(), self.name)


PROVIDERS = {"playerdb": PlayerDBProvider, "mojang": MojangProvider}

def build_providers(names=("playerdb", "mojang"), urls=None) -> list:
    urls = urls or {}
    out  = []
    for n in names:
        cls = PROVIDERS.get(n)
        if cls is None:
            log.warning(f"Unknown profile provider '{n}' ignored")
            continue
        out.append(cls(urls.get(n)))
    return out


# ── Lookup ────────────────────────────────────────────────────────────────────

class ProfileLookup:
    def __init__(self, session: aiohttp.ClientSession, providers=None,
                 retries: int = 1, retry_delay: float = 0.25):
        self.session     = session
        self.providers   = providers if providers is not None else build_providers()
        self.retries     = max(0, int(retries))
        self.retry_delay = retry_delay

    async def _try(self, provider, username):
        for attempt in range(self.retries + 1):
            try:
                return await provider.lookup(self.session, username)
            except ProviderError as e:
                log.warning(f"[{provider.name}] attempt {attempt + 1}/{self.retries + 1} failed: {e}")
                if attempt < self.retries and self.retry_delay:
                    await asyncio.sleep(self.retry_delay)
        return None

    async def lookup(self, username: str) -> Optional[PlayerProfile]:
        if not is_valid_username(username):
            raise InvalidUsername(username)
        for provider in self.providers:
            profile = await self._try(provider, username)
            if profile:
                log.info(f"Resolved {username} → {profile.uuid} via {provider.name}")
                return profile
        log.info(f"No provider knows {username}")
        return None
