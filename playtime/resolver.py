"""playtime/resolver.py — Playtime lookup from the server's per-player stats files."""
import asyncio, enum, json, logging, math, re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

TICKS_PER_SECOND = 20
CUSTOM_SECTION   = "minecraft:custom"
PLAY_TIME_KEY    = "minecraft:play_time"          # 1.17+
LEGACY_PLAY_KEY  = "minecraft:play_one_minute"    # older worlds, never migrated

UUID_PLAIN  = re.compile(r"^[0-9a-fA-F]{32}$")
UUID_DASHED = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


# ── Identifiers ───────────────────────────────────────────────────────────────

def is_valid_uuid(value) -> bool:
    return isinstance(value, str) and bool(UUID_PLAIN.match(value) or UUID_DASHED.match(value))

def normalize_uuid(value) -> Optional[str]:
    """Canonical lowercase 8-4-4-4-12 form, or None if the shape is wrong."""
    if not isinstance(value, str):
        return None
    if UUID_DASHED.match(value):
        return value.lower()
    if not UUID_PLAIN.match(value):
        return None
    u = value.lower()
    return f"{u[:8]}-{u[8:12]}-{u[12:16]}-{u[16:20]}-{u[20:]}"


# ── Extraction ────────────────────────────────────────────────────────────────

def _is_number(v) -> bool:
    # Arbitrarily large ints are fine; only floats can be NaN or infinite.
    if isinstance(v, bool):
        return False
    if isinstance(v, int):
        return True
    return isinstance(v, float) and math.isfinite(v)

def seconds_from_stats(doc) -> Optional[int]:
    """Playtime in whole seconds from a parsed stats document, or None."""
    stats = doc.get("stats") if isinstance(doc, dict) else None
    custom = stats.get(CUSTOM_SECTION) if isinstance(stats, dict) else None
    if not isinstance(custom, dict):
        return None
    ticks = custom.get(PLAY_TIME_KEY)
    if ticks is None:
        ticks = custom.get(LEGACY_PLAY_KEY)
    if not _is_number(ticks):
        return None
    return max(0, int(ticks // TICKS_PER_SECOND))


# ── Outcomes ──────────────────────────────────────────────────────────────────

class ErrorKind(enum.Enum):
    INVALID_IDENTIFIER   = "invalid_identifier"
    STORE_NOT_CONFIGURED = "store_not_configured"
    RECORD_NOT_FOUND     = "record_not_found"
    STORE_READ_ERROR     = "store_read_error"
    MALFORMED_RECORD     = "malformed_record"
    PLAYTIME_UNAVAILABLE = "playtime_unavailable"

@dataclass(frozen=True)
class PlaytimeResult:
    seconds: Optional[int]       = None
    error:   Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

def success(seconds: int) -> PlaytimeResult:      return PlaytimeResult(seconds=seconds)
def failure(kind: ErrorKind) -> PlaytimeResult:   return PlaytimeResult(error=kind)


# ── Store ─────────────────────────────────────────────────────────────────────

class StatsStore:
    """Read-only view over the world's stats directory (world/stats/*.json)."""
    def __init__(self, directory):
        self.directory = Path(directory)

    def path_for(self, canonical_uuid: str) -> Path:
        return self.directory / f"{canonical_uuid}.json"

    async def read_record(self, canonical_uuid: str) -> str:
        # Raises FileNotFoundError / OSError; the resolver sorts them out.
        return await asyncio.to_thread(self.path_for(canonical_uuid).read_text, encoding="utf-8")


# ── Resolver ──────────────────────────────────────────────────────────────────

class PlaytimeResolver:
    def __init__(self, store: Optional[StatsStore]):
        self.store = store

    @classmethod
    def from_dir(cls, directory) -> "PlaytimeResolver":
        return cls(StatsStore(directory) if directory else None)

    @property
    def configured(self) -> bool:
        return self.store is not None

    async def resolve(self, identifier) -> PlaytimeResult:
        if self.store is None:
            return failure(ErrorKind.STORE_NOT_CONFIGURED)
        uuid = normalize_uuid(identifier)
        if uuid is None:
            return failure(ErrorKind.INVALID_IDENTIFIER)

        try:
            raw = await self.store.read_record(uuid)
        except FileNotFoundError:
            log.debug(f"No stats file for {uuid}")
            return failure(ErrorKind.RECORD_NOT_FOUND)
        except (OSError, UnicodeDecodeError) as e:
            log.warning(f"Could not read stats for {uuid}: {e}")
            return failure(ErrorKind.STORE_READ_ERROR)

        try:
            doc = json.loads(raw)
        except (ValueError, RecursionError) as e:
            # JSONDecodeError, oversized int literals, pathological nesting
            log.warning(f"Malformed stats file for {uuid}: {e}")
            return failure(ErrorKind.MALFORMED_RECORD)

        seconds = seconds_from_stats(doc)
        if seconds is None:
            return failure(ErrorKind.PLAYTIME_UNAVAILABLE)
        return success(seconds)
