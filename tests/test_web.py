"""Tests for web/app.py — routes, playtime error mapping, pages."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from aiohttp import web

from mojang.profiles import PlayerProfile
from playtime.resolver import PlaytimeResolver, StatsStore
from status.monitor import parse_status
from web.app import RateLimiter, create_app

NOTCH = "069a79f4-44e9-4726-a5be-fca90e38aaf5"
NOTCH_RAW = NOTCH.replace("-", "")


class StubProfiles:
    """Stands in for ProfileLookup; knows only Notch."""

    def __init__(self):
        self.calls = []

    async def lookup(self, username):
        from mojang.profiles import InvalidUsername, is_valid_username

        self.calls.append(username)
        if not is_valid_username(username):
            raise InvalidUsername(username)
        if username.lower() == "notch":
            return PlayerProfile("Notch", NOTCH_RAW, "stub")
        return None


class StubMonitor:
    def __init__(self, payload):
        self.latest = parse_status(payload)


class DeniedStore(StatsStore):
    def __init__(self):
        super().__init__("/nonexistent")

    async def read_record(self, canonical_uuid):
        raise PermissionError(13, "Permission denied")


class ExplodingStore(StatsStore):
    def __init__(self):
        super().__init__("/nonexistent")

    async def read_record(self, canonical_uuid):
        raise RuntimeError("boom")


@pytest.fixture
def make_app(stats_dir):
    def _make(resolver=None, profiles=None, monitor=None, site=None, web_cfg=None):
        resolver = resolver if resolver is not None else PlaytimeResolver.from_dir(stats_dir)
        return create_app(resolver, profiles, monitor, site, web_cfg)

    return _make


# ============================================================================
# /api/playtime
# ============================================================================


class TestPlaytimeApi:
    @pytest.mark.asyncio
    async def test_success(self, serve, make_app, write_stats):
        write_stats(NOTCH, {"stats": {"minecraft:custom": {"minecraft:play_time": 72000}}})
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": NOTCH_RAW})
        assert resp.status == 200
        assert await resp.json() == {"seconds": 3600}

    @pytest.mark.asyncio
    async def test_missing_param(self, serve, make_app):
        client = await serve(make_app())
        resp = await client.get("/api/playtime")
        assert resp.status == 400
        assert await resp.json() == {"error": "uuid_required"}

    @pytest.mark.asyncio
    async def test_invalid_format(self, serve, make_app):
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": "Notch"})
        assert resp.status == 400
        assert await resp.json() == {"error": "invalid_uuid"}

    @pytest.mark.asyncio
    async def test_not_configured(self, serve, make_app):
        client = await serve(make_app(resolver=PlaytimeResolver.from_dir("")))
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 503
        assert await resp.json() == {"error": "not_configured"}

    @pytest.mark.asyncio
    async def test_not_found(self, serve, make_app):
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 404
        assert await resp.json() == {"error": "stats_not_found"}

    @pytest.mark.asyncio
    async def test_unavailable(self, serve, make_app, write_stats):
        write_stats(NOTCH, {"stats": {}})
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 404
        assert await resp.json() == {"error": "playtime_not_available"}

    @pytest.mark.asyncio
    async def test_malformed(self, serve, make_app, write_stats):
        write_stats(NOTCH, "{{{")
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 500
        assert await resp.json() == {"error": "invalid_stats_json"}

    @pytest.mark.asyncio
    async def test_read_error(self, serve, make_app, stats_dir):
        (stats_dir / f"{NOTCH}.json").mkdir()
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 500
        assert await resp.json() == {"error": "stats_read_error"}

    @pytest.mark.asyncio
    async def test_read_error_from_store(self, serve, make_app):
        client = await serve(make_app(resolver=PlaytimeResolver(DeniedStore())))
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 500
        assert await resp.json() == {"error": "stats_read_error"}

    @pytest.mark.asyncio
    async def test_deeply_nested_record_is_malformed(self, serve, make_app, write_stats):
        write_stats(NOTCH, "[" * 100000 + "]" * 100000)
        client = await serve(make_app())
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 500
        assert await resp.json() == {"error": "invalid_stats_json"}

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, serve, make_app):
        client = await serve(make_app(resolver=PlaytimeResolver(ExplodingStore())))
        resp = await client.get("/api/playtime", params={"uuid": NOTCH})
        assert resp.status == 500
        assert await resp.json() == {"error": "server_error"}


# ============================================================================
# Other API routes
# ============================================================================


class TestOtherApis:
    @pytest.mark.asyncio
    async def test_health_without_stats_dir(self, serve, make_app):
        client = await serve(make_app(resolver=PlaytimeResolver.from_dir("")))
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"ok": True}

    @pytest.mark.asyncio
    async def test_profile_found(self, serve, make_app):
        client = await serve(make_app(profiles=StubProfiles()))
        resp = await client.get("/api/profile/Notch")
        assert resp.status == 200
        data = await resp.json()
        assert data["uuid"] == NOTCH_RAW
        assert data["username"] == "Notch"

    @pytest.mark.asyncio
    async def test_profile_missing_and_invalid(self, serve, make_app):
        client = await serve(make_app(profiles=StubProfiles()))
        assert (await client.get("/api/profile/Nobody_Here")).status == 404
        resp = await client.get("/api/profile/x")
        assert resp.status == 400
        assert await resp.json() == {"error": "invalid_username"}

    @pytest.mark.asyncio
    async def test_profile_not_configured(self, serve, make_app):
        client = await serve(make_app())
        assert (await client.get("/api/profile/Notch")).status == 503

    @pytest.mark.asyncio
    async def test_status_snapshot(self, serve, make_app):
        monitor = StubMonitor({"online": True, "players": {"online": 2, "max": 20, "list": ["A", "B"]}})
        client = await serve(make_app(monitor=monitor, site={"address": "play.example.net", "port": 25566}))
        data = await (await client.get("/api/status")).json()
        assert data["online"] is True
        assert data["label"] == "2/20"
        assert data["address"] == "play.example.net:25566"

    @pytest.mark.asyncio
    async def test_status_without_monitor(self, serve, make_app):
        client = await serve(make_app())
        data = await (await client.get("/api/status")).json()
        assert data["reachable"] is False
        assert data["label"] == "Status unknown"
        assert data["address"] == "mc.vatra.fun"


# ============================================================================
# Pages
# ============================================================================


class TestPages:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/", "/about", "/map", "/account"])
    async def test_pages_render_with_nav(self, serve, make_app, path):
        client = await serve(make_app())
        resp = await client.get(path)
        assert resp.status == 200
        text = await resp.text()
        assert 'href="/account"' in text
        assert "VatraMC" in text

    @pytest.mark.asyncio
    async def test_home_shows_copyable_ip(self, serve, make_app):
        client = await serve(make_app())
        text = await (await client.get("/")).text()
        assert 'class="ip"' in text
        assert "mc.vatra.fun" in text

    @pytest.mark.asyncio
    async def test_map_embeds_configured_url(self, serve, make_app):
        client = await serve(make_app(site={"map_url": "https://map.example.net/"}))
        text = await (await client.get("/map")).text()
        assert '<iframe class="mapframe" src="https://map.example.net/"' in text

    @pytest.mark.asyncio
    async def test_account_form(self, serve, make_app):
        client = await serve(make_app(profiles=StubProfiles()))
        text = await (await client.get("/account")).text()
        assert 'id="login-container"' in text

    @pytest.mark.asyncio
    async def test_account_invalid_username(self, serve, make_app):
        profiles = StubProfiles()
        client = await serve(make_app(profiles=profiles))
        text = await (await client.get("/account", params={"username": "<b>x</b>"})).text()
        assert "valid Minecraft username" in text
        assert "<b>x</b>" not in text
        assert profiles.calls == []

    @pytest.mark.asyncio
    async def test_account_known_player(self, serve, make_app):
        client = await serve(make_app(profiles=StubProfiles()))
        text = await (await client.get("/account", params={"username": "notch"})).text()
        assert 'id="player-username">Notch<' in text
        assert f'data-uuid="{NOTCH_RAW}"' in text
        assert f"https://mc-heads.net/avatar/{NOTCH_RAW}/64" in text
        assert "onerror=\"this.onerror=null;this.src='https://mc-heads.net/avatar/MHF_Steve/64'\"" in text

    @pytest.mark.asyncio
    async def test_account_unknown_player_falls_back(self, serve, make_app):
        client = await serve(make_app(profiles=StubProfiles()))
        text = await (await client.get("/account", params={"username": "Someone"})).text()
        assert 'id="player-username">Someone<' in text
        assert "https://mc-heads.net/avatar/MHF_Steve/40" in text
        assert '<span class="detail-value playtime">Unknown</span>' in text


# ============================================================================
# Rate limiting
# ============================================================================


class TestRateLimiter:
    def test_window(self):
        rl = RateLimiter(limit=2, window=60)
        assert rl.is_allowed("1.2.3.4")
        assert rl.is_allowed("1.2.3.4")
        assert not rl.is_allowed("1.2.3.4")
        assert rl.is_allowed("5.6.7.8")

    @pytest.mark.asyncio
    async def test_middleware_returns_429(self, serve, make_app):
        client = await serve(make_app(web_cfg={"rate_limit": 1, "rate_window": 60}))
        assert (await client.get("/health")).status == 200
        assert (await client.get("/health")).status == 429

    def test_idle_ips_are_swept(self, monkeypatch):
        clock = [0.0]
        monkeypatch.setattr("web.app.time", SimpleNamespace(monotonic=lambda: clock[0]))
        rl = RateLimiter(limit=60, window=10)
        for i in range(1000):
            assert rl.is_allowed(f"10.0.{i // 256}.{i % 256}")
        assert len(rl._hits) == 1000
        clock[0] = 11.0
        assert rl.is_allowed("1.2.3.4")
        assert list(rl._hits) == ["1.2.3.4"]

    def test_many_distinct_ips_stay_bounded(self, monkeypatch):
        clock = [0.0]
        monkeypatch.setattr("web.app.time", SimpleNamespace(monotonic=lambda: clock[0]))
        rl = RateLimiter(limit=60, window=0.5)
        for i in range(10000):
            clock[0] += 1.0
            rl.is_allowed(f"ip-{i}")
            assert len(rl._hits) <= 1

    def test_active_ip_survives_sweep(self, monkeypatch):
        clock = [0.0]
        monkeypatch.setattr("web.app.time", SimpleNamespace(monotonic=lambda: clock[0]))
        rl = RateLimiter(limit=2, window=10)
        assert rl.is_allowed("1.2.3.4")
        clock[0] = 9.0
        assert rl.is_allowed("1.2.3.4")
        clock[0] = 10.0
        assert not rl.is_allowed("1.2.3.4")
        assert "1.2.3.4" in rl._hits

    @pytest.mark.asyncio
    async def test_forwarded_header_ignored_by_default(self, serve, make_app):
        client = await serve(make_app(web_cfg={"rate_limit": 1, "rate_window": 60}))
        assert (await client.get("/health", headers={"X-Forwarded-For": "1.1.1.1"})).status == 200
        assert (await client.get("/health", headers={"X-Forwarded-For": "2.2.2.2"})).status == 429

    @pytest.mark.asyncio
    async def test_forwarded_header_honoured_behind_trusted_proxy(self, serve, make_app):
        client = await serve(make_app(web_cfg={"rate_limit": 1, "rate_window": 60, "trust_proxy": True}))
        assert (await client.get("/health", headers={"X-Forwarded-For": "1.1.1.1"})).status == 200
        assert (await client.get("/health", headers={"CF-Connecting-IP": "2.2.2.2"})).status == 200
        assert (await client.get("/health", headers={"X-Forwarded-For": "1.1.1.1, 10.0.0.1"})).status == 429
