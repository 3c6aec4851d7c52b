"""Shared fixtures: stats directories and aiohttp test clients."""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer


@pytest.fixture
def stats_dir(tmp_path):
    """Empty world/stats directory."""
    d = tmp_path / "stats"
    d.mkdir()
    return d


@pytest.fixture
def write_stats(stats_dir):
    """Write a stats record for a canonical UUID; dicts are JSON-encoded, str written raw."""

    def _write(uuid: str, content) -> None:
        text = content if isinstance(content, str) else json.dumps(content)
        (stats_dir / f"{uuid}.json").write_text(text, encoding="utf-8")

    return _write


@pytest_asyncio.fixture
async def serve():
    """Start an aiohttp app on a local port and hand back a TestClient."""
    clients: list[TestClient] = []

    async def _serve(app) -> TestClient:
        client = TestClient(TestServer(app))
        await client.start_server()
        clients.append(client)
        return client

    yield _serve
    for c in clients:
        await c.close()
