#!/usr/bin/env python3
"""main.py — VatraMC site entry point. Run from any directory."""
import sys, os
_HERE = os.path.dirname(os.path.abspath(__file__))
if _HERE not in sys.path: sys.path.insert(0, _HERE)

import asyncio, logging, signal, tomllib
from pathlib import Path
import aiohttp
import aiohttp.web as aio_web
from playtime.resolver import PlaytimeResolver
from mojang.profiles import ProfileLookup, build_providers
from status.monitor import StatusMonitor, STATUS_API
from web.app import create_app

logging.basicConfig(level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
log = logging.getLogger("main")

CONFIG_PATH = Path(_HERE) / "config.toml"

DEFAULT_CONFIG = """\
[server]
name    = "VatraMC"
address = "mc.vatra.fun"
port    = 25565
map_url = ""

[stats]
# Path to <world>/stats on the game server. Env WORLD_STATS_DIR overrides.
dir = ""

[web]
host        = "0.0.0.0"
port        = 3001
rate_limit  = 60
rate_window = 60
# Only honour CF-Connecting-IP / X-Forwarded-For behind a proxy you run.
trust_proxy = false

[profiles]
providers = ["playerdb", "mojang"]
timeout   = 5
retries   = 1
# urls    = { mojang = "https://api.mojang.com/users/profiles/minecraft" }

[status]
interval = 30
timeout  = 5
api      = "https://api.mcstatus.io/v2/status/java"
"""

def load_config(path: Path = CONFIG_PATH, env=None) -> dict:
    env = os.environ if env is None else env
    if path.exists():
        with open(path, "rb") as f: config = tomllib.load(f)
    else:
        log.info(f"No config at {path} — using built-in defaults.")
        config = tomllib.loads(DEFAULT_CONFIG)
    if env.get("WORLD_STATS_DIR"):
        config.setdefault("stats", {})["dir"] = env["WORLD_STATS_DIR"]
    if env.get("PORT"):
        config.setdefault("web", {})["port"] = int(env["PORT"])
    return config

async def main():
    config      = load_config()
    site_cfg    = config.get("server", {})
    web_cfg     = config.get("web", {})
    prof_cfg    = config.get("profiles", {})
    status_cfg  = config.get("status", {})
    stats_dir   = config.get("stats", {}).get("dir", "")

    resolver = PlaytimeResolver.from_dir(stats_dir)
    if not resolver.configured:
        log.warning("stats.dir / WORLD_STATS_DIR is not set; /api/playtime will return an error until configured.")
    else:
        log.info(f"Using stats dir = {stats_dir}")

    prof_session   = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=float(prof_cfg.get("timeout", 5))))
    status_session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=float(status_cfg.get("timeout", 5))))
    profiles = ProfileLookup(prof_session,
                             build_providers(prof_cfg.get("providers", ["playerdb", "mojang"]),
                                             prof_cfg.get("urls")),
                             retries=int(prof_cfg.get("retries", 1)))
    monitor  = StatusMonitor(status_session,
                             site_cfg.get("address", "mc.vatra.fun"),
                             site_cfg.get("port", 25565),
                             status_cfg.get("api", STATUS_API),
                             int(status_cfg.get("interval", 30)))

    web_runner = aio_web.AppRunner(create_app(resolver, profiles, monitor, site_cfg, web_cfg))
    await web_runner.setup()
    host, port = web_cfg.get("host", "0.0.0.0"), int(web_cfg.get("port", 3001))
    await aio_web.TCPSite(web_runner, host, port).start()
    log.info(f"Web server on http://{host}:{port}")

    tasks = [asyncio.create_task(monitor.run(), name="status-poll")]
    loop  = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: [t.cancel() for t in tasks])
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        log.info("Shutting down...")
    finally:
        await web_runner.cleanup()
        await prof_session.close()
        await status_session.close()

def run():
    asyncio.run(main())

if __name__ == "__main__":
    run()
