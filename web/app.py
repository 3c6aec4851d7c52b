"""web/app.py — Fan site pages, playtime/profile/status JSON API."""
import collections, html, json, logging, time
from aiohttp import web
from playtime.resolver import ErrorKind, PlaytimeResolver
from mojang.profiles import InvalidUsername, avatar_url, is_valid_username
from status.monitor import unknown_status

log = logging.getLogger(__name__)

# ── Real IP (forwarded headers only count behind a trusted proxy/tunnel) ──────
def get_ip(req, trust_proxy: bool = False) -> str:
    peer = req.transport.get_extra_info("peername") if req.transport else None
    if trust_proxy:
        fwd = (req.headers.get("CF-Connecting-IP")
               or req.headers.get("X-Forwarded-For", "").split(",")[0].strip())
        if fwd:
            return fwd
    return peer[0] if peer else "unknown"

# ── Rate limiter — sliding window, in-memory ──────────────────────────────────
class RateLimiter:
    def __init__(self, limit: int = 60, window: float = 60):
        """limit requests per window seconds per IP."""
        self.limit  = limit
        self.window = window
        self._hits: dict[str, collections.deque] = {}
        self._last_sweep = time.monotonic()

    def _sweep(self, cutoff: float):
        # Drop IPs whose newest hit has aged out of the window.
        for ip in [ip for ip, dq in self._hits.items() if not dq or dq[-1] < cutoff]:
            del self._hits[ip]

    def is_allowed(self, ip: str) -> bool:
        now    = time.monotonic()
        cutoff = now - self.window
        if now - self._last_sweep >= self.window:
            self._sweep(cutoff)
            self._last_sweep = now
        dq     = self._hits.setdefault(ip, collections.deque())
        while dq and dq[0] < cutoff:
            dq.popleft()
        if len(dq) >= self.limit:
            return False
        dq.append(now)
        return True

    def response_429(self):
        return web.Response(status=429, text="Too many requests — slow down.",
                            content_type="text/plain")


def create_app(resolver: PlaytimeResolver, profiles=None, monitor=None,
               site_cfg=None, web_cfg=None) -> web.Application:
    web_cfg   = web_cfg or {}
    rl_limit  = int(web_cfg.get("rate_limit",  60))
    rl_window = float(web_cfg.get("rate_window", 60))
    trust     = bool(web_cfg.get("trust_proxy", False))
    rl = RateLimiter(limit=rl_limit, window=rl_window)

    @web.middleware
    async def _middleware(req, handler):
        ip = get_ip(req, trust)
        if not rl.is_allowed(ip):
            return rl.response_429()
        return await handler(req)

    app = web.Application(middlewares=[_middleware])
    app["resolver"] = resolver
    app["profiles"] = profiles
    app["monitor"]  = monitor
    app["site"]     = {**DEFAULT_SITE, **(site_cfg or {})}
    for path, handler in ROUTES:
        app.router.add_get(path, handler)
    return app

# ── Shared ────────────────────────────────────────────────────────────────────

DEFAULT_SITE = {"name": "VatraMC", "address": "mc.vatra.fun", "port": 25565, "map_url": ""}

NAV_LINKS = [
    ("🏠 Home",    "/"),
    ("📖 About",   "/about"),
    ("🗺️ Map",     "/map"),
    ("👤 Account", "/account"),
]

def nav() -> str:
    links = "\n  ".join(f'<a href="{href}">{label}</a>' for label, href in NAV_LINKS)
    return f"<nav>\n  {links}\n</nav>"

COMMON_CSS = """
@import url('https://fonts.googleapis.com/css2?family=Press+Start+2P&family=Inter:wght@400;500&display=swap');
:root{--grass:#5fa83a;--dark:#121412;--panel:#1b1f1b;--panel2:#232823;--border:#2f362f;--text:#dde3dc;--muted:#7f8a7e;--accent:#e0a43a}
*{box-sizing:border-box;margin:0;padding:0}
body{background:var(--dark);color:var(--text);font-family:'Inter',sans-serif;min-height:100vh;
     background-image:radial-gradient(ellipse at 50% 0%,#1a1f1a 0%,#121412 70%)}
header{text-align:center;padding:1.6rem 1rem 0.7rem;border-bottom:1px solid var(--border)}
header h1{font-family:'Press Start 2P',monospace;font-size:1.5rem;color:var(--grass);letter-spacing:0.1em;
           text-shadow:0 0 20px rgba(95,168,58,0.3)}
header p{color:var(--muted);margin-top:0.5rem;font-style:italic;font-size:0.9rem}
nav{text-align:center;padding:0.6rem 0.5rem;border-bottom:1px solid var(--border);
     background:var(--panel);display:flex;flex-wrap:wrap;justify-content:center;gap:0.2rem 0}
nav a{color:var(--muted);text-decoration:none;padding:0.25rem 0.7rem;
       font-size:0.85rem;letter-spacing:0.05em;transition:color 0.2s;white-space:nowrap}
nav a:hover{color:var(--grass)}
.container{max-width:900px;margin:2rem auto;padding:0 1.5rem}
.card{background:var(--panel);border:1px solid var(--border);border-radius:6px;overflow:hidden;
       box-shadow:0 2px 15px rgba(0,0,0,0.3)}
.ct{color:var(--grass);font-size:0.72rem;letter-spacing:0.1em;text-transform:uppercase;
     padding:0.55rem 1rem;background:var(--panel2);border-bottom:1px solid var(--border)}
"""

def page(title, body, site, extra_css="", extra_head=""):
    name = html.escape(site["name"])
    return f"""<!DOCTYPE html><html lang="en">
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width,initial-scale=1"><title>{name} — {title}</title>
<style>{COMMON_CSS}{extra_css}</style>{extra_head}</head>
<body>
<header><h1>⛏ {name} ⛏</h1><p>A Minecraft server by players, for players</p></header>
{nav()}
{body}
</body></html>"""

def _html(text):
    return web.Response(text=text, content_type="text/html")

def _json(data, status=200):
    return web.Response(text=json.dumps(data), status=status, content_type="application/json")

def server_ip(site) -> str:
    port = site.get("port")
    return site["address"] if not port or int(port) == 25565 else f"{site['address']}:{port}"

# ── API ───────────────────────────────────────────────────────────────────────

PLAYTIME_ERRORS = {
    ErrorKind.INVALID_IDENTIFIER:   (400, "invalid_uuid"),
    ErrorKind.STORE_NOT_CONFIGURED: (503, "not_configured"),
    ErrorKind.RECORD_NOT_FOUND:     (404, "stats_not_found"),
    ErrorKind.PLAYTIME_UNAVAILABLE: (404, "playtime_not_available"),
    ErrorKind.MALFORMED_RECORD:     (500, "invalid_stats_json"),
    ErrorKind.STORE_READ_ERROR:     (500, "stats_read_error"),
}

async def handle_api_playtime(req):
    uuid = req.query.get("uuid")
    if not uuid:
        return _json({"error": "uuid_required"}, 400)
    try:
        result = await req.app["resolver"].resolve(uuid)
    except Exception as e:
        log.error(f"playtime endpoint error: {e}", exc_info=True)
        return _json({"error": "server_error"}, 500)
    if result.ok:
        return _json({"seconds": result.seconds})
    status, code = PLAYTIME_ERRORS[result.error]
    return _json({"error": code}, status)

async def handle_api_profile(req):
    profiles = req.app["profiles"]
    if profiles is None:
        return _json({"error": "not_configured"}, 503)
    try:
        profile = await profiles.lookup(req.match_info["username"])
    except InvalidUsername:
        return _json({"error": "invalid_username"}, 400)
    if profile is None:
        return _json({"error": "profile_not_found"}, 404)
    return _json(profile.to_dict())

async def handle_api_status(req):
    monitor = req.app["monitor"]
    status  = monitor.latest if monitor else unknown_status()
    data    = status.to_dict()
    data["address"] = server_ip(req.app["site"])
    return _json(data)

async def handle_health(req):
    return _json({"ok": True})

# ── Home ──────────────────────────────────────────────────────────────────────

STATUS_JS = """
async function checkServerStatus() {
  const statusEl  = document.querySelector('.server-status');
  const playersEl = document.querySelector('.players');
  if (!statusEl || !playersEl) return;
  try {
    const s = await fetch('/api/status').then(r => r.json());
    statusEl.classList.toggle('online',  s.online);
    statusEl.classList.toggle('offline', !s.online);
    playersEl.textContent = s.label;
    playersEl.title = (s.players.list || []).join('\\n');
  } catch (e) {
    statusEl.classList.remove('online'); statusEl.classList.add('offline');
    playersEl.textContent = 'Status unknown';
  }
}
checkServerStatus();
setInterval(checkServerStatus, 30000);
"""

async def handle_index(req):
    site = req.app["site"]
    ip   = html.escape(server_ip(site))
    css = """
.hero{text-align:center;padding:2.5rem 1rem}
.hero h2{font-size:1.3rem;margin-bottom:1.2rem;color:var(--text)}
.ip{display:inline-block;font-family:monospace;font-size:1.2rem;background:var(--panel2);
     border:1px solid var(--border);border-radius:4px;padding:0.6rem 1.2rem;cursor:pointer;
     color:var(--accent);transition:border-color 0.2s}
.ip:hover{border-color:var(--grass)}
.status-row{margin-top:1.4rem;display:flex;justify-content:center;align-items:center;gap:0.6rem}
.server-status{width:12px;height:12px;border-radius:50%;background:#555}
.server-status.online{background:#4caf6e;box-shadow:0 0 8px #4caf6e}
.server-status.offline{background:#cf6060;box-shadow:0 0 6px #cf6060}
.players{color:var(--muted);font-size:0.95rem}
"""
    body = f"""<div class="container"><div class="hero">
  <h2>Join us at</h2>
  <span class="ip" title="Click to copy IP">{ip}</span>
  <div class="status-row"><span class="server-status"></span><span class="players">Checking…</span></div>
</div></div>
<script>
const SERVER_IP = {json.dumps(server_ip(site))};
const ipEl = document.querySelector('.ip');
ipEl.addEventListener('click', () => {{
  navigator.clipboard.writeText(SERVER_IP).then(() => {{
    const original = ipEl.textContent;
    ipEl.textContent = 'Copied!';
    setTimeout(() => {{ ipEl.textContent = original; }}, 2000);
  }}).catch(err => console.error('Failed to copy IP: ', err));
}});
{STATUS_JS}
</script>"""
    return _html(page("Home", body, site, css))

# ── About / Map ───────────────────────────────────────────────────────────────

async def handle_about(req):
    site = req.app["site"]
    name = html.escape(site["name"])
    css  = ".about{padding:1.4rem;line-height:1.8}.about p+p{margin-top:0.9rem}"
    body = f"""<div class="container"><div class="card">
  <div class="ct">About {name}</div>
  <div class="about">
    <p>{name} is a community-run survival server. No pay-to-win, no resets, just building.</p>
    <p>Connect with any Java Edition client at <code>{html.escape(server_ip(site))}</code>.
       Look yourself up on the <a href="/account" style="color:var(--grass)">account page</a>
       to see how long you have played.</p>
  </div>
</div></div>"""
    return _html(page("About", body, site, css))

async def handle_map(req):
    site    = req.app["site"]
    map_url = site.get("map_url")
    css = ".mapframe{width:100%;height:70vh;border:0;display:block}.none{padding:2rem;text-align:center;color:var(--muted)}"
    if map_url:
        inner = f'<iframe class="mapframe" src="{html.escape(map_url)}" title="Live map"></iframe>'
    else:
        inner = '<div class="none">🗺️ No live map configured.</div>'
    body = f'<div class="container"><div class="card"><div class="ct">Live Map</div>{inner}</div></div>'
    return _html(page("Map", body, site, css))

# ── Account ───────────────────────────────────────────────────────────────────

ACCOUNT_CSS = """
.login{max-width:420px;margin:3rem auto;padding:1.6rem}
.login label{display:block;color:var(--muted);font-size:0.8rem;margin-bottom:0.4rem}
.login input{width:100%;padding:0.6rem;background:var(--panel2);border:1px solid var(--border);
              color:var(--text);border-radius:4px;font-size:1rem}
.login button{margin-top:1rem;width:100%;padding:0.6rem;background:var(--grass);border:0;
               border-radius:4px;color:#0d120c;font-weight:600;cursor:pointer}
.login-message{margin-top:0.8rem;font-size:0.85rem;min-height:1.2rem}
.login-message.error{color:#cf6060}
.acct{display:grid;grid-template-columns:180px 1fr;gap:1.2rem}
@media(max-width:640px){.acct{grid-template-columns:1fr}}
.skin{padding:1rem;text-align:center;background:#0c0f0c}
.skin img{max-width:100%;image-rendering:pixelated}
.detail-row{display:flex;padding:0.55rem 1rem;border-bottom:1px solid var(--border)}
.detail-row:last-child{border-bottom:none}
.detail-label{color:var(--muted);width:7rem;flex-shrink:0;font-size:0.85rem}
.detail-value{font-size:0.92rem;word-break:break-all}
.uuid{font-family:monospace;font-size:0.82rem}
.who{display:flex;align-items:center;gap:0.7rem;margin-bottom:1rem}
.who img{width:40px;height:40px;image-rendering:pixelated;border-radius:3px}
.who span{font-size:1.1rem}
"""

PLAYTIME_JS = """
function formatDuration(seconds) {
  if (seconds == null) return 'Unknown';
  const h = Math.floor(seconds / 3600);
  const m = Math.floor((seconds % 3600) / 60);
  return `${h}h ${m}m`;
}
async function fetchPlaytimeSeconds(uuid) {
  try {
    const res = await fetch(`/api/playtime?uuid=${encodeURIComponent(uuid)}`);
    if (!res.ok) return null;
    const data = await res.json();
    return data?.seconds == null ? null : Number(data.seconds);
  } catch (e) { return null; }
}
const playtimeEl = document.querySelector('.detail-value.playtime');
if (playtimeEl && playtimeEl.dataset.uuid) {
  playtimeEl.textContent = 'Loading...';
  fetchPlaytimeSeconds(playtimeEl.dataset.uuid).then(s => { playtimeEl.textContent = formatDuration(s); });
}
"""

def login_form(message="") -> str:
    cls = "login-message error" if message else "login-message"
    return f"""<div class="container"><div class="card login" id="login-container">
  <form method="get" action="/account">
    <label for="username">Minecraft username</label>
    <input id="username" name="username" maxlength="16" autocomplete="off" required>
    <button id="login-btn" type="submit">Login</button>
    <div class="{cls}">{html.escape(message)}</div>
  </form>
</div></div>"""

def account_view(username, uuid=None, avatar=None, skin=None) -> str:
    avatar   = avatar or avatar_url(size=64)
    skin     = skin or avatar_url(size=180)
    uuid_txt = html.escape(uuid) if uuid else "Unknown"
    playtime = (f'<span class="detail-value playtime" data-uuid="{html.escape(uuid)}">0h 0m</span>'
                if uuid else '<span class="detail-value playtime">Unknown</span>')
    name = html.escape(username)
    return f"""<div class="container" id="app-container">
  <div class="who"><img id="player-avatar" src="{avatar}" alt="{name}'s avatar"
    onerror="this.onerror=null;this.src='{avatar_url(size=64)}'">
    <span id="player-username">{name}</span></div>
  <div class="acct">
    <div class="card"><div class="skin"><img id="player-skin" src="{skin}" alt="{name}'s skin"></div></div>
    <div class="card">
      <div class="ct">Account</div>
      <div class="detail-row"><span class="detail-label">Username:</span>
        <span class="detail-value">{name}</span></div>
      <div class="detail-row"><span class="detail-label">UUID:</span>
        <span class="detail-value uuid">{uuid_txt}</span></div>
      <div class="detail-row"><span class="detail-label">Playtime:</span>
        {playtime}</div>
    </div>
  </div>
  <p style="margin-top:1.2rem"><a href="/account" id="exit-btn" style="color:var(--muted)">← Log out</a></p>
</div>"""

async def handle_account(req):
    site     = req.app["site"]
    profiles = req.app["profiles"]
    username = req.query.get("username", "").strip()
    if not username:
        return _html(page("Account", login_form(), site, ACCOUNT_CSS))
    if not is_valid_username(username):
        return _html(page("Account", login_form("Please enter a valid Minecraft username"),
                          site, ACCOUNT_CSS))

    profile = None
    if profiles is not None:
        try:
            profile = await profiles.lookup(username)
        except Exception as e:
            log.error(f"Error loading player data for {username}: {e}", exc_info=True)

    if profile:
        body  = account_view(profile.username, profile.uuid, profile.avatar_url, profile.skin_url)
        title = profile.username
    else:
        body  = account_view(username, avatar=avatar_url(size=40))
        title = username
    body += f"<script>{PLAYTIME_JS}</script>"
    return _html(page(html.escape(title), body, site, ACCOUNT_CSS))

# ── Routes ────────────────────────────────────────────────────────────────────

ROUTES = [
    ("/",                       handle_index),
    ("/about",                  handle_about),
    ("/map",                    handle_map),
    ("/account",                handle_account),
    ("/api/playtime",           handle_api_playtime),
    ("/api/profile/{username}", handle_api_profile),
    ("/api/status",             handle_api_status),
    ("/health",                 handle_health),
]
