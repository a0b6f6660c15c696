"""
Redirect endpoint: /r/{code}

Flow:
  1. Rate limit (per IP, then per code+IP)
  2. Look up link → 404 page if missing or disabled
  3. Expired → 410 page; click cap reached → 429 page
  4. Password gate (signed unlock cookie, or ?pw= from the unlock form)
  5. Build click payload (referer, tz offset, UTM, hashed IP, UA, country, device)
  6. Hand the payload to the click queue (Redis or after-response write)
  7. 302 to the long URL

Errors on this path are small HTML pages, not JSON.
"""

import html
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.click_queue import ClickQueue, get_click_queue
from app.core.crypto import compare_password, ip_hash, sign_value, unsign_value
from app.core.dates import as_utc, utcnow
from app.core.visitor import country_from_headers, get_real_ip, parse_device, parse_int, parse_utm
from app.middleware.rate_limit import rate_limit_link, rate_limit_redirect
from app.models.database import get_db
from app.models.tables import Link

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/r", tags=["redirect"])

UNLOCK_COOKIE_MAX_AGE = 60 * 60  # 1 hour
UNLOCK_COOKIE_PREFIX = "sl_pw_ok_"

# 1x1 transparent PNG
HEALTH_PNG = bytes.fromhex(
    "89504E470D0A1A0A0000000D49484452000000010000000108060000001F15C489"
    "0000000A49444154789C63000100000500010D0A2DB40000000049454E44AE426082"
)

_PAGE_STYLE = """
  :root{--bg:#0b0b0c;--card:#141417;--border:#2a2a2e;--text:#e5e5e5;--muted:#a1a1aa;--brand:#10b981;}
  *{box-sizing:border-box} body{margin:0;background:var(--bg);color:var(--text);font:14px system-ui,-apple-system,Segoe UI,Roboto,Helvetica,Arial}
  .wrap{min-height:100vh;display:grid;place-items:center;padding:24px}
  .card{width:min(520px,92vw);background:var(--card);border:1px solid var(--border);border-radius:14px;padding:24px}
  h1{margin:0 0 6px;font-size:20px} p{margin:0 0 12px;color:var(--muted)}
  .err{color:#f87171}
  input{width:100%;padding:10px 12px;margin:0 0 12px;border-radius:10px;border:1px solid var(--border);background:#0b0b0c;color:var(--text)}
  .btn{display:inline-block;background:var(--brand);color:#042a1f;padding:10px 16px;border:0;border-radius:999px;font-weight:700;text-decoration:none;cursor:pointer}
"""


def _page(title: str, status: int, body: str) -> HTMLResponse:
    brand = html.escape(get_settings().app_name)
    content = f"""<!doctype html>
<html lang="en"><head>
<meta charset="utf-8"/><meta name="viewport" content="width=device-width,initial-scale=1"/>
<meta name="robots" content="noindex,nofollow"/>
<title>{html.escape(title)} • {brand}</title>
<style>{_PAGE_STYLE}</style></head>
<body>
  <main class="wrap"><section class="card">
{body}
  </section></main>
</body></html>"""
    return HTMLResponse(content=content, status_code=status, headers={"X-Robots-Tag": "noindex, nofollow"})


def error_page(status: int, title: str, subtitle: str) -> HTMLResponse:
    body = f"""    <h1>{html.escape(title)}</h1>
    <p>{html.escape(subtitle)}</p>
    <a href="/" class="btn">Go home</a>"""
    return _page(str(status), status, body)


def _cookie_name(link: Link) -> str:
    return f"{UNLOCK_COOKIE_PREFIX}{link.id.hex}"


def _unlock_url(code: str, error: bool = False) -> str:
    url = f"/r/{quote(code)}/unlock"
    return f"{url}?e=1" if error else url


# ─── Health ────────────────────────────────────────────────────────

@router.get("/_health")
async def health():
    return JSONResponse(
        {"ok": True, "service": "shortly-redirect"},
        headers={"Access-Control-Allow-Origin": "*"},
    )


@router.get("/_health.png")
async def health_png():
    return Response(content=HEALTH_PNG, media_type="image/png", headers={"Cache-Control": "no-store"})


# ─── Unlock form ───────────────────────────────────────────────────

@router.get("/{code}/unlock")
async def unlock(code: str, e: str | None = None):
    """Password form for protected links. Submits back to /r/{code}?pw=..."""
    action = f"/r/{quote(code)}"
    error = '<p class="err">Incorrect password, try again.</p>' if e == "1" else ""
    body = f"""    <h1>Protected link</h1>
    <p>Enter the password to continue.</p>
    {error}
    <form method="get" action="{html.escape(action)}">
      <input type="password" name="pw" placeholder="Password" autocomplete="current-password" required autofocus/>
      <button type="submit" class="btn">Unlock</button>
    </form>"""
    return _page("Protected link", 200, body)


# ─── Redirect ──────────────────────────────────────────────────────

def build_click_payload(request: Request, link: Link) -> dict:
    ua = request.headers.get("user-agent") or ""
    info = parse_device(ua)
    return {
        "link_id": str(link.id),
        "ts": utcnow().isoformat(),
        "referer": request.headers.get("referer") or "direct",
        "tz_offset": parse_int(request.query_params.get("tzOffset"), 0),
        "utm": parse_utm(request.query_params),
        "ip_hash": ip_hash(get_real_ip(request)),
        "ua": ua,
        "country": country_from_headers(request.headers),
        "device": info.device,
        "browser": info.browser,
    }


@router.get("/{code}")
async def redirect(
    code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    queue: ClickQueue = Depends(get_click_queue),
):
    code = code.strip()

    # --- 1. Rate limiting ---
    try:
        rate_limit_redirect(request)
        rate_limit_link(request, code)
    except HTTPException as e:
        page = error_page(429, "Too many requests", "Please slow down and try again in a moment.")
        page.headers.update(e.headers or {})
        return page

    # --- 2. Look up link ---
    result = await db.execute(select(Link).where(Link.code == code))
    link = result.scalar_one_or_none()

    if not link or not link.is_active:
        return error_page(404, "Link not found", "This short link is invalid or has been disabled.")

    # --- 3. Expiry / click cap ---
    if link.expires_at and as_utc(link.expires_at) < utcnow():
        return error_page(410, "Link expired", "The link has passed its expiry date.")

    if link.max_clicks and link.clicks_count >= link.max_clicks:
        return error_page(429, "Max clicks reached", "This link is no longer available.")

    # --- 4. Password gate ---
    if link.password_hash:
        cookie_name = _cookie_name(link)
        unlocked = unsign_value(request.cookies.get(cookie_name)) == link.id.hex

        if not unlocked:
            pw = request.query_params.get("pw") or ""
            if not pw:
                return RedirectResponse(url=_unlock_url(code), status_code=302)

            if not await run_in_threadpool(compare_password, pw, link.password_hash):
                logger.info("unlock_failed", code=code)
                return RedirectResponse(url=_unlock_url(code, error=True), status_code=302)

            # Correct password: remember it, then come back without ?pw in the URL
            response = RedirectResponse(url=f"/r/{quote(code)}?ok=1", status_code=302)
            response.set_cookie(
                key=cookie_name,
                value=sign_value(link.id.hex),
                max_age=UNLOCK_COOKIE_MAX_AGE,
                path="/",
                samesite="lax",
                httponly=True,
                secure=get_settings().is_production,
            )
            return response

    # --- 5. Log click (never blocks the redirect) ---
    payload = build_click_payload(request, link)
    await queue.enqueue(payload, background_tasks)

    logger.info("redirect", code=code, device=payload["device"], country=payload["country"])

    return RedirectResponse(url=link.long_url, status_code=302)
