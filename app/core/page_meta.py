"""
Best-effort page metadata (<title>, favicon) for nicer link cards.

Never blocks link creation: any network/parse failure yields {}.
"""

from html.parser import HTMLParser
from urllib.parse import urljoin, urlparse

import httpx

from app.config import get_settings

import structlog

logger = structlog.get_logger()

TITLE_MAX_LEN = 200
MAX_HTML_BYTES = 512 * 1024
ICON_RELS = ("icon", "shortcut icon", "apple-touch-icon")


class _HeadParser(HTMLParser):
    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.title = ""
        self.og_title = ""
        self.icons: dict[str, str] = {}
        self._in_title = False
        self._title_done = False

    def handle_starttag(self, tag, attrs):
        a = {k.lower(): (v or "") for k, v in attrs}
        if tag == "title" and not self._title_done:
            self._in_title = True
        elif tag == "meta" and a.get("property", "").lower() == "og:title" and not self.og_title:
            self.og_title = a.get("content", "").strip()
        elif tag == "link":
            rel = " ".join(a.get("rel", "").lower().split())
            if rel in ICON_RELS and a.get("href") and rel not in self.icons:
                self.icons[rel] = a["href"]

    def handle_endtag(self, tag):
        if tag == "title" and self._in_title:
            self._in_title = False
            self._title_done = True

    def handle_data(self, data):
        if self._in_title:
            self.title += data


def parse_page_meta(html: str, url: str) -> dict:
    """Extract {"title"?, "favicon"?} from an HTML document fetched from url."""
    parser = _HeadParser()
    parser.feed(html)

    title = parser.title.strip() or parser.og_title
    icon_href = next((parser.icons[r] for r in ICON_RELS if r in parser.icons), "/favicon.ico")

    u = urlparse(url)
    origin = f"{u.scheme}://{u.netloc}"
    favicon = urljoin(origin + "/", icon_href)

    meta = {}
    if title:
        meta["title"] = title[:TITLE_MAX_LEN]
    if favicon:
        meta["favicon"] = favicon
    return meta


async def _read_capped(resp: httpx.Response) -> str:
    """Read at most MAX_HTML_BYTES of the body."""
    buf = bytearray()
    async for chunk in resp.aiter_bytes():
        buf.extend(chunk)
        if len(buf) >= MAX_HTML_BYTES:
            break
    return bytes(buf[:MAX_HTML_BYTES]).decode(resp.charset_encoding or "utf-8", errors="replace")


async def fetch_page_meta(url: str) -> dict:
    settings = get_settings()
    if not settings.fetch_page_meta:
        return {}
    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=settings.page_meta_timeout_seconds,
        ) as client:
            async with client.stream("GET", url) as resp:
                html = await _read_capped(resp)
                final_url = str(resp.url)
        return parse_page_meta(html, final_url)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError, LookupError, AssertionError) as e:
        # AssertionError: html.parser on malformed markup (e.g. "<![bogus[")
        logger.info("page_meta_failed", url=url, error=type(e).__name__)
        return {}
