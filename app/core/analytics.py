"""
Click analytics: aggregation over the clicks table.

Every report is a handful of GROUP BY queries over one filtered window:
  - time series bucketed by day (7d / 30d) or hour (24h), shifted by the
    viewer's UTC offset so buckets line up with their local calendar
  - top-N breakdowns (referrer, country, device, browser, link, campaign)
  - distinct UTM values (for filter dropdowns)
  - optional previous-window comparison and per-key breakdown series

Filters (all optional): source, medium, campaign, country, device, browser.
"""

import datetime
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import distinct, func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.codes import build_short_url
from app.core.dates import iso, utcnow
from app.models.tables import Annotation, Click, Link

TOP_REFERRERS_LIMIT = 5
TOP_REFERRERS_OVERVIEW_LIMIT = 7
TOP_COUNTRIES_LIMIT = 10
TOP_COUNTRIES_OVERVIEW_LIMIT = 12
RECENT_CLICKS_LIMIT = 200
TOP_LINKS_LIMIT = 10
TOP_COHORTS_LIMIT = 20
BREAKDOWN_KEYS_LIMIT = 6

RANGES = ("24h", "7d", "30d")
BREAKDOWNS = ("none", "device", "browser", "country")
FILTER_KEYS = ("source", "medium", "campaign", "country", "device", "browser")

_FILTER_COLUMNS = {
    "source": Click.utm_source,
    "medium": Click.utm_medium,
    "campaign": Click.utm_campaign,
    "country": Click.country,
    "device": Click.device,
    "browser": Click.browser,
}

_BREAKDOWN_COLUMNS = {
    "device": Click.device,
    "browser": Click.browser,
    "country": Click.country,
}


@dataclass(frozen=True)
class RangeSpec:
    label: str
    delta: datetime.timedelta
    hourly: bool


def parse_range(value: str | None) -> RangeSpec:
    """24h → hourly buckets; 7d / 30d → daily. Anything else falls back to 7d."""
    r = str(value or "7d").lower()
    if r == "24h":
        return RangeSpec("24h", datetime.timedelta(hours=24), hourly=True)
    if r == "30d":
        return RangeSpec("30d", datetime.timedelta(days=30), hourly=False)
    return RangeSpec("7d", datetime.timedelta(days=7), hourly=False)


def parse_breakdown(value: str | None) -> str:
    b = str(value or "none").lower()
    return b if b in BREAKDOWNS else "none"


def normalize_filters(raw: dict | None) -> dict:
    """Keep known, non-empty filter keys. Countries are ISO codes → upper-case."""
    filters = {}
    for key in FILTER_KEYS:
        value = (raw or {}).get(key)
        if value:
            value = str(value)
            filters[key] = value.upper() if key == "country" else value
    return filters


def filter_conditions(filters: dict) -> list:
    return [_FILTER_COLUMNS[k] == v for k, v in normalize_filters(filters).items()]


def _bucket_expr(dialect: str, tz_min: int, hourly: bool):
    """Click.ts shifted by tz_min minutes, formatted as the bucket label."""
    if dialect == "sqlite":
        fmt = "%Y-%m-%d %H:00" if hourly else "%Y-%m-%d"
        return func.strftime(fmt, Click.ts, f"{tz_min:+d} minutes")
    fmt = "YYYY-MM-DD HH24:00" if hourly else "YYYY-MM-DD"
    shifted = func.timezone("UTC", Click.ts) + func.make_interval(0, 0, 0, 0, 0, tz_min)
    return func.to_char(shifted, fmt)


def _dialect(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


# ---------------------------------------------------------------------------
# Query building blocks
# ---------------------------------------------------------------------------

async def time_series(db: AsyncSession, conditions: list, rng: RangeSpec, tz_min: int) -> list[dict]:
    bucket = _bucket_expr(_dialect(db), tz_min, rng.hourly).label("bucket")
    result = await db.execute(
        select(bucket, func.count(Click.id).label("clicks"))
        .where(*conditions)
        .group_by(literal_column("bucket"))
        .order_by(literal_column("bucket"))
    )
    return [{"day": row.bucket, "clicks": row.clicks} for row in result.all()]


async def top_counts(db: AsyncSession, column, conditions: list, limit: int | None = None) -> list[tuple]:
    stmt = (
        select(column.label("key"), func.count(Click.id).label("count"))
        .where(*conditions)
        .group_by(column)
        .order_by(func.count(Click.id).desc())
    )
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [(row.key, row.count) for row in result.all()]


async def count_clicks(db: AsyncSession, conditions: list) -> int:
    result = await db.execute(select(func.count(Click.id)).where(*conditions))
    return result.scalar_one()


async def utm_options(db: AsyncSession, conditions: list) -> dict:
    options = {}
    for key, column in (("sources", Click.utm_source), ("mediums", Click.utm_medium),
                        ("campaigns", Click.utm_campaign)):
        result = await db.execute(select(distinct(column)).where(*conditions))
        options[key] = sorted(v for v in result.scalars().all() if v)
    return options


async def recent_clicks(db: AsyncSession, conditions: list, limit: int = RECENT_CLICKS_LIMIT) -> list[Click]:
    result = await db.execute(
        select(Click).where(*conditions).order_by(Click.ts.desc()).limit(limit)
    )
    return list(result.scalars().all())


def _breakdown_lists(referrers, countries, devices, browsers) -> dict:
    return {
        "referrers": [{"ref": k or "direct", "count": c} for k, c in referrers],
        "countries": [{"country": k, "count": c} for k, c in countries if k],
        "devices": [{"device": k or "other", "count": c} for k, c in devices],
        "browsers": [{"browser": k or "Unknown", "count": c} for k, c in browsers],
    }


# ---------------------------------------------------------------------------
# Per-link report
# ---------------------------------------------------------------------------

async def build_link_analytics(
    db: AsyncSession,
    link: Link,
    range_: str | None,
    tz_min: int = 0,
    filters: dict | None = None,
    now: datetime.datetime | None = None,
) -> dict:
    rng = parse_range(range_)
    since = (now or utcnow()) - rng.delta
    conds = [Click.link_id == link.id, Click.ts >= since, *filter_conditions(filters or {})]

    by_day = await time_series(db, conds, rng, tz_min)
    referrers = await top_counts(db, Click.referer, conds, TOP_REFERRERS_LIMIT)
    countries = await top_counts(db, Click.country, conds, TOP_COUNTRIES_LIMIT)
    devices = await top_counts(db, Click.device, conds)
    browsers = await top_counts(db, Click.browser, conds)
    recent = await recent_clicks(db, conds)
    options = await utm_options(db, [Click.link_id == link.id])

    return {
        "by_day": by_day,
        **_breakdown_lists(referrers, countries, devices, browsers),
        "recent": [
            {
                "ts": iso(c.ts),
                "referer": c.referer or "direct",
                "ua": c.ua or "",
                "tz_offset": c.tz_offset or 0,
                "utm": {k: v for k, v in (("source", c.utm_source), ("medium", c.utm_medium),
                                          ("campaign", c.utm_campaign)) if v},
                "country": c.country or None,
                "device": c.device or "other",
                "browser": c.browser or "Unknown",
            }
            for c in recent
        ],
        "utm_options": options,
    }


# ---------------------------------------------------------------------------
# Account-wide overview (dashboard, share links, digests)
# ---------------------------------------------------------------------------

def empty_overview() -> dict:
    return {
        "by_day": [],
        "referrers": [],
        "countries": [],
        "devices": [],
        "browsers": [],
        "top_links": [],
        "totals": {"clicks": 0, "links": 0},
        "by_day_prev": [],
        "totals_prev": {"clicks": 0},
        "cohorts": [],
        "utm_options": {"sources": [], "mediums": [], "campaigns": []},
        "recent": [],
        "annotations": [],
        "breakdown_series": [],
        "breakdown_keys": [],
    }


def _breakdown_key(value, breakdown: str):
    if value:
        return value
    return None if breakdown == "country" else "other"


async def _breakdown(db: AsyncSession, conds: list, rng: RangeSpec, tz_min: int,
                     breakdown: str) -> tuple[list, list]:
    column = _BREAKDOWN_COLUMNS[breakdown]

    top = await top_counts(db, column, conds, BREAKDOWN_KEYS_LIMIT)
    keys = [k for k in (_breakdown_key(v, breakdown) for v, _ in top) if k]

    bucket = _bucket_expr(_dialect(db), tz_min, rng.hourly).label("bucket")
    result = await db.execute(
        select(bucket, column.label("key"), func.count(Click.id).label("clicks"))
        .where(*conds)
        .group_by(literal_column("bucket"), column)
        .order_by(literal_column("bucket"))
    )

    series: dict[str, dict] = {}
    for row in result.all():
        key = _breakdown_key(row.key, breakdown)
        if not key or (keys and key not in keys):
            continue
        target = series.setdefault(row.bucket, {"day": row.bucket})
        target[key] = target.get(key, 0) + row.clicks
    return sorted(series.values(), key=lambda r: r["day"]), keys


async def build_overview(
    db: AsyncSession,
    owner_id: UUID,
    range_: str | None = "7d",
    compare: bool = False,
    tz_min: int = 0,
    filters: dict | None = None,
    breakdown: str | None = "none",
    now: datetime.datetime | None = None,
) -> dict:
    rng = parse_range(range_)
    breakdown = parse_breakdown(breakdown)
    now = now or utcnow()
    since = now - rng.delta
    since_prev = since - rng.delta

    result = await db.execute(
        select(Link.id, Link.code, Link.domain).where(Link.owner_id == owner_id)
    )
    links = result.all()
    if not links:
        return empty_overview()

    links_by_id = {row.id: row for row in links}
    base = [Click.link_id.in_(select(Link.id).where(Link.owner_id == owner_id))]
    extra = filter_conditions(filters or {})
    now_conds = [*base, Click.ts >= since, *extra]
    prev_conds = [*base, Click.ts >= since_prev, Click.ts < since, *extra]

    by_day = await time_series(db, now_conds, rng, tz_min)
    referrers = await top_counts(db, Click.referer, now_conds, TOP_REFERRERS_OVERVIEW_LIMIT)
    countries = await top_counts(db, Click.country, now_conds, TOP_COUNTRIES_OVERVIEW_LIMIT)
    devices = await top_counts(db, Click.device, now_conds)
    browsers = await top_counts(db, Click.browser, now_conds)
    total = await count_clicks(db, now_conds)
    top_links = await top_counts(db, Click.link_id, now_conds, TOP_LINKS_LIMIT)
    cohorts = await top_counts(db, Click.utm_campaign, now_conds, TOP_COHORTS_LIMIT)

    if compare:
        by_day_prev = await time_series(db, prev_conds, rng, tz_min)
        total_prev = await count_clicks(db, prev_conds)
    else:
        by_day_prev, total_prev = [], 0

    options = await utm_options(db, base)
    recent = await recent_clicks(db, now_conds)

    ann_result = await db.execute(
        select(Annotation)
        .where(Annotation.owner_id == owner_id, Annotation.ts >= since)
        .order_by(Annotation.ts)
    )
    annotations = ann_result.scalars().all()

    if breakdown != "none":
        breakdown_series, breakdown_keys = await _breakdown(db, now_conds, rng, tz_min, breakdown)
    else:
        breakdown_series, breakdown_keys = [], []

    def _link_fields(link_id):
        link = links_by_id.get(link_id)
        return (link.code, link.domain or "") if link else ("", "")

    top = []
    for link_id, clicks in top_links:
        code, domain = _link_fields(link_id)
        top.append({
            "id": str(link_id),
            "code": code,
            "domain": domain,
            "short_url": build_short_url(code, domain) if code else None,
            "clicks": clicks,
        })

    return {
        "by_day": by_day,
        **_breakdown_lists(referrers, countries, devices, browsers),
        "top_links": top,
        "totals": {"clicks": total, "links": len(links)},
        "by_day_prev": by_day_prev,
        "totals_prev": {"clicks": total_prev},
        "cohorts": [{"campaign": k or "(none)", "clicks": c} for k, c in cohorts],
        "utm_options": options,
        "recent": [
            {
                "ts": iso(c.ts),
                "link_id": str(c.link_id),
                "link_code": _link_fields(c.link_id)[0],
                "link_domain": _link_fields(c.link_id)[1],
                "referer": c.referer or "direct",
                "ua": c.ua or "",
                "tz_offset": c.tz_offset or 0,
                "utm_source": c.utm_source or "",
                "utm_medium": c.utm_medium or "",
                "utm_campaign": c.utm_campaign or "",
                "country": c.country or "",
                "device": c.device or "other",
                "browser": c.browser or "Unknown",
                "ip_hash": c.ip_hash or "",
            }
            for c in recent
        ],
        "annotations": [
            {"id": str(a.id), "ts": iso(a.ts), "label": a.label, "color": a.color}
            for a in annotations
        ],
        "breakdown_series": breakdown_series,
        "breakdown_keys": breakdown_keys,
    }
