"""
Analytics API: per-link reports, account overview, saved views,
annotations, share links and email digests.

All routes require a bearer token except the read-only share overview,
which is authorized by its own signed token (scope analytics:share).
"""

import datetime
from urllib.parse import quote
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.links import get_owned_link
from app.config import get_settings
from app.core.analytics import (
    build_link_analytics,
    build_overview,
    normalize_filters,
    parse_breakdown,
    parse_range,
)
from app.core.dates import as_utc, iso, utcnow
from app.core.mailer import digest_email, send_mail
from app.core.visitor import parse_int
from app.middleware.auth import decode_token, encode_claims, require_auth
from app.middleware.rate_limit import rate_limit_api
from app.models.database import get_db
from app.models.tables import Annotation, SavedView, User

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["analytics"], dependencies=[Depends(rate_limit_api)])

SHARE_SCOPE = "analytics:share"
SHARE_TTL_DAYS_DEFAULT = 14
DEFAULT_ANNOTATION_COLOR = "#ef4444"


class SavedViewRequest(BaseModel):
    name: str | None = None
    range: str = "7d"
    compare: bool = False
    filters: dict = Field(default_factory=dict)
    breakdown: str = "none"


class AnnotationRequest(BaseModel):
    ts: datetime.datetime | None = None
    label: str | None = Field(default=None, max_length=200)
    color: str | None = Field(default=None, max_length=20)


class ShareRequest(BaseModel):
    range: str = "7d"
    compare: bool = False
    filters: dict = Field(default_factory=dict)
    breakdown: str = "none"
    expires_in_days: int = SHARE_TTL_DAYS_DEFAULT


def _require_share_secret():
    if not get_settings().jwt_secret:
        raise HTTPException(status_code=501, detail="JWT not configured on server")


# ─── Reports ───────────────────────────────────────────────────────

@router.get("/links/{link_id}/analytics")
async def link_analytics(
    link_id: UUID,
    request: Request,
    range: str = Query("7d"),
    tz: str | None = Query(None),
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    link = await get_owned_link(link_id, user, db)
    return await build_link_analytics(
        db, link, range, tz_min=parse_int(tz), filters=normalize_filters(dict(request.query_params)),
    )


@router.get("/analytics/overview")
async def overview(
    request: Request,
    range: str = Query("7d"),
    tz: str | None = Query(None),
    compare: str = Query("0"),
    breakdown: str = Query("none"),
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    return await build_overview(
        db,
        user.id,
        range_=range,
        compare=compare == "1",
        tz_min=parse_int(tz),
        filters=normalize_filters(dict(request.query_params)),
        breakdown=breakdown,
    )


# ─── Saved views ───────────────────────────────────────────────────

@router.get("/analytics/views")
async def list_views(user: User = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(SavedView).where(SavedView.owner_id == user.id).order_by(SavedView.updated_at.desc())
    )
    return [
        {
            "id": str(v.id),
            "name": v.name,
            "range": v.range,
            "compare": v.compare,
            "filters": v.filters or {},
            "breakdown": v.breakdown or "none",
            "updated_at": iso(v.updated_at),
        }
        for v in result.scalars().all()
    ]


@router.post("/analytics/views")
async def create_view(
    req: SavedViewRequest,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    name = (req.name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name required")

    view = SavedView(
        owner_id=user.id,
        name=name[:120],
        range=parse_range(req.range).label,
        compare=req.compare,
        filters=normalize_filters(req.filters),
        breakdown=parse_breakdown(req.breakdown),
    )
    db.add(view)
    await db.commit()
    return {"ok": True, "id": str(view.id)}


@router.delete("/analytics/views/{view_id}")
async def delete_view(view_id: UUID, user: User = Depends(require_auth), db: AsyncSession = Depends(get_db)):
    await db.execute(delete(SavedView).where(SavedView.id == view_id, SavedView.owner_id == user.id))
    await db.commit()
    return {"ok": True}


# ─── Annotations ───────────────────────────────────────────────────

@router.get("/analytics/annotations")
async def list_annotations(
    range: str = Query("7d"),
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    since = utcnow() - parse_range(range).delta
    result = await db.execute(
        select(Annotation)
        .where(Annotation.owner_id == user.id, Annotation.ts >= since)
        .order_by(Annotation.ts)
    )
    return [
        {"id": str(a.id), "ts": iso(a.ts), "label": a.label, "color": a.color}
        for a in result.scalars().all()
    ]


@router.post("/analytics/annotations")
async def create_annotation(
    req: AnnotationRequest,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if not req.ts or not req.label:
        raise HTTPException(status_code=400, detail="ts and label required")

    annotation = Annotation(
        owner_id=user.id,
        ts=as_utc(req.ts),
        label=req.label,
        color=req.color or DEFAULT_ANNOTATION_COLOR,
    )
    db.add(annotation)
    await db.commit()
    return {"ok": True, "id": str(annotation.id)}


@router.delete("/analytics/annotations/{annotation_id}")
async def delete_annotation(
    annotation_id: UUID,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(
        delete(Annotation).where(Annotation.id == annotation_id, Annotation.owner_id == user.id)
    )
    await db.commit()
    return {"ok": True}


# ─── Share links ───────────────────────────────────────────────────

@router.post("/analytics/share/create")
async def create_share(req: ShareRequest, user: User = Depends(require_auth)):
    _require_share_secret()
    settings = get_settings()

    expires_at = utcnow() + datetime.timedelta(days=max(1, req.expires_in_days))
    token = encode_claims({
        "sub": str(user.id),
        "scope": SHARE_SCOPE,
        "range": parse_range(req.range).label,
        "compare": req.compare,
        "filters": normalize_filters(req.filters),
        "breakdown": parse_breakdown(req.breakdown),
        "exp": int(expires_at.timestamp()),
    })

    logger.info("share_link_created", user_id=str(user.id), expires_at=expires_at.isoformat())
    return {
        "ok": True,
        "token": token,
        "url": f"{settings.base_url.rstrip('/')}/analytics?share={quote(token)}",
        "expires_at": expires_at.replace(microsecond=0).isoformat(),
    }


@router.get("/analytics/share/{token}/overview")
async def share_overview(
    token: str,
    range: str | None = Query(None),
    tz: str | None = Query(None),
    compare: str | None = Query(None),
    breakdown: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Public, read-only overview for whoever holds the share token."""
    _require_share_secret()
    try:
        claims = decode_token(token)
        if claims.get("scope") != SHARE_SCOPE:
            raise ValueError("bad scope")
        owner_id = UUID(str(claims["sub"]))
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.info("share_token_rejected", reason=type(e).__name__)
        raise HTTPException(status_code=400, detail="Invalid or expired share token")

    if compare is None:
        compare_on = bool(claims.get("compare"))
    else:
        compare_on = compare == "1"

    payload = await build_overview(
        db,
        owner_id,
        range_=range or claims.get("range"),
        compare=compare_on,
        tz_min=parse_int(tz),
        filters=normalize_filters(claims.get("filters")),
        breakdown=breakdown or claims.get("breakdown"),
    )
    return {**payload, "read_only": True}


# ─── Digest + feature flags ────────────────────────────────────────

@router.post("/analytics/digest/send")
async def send_digest(
    period: str = Query("7d"),
    tz: str | None = Query(None),
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    settings = get_settings()
    try:
        data = await build_overview(db, user.id, range_=period, tz_min=parse_int(tz))

        if not settings.mail_configured:
            return {"ok": True, "message": "Digest requested (email not sent, mailer not configured)."}

        text = digest_email(
            user.name,
            data["totals"]["clicks"],
            data["top_links"],
            f"{settings.base_url.rstrip('/')}/analytics",
        )
        subject = f"Your {parse_range(period).label.upper()} analytics digest"
        await run_in_threadpool(send_mail, user.email, subject, text)
    except SQLAlchemyError as e:
        logger.error("digest_failed", user_id=str(user.id), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to send digest.")

    logger.info("digest_sent", user_id=str(user.id), period=period)
    return {"ok": True, "message": "Digest email sent."}


@router.get("/analytics/config")
async def analytics_config(user: User = Depends(require_auth)):
    settings = get_settings()
    return {"mail": settings.mail_configured, "share": bool(settings.jwt_secret)}
