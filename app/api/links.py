"""
Link management API: create and manage short links.

Security:
  - Requires a bearer token
  - All queries scoped to the caller (cannot see other users' links)
  - Destination must be http(s) and not a private / internal address
  - Link passwords are stored as bcrypt hashes, never returned
"""

import datetime
import re
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.codes import (
    DOMAIN_PATTERN,
    build_short_url,
    generate_code,
    is_safe_url,
    is_valid_custom_code,
    normalize_domain,
)
from app.core.crypto import hash_password
from app.core.dates import as_utc, iso
from app.core.page_meta import fetch_page_meta
from app.core.qr import clamp_size, render_png, render_svg
from app.middleware.auth import require_auth
from app.middleware.rate_limit import rate_limit_api
from app.models.database import get_db
from app.models.tables import Click, Link, User

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/links", tags=["links"], dependencies=[Depends(rate_limit_api)])

LIST_SIZE_DEFAULT = 10
LIST_SIZE_MAX = 50
MAX_NOTES_LEN = 1000
MAX_CLICKS_CAP = 10_000_000
LINK_PASSWORD_MIN = 4
LINK_PASSWORD_MAX = 128


class _LinkFields(BaseModel):
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LEN)
    expires_at: datetime.datetime | None = None
    password: str | None = None
    domain: str | None = None

    @field_validator("password")
    @classmethod
    def _password_length(cls, v):
        if v and not (LINK_PASSWORD_MIN <= len(v) <= LINK_PASSWORD_MAX):
            raise ValueError(f"password must be {LINK_PASSWORD_MIN}-{LINK_PASSWORD_MAX} characters")
        return v

    @field_validator("domain")
    @classmethod
    def _domain_format(cls, v):
        if v and not re.fullmatch(DOMAIN_PATTERN, normalize_domain(v)):
            raise ValueError("domain may only contain letters, digits, dots and dashes")
        return v

    @field_validator("expires_at")
    @classmethod
    def _expires_utc(cls, v):
        return as_utc(v)


class CreateLinkRequest(_LinkFields):
    long_url: str = Field(min_length=1)
    code: str | None = None
    max_clicks: int = Field(default=0, ge=0, le=MAX_CLICKS_CAP)

    @field_validator("code")
    @classmethod
    def _code_format(cls, v):
        v = (v or "").strip()
        if v and not is_valid_custom_code(v):
            raise ValueError("code must be 4-32 characters of letters, digits, _ or -")
        return v


class UpdateLinkRequest(_LinkFields):
    long_url: str | None = Field(default=None, min_length=1)
    code: str | None = None
    is_active: bool | None = None
    max_clicks: int | None = Field(default=None, ge=0, le=MAX_CLICKS_CAP)

    @field_validator("code")
    @classmethod
    def _code_format(cls, v):
        if v is not None and not is_valid_custom_code(v):
            raise ValueError("code must be 4-32 characters of letters, digits, _ or -")
        return v


def link_out(link: Link) -> dict:
    return {
        "id": str(link.id),
        "code": link.code,
        "long_url": link.long_url,
        "domain": link.domain or "",
        "short_url": build_short_url(link.code, link.domain),
        "is_active": link.is_active,
        "expires_at": iso(link.expires_at),
        "has_password": bool(link.password_hash),
        "max_clicks": link.max_clicks,
        "clicks_count": link.clicks_count,
        "meta": {
            "title": link.title,
            "favicon": link.favicon,
            "notes": link.notes or "",
        },
        "created_at": iso(link.created_at),
        "updated_at": iso(link.updated_at),
    }


async def _code_taken(db: AsyncSession, code: str, exclude_id: UUID | None = None) -> bool:
    stmt = select(Link.id).where(Link.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Link.id != exclude_id)
    result = await db.execute(stmt)
    return result.first() is not None


async def _unique_code(db: AsyncSession) -> str:
    while True:
        code = generate_code()
        if not await _code_taken(db, code):
            return code


async def get_owned_link(link_id: UUID, user: User, db: AsyncSession) -> Link:
    result = await db.execute(select(Link).where(Link.id == link_id, Link.owner_id == user.id))
    link = result.scalar_one_or_none()
    if not link:
        raise HTTPException(status_code=404, detail="Not found")
    return link


@router.post("")
async def create_link(
    req: CreateLinkRequest,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if not is_safe_url(req.long_url):
        raise HTTPException(status_code=400, detail="Unsafe URL")

    if req.code:
        if await _code_taken(db, req.code):
            raise HTTPException(status_code=409, detail="Code already taken")
        code = req.code
    else:
        code = await _unique_code(db)

    meta = await fetch_page_meta(req.long_url)

    link = Link(
        owner_id=user.id,
        code=code,
        long_url=req.long_url.strip(),
        domain=normalize_domain(req.domain),
        password_hash=await run_in_threadpool(hash_password, req.password) if req.password else None,
        max_clicks=req.max_clicks or 0,
        expires_at=req.expires_at,
        title=meta.get("title"),
        favicon=meta.get("favicon"),
        notes=req.notes or "",
    )
    db.add(link)
    await db.commit()
    await db.refresh(link)

    logger.info("link_created", link_id=str(link.id), code=code, protected=bool(link.password_hash))
    return link_out(link)


@router.get("")
async def list_links(
    page: int = Query(1),
    size: int = Query(LIST_SIZE_DEFAULT),
    search: str = Query(""),
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    page = max(page, 1)
    size = min(max(size, 1), LIST_SIZE_MAX)
    q = search.strip()

    conditions = [Link.owner_id == user.id]
    if q:
        conditions.append(or_(
            Link.code.icontains(q, autoescape=True),
            Link.long_url.icontains(q, autoescape=True),
            Link.notes.icontains(q, autoescape=True),
            Link.domain.icontains(q, autoescape=True),
        ))

    total = (await db.execute(select(func.count(Link.id)).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Link)
        .where(*conditions)
        .order_by(Link.created_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    items = result.scalars().all()

    return {"items": [link_out(link) for link in items], "page": page, "size": size, "total": total}


@router.get("/{link_id}")
async def get_link(
    link_id: UUID,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    return link_out(await get_owned_link(link_id, user, db))


@router.patch("/{link_id}")
async def update_link(
    link_id: UUID,
    req: UpdateLinkRequest,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    if req.long_url and not is_safe_url(req.long_url):
        raise HTTPException(status_code=400, detail="Unsafe URL")

    link = await get_owned_link(link_id, user, db)
    changes = req.model_dump(exclude_unset=True)

    if req.code and await _code_taken(db, req.code, exclude_id=link.id):
        raise HTTPException(status_code=409, detail="Code already taken")

    if "password" in changes:
        # Empty password removes protection
        link.password_hash = await run_in_threadpool(hash_password, req.password) if req.password else None
    if "domain" in changes:
        link.domain = normalize_domain(req.domain)
    if "notes" in changes:
        link.notes = req.notes or ""
    if "expires_at" in changes:
        link.expires_at = req.expires_at
    for field in ("code", "is_active", "max_clicks"):
        if changes.get(field) is not None:
            setattr(link, field, changes[field])

    if req.long_url:
        link.long_url = req.long_url.strip()
        meta = await fetch_page_meta(req.long_url)
        if meta.get("title"):
            link.title = meta["title"]
        if meta.get("favicon"):
            link.favicon = meta["favicon"]

    await db.commit()
    await db.refresh(link)

    logger.info("link_updated", link_id=str(link.id), fields=sorted(changes))
    return link_out(link)


@router.delete("/{link_id}")
async def delete_link(
    link_id: UUID,
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    link = await get_owned_link(link_id, user, db)
    await db.execute(delete(Click).where(Click.link_id == link.id))
    await db.delete(link)
    await db.commit()

    logger.info("link_deleted", link_id=str(link_id))
    return {"ok": True}


@router.get("/{link_id}/qr")
async def link_qr(
    link_id: UUID,
    format: str = Query("png"),
    size: int | None = Query(None),
    user: User = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    link = await get_owned_link(link_id, user, db)
    short_url = build_short_url(link.code, link.domain)
    px = clamp_size(size)

    if format.lower() == "svg":
        body = await run_in_threadpool(render_svg, short_url, px)
        return Response(content=body, media_type="image/svg+xml")

    body = await run_in_threadpool(render_png, short_url, px)
    return Response(content=body, media_type="image/png")
