"""
Admin endpoints.

  - /api/admin/stats: global counts + recently disabled links (admin only)
  - /api/admin/bootstrap: one-time promotion of an existing account to admin.
    Debug only (404 otherwise); the setup key is the JWT secret.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.dates import iso
from app.middleware.auth import require_admin
from app.middleware.rate_limit import rate_limit_api
from app.models.database import get_db
from app.models.tables import Click, Link, User

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(rate_limit_api)])

RECENT_DISABLED_LIMIT = 20


class BootstrapRequest(BaseModel):
    email: EmailStr
    setup_key: str


async def _count(db: AsyncSession, column) -> int:
    return (await db.execute(select(func.count(column)))).scalar_one()


@router.get("/stats")
async def stats(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Link)
        .where(Link.is_active.is_(False))
        .order_by(Link.updated_at.desc())
        .limit(RECENT_DISABLED_LIMIT)
    )
    disabled = result.scalars().all()

    return {
        "users": await _count(db, User.id),
        "links": await _count(db, Link.id),
        "clicks": await _count(db, Click.id),
        "disabled_examples": [
            {"code": link.code, "reason": "manual/auto", "updated_at": iso(link.updated_at)}
            for link in disabled
        ],
    }


@router.post("/bootstrap")
async def bootstrap(
    body: BootstrapRequest,
    db: AsyncSession = Depends(get_db),
):
    settings = get_settings()

    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not found")

    if body.setup_key != settings.jwt_secret:
        raise HTTPException(status_code=403, detail="Invalid setup key")

    result = await db.execute(select(User).where(User.email == str(body.email).strip().lower()))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if user.role == "admin":
        return {"message": "User is already an admin.", "user": {"id": str(user.id), "email": user.email}}

    user.role = "admin"
    await db.commit()

    logger.info("admin_bootstrapped", user_id=str(user.id))
    return {"message": "User promoted to admin.", "user": {"id": str(user.id), "email": user.email}}
