"""
JWT bearer authentication.

  - Tokens are HS256 JWTs: sub = user id, email, exp = now + token_ttl_days
  - Scoped tokens (e.g. analytics share links) are rejected here
  - Every authenticated request re-loads the user (deleted users lose access)
  - Clients get a generic 401; details only go to logs
  - Admin routes additionally require role == "admin"
"""

import datetime
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.database import get_db
from app.models.tables import User

import structlog

logger = structlog.get_logger()

JWT_ALGORITHM = "HS256"


# ─── Token helpers ─────────────────────────────────────────────────

def sign_token(user: User) -> str:
    settings = get_settings()
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "iat": now,
        "exp": now + datetime.timedelta(days=settings.token_ttl_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def encode_claims(claims: dict) -> str:
    """Sign an arbitrary claim set (share links) with the app secret."""
    return jwt.encode(claims, get_settings().jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Raises jwt.PyJWTError on bad signature / expiry / malformed input."""
    return jwt.decode(token, get_settings().jwt_secret, algorithms=[JWT_ALGORITHM])


def get_bearer_token(header_value: str | None) -> str | None:
    """Accept "Bearer x" and "bearer x"; anything else is no token."""
    h = (header_value or "").strip()
    if not h.lower().startswith("bearer "):
        return None
    return h[7:].strip() or None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


# ─── Auth dependencies ─────────────────────────────────────────────

async def require_auth(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Require a valid bearer token. Returns the current user."""
    token = get_bearer_token(request.headers.get("authorization"))
    if not token:
        raise _unauthorized()

    try:
        payload = decode_token(token)
        if "scope" in payload:
            # scoped tokens (share links) never stand in for a session
            raise ValueError("scoped token")
        user_id = UUID(str(payload["sub"]))
    except (jwt.PyJWTError, KeyError, ValueError) as e:
        logger.info("auth_token_rejected", reason=type(e).__name__)
        raise _unauthorized()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        logger.info("auth_user_missing", user_id=str(user_id))
        raise _unauthorized()

    return user


async def require_admin(user: User = Depends(require_auth)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
