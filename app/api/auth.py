"""
Account API: registration, email verification, login, password reset.

  - New accounts are unverified until a 6-digit code (10 min TTL) is confirmed
  - Login is refused for unverified accounts (403, code EMAIL_NOT_VERIFIED)
  - /forgot never reveals whether an account exists
  - In dev-mail mode the code is also returned as dev_code
"""

import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.crypto import compare_password, hash_password, six_digit_code
from app.core.dates import as_utc, utcnow
from app.core.mailer import CODE_TTL_MINUTES, code_email, send_mail
from app.middleware.auth import require_auth, sign_token
from app.middleware.rate_limit import rate_limit_api
from app.models.database import get_db
from app.models.tables import User

import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/api/auth", tags=["auth"], dependencies=[Depends(rate_limit_api)])

FORGOT_MESSAGE = "If the email exists, a code has been sent."
CODE_PATTERN = r"^\d{6}$"


class RegisterRequest(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    email: EmailStr
    password: str = Field(min_length=6, max_length=100)


class VerifyRequest(BaseModel):
    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)


class EmailRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ResetRequest(BaseModel):
    email: EmailStr
    code: str = Field(pattern=CODE_PATTERN)
    new_password: str = Field(min_length=6, max_length=100)


def _normalize_email(email: str) -> str:
    return str(email).strip().lower()


def user_out(user: User) -> dict:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "email_verified": user.email_verified,
        "role": user.role,
    }


def _code_valid(stored: str | None, expires: datetime.datetime | None, given: str) -> bool:
    if not stored or not expires:
        return False
    return stored == given.strip() and as_utc(expires) >= utcnow()


async def _find_user(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == _normalize_email(email)))
    return result.scalar_one_or_none()


async def _send_code(user: User, subject: str, title: str, code: str, hint: str = "") -> str:
    text, html = code_email(title, code, hint)
    return await run_in_threadpool(send_mail, user.email, subject, text, html)


def _with_dev_code(payload: dict, code: str) -> dict:
    if get_settings().dev_mail:
        payload["dev_code"] = code
    return payload


def _new_code_expiry() -> datetime.datetime:
    return utcnow() + datetime.timedelta(minutes=CODE_TTL_MINUTES)


@router.post("/register")
async def register(req: RegisterRequest, db: AsyncSession = Depends(get_db)):
    if not get_settings().allow_signups:
        raise HTTPException(status_code=403, detail="Signups are disabled")

    if await _find_user(db, req.email):
        raise HTTPException(status_code=409, detail="Email already in use")

    code = six_digit_code()
    user = User(
        name=req.name.strip(),
        email=_normalize_email(req.email),
        password_hash=await run_in_threadpool(hash_password, req.password),
        email_verified=False,
        verify_code=code,
        verify_code_expires=_new_code_expiry(),
    )
    db.add(user)
    await db.commit()

    await _send_code(user, "Your verification code", "Verify your email", code)
    logger.info("user_registered", user_id=str(user.id))

    return _with_dev_code({"message": "Verification code sent. Please verify.", "need_verify": True}, code)


@router.post("/verify")
async def verify(req: VerifyRequest, db: AsyncSession = Depends(get_db)):
    user = await _find_user(db, req.email)
    if not user:
        raise HTTPException(status_code=400, detail="Account not found")

    if not _code_valid(user.verify_code, user.verify_code_expires, req.code):
        raise HTTPException(status_code=400, detail="Invalid or expired code")

    user.email_verified = True
    user.verify_code = None
    user.verify_code_expires = None
    await db.commit()

    logger.info("user_verified", user_id=str(user.id))
    return {"token": sign_token(user), "user": user_out(user)}


@router.post("/resend-verify")
async def resend_verify(req: EmailRequest, db: AsyncSession = Depends(get_db)):
    user = await _find_user(db, req.email)
    if not user:
        raise HTTPException(status_code=400, detail="Account not found")
    if user.email_verified:
        return {"message": "Already verified"}

    code = six_digit_code()
    user.verify_code = code
    user.verify_code_expires = _new_code_expiry()
    await db.commit()

    await _send_code(user, "Your verification code", "Verify your email", code)
    return _with_dev_code({"message": "Verification code re-sent"}, code)


@router.post("/login")
async def login(req: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await _find_user(db, req.email)
    if not user or not await run_in_threadpool(compare_password, req.password, user.password_hash):
        logger.info("login_failed", email=_normalize_email(req.email))
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.email_verified:
        raise HTTPException(
            status_code=403,
            detail={"message": "Email not verified", "code": "EMAIL_NOT_VERIFIED"},
        )

    return {"token": sign_token(user), "user": user_out(user)}


@router.post("/forgot")
async def forgot(req: EmailRequest, db: AsyncSession = Depends(get_db)):
    user = await _find_user(db, req.email)
    if not user:
        return {"message": FORGOT_MESSAGE}

    code = six_digit_code()
    user.reset_code = code
    user.reset_code_expires = _new_code_expiry()
    await db.commit()

    await _send_code(user, "Your password reset code", "Reset your password", code,
                     hint="Use this code on the reset page.")
    return _with_dev_code({"message": FORGOT_MESSAGE}, code)


@router.post("/reset")
async def reset(req: ResetRequest, db: AsyncSession = Depends(get_db)):
    user = await _find_user(db, req.email)
    if not user or not _code_valid(user.reset_code, user.reset_code_expires, req.code):
        raise HTTPException(status_code=400, detail="Invalid or expired code")

    user.password_hash = await run_in_threadpool(hash_password, req.new_password)
    user.reset_code = None
    user.reset_code_expires = None
    user.verify_code = None
    user.verify_code_expires = None
    user.email_verified = True  # reset counts as verification
    await db.commit()

    logger.info("password_reset", user_id=str(user.id))
    return {"message": "Password updated. You can log in now."}


@router.get("/me")
async def me(user: User = Depends(require_auth)):
    return {"user": user_out(user)}
