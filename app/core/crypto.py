"""
Hashing & signing helpers.

- Passwords (users + protected links) → bcrypt, cost 10
- Visitor IPs → sha256(ip|secret|YYYY-MM-DD), 32 hex chars, rotates daily
- Unlock cookies → link id + HMAC-SHA256(value, cookie_secret) truncated to 16 hex
- One-time codes (verify / reset) → 6 digits, never a leading zero
"""

import datetime
import hashlib
import hmac
import secrets

import bcrypt

from app.config import get_settings

BCRYPT_ROUNDS = 10
BCRYPT_MAX_BYTES = 72  # bcrypt ignores (newer releases reject) anything longer


def hash_password(password: str) -> str:
    raw = str(password or "").encode()[:BCRYPT_MAX_BYTES]
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode()


def compare_password(password: str | None, password_hash: str | None) -> bool:
    """Never raises: missing input or a malformed hash is just a mismatch."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(str(password).encode()[:BCRYPT_MAX_BYTES], password_hash.encode())
    except ValueError:
        return False


def ip_hash(ip: str, day: datetime.date | None = None) -> str:
    settings = get_settings()
    day = day or datetime.datetime.now(datetime.timezone.utc).date()
    payload = f"{ip}|{settings.jwt_secret}|{day.isoformat()}"
    return hashlib.sha256(payload.encode()).hexdigest()[:32]


def _sign(payload: str, secret: str) -> str:
    """HMAC-SHA256, truncated to 16 hex chars."""
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()[:16]


def sign_value(value: str) -> str:
    return f"{value}.{_sign(value, get_settings().cookie_secret)}"


def unsign_value(signed: str | None) -> str | None:
    """Return the original value if the signature checks out, else None."""
    if not signed or "." not in signed:
        return None
    value, sig = signed.rsplit(".", 1)
    expected = _sign(value, get_settings().cookie_secret)
    if not hmac.compare_digest(sig, expected):
        return None
    return value


def six_digit_code() -> str:
    return str(100000 + secrets.randbelow(900000))
