"""
Database models.

Design principles:
  - Clicks are append-only (removed only together with their link)
  - Links are mutable (can be disabled, re-pointed, renamed)
  - Link.clicks_count is a denormalized counter bumped by the click writer
  - Saved views / annotations are per-user analytics presets
"""

import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

JSONType = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Entity tables
# ---------------------------------------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(120), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)  # stored lower-cased
    password_hash = Column(String(100), nullable=False)

    # Email verification
    email_verified = Column(Boolean, default=False, nullable=False, index=True)
    verify_code = Column(String(6), nullable=True)
    verify_code_expires = Column(DateTime(timezone=True), nullable=True)

    # Password reset
    reset_code = Column(String(6), nullable=True)
    reset_code_expires = Column(DateTime(timezone=True), nullable=True)

    role = Column(String(10), default="user", nullable=False, index=True)  # user | admin

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    links = relationship("Link", back_populates="owner")


class Link(Base):
    __tablename__ = "links"

    id = Column(Uuid, primary_key=True, default=uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    code = Column(String(32), nullable=False, unique=True, index=True)
    long_url = Column(Text, nullable=False)
    domain = Column(String(255), default="", nullable=False)  # custom domain, no protocol

    is_active = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    password_hash = Column(String(100), nullable=True)

    max_clicks = Column(Integer, default=0, nullable=False)  # 0 = unlimited
    clicks_count = Column(Integer, default=0, nullable=False)

    # Page metadata (best-effort fetch) + user notes
    title = Column(String(200), nullable=True)
    favicon = Column(Text, nullable=True)
    notes = Column(String(1000), default="", nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    owner = relationship("User", back_populates="links")


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class Click(Base):
    """One row per redirect. Written by the click queue worker or inline fallback."""
    __tablename__ = "clicks"

    id = Column(Uuid, primary_key=True, default=uuid4)
    link_id = Column(Uuid, ForeignKey("links.id", ondelete="CASCADE"), nullable=False, index=True)
    ts = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)

    referer = Column(Text, default="direct")
    country = Column(String(8), nullable=True)               # ISO code from CDN headers
    ua = Column(Text, nullable=True)
    device = Column(String(20), nullable=True)               # mobile, tablet, desktop
    browser = Column(String(50), nullable=True)
    ip_hash = Column(String(32), nullable=True)              # daily-rotating, never the raw IP
    tz_offset = Column(Integer, nullable=True)               # minutes, from ?tzOffset=

    utm_source = Column(String(64), nullable=True)
    utm_medium = Column(String(64), nullable=True)
    utm_campaign = Column(String(64), nullable=True)

    __table_args__ = (
        Index("ix_clicks_link_ts", "link_id", "ts"),
    )


# ---------------------------------------------------------------------------
# Analytics presets
# ---------------------------------------------------------------------------

class SavedView(Base):
    __tablename__ = "saved_views"

    id = Column(Uuid, primary_key=True, default=uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    range = Column(String(3), default="7d", nullable=False)           # 24h | 7d | 30d
    compare = Column(Boolean, default=False, nullable=False)
    filters = Column(JSONType, nullable=True)                          # source, medium, campaign, country, device, browser
    breakdown = Column(String(10), default="none", nullable=False)    # none | device | browser | country
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Annotation(Base):
    __tablename__ = "annotations"

    id = Column(Uuid, primary_key=True, default=uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    scope = Column(String(50), default="overview", nullable=False)
    ts = Column(DateTime(timezone=True), nullable=False, index=True)
    label = Column(String(200), nullable=False)
    color = Column(String(20), default="#ef4444", nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
