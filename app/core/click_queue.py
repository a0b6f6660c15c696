"""
Click logging pipeline: optional Redis queue with an inline fallback.

  redirect ──enqueue──▶ Redis list (RPUSH)  ──▶ worker (BLPOP) ──▶ record_click
               │
               └─(no Redis / Redis error)──▶ BackgroundTasks ──▶ record_click

record_click inserts the Click row and bumps Link.clicks_count in one
transaction. The redirect never waits on either path.
"""

import asyncio
import datetime
import json
from uuid import UUID

import redis.asyncio as redis
from fastapi import BackgroundTasks
from redis.exceptions import RedisError
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from app.core.dates import as_utc, utcnow
from app.models.database import session_scope
from app.models.tables import Click, Link

import structlog

logger = structlog.get_logger()

POP_TIMEOUT_SECONDS = 5


async def record_click(payload: dict):
    """Persist one click + increment the link counter. Failures are logged, not raised."""
    try:
        link_id = UUID(str(payload["link_id"]))
        ts = payload.get("ts")
        utm = payload.get("utm") or {}
        click = Click(
            link_id=link_id,
            ts=as_utc(datetime.datetime.fromisoformat(ts)) if ts else utcnow(),
            referer=payload.get("referer") or "direct",
            country=payload.get("country"),
            ua=payload.get("ua"),
            device=payload.get("device"),
            browser=payload.get("browser"),
            ip_hash=payload.get("ip_hash"),
            tz_offset=payload.get("tz_offset"),
            utm_source=utm.get("source"),
            utm_medium=utm.get("medium"),
            utm_campaign=utm.get("campaign"),
        )
        async with session_scope() as db:
            db.add(click)
            await db.execute(
                update(Link).where(Link.id == link_id).values(clicks_count=Link.clicks_count + 1)
            )
            await db.commit()
    except (SQLAlchemyError, KeyError, ValueError) as e:
        logger.error("click_record_failed", link_id=str(payload.get("link_id")), error=str(e))


class ClickQueue:
    def __init__(self):
        self.redis = None
        self.queue_name = "clicks"
        self.enabled = False
        self._warned = False

    def _warn_once(self, event: str, **kw):
        if not self._warned:
            logger.warning(event, fallback="inline", **kw)
            self._warned = True

    async def init(self, redis_url: str, queue_name: str = "clicks"):
        self.queue_name = queue_name
        url = (redis_url or "").strip()
        if not url:
            self.enabled = False
            logger.info("click_queue_disabled", reason="redis_url not set")
            return

        try:
            self.redis = redis.from_url(url, decode_responses=True)
            await self.redis.ping()
        except (RedisError, OSError) as e:
            self._warn_once("click_queue_unavailable", error=str(e))
            self.enabled = False
            return

        self.enabled = True
        logger.info("click_queue_enabled", queue=self.queue_name)

    async def enqueue(self, payload: dict, background_tasks: BackgroundTasks):
        if self.enabled and self.redis is not None:
            try:
                await self.redis.rpush(self.queue_name, json.dumps(payload))
                return
            except (RedisError, OSError) as e:
                self._warn_once("click_enqueue_failed", error=str(e))
                self.enabled = False

        # Fallback: write after the response has been sent
        background_tasks.add_task(record_click, payload)

    async def pop(self, timeout: int = POP_TIMEOUT_SECONDS) -> dict | None:
        item = await self.redis.blpop([self.queue_name], timeout=timeout)
        if not item:
            return None
        _, raw = item
        return json.loads(raw)

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
        self.redis = None
        self.enabled = False


async def run_worker(queue: ClickQueue, stop: asyncio.Event | None = None):
    """Drain the Redis list until stopped or the connection fails."""
    stop = stop or asyncio.Event()
    logger.info("click_worker_started", queue=queue.queue_name)
    processed = 0
    while not stop.is_set():
        try:
            payload = await queue.pop()
        except (RedisError, OSError) as e:
            queue._warn_once("click_worker_error", error=str(e))
            queue.enabled = False
            break
        except json.JSONDecodeError:
            logger.warning("click_payload_malformed")
            continue
        if payload is None:
            continue
        await record_click(payload)
        processed += 1
    logger.info("click_worker_stopped", processed=processed)


click_queue = ClickQueue()


def get_click_queue() -> ClickQueue:
    return click_queue
