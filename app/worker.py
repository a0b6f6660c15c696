"""
Standalone click worker.

    python -m app.worker

Consumes the Redis click list and writes clicks to the database. Run it
when the API processes are started with SHORTLY_QUEUE_RUN_WORKER=false.
"""

import asyncio
import signal

from app.config import get_settings
from app.core.click_queue import ClickQueue, run_worker
from app.models.database import dispose_engine

import structlog

logger = structlog.get_logger()


async def main():
    settings = get_settings()
    queue = ClickQueue()
    await queue.init(settings.redis_url, settings.queue_name)
    if not queue.enabled:
        logger.error("click_worker_no_queue", hint="set SHORTLY_REDIS_URL")
        return

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await run_worker(queue, stop)
    finally:
        await queue.close()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
