#!/usr/bin/env python3
"""
Worker entry point — daily profile sync + enrichment queue on one event loop.

    python worker.py

Web processes submit enrichment requests through Redis; this process pumps
them into the in-process queue and runs the scheduled sync at
SYNC_SCHEDULE_HOUR:SYNC_SCHEDULE_MINUTE in SYNC_SCHEDULE_TIMEZONE.
"""
import asyncio
import logging
import signal

from app.config import SYNC_ENABLED, SYNC_SCHEDULE_HOUR, SYNC_SCHEDULE_MINUTE, SYNC_SCHEDULE_TIMEZONE
from app.database import load_models
from app.extensions import redis_client
from app.logging_config import configure_logging
from app.pipeline.manager import build_pipeline
from app.pipeline.queue import pump_requests
from app.pipeline.scheduler import AsyncioScheduler, DailySchedule
from app.services.circuit_breaker import init_breakers

logger = logging.getLogger('worker')


async def main():
    load_models()
    init_breakers(redis_client)
    pipeline = build_pipeline()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    scheduler = None
    if SYNC_ENABLED:
        schedule = DailySchedule(SYNC_SCHEDULE_HOUR, SYNC_SCHEDULE_MINUTE, SYNC_SCHEDULE_TIMEZONE)
        scheduler = AsyncioScheduler(schedule)
        scheduler.start(pipeline.sync_job.run)
        logger.info("Profile sync scheduled daily (%r)", schedule)
    else:
        logger.info("SYNC_ENABLED is off — scheduled sync not started")

    pump = loop.create_task(pump_requests(pipeline.queue, redis_client, should_stop=stop.is_set))
    logger.info("Worker started")

    await stop.wait()

    logger.info("Shutting down worker")
    if scheduler is not None:
        scheduler.stop()
    await pump
    await pipeline.queue.join()


if __name__ == '__main__':
    configure_logging()
    asyncio.run(main())
