from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.background.portpro_sync_jobs import poll_portpro_job, reconcile_portpro_job, retry_dead_letters_job
from app.core.config import get_settings
from app.services.portpro.portpro_client import PortProClient

logger = logging.getLogger(__name__)

sync_scheduler = AsyncIOScheduler()


def start_scheduler(portpro_client: Optional[PortProClient] = None) -> bool:
    """Schedule the PortPro poll, reconciliation and webhook retry jobs.

    Disabled unless ``ENABLE_PORTPRO_SCHEDULER`` is set, since production
    triggers the same runs through QStash and the cron endpoint.
    """
    settings = get_settings()
    if sync_scheduler.running:
        return True
    if not settings.enable_portpro_scheduler:
        logger.info("PortPro scheduler disabled")
        return False

    job_kwargs = {"client": portpro_client}
    sync_scheduler.add_job(
        poll_portpro_job,
        "interval",
        minutes=settings.portpro_poll_interval_minutes,
        id="portpro-poll",
        kwargs=job_kwargs,
        max_instances=1,
        coalesce=True,
    )
    sync_scheduler.add_job(
        reconcile_portpro_job,
        "interval",
        hours=settings.portpro_reconcile_interval_hours,
        id="portpro-reconcile",
        kwargs=job_kwargs,
        max_instances=1,
        coalesce=True,
    )
    sync_scheduler.add_job(
        retry_dead_letters_job,
        "interval",
        minutes=settings.portpro_dlq_retry_interval_minutes,
        id="portpro-dlq-retry",
        max_instances=1,
        coalesce=True,
    )
    sync_scheduler.start()
    logger.info(
        "PortPro scheduler started",
        extra={
            "poll_interval_minutes": settings.portpro_poll_interval_minutes,
            "reconcile_interval_hours": settings.portpro_reconcile_interval_hours,
            "dlq_retry_interval_minutes": settings.portpro_dlq_retry_interval_minutes,
        },
    )
    return True


def shutdown_scheduler() -> None:
    if sync_scheduler.running:
        sync_scheduler.shutdown(wait=False)
        logger.info("PortPro scheduler stopped")
