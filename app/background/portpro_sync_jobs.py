"""Background sync jobs for the PortPro integration."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.core.config import get_settings
from app.core.db import get_session_factory
from app.services.portpro.portpro_client import PortProClient, PortProConfigurationError
from app.services.portpro.repository import LoadRepository
from app.services.portpro.sync_service import PortProSyncService
from app.services.portpro.webhooks import PortProWebhookService

logger = logging.getLogger(__name__)


async def _run_with_service(
    name: str,
    run: Callable[[PortProSyncService], Awaitable],
    budget_seconds: int,
    client: Optional[PortProClient] = None,
):
    settings = get_settings()
    try:
        client = client or PortProClient.from_settings(settings)
    except PortProConfigurationError as e:
        logger.warning(f"Skipping {name}: {e}")
        return None

    async with get_session_factory()() as db:
        service = PortProSyncService(LoadRepository(db), client, settings)
        try:
            summary = await asyncio.wait_for(run(service), timeout=budget_seconds)
        except asyncio.TimeoutError:
            # Unfinished records are picked up by the next run
            logger.error(f"{name} exceeded its {budget_seconds}s budget")
            return None
        except Exception as e:
            logger.error(f"Error in {name} job: {e}", exc_info=True)
            return None

    logger.info(
        name,
        extra={
            "total": summary.total,
            "synced": summary.synced,
            "updated": summary.updated,
            "unchanged": summary.unchanged,
            "skipped": summary.skipped,
            "errors": summary.errors,
        },
    )
    return summary


async def poll_portpro_job(client: Optional[PortProClient] = None):
    """Timestamp-aware poll of the newest PortPro loads."""
    settings = get_settings()
    return await _run_with_service(
        "portpro_poll",
        lambda service: service.poll(limit=settings.portpro_poll_limit),
        settings.portpro_sync_max_seconds,
        client,
    )


async def reconcile_portpro_job(client: Optional[PortProClient] = None):
    """Full reconciliation of every PortPro load."""
    settings = get_settings()
    return await _run_with_service(
        "portpro_reconcile",
        lambda service: service.reconcile(batch_size=settings.portpro_reconcile_batch_size),
        settings.portpro_reconcile_max_seconds,
        client,
    )


async def retry_dead_letters_job():
    """Retry dead-lettered PortPro webhooks whose backoff has elapsed."""
    async with get_session_factory()() as db:
        try:
            summary = await PortProWebhookService(db).retry_dead_letters()
        except Exception as e:
            logger.error(f"Error in portpro_dlq_retry job: {e}", exc_info=True)
            return None

    if summary.retried:
        logger.info(
            "portpro_dlq_retry",
            extra={"retried": summary.retried, "succeeded": summary.succeeded, "failed": summary.failed},
        )
    return summary
