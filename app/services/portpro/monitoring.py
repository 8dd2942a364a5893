"""Health metrics for the PortPro integration: webhook volume, dead letters and reconciliation age."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.models.sync_run import SyncRun, SyncType
from app.models.webhook import PortProWebhookLog
from app.schemas.webhook import (
    DeadLetterHealth,
    LastReconciliation,
    SyncHealth,
    SyncMetrics,
    WebhookVolume,
)
from app.services.portpro.dead_letters import DeadLetterQueue
from app.services.portpro.sync_service import as_utc

logger = logging.getLogger(__name__)

DLQ_DEGRADED_COUNT = 20
MAX_RETRIES_CRITICAL_COUNT = 10
RECONCILE_STALE_HOURS = 8

HEALTHY = "healthy"
DEGRADED = "degraded"
CRITICAL = "critical"


class SyncMonitor:
    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.dead_letters = DeadLetterQueue(db, self.settings, clock=self._clock)

    async def get_sync_metrics(self) -> SyncMetrics:
        """
        Summarize sync health.

        ``critical`` when the dead-letter queue is over its alert threshold or
        too many items exhausted their retries; ``degraded`` when the queue is
        growing or the last reconciliation is older than eight hours.
        """
        now = self._clock()
        issues = []

        webhooks = await self.db.scalar(
            select(func.count(PortProWebhookLog.id)).where(PortProWebhookLog.created_at >= now - timedelta(days=1))
        ) or 0
        dlq = await self.dead_letters.stats()
        last_run = (
            await self.db.execute(
                select(SyncRun)
                .where(SyncRun.sync_type == SyncType.RECONCILE.value)
                .order_by(SyncRun.started_at.desc())
                .limit(1)
            )
        ).scalars().first()

        health = HEALTHY
        if dlq.count > self.settings.portpro_dlq_alert_threshold:
            health = CRITICAL
            issues.append(f"DLQ has {dlq.count} failed webhooks")
        elif dlq.count > DLQ_DEGRADED_COUNT:
            health = DEGRADED
            issues.append(f"DLQ has {dlq.count} failed webhooks")

        if dlq.max_retries_reached > MAX_RETRIES_CRITICAL_COUNT:
            health = CRITICAL
            issues.append(f"{dlq.max_retries_reached} webhooks reached max retries")

        last_reconciliation = LastReconciliation()
        if last_run is not None:
            started = as_utc(last_run.started_at)
            last_reconciliation = LastReconciliation(
                time=started,
                discrepancies=int((last_run.metadata_json or {}).get("discrepancies") or 0),
                status=last_run.status,
            )
            hours_since = (now - started).total_seconds() / 3600
            if hours_since > RECONCILE_STALE_HOURS:
                health = CRITICAL if health == CRITICAL else DEGRADED
                issues.append(f"No reconciliation in {round(hours_since)} hours")

        if health != HEALTHY:
            logger.warning(f"PortPro sync {health}: {'; '.join(issues)}")

        return SyncMetrics(
            webhooks_last_24h=WebhookVolume(
                total=webhooks,
                failed=dlq.count,
                rate=round(dlq.count / webhooks * 100) if webhooks else 0,
            ),
            dlq=DeadLetterHealth(count=dlq.count, max_retries_reached=dlq.max_retries_reached),
            last_reconciliation=last_reconciliation,
            health=health,
            issues=issues,
        )

    async def check_sync_health(self) -> SyncHealth:
        metrics = await self.get_sync_metrics()
        return SyncHealth(healthy=metrics.health == HEALTHY, issues=metrics.issues)
