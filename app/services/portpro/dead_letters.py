"""Dead-letter queue for PortPro webhooks whose processing failed."""

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.models.webhook import PortProDeadLetter
from app.schemas.webhook import DeadLetterResponse, DeadLetterStats

logger = logging.getLogger(__name__)

# Wait before retry N: 1 min, 5 min, 15 min, 1 hour, then 4 hours
RETRY_DELAYS_SECONDS = (60, 300, 900, 3600, 14400)


def backoff_delay(attempts: int) -> timedelta:
    return timedelta(seconds=RETRY_DELAYS_SECONDS[min(attempts, len(RETRY_DELAYS_SECONDS) - 1)])


class DeadLetterQueue:
    """
    Failed webhooks waiting for a retry.

    An item is retried with growing delays until it has been attempted
    ``portpro_dlq_max_retries`` times; after that it stays for manual review.
    """

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def max_retries(self) -> int:
        return self.settings.portpro_dlq_max_retries

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def push(
        self,
        event_type: str,
        payload: Dict[str, Any],
        error: str,
        idempotency_key: Optional[str] = None,
    ) -> str:
        now = self._clock()
        item_id = str(uuid.uuid4())
        self.db.add(
            PortProDeadLetter(
                id=item_id,
                event_type=event_type,
                payload=payload,
                idempotency_key=idempotency_key,
                error=error,
                attempts=1,
                first_failed_at=now,
                last_attempt_at=now,
                next_retry_at=now + backoff_delay(1),
            )
        )
        await self._commit()
        logger.info(f"DLQ: Queued failed webhook {item_id} ({event_type})")
        return item_id

    async def items(self, limit: Optional[int] = None) -> List[PortProDeadLetter]:
        """Queued items, most recently attempted first."""
        query = select(PortProDeadLetter).order_by(PortProDeadLetter.last_attempt_at.desc())
        if limit:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get(self, item_id: str) -> Optional[DeadLetterResponse]:
        item = await self.db.get(PortProDeadLetter, item_id)
        return DeadLetterResponse.model_validate(item) if item is not None else None

    async def ready_for_retry(self) -> List[DeadLetterResponse]:
        """Items due for a retry, detached from the session."""
        result = await self.db.execute(
            select(PortProDeadLetter)
            .where(
                PortProDeadLetter.attempts < self.max_retries,
                PortProDeadLetter.next_retry_at <= self._clock(),
            )
            .order_by(PortProDeadLetter.next_retry_at)
        )
        return [DeadLetterResponse.model_validate(item) for item in result.scalars().all()]

    async def record_attempt(
        self,
        item_id: str,
        attempts: int,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Drop the item after a successful retry, otherwise schedule the next one.

        ``attempts`` is the count before this retry.
        """
        if success:
            await self.db.execute(delete(PortProDeadLetter).where(PortProDeadLetter.id == item_id))
            await self._commit()
            logger.info(f"DLQ: Removed {item_id} after successful retry")
            return

        now = self._clock()
        attempts += 1
        values: Dict[str, Any] = {"attempts": attempts, "last_attempt_at": now}
        if error:
            values["error"] = error
        if attempts >= self.max_retries:
            values["next_retry_at"] = None
            logger.warning(f"DLQ: {item_id} reached max retries ({self.max_retries})")
        else:
            values["next_retry_at"] = now + backoff_delay(attempts)
        await self.db.execute(update(PortProDeadLetter).where(PortProDeadLetter.id == item_id).values(**values))
        await self._commit()

    async def remove(self, item_id: str) -> bool:
        result = await self.db.execute(delete(PortProDeadLetter).where(PortProDeadLetter.id == item_id))
        await self._commit()
        if result.rowcount:
            logger.info(f"DLQ: Manually removed {item_id}")
        return bool(result.rowcount)

    async def clear(self) -> int:
        result = await self.db.execute(delete(PortProDeadLetter))
        await self._commit()
        logger.info(f"DLQ: Cleared {result.rowcount} items")
        return result.rowcount or 0

    async def stats(self) -> DeadLetterStats:
        result = await self.db.execute(
            select(
                PortProDeadLetter.event_type,
                func.count(PortProDeadLetter.id),
                func.min(PortProDeadLetter.first_failed_at),
            ).group_by(PortProDeadLetter.event_type)
        )
        by_event_type: Counter = Counter()
        oldest: Optional[datetime] = None
        for event_type, count, first_failed_at in result.all():
            by_event_type[event_type] = count
            if first_failed_at is not None and (oldest is None or first_failed_at < oldest):
                oldest = first_failed_at

        exhausted = await self.db.scalar(
            select(func.count(PortProDeadLetter.id)).where(PortProDeadLetter.attempts >= self.max_retries)
        )
        return DeadLetterStats(
            count=sum(by_event_type.values()),
            by_event_type=dict(by_event_type),
            max_retries_reached=exhausted or 0,
            oldest_item=oldest,
        )
