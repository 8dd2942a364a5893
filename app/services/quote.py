from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.quote import Quote, QuoteStatus

logger = logging.getLogger(__name__)


# Allowed status changes; converted, rejected, expired and cancelled are terminal
QUOTE_TRANSITIONS: Dict[QuoteStatus, Set[QuoteStatus]] = {
    QuoteStatus.PENDING: {QuoteStatus.IN_REVIEW, QuoteStatus.QUOTED, QuoteStatus.CANCELLED, QuoteStatus.EXPIRED},
    QuoteStatus.IN_REVIEW: {QuoteStatus.QUOTED, QuoteStatus.REJECTED, QuoteStatus.CANCELLED},
    QuoteStatus.QUOTED: {QuoteStatus.ACCEPTED, QuoteStatus.REJECTED, QuoteStatus.EXPIRED, QuoteStatus.CANCELLED},
    QuoteStatus.ACCEPTED: {QuoteStatus.CONVERTED, QuoteStatus.CANCELLED},
    QuoteStatus.REJECTED: set(),
    QuoteStatus.EXPIRED: set(),
    QuoteStatus.CANCELLED: set(),
    QuoteStatus.CONVERTED: set(),
}


def can_transition(current: str, target: str) -> bool:
    try:
        return QuoteStatus(target) in QUOTE_TRANSITIONS[QuoteStatus(current)]
    except (ValueError, KeyError):
        return False


class QuoteService:
    """Quote lifecycle owned by the admin workflow.

    The PortPro sync never touches quotes; the only cross-over is
    :meth:`mark_converted` when a load is created from an accepted quote.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, quote_id: str) -> Quote:
        quote = await self.db.get(Quote, quote_id)
        if not quote:
            raise ValueError("Quote not found")
        return quote

    async def transition(self, quote_id: str, target: QuoteStatus | str) -> Quote:
        quote = await self.get(quote_id)
        target = QuoteStatus(target)
        if not can_transition(quote.status, target.value):
            raise ValueError(f"Cannot move quote from {quote.status} to {target.value}")

        quote.status = target.value
        await self.db.commit()
        await self.db.refresh(quote)
        logger.info(f"Quote {quote_id} moved to {target.value}")
        return quote

    async def mark_converted(self, quote_id: str, load_id: str, converted_at: Optional[datetime] = None) -> Quote:
        """Mark an accepted quote as converted into ``load_id``."""
        quote = await self.get(quote_id)
        if quote.status == QuoteStatus.CONVERTED.value:
            if quote.load_id == load_id:
                return quote
            raise ValueError(f"Quote {quote_id} was already converted to load {quote.load_id}")
        if not can_transition(quote.status, QuoteStatus.CONVERTED.value):
            raise ValueError(f"Cannot convert quote in status {quote.status}")

        quote.status = QuoteStatus.CONVERTED.value
        quote.load_id = load_id
        quote.converted_at = converted_at or datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(quote)
        logger.info(f"Quote {quote_id} converted to load {load_id}")
        return quote
