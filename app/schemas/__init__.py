"""Pydantic schemas."""

from app.schemas.portpro import PortProLoad  # noqa: F401
from app.schemas.quote import QuoteConvert, QuoteResponse, QuoteStatusUpdate  # noqa: F401
from app.schemas.sync import (  # noqa: F401
    ConnectionCheck,
    PollRequest,
    ReconcileSummary,
    SyncRequest,
    SyncRunResponse,
    SyncSummary,
)
from app.schemas.webhook import (  # noqa: F401
    DeadLetterList,
    DeadLetterResponse,
    DeadLetterRetrySummary,
    DeadLetterStats,
    PortProWebhookEvent,
    SyncHealth,
    SyncMetrics,
    WebhookAck,
)
