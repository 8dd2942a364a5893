"""Schemas for PortPro webhook deliveries, the dead-letter queue and sync health."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class PortProWebhookEvent(BaseModel):
    """
    A PortPro webhook envelope.

    PortPro sends ``event_type`` or ``eventType``, and puts the changed load
    document under ``data`` (``changedValues`` for some status updates).
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: Optional[str] = Field(None, validation_alias=AliasChoices("event_type", "eventType"))
    reference_number: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    changed_values: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("changedValues", "changed_values"),
    )

    @field_validator("data", "changed_values", mode="before")
    @classmethod
    def _objects(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    @property
    def reference(self) -> Optional[str]:
        return self.reference_number or self.data.get("reference_number")

    @property
    def timestamp(self) -> Optional[str]:
        value = self.data.get("updatedAt") or self.data.get("createdAt")
        return str(value) if value else None


class WebhookAck(BaseModel):
    success: bool = True
    event: Optional[str] = None
    duplicate: Optional[bool] = None
    queued: Optional[bool] = None
    error: Optional[str] = None


class DeadLetterResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    event_type: str = Field(serialization_alias="eventType")
    payload: Dict[str, Any]
    error: Optional[str] = None
    attempts: int
    first_failed_at: datetime = Field(serialization_alias="firstFailedAt")
    last_attempt_at: datetime = Field(serialization_alias="lastAttempt")
    next_retry_at: Optional[datetime] = Field(None, serialization_alias="nextRetryAt")
    idempotency_key: Optional[str] = Field(None, exclude=True)


class DeadLetterStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    by_event_type: Dict[str, int] = Field(default_factory=dict, alias="byEventType")
    max_retries_reached: int = Field(0, alias="maxRetriesReached")
    oldest_item: Optional[datetime] = Field(None, alias="oldestItem")


class DeadLetterList(BaseModel):
    items: List[DeadLetterResponse]
    stats: DeadLetterStats


class DeadLetterRetrySummary(BaseModel):
    success: bool = True
    retried: int = 0
    succeeded: int = 0
    failed: int = 0


class WebhookVolume(BaseModel):
    total: int = 0
    failed: int = 0
    rate: int = 0  # Failed as a percentage of total


class DeadLetterHealth(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    count: int = 0
    max_retries_reached: int = Field(0, alias="maxRetriesReached")


class LastReconciliation(BaseModel):
    time: Optional[datetime] = None
    discrepancies: int = 0
    status: Optional[str] = None


class SyncMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    webhooks_last_24h: WebhookVolume = Field(default_factory=WebhookVolume, alias="webhooksLast24h")
    dlq: DeadLetterHealth = Field(default_factory=DeadLetterHealth)
    last_reconciliation: LastReconciliation = Field(default_factory=LastReconciliation, alias="lastReconciliation")
    health: str = "healthy"  # healthy | degraded | critical
    issues: List[str] = Field(default_factory=list)


class SyncHealth(BaseModel):
    healthy: bool
    issues: List[str] = Field(default_factory=list)
