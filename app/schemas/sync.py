from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncRequest(BaseModel):
    limit: int = Field(50, ge=1, le=500)
    skip: int = Field(0, ge=0)


class PollRequest(BaseModel):
    limit: Optional[int] = Field(None, ge=1, le=500)
    skip: int = Field(0, ge=0)


class SyncSummary(BaseModel):
    """Result of one sync pass; the only error-reporting surface of a run."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: Optional[str] = None
    total: int = 0
    synced: int = 0  # Inserted
    updated: int = 0
    unchanged: int = 0  # Poll only: newer or equal locally, not rewritten
    skipped: int = 0
    errors: int = 0
    error_details: Optional[List[str]] = Field(None, alias="errorDetails")
    has_more: bool = Field(False, alias="hasMore")
    next_skip: int = Field(0, alias="nextSkip")
    duration_ms: Optional[int] = Field(None, alias="durationMs")
    run_id: Optional[str] = Field(None, alias="runId")


class ReconcileSummary(SyncSummary):
    discrepancies: int = 0


class SampleLoad(BaseModel):
    reference: Optional[str] = None
    container: Optional[str] = None


class ConnectionCheck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    configured: bool = True
    message: str = "PortPro connection successful"
    sample_load: Optional[SampleLoad] = Field(None, alias="sampleLoad")


class SyncRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sync_type: str
    status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_failed: int = 0
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="metadata_json")
