from enum import Enum

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text, func

from app.models.base import Base


class SyncType(str, Enum):
    MANUAL = "manual"
    POLL = "poll"
    RECONCILE = "reconcile"


class SyncRunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncRun(Base):
    """One PortPro sync invocation, kept for monitoring and debugging."""
    __tablename__ = "sync_runs"

    id = Column(String, primary_key=True)
    sync_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=SyncRunStatus.RUNNING.value)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    records_processed = Column(Integer, nullable=False, default=0)
    records_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
