from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text, func

from app.models.base import Base


class PortProWebhookLog(Base):
    """Every PortPro webhook delivery, kept for auditing and redelivery checks."""
    __tablename__ = "portpro_webhook_logs"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False, index=True)
    reference_number = Column(String, nullable=True, index=True)
    idempotency_key = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)


class PortProDeadLetter(Base):
    """A webhook whose processing failed, waiting for a retry or manual review."""
    __tablename__ = "portpro_webhook_dead_letters"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    idempotency_key = Column(String, nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    first_failed_at = Column(DateTime(timezone=True), nullable=False)
    last_attempt_at = Column(DateTime(timezone=True), nullable=False)
    next_retry_at = Column(DateTime(timezone=True), nullable=True, index=True)  # None once retries are exhausted
