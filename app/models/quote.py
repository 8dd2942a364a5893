from enum import Enum

from sqlalchemy import Column, DateTime, Numeric, String, Text, func

from app.models.base import Base


class QuoteStatus(str, Enum):
    PENDING = "pending"  # Customer submitted the request
    IN_REVIEW = "in_review"  # Admin claimed the quote
    QUOTED = "quoted"  # Pricing sent to the customer
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    CONVERTED = "converted"  # A load was created from this quote


class Quote(Base):
    """Customer request for service, owned by the admin quote workflow."""
    __tablename__ = "quotes"

    id = Column(String, primary_key=True)
    status = Column(String, nullable=False, default=QuoteStatus.PENDING.value, index=True)

    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True, index=True)
    origin = Column(Text, nullable=True)
    destination = Column(Text, nullable=True)
    container_size = Column(String, nullable=True)
    quoted_price = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Set when the quote is converted into a load
    load_id = Column(String, nullable=True, index=True)
    converted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
