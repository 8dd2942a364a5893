from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship

from app.models.base import Base


class LoadStatus(str, Enum):
    BOOKED = "booked"
    DISPATCHED = "dispatched"
    AT_TERMINAL = "at_terminal"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    AT_YARD = "at_yard"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXCEPTION = "exception"


class LoadEventType(str, Enum):
    STATUS_UPDATE = "status_update"
    MOVE_START = "move_start"
    STOP = "stop"
    DOCUMENT = "document"
    NOTE = "note"
    EXCEPTION = "exception"


# Event types owned by the PortPro sync; regenerated on every pass
SYNCED_EVENT_TYPES = (LoadEventType.MOVE_START.value, LoadEventType.STOP.value)


class StopType(str, Enum):
    PICKUP = "pickup"
    HOOK = "hook"
    DROP = "drop"
    DELIVER = "deliver"
    RETURN = "return"
    YARD = "yard"
    TERMINAL = "terminal"


class EventStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Load(Base):
    """One physical container movement, joined to PortPro by container number."""
    __tablename__ = "loads"

    id = Column(String, primary_key=True)
    tracking_number = Column(String, nullable=False, unique=True, index=True)  # Customer-facing, e.g. NSLM5X2K1QZ8F
    status = Column(String, nullable=False, default=LoadStatus.BOOKED.value)
    current_location = Column(String, nullable=True)

    # Route
    origin = Column(Text, nullable=True)
    destination = Column(Text, nullable=True)
    return_location = Column(Text, nullable=True)  # Where the empty container goes back

    # Customer
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True, index=True)
    customer_phone = Column(String, nullable=True)

    # Container
    container_number = Column(String, nullable=True, index=True)
    container_size = Column(String, nullable=True)  # 20', 40', 45'
    container_type = Column(String, nullable=True)  # HC, ST, RF
    seal_number = Column(String, nullable=True)
    chassis_number = Column(String, nullable=True)
    weight = Column(Float, nullable=True)

    # Booking & shipping
    booking_number = Column(String, nullable=True, index=True)
    shipping_line = Column(String, nullable=True)
    commodity = Column(String, nullable=True)

    # Dates
    eta = Column(DateTime(timezone=True), nullable=True)
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    last_free_day = Column(DateTime(timezone=True), nullable=True)  # Demurrage starts after this day

    total_miles = Column(Float, nullable=True)

    # Billing
    billing_total = Column(Numeric(12, 2, asdecimal=False), nullable=True)
    load_margin = Column(Numeric(12, 2, asdecimal=False), nullable=True)

    # PortPro references
    portpro_reference = Column(String, nullable=True, index=True)
    portpro_load_id = Column(String, nullable=True, index=True)

    public_notes = Column(Text, nullable=True)
    quote_id = Column(String, ForeignKey("quotes.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    events = relationship(
        "LoadEvent",
        back_populates="load",
        cascade="all, delete-orphan",
        order_by=lambda: timeline_order(),
    )


class LoadEvent(Base):
    """Tracking timeline entry: a container move start or a stop within a move."""
    __tablename__ = "load_events"

    id = Column(String, primary_key=True)
    load_id = Column(String, ForeignKey("loads.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False, default=LoadEventType.STATUS_UPDATE.value, index=True)
    status = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    move_number = Column(Integer, nullable=True)
    stop_number = Column(Integer, nullable=True)
    stop_type = Column(String, nullable=True)

    location_name = Column(String, nullable=True)
    location_address = Column(Text, nullable=True)

    driver_id = Column(String, nullable=True)
    driver_name = Column(String, nullable=True)
    driver_avatar = Column(String, nullable=True)

    arrival_time = Column(DateTime(timezone=True), nullable=True)
    departure_time = Column(DateTime(timezone=True), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    distance_miles = Column(Float, nullable=True)

    portpro_move_id = Column(String, nullable=True)
    portpro_stop_id = Column(String, nullable=True)
    portpro_event = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    load = relationship("Load", back_populates="events")


def timeline_order():
    """Order events by move, with each move_start (no stop number) ahead of its stops."""
    return [LoadEvent.move_number, LoadEvent.stop_number.asc().nulls_first()]
