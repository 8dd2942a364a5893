"""
Flatten PortPro driver orders into the ``load_events`` tracking timeline.

PortPro nests stops inside driver orders: each driver order is one container
move with its own driver, and ``driverOrder[].moves[]`` are the stops of that
move. The timeline stores one ``move_start`` row per driver order followed by
one ``stop`` row per nested stop.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from app.models.load import EventStatus, LoadEventType
from app.schemas.portpro import PortProDriverOrder, PortProMove
from app.services.portpro.mappers import format_stop_address, map_move_type

STOP_TYPE_LABELS: Dict[str, str] = {
    "pickup": "Pick Up Container",
    "hook": "Hook Container",
    "drop": "Drop Container",
    "deliver": "Deliver Container",
    "return": "Return Container",
}

_COMPLETED_ORDER_STATUSES = {"completed", "delivered"}
_ACTIVE_ORDER_STATUSES = {"in_progress", "dispatched", "started"}


def _stop_status(is_completed: Optional[bool], status: Optional[str], arrived: Optional[datetime]) -> str:
    if is_completed is True or (status or "").upper() == "COMPLETED":
        return EventStatus.COMPLETED.value
    if arrived is not None:
        return EventStatus.IN_PROGRESS.value
    return EventStatus.PENDING.value


def _move_status(order: PortProDriverOrder) -> str:
    status = (order.status or "").lower()
    if status in _COMPLETED_ORDER_STATUSES:
        return EventStatus.COMPLETED.value
    if status in _ACTIVE_ORDER_STATUSES:
        return EventStatus.IN_PROGRESS.value
    return EventStatus.PENDING.value


def _elapsed_minutes(arrived: Optional[datetime], departed: Optional[datetime]) -> Optional[int]:
    if arrived is None or departed is None:
        return None
    return round((departed - arrived).total_seconds() / 60)


def _move_distance(order: PortProDriverOrder) -> Optional[float]:
    if order.distance:
        return order.distance
    return sum(move.distance or 0 for move in order.moves) or None


def _describe(stop_type: Optional[str], raw_type: Optional[str], fallback: str, location_name: Optional[str]) -> str:
    label = STOP_TYPE_LABELS.get(stop_type) if stop_type else None
    description = label or raw_type or fallback
    if location_name:
        description += f" at {location_name}"
    return description


def _driver_fields(order: PortProDriverOrder) -> Dict[str, Any]:
    driver = order.driver
    return {
        "driver_id": driver.id if driver else None,
        "driver_name": order.driver_name,
        "driver_avatar": driver.profile_picture if driver else None,
    }


def _stop_from_move(
    load_id: Optional[str],
    move: PortProMove,
    order: PortProDriverOrder,
    move_number: int,
    stop_number: int,
    now: datetime,
) -> Dict[str, Any]:
    stop_type = map_move_type(move.type)
    location = move.address
    location_name = move.company_name or (location.company_name if location else None)

    duration = _elapsed_minutes(move.arrived, move.departed)
    if duration is None and move.duration:
        duration = round(move.duration)

    return {
        "load_id": load_id,
        "event_type": LoadEventType.STOP.value,
        "status": _stop_status(move.is_completed, move.status, move.arrived),
        "description": _describe(stop_type, move.type, "Stop", location_name),
        "move_number": move_number,
        "stop_number": stop_number,
        "stop_type": stop_type,
        "location_name": location_name,
        "location_address": format_stop_address(location),
        **_driver_fields(order),
        "arrival_time": move.arrived,
        "departure_time": move.departed,
        "duration_minutes": duration,
        "distance_miles": move.distance or None,
        "portpro_move_id": order.id,
        "portpro_stop_id": move.id,
        "portpro_event": True,
        "created_at": move.arrived or move.appointment_from or now,
    }


def _stop_from_order(
    load_id: Optional[str],
    order: PortProDriverOrder,
    move_number: int,
    now: datetime,
) -> Dict[str, Any]:
    """Single best-effort stop for a driver order that carries no nested moves."""
    stop_number = 1
    stop_type = map_move_type(order.type)
    location = order.address
    location_name = order.company_name or (location.company_name if location else None)

    return {
        "load_id": load_id,
        "event_type": LoadEventType.STOP.value,
        "status": _stop_status(order.is_completed, order.status, order.arrived),
        "description": _describe(stop_type, order.type, f"Stop {stop_number}", location_name),
        "move_number": move_number,
        "stop_number": stop_number,
        "stop_type": stop_type,
        "location_name": location_name,
        "location_address": format_stop_address(location, include_zip=False),
        **_driver_fields(order),
        "arrival_time": order.arrived,
        "departure_time": order.departed,
        "duration_minutes": _elapsed_minutes(order.arrived, order.departed),
        "distance_miles": order.distance or None,
        "portpro_move_id": order.id,
        "portpro_stop_id": order.id,
        "portpro_event": True,
        "created_at": order.arrived or now,
    }


def flatten_driver_orders(
    driver_orders: Sequence[Union[PortProDriverOrder, Dict[str, Any]]],
    load_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Build the ordered tracking events for a load.

    Args:
        driver_orders: ``driverOrder`` entries, decoded or raw
        load_id: Value for each event's ``load_id``
        now: Fallback ``created_at`` for events without a timestamp

    Returns:
        Event column dicts in timeline order: each move_start (which has no
        stop number) followed by its stops. Moves are numbered by
        ``moveNumber`` when present, otherwise by 1-based position; stops are
        numbered 1..N by position within their move.
    """
    now = now or datetime.now(timezone.utc)
    events: List[Dict[str, Any]] = []

    for index, raw_order in enumerate(driver_orders, start=1):
        order = raw_order if isinstance(raw_order, PortProDriverOrder) else PortProDriverOrder.model_validate(raw_order)
        move_number = order.move_number or index

        events.append({
            "load_id": load_id,
            "event_type": LoadEventType.MOVE_START.value,
            "status": _move_status(order),
            "description": f"Container Move {move_number} - {order.driver_name}",
            "move_number": move_number,
            "stop_number": None,
            **_driver_fields(order),
            "distance_miles": _move_distance(order),
            "portpro_move_id": order.id,
            "portpro_event": True,
            "created_at": now,
        })

        if order.moves:
            for stop_number, move in enumerate(order.moves, start=1):
                events.append(_stop_from_move(load_id, move, order, move_number, stop_number, now))
        else:
            events.append(_stop_from_order(load_id, order, move_number, now))

    return events
