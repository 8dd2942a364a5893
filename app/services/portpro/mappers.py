"""
Pure mapping functions from decoded PortPro records to NSL load fields.

None in, None out: every mapper tolerates missing upstream data and never raises.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Union

from app.models.load import LoadStatus, StopType
from app.schemas.portpro import PortProCharge, PortProLoad, PortProLocation

# PortPro load status -> NSL load status
PORTPRO_STATUS_MAP: Dict[str, str] = {
    "PENDING": LoadStatus.BOOKED.value,
    "CUSTOMS HOLD": LoadStatus.AT_TERMINAL.value,
    "FREIGHT HOLD": LoadStatus.AT_TERMINAL.value,
    "AVAILABLE": LoadStatus.AT_TERMINAL.value,
    "DISPATCHED": LoadStatus.IN_TRANSIT.value,
    "PICKED UP": LoadStatus.PICKED_UP.value,
    "DROPPED": LoadStatus.OUT_FOR_DELIVERY.value,
    "COMPLETED": LoadStatus.DELIVERED.value,
    "BILLING": LoadStatus.DELIVERED.value,
    "PARTIAL_PAID": LoadStatus.DELIVERED.value,
    "FULL_PAID": LoadStatus.DELIVERED.value,
    "CANCELLED": LoadStatus.CANCELLED.value,
}

# PortPro move (stop) type -> NSL stop type
MOVE_TYPE_MAP: Dict[str, str] = {
    "PULLCONTAINER": StopType.PICKUP.value,
    "HOOKCONTAINER": StopType.HOOK.value,
    "DROPCONTAINER": StopType.DROP.value,
    "DELIVERLOAD": StopType.DELIVER.value,
    "RETURNCONTAINER": StopType.RETURN.value,
    "GETLOADED": StopType.PICKUP.value,
    "GETUNLOADED": StopType.DELIVER.value,
}

_AT_ORIGIN_STATUSES = {"PENDING", "CUSTOMS HOLD", "FREIGHT HOLD", "AVAILABLE"}
_AT_DESTINATION_STATUSES = {"DROPPED", "COMPLETED", "BILLING"}


def _normalize_status(portpro_status: Optional[str]) -> str:
    return (portpro_status or "").strip().upper()


def map_status(portpro_status: Optional[str]) -> str:
    """Map a PortPro status to an NSL load status; unknown values map to ``booked``."""
    return PORTPRO_STATUS_MAP.get(_normalize_status(portpro_status), LoadStatus.BOOKED.value)


def map_move_type(move_type: Optional[str]) -> Optional[str]:
    if not move_type:
        return None
    return MOVE_TYPE_MAP.get(move_type.strip().upper())


def extract_lookup_value(value: Any) -> Optional[str]:
    """
    Extract the display value of a lookup-coded field.

    PortPro sends container size/type either as a plain string or as
    ``{"_id": ..., "label": ..., "name": ...}``; ``label`` wins over ``name``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("label") or value.get("name") or None
    return None


def _address_line(location: PortProLocation) -> Optional[str]:
    address = location.address
    if address is None:
        return None

    parts = []
    if address.address1:
        parts.append(address.address1)
    if address.city:
        parts.append(address.city)
    if address.state:
        parts.append(f"{address.state} {address.zip}" if address.zip else address.state)
    if address.country and address.country != "US":
        parts.append(address.country)
    return ", ".join(parts) if parts else None


def format_location(location: Union[PortProLocation, Dict[str, Any], str, None]) -> Optional[str]:
    """
    Render a location as a multi-line address string.

    ``fullAddress`` is used verbatim when present. Otherwise the company name
    and ``"address1, city, STATE ZIP[, country]"`` are joined by a newline;
    the country is omitted for US addresses.
    """
    if location is None:
        return None
    if not isinstance(location, PortProLocation):
        location = PortProLocation.model_validate(location)

    if location.full_address:
        return location.full_address

    lines = []
    if location.company_name:
        lines.append(location.company_name)
    address_line = _address_line(location)
    if address_line:
        lines.append(address_line)
    return "\n".join(lines) if lines else None


def format_stop_address(location: Optional[PortProLocation], include_zip: bool = True) -> Optional[str]:
    """Single-line stop address (no company name, no country)."""
    if location is None:
        return None
    address = location.address
    if address is not None:
        parts = [part for part in (address.address1, address.city) if part]
        if address.state:
            parts.append(f"{address.state} {address.zip}" if include_zip and address.zip else address.state)
        if parts:
            return ", ".join(parts)
        return None
    return location.full_address


def _sum_expenses(lines: Iterable[PortProCharge]) -> float:
    return sum(line.final_amount or line.amount or 0 for line in lines)


def _sum_vendor_pay(lines: Iterable[PortProCharge]) -> float:
    total = 0.0
    for line in lines:
        if line.total_amount is not None:
            total += line.total_amount
        elif line.pricing:
            total += sum(item.final_amount or item.amount or 0 for item in line.pricing)
    return total


def _sum_driver_pay(lines: Iterable[PortProCharge]) -> float:
    return sum(line.total_amount or line.amount or 0 for line in lines)


def calculate_margin(load: Union[PortProLoad, Dict[str, Any]]) -> Optional[float]:
    """
    Margin = revenue (``totalAmount``) - expenses - vendor pay - driver pay.

    Vendor pay uses the flat ``totalAmount`` of each entry and falls back to
    summing its itemised ``pricing``. Returns None when revenue is unknown.
    """
    if not isinstance(load, PortProLoad):
        load = PortProLoad.model_validate(load)
    if load.total_amount is None:
        return None

    costs = (
        _sum_expenses(load.expense)
        + _sum_vendor_pay(load.vendor_pay)
        + _sum_driver_pay(load.driver_pay)
    )
    return round(load.total_amount - costs, 2)


def current_location(load: PortProLoad) -> Optional[str]:
    """Human-readable "where is it now" derived from the load status."""
    status = _normalize_status(load.status)
    if status in _AT_ORIGIN_STATUSES:
        return (load.shipper.company_name if load.shipper else None) or "At Port"
    if status == "DISPATCHED":
        return "In Transit"
    if status in _AT_DESTINATION_STATUSES:
        return (load.consignee.company_name if load.consignee else None) or "Delivered"
    return None


def _public_notes(load: PortProLoad) -> str:
    notes = f"PortPro: {load.reference_number or load.id or 'unknown'}"
    if load.type_of_load:
        notes += f" - {load.type_of_load}"
    return notes


def build_load_values(load: PortProLoad, synced_at: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the column values for a ``loads`` row from a PortPro load.

    ``tracking_number`` and ``id`` are not included; the caller keeps the
    existing ones on update and assigns new ones on insert.
    """
    origin = (
        format_location(load.pickup_location)
        or format_location(load.shipper)
        or format_location(load.terminal)
    )
    destination = format_location(load.delivery_location) or format_location(load.consignee)
    caller = load.caller

    values: Dict[str, Any] = {
        # Container
        "container_number": load.container_no,
        "container_size": load.container_size,
        "container_type": load.container_type,
        # Status & location
        "status": map_status(load.status),
        "current_location": current_location(load),
        "origin": origin,
        "destination": destination,
        "return_location": format_location(load.return_location),
        # Customer
        "customer_name": caller.company_name if caller else None,
        "customer_email": caller.email if caller else None,
        "customer_phone": caller.phone if caller else None,
        # Booking & shipping
        "booking_number": load.booking_no,
        "shipping_line": load.ssl,
        "commodity": load.commodity,
        # Dates
        "eta": load.delivery_times[0].delivery_from_time if load.delivery_times else None,
        "pickup_time": load.pickup_times[0].pickup_from_time if load.pickup_times else None,
        "last_free_day": load.last_free_day,
        # Equipment
        "weight": load.weight or None,
        "seal_number": load.seal_no,
        "chassis_number": load.chassis_no,
        "total_miles": load.total_miles or None,
        # Billing
        "billing_total": load.total_amount or None,
        "load_margin": calculate_margin(load),
        # PortPro references
        "portpro_reference": load.reference_number,
        "portpro_load_id": load.id,
        "public_notes": _public_notes(load),
    }
    if synced_at is not None:
        values["updated_at"] = synced_at
    return values
