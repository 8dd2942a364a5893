"""
Pydantic models for PortPro TMS payloads.

PortPro returns deeply nested, partially-optional documents whose shapes vary
between endpoints and tenants (nested vs. flat addresses, lookup objects vs.
plain strings, ``expense`` vs. ``expenses``). Everything is normalised here,
once, so the mapping and event code downstream only ever sees one shape.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator
from typing_extensions import Annotated


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "").replace("$", "")
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def _parse_int(value: Any) -> Optional[int]:
    number = _parse_number(value)
    return int(number) if number is not None else None


def _parse_lookup(value: Any) -> Optional[str]:
    """Lookup-coded fields arrive as ``"40HC"`` or ``{"_id": ..., "label": ..., "name": ...}``."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, dict):
        for key in ("label", "name"):
            candidate = value.get(key)
            if candidate:
                return str(candidate)
    return None


def _list_or_empty(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    return value


Timestamp = Annotated[Optional[datetime], BeforeValidator(_parse_timestamp)]
Number = Annotated[Optional[float], BeforeValidator(_parse_number)]
WholeNumber = Annotated[Optional[int], BeforeValidator(_parse_int)]
LookupValue = Annotated[Optional[str], BeforeValidator(_parse_lookup)]


class PortProModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class PortProAddress(PortProModel):
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


_FLAT_ADDRESS_KEYS = ("address1", "city", "state", "zip", "country")


class PortProLocation(PortProModel):
    """A shipper / consignee / terminal / stop location.

    Accepted shapes:
      {"company_name": ..., "address": {"address1", "city", "state", "zip", "country"}}
      {"company_name": ..., "address": "2500 Navy Way", "city": ..., "state": ..., "zip": ...}
      {"city": ..., "state": ...}
      {"fullAddress": "..."}  or a bare string
    """
    company_name: Optional[str] = None
    address: Optional[PortProAddress] = None
    full_address: Optional[str] = Field(None, alias="fullAddress")

    @model_validator(mode="before")
    @classmethod
    def _normalize_shape(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"fullAddress": data}
        if not isinstance(data, dict):
            return {}

        data = dict(data)
        address = data.get("address")
        flat = {key: data[key] for key in _FLAT_ADDRESS_KEYS if data.get(key) is not None}

        if isinstance(address, str):
            data["address"] = {**flat, "address1": address}
        elif address is None and flat:
            data["address"] = flat
        elif not isinstance(address, dict):
            data["address"] = None
        return data


class PortProCaller(PortProModel):
    id: Optional[str] = Field(None, alias="_id")
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_reference(cls, data: Any) -> Any:
        # Unpopulated references come through as a bare id
        if isinstance(data, str):
            return {"_id": data}
        return data if isinstance(data, dict) else {}


class PortProDriver(PortProModel):
    id: Optional[str] = Field(None, alias="_id")
    name: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    profile_picture: Optional[str] = Field(None, alias="profilePicture")

    @model_validator(mode="before")
    @classmethod
    def _accept_reference(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"_id": data}
        return data if isinstance(data, dict) else {}


class PortProMove(PortProModel):
    """A single stop (pickup, hook, drop, deliver, return) inside a driver order."""
    id: Optional[str] = Field(None, alias="_id")
    type: Optional[str] = None
    status: Optional[str] = None
    is_completed: Optional[bool] = Field(None, alias="isCompleted")
    company_name: Optional[str] = None
    address: Optional[PortProLocation] = None
    arrived: Timestamp = None
    departed: Timestamp = None
    duration: Number = None
    distance: Number = None
    appointment_from: Timestamp = Field(None, alias="appointmentFrom")


class PortProDriverOrder(PortProModel):
    """One container move assigned to a driver.

    The order-level stop fields (``type``, ``address``, ``arrived`` ...) are only
    present on tenants that do not populate ``moves``.
    """
    id: Optional[str] = Field(None, alias="_id")
    move_number: WholeNumber = Field(None, alias="moveNumber")
    status: Optional[str] = None
    driver: Optional[PortProDriver] = None
    driver_name_override: Optional[str] = Field(None, alias="driverName")
    distance: Number = None
    moves: List[PortProMove] = Field(default_factory=list)

    type: Optional[str] = None
    company_name: Optional[str] = None
    address: Optional[PortProLocation] = None
    arrived: Timestamp = None
    departed: Timestamp = None
    is_completed: Optional[bool] = Field(None, alias="isCompleted")

    @field_validator("moves", mode="before")
    @classmethod
    def _moves_list(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @property
    def driver_name(self) -> str:
        driver = self.driver
        if driver and driver.name:
            return driver.name
        if driver and driver.first_name and driver.last_name:
            return f"{driver.first_name} {driver.last_name}"
        if driver and driver.first_name:
            return driver.first_name
        if self.driver_name_override:
            return self.driver_name_override
        return "Unknown Driver"


class PortProPricingItem(PortProModel):
    amount: Number = None
    final_amount: Number = Field(None, alias="finalAmount")


class PortProCharge(PortProModel):
    """A cost line: expense, vendor pay or driver pay entry."""
    amount: Number = None
    final_amount: Number = Field(None, alias="finalAmount")
    total_amount: Number = Field(None, alias="totalAmount")
    pricing: List[PortProPricingItem] = Field(default_factory=list)

    @field_validator("pricing", mode="before")
    @classmethod
    def _pricing_list(cls, value: Any) -> Any:
        return _list_or_empty(value)


class PortProPickupWindow(PortProModel):
    pickup_from_time: Timestamp = Field(None, alias="pickupFromTime")
    pickup_to_time: Timestamp = Field(None, alias="pickupToTime")


class PortProDeliveryWindow(PortProModel):
    delivery_from_time: Timestamp = Field(None, alias="deliveryFromTime")
    delivery_to_time: Timestamp = Field(None, alias="deliveryToTime")


class PortProLoad(PortProModel):
    """A PortPro load as returned by ``GET /loads``."""
    id: Optional[str] = Field(None, alias="_id")
    reference_number: Optional[str] = None
    type_of_load: Optional[str] = None  # IMPORT, EXPORT, ROAD
    status: Optional[str] = None

    # Container
    container_no: Optional[str] = Field(None, alias="containerNo")
    container_size: LookupValue = Field(None, alias="containerSize")
    container_type: LookupValue = Field(None, alias="containerType")
    chassis_no: Optional[str] = Field(None, alias="chassisNo")
    seal_no: Optional[str] = Field(None, alias="sealNo")
    weight: Number = None

    # Booking & shipping line
    booking_no: Optional[str] = Field(None, alias="bookingNo")
    ssl: Optional[str] = None
    commodity: Optional[str] = None

    # Parties and routing
    caller: Optional[PortProCaller] = None
    shipper: Optional[PortProLocation] = None
    consignee: Optional[PortProLocation] = None
    terminal: Optional[PortProLocation] = None
    pickup_location: Optional[PortProLocation] = Field(None, alias="pickupLocation")
    delivery_location: Optional[PortProLocation] = Field(None, alias="deliveryLocation")
    return_location: Optional[PortProLocation] = Field(None, alias="returnLocation")

    # Dates
    pickup_times: List[PortProPickupWindow] = Field(default_factory=list, alias="pickupTimes")
    delivery_times: List[PortProDeliveryWindow] = Field(default_factory=list, alias="deliveryTimes")
    last_free_day: Timestamp = Field(None, alias="lastFreeDay")

    total_miles: Number = Field(None, alias="totalMiles")

    # Billing
    total_amount: Number = Field(None, alias="totalAmount")
    expense: List[PortProCharge] = Field(
        default_factory=list,
        validation_alias=AliasChoices("expense", "expenses"),
    )
    vendor_pay: List[PortProCharge] = Field(default_factory=list, alias="vendorPay")
    driver_pay: List[PortProCharge] = Field(default_factory=list, alias="driverPay")

    driver_order: List[PortProDriverOrder] = Field(default_factory=list, alias="driverOrder")

    created_at: Timestamp = Field(None, alias="createdAt")
    updated_at: Timestamp = Field(None, alias="updatedAt")

    @field_validator(
        "pickup_times",
        "delivery_times",
        "expense",
        "vendor_pay",
        "driver_pay",
        "driver_order",
        mode="before",
    )
    @classmethod
    def _lists(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @field_validator("container_no", mode="before")
    @classmethod
    def _container_no(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @property
    def label(self) -> str:
        """Identifier used in logs and error summaries."""
        return self.reference_number or self.id or self.container_no or "unknown"
