from datetime import datetime, timezone

import pytest

from app.schemas.portpro import PortProLoad, PortProLocation
from app.services.portpro.mappers import (
    PORTPRO_STATUS_MAP,
    build_load_values,
    calculate_margin,
    current_location,
    extract_lookup_value,
    format_location,
    map_move_type,
    map_status,
)


class TestMapStatus:
    @pytest.mark.parametrize(
        "portpro_status, expected",
        [
            ("PENDING", "booked"),
            ("CUSTOMS HOLD", "at_terminal"),
            ("FREIGHT HOLD", "at_terminal"),
            ("AVAILABLE", "at_terminal"),
            ("DISPATCHED", "in_transit"),
            ("PICKED UP", "picked_up"),
            ("DROPPED", "out_for_delivery"),
            ("COMPLETED", "delivered"),
            ("BILLING", "delivered"),
            ("PARTIAL_PAID", "delivered"),
            ("FULL_PAID", "delivered"),
            ("CANCELLED", "cancelled"),
        ],
    )
    def test_known_statuses(self, portpro_status, expected):
        assert map_status(portpro_status) == expected

    @pytest.mark.parametrize("portpro_status", ["UNKNOWN_STATUS", "", None, "RANDOM"])
    def test_unknown_statuses_default_to_booked(self, portpro_status):
        assert map_status(portpro_status) == "booked"

    def test_is_case_and_whitespace_insensitive(self):
        assert map_status(" dispatched ") == "in_transit"

    def test_every_mapped_value_is_a_load_status(self):
        from app.models.load import LoadStatus

        valid = {status.value for status in LoadStatus}
        assert set(PORTPRO_STATUS_MAP.values()) <= valid


class TestMapMoveType:
    def test_known_types(self):
        assert map_move_type("PULLCONTAINER") == "pickup"
        assert map_move_type("HOOKCONTAINER") == "hook"
        assert map_move_type("DROPCONTAINER") == "drop"
        assert map_move_type("DELIVERLOAD") == "deliver"
        assert map_move_type("RETURNCONTAINER") == "return"
        assert map_move_type("GETLOADED") == "pickup"
        assert map_move_type("getunloaded") == "deliver"

    def test_unknown_or_missing(self):
        assert map_move_type("CHASSISPICK") is None
        assert map_move_type(None) is None
        assert map_move_type("") is None


class TestExtractLookupValue:
    def test_plain_string(self):
        assert extract_lookup_value("40HC") == "40HC"

    def test_label_preferred_over_name(self):
        assert extract_lookup_value({"_id": "1", "label": "Label", "name": "Name"}) == "Label"

    def test_name_fallback(self):
        assert extract_lookup_value({"_id": "123", "name": "Standard"}) == "Standard"

    def test_object_without_label_or_name(self):
        assert extract_lookup_value({"_id": "123"}) is None

    def test_none(self):
        assert extract_lookup_value(None) is None


class TestFormatLocation:
    def test_none_and_empty(self):
        assert format_location(None) is None
        assert format_location({}) is None

    def test_full_address_wins(self):
        location = {"company_name": "Ignored", "fullAddress": "123 Main St, Los Angeles, CA 90210"}
        assert format_location(location) == "123 Main St, Los Angeles, CA 90210"

    def test_company_name_only(self):
        assert format_location({"company_name": "Acme Corp"}) == "Acme Corp"

    def test_company_and_address_on_separate_lines(self):
        location = {
            "company_name": "APM Terminal",
            "address": {"address1": "2500 Navy Way", "city": "San Pedro", "state": "CA", "zip": "90731"},
        }
        assert format_location(location) == "APM Terminal\n2500 Navy Way, San Pedro, CA 90731"

    def test_state_without_zip(self):
        assert format_location({"address": {"city": "Los Angeles", "state": "CA"}}) == "Los Angeles, CA"

    def test_city_only(self):
        assert format_location({"address": {"city": "Los Angeles"}}) == "Los Angeles"

    def test_foreign_country_included(self):
        location = {"address": {"city": "Vancouver", "state": "BC", "country": "Canada"}}
        assert format_location(location) == "Vancouver, BC, Canada"

    def test_us_country_omitted(self):
        location = {"address": {"city": "Los Angeles", "state": "CA", "country": "US"}}
        assert format_location(location) == "Los Angeles, CA"

    def test_flat_string_address_with_sibling_parts(self):
        location = {
            "company_name": "Fenix Marine",
            "address": "614 Terminal Way",
            "city": "Terminal Island",
            "state": "CA",
            "zip": 90731,
        }
        assert format_location(location) == "Fenix Marine\n614 Terminal Way, Terminal Island, CA 90731"

    def test_accepts_decoded_location(self):
        location = PortProLocation(company_name="Acme Corp")
        assert format_location(location) == "Acme Corp"


class TestCalculateMargin:
    def test_revenue_minus_all_cost_categories(self):
        load = {
            "totalAmount": 1000,
            "expense": [{"amount": 100}],
            "vendorPay": [{"totalAmount": 150}],
            "driverPay": [{"totalAmount": 200}],
        }
        assert calculate_margin(load) == 550

    def test_no_revenue_returns_none(self):
        assert calculate_margin({"expense": [{"amount": 100}]}) is None

    def test_zero_revenue_is_still_known(self):
        assert calculate_margin({"totalAmount": 0, "driverPay": [{"amount": 50}]}) == -50

    def test_no_costs(self):
        assert calculate_margin({"totalAmount": 1000, "expense": [], "vendorPay": [], "driverPay": []}) == 1000

    def test_vendor_pay_flat_total_then_itemized_pricing(self):
        load = {
            "totalAmount": 1000,
            "vendorPay": [
                {"totalAmount": 300},
                {"pricing": [{"amount": 50}, {"amount": 10, "finalAmount": 75}]},
            ],
        }
        # 1000 - (300 + 50 + 75)
        assert calculate_margin(load) == 575

    def test_flat_vendor_total_ignores_pricing(self):
        load = {"totalAmount": 500, "vendorPay": [{"totalAmount": 100, "pricing": [{"amount": 999}]}]}
        assert calculate_margin(load) == 400

    def test_expense_final_amount_preferred(self):
        load = {"totalAmount": 500, "expense": [{"amount": 100, "finalAmount": 120}, {}]}
        assert calculate_margin(load) == 380

    def test_expenses_alias(self):
        assert calculate_margin({"totalAmount": 500, "expenses": [{"amount": 100}]}) == 400

    def test_driver_pay_amount_fallback(self):
        load = {"totalAmount": 500, "driverPay": [{"amount": 125}, {"totalAmount": 75, "amount": 1}]}
        assert calculate_margin(load) == 300

    def test_numeric_strings(self):
        assert calculate_margin({"totalAmount": "1,000.50", "expense": [{"amount": "0.50"}]}) == 1000


class TestCurrentLocation:
    def _load(self, **fields):
        return PortProLoad.model_validate(fields)

    def test_at_origin_uses_shipper(self):
        load = self._load(status="AVAILABLE", shipper={"company_name": "APM Terminal"})
        assert current_location(load) == "APM Terminal"

    def test_at_origin_without_shipper(self):
        assert current_location(self._load(status="PENDING")) == "At Port"

    def test_dispatched(self):
        assert current_location(self._load(status="DISPATCHED")) == "In Transit"

    def test_at_destination(self):
        load = self._load(status="DROPPED", consignee={"company_name": "Acme Warehouse"})
        assert current_location(load) == "Acme Warehouse"
        assert current_location(self._load(status="BILLING")) == "Delivered"

    def test_other_statuses(self):
        assert current_location(self._load(status="CANCELLED")) is None
        assert current_location(self._load()) is None


class TestBuildLoadValues:
    def test_full_payload(self):
        load = PortProLoad.model_validate(
            {
                "_id": "pp-123",
                "reference_number": "REF-001",
                "type_of_load": "IMPORT",
                "status": "DISPATCHED",
                "containerNo": "MSCU1234567",
                "containerSize": {"_id": "s1", "label": "40'"},
                "containerType": "HC",
                "caller": {"company_name": "Acme Corp", "email": "acme@example.com", "phone": "555-1234"},
                "shipper": {"company_name": "Shipper Location"},
                "pickupLocation": {"company_name": "Pickup Terminal"},
                "consignee": {"company_name": "Delivery Address"},
                "returnLocation": {"fullAddress": "Empty Return Yard"},
                "bookingNo": "BOOK123",
                "ssl": "COSCO",
                "commodity": "Electronics",
                "sealNo": "SEAL123",
                "chassisNo": "CHAS456",
                "weight": 42000,
                "totalMiles": 37.5,
                "lastFreeDay": "2026-01-30",
                "deliveryTimes": [{"deliveryFromTime": "2026-01-27T14:00:00Z"}],
                "pickupTimes": [{"pickupFromTime": "2026-01-26T08:00:00Z"}],
                "totalAmount": 1000,
                "driverPay": [{"totalAmount": 400}],
            }
        )
        synced_at = datetime(2026, 1, 25, tzinfo=timezone.utc)
        values = build_load_values(load, synced_at=synced_at)

        assert values["container_number"] == "MSCU1234567"
        assert values["container_size"] == "40'"
        assert values["container_type"] == "HC"
        assert values["status"] == "in_transit"
        assert values["current_location"] == "In Transit"
        assert values["origin"] == "Pickup Terminal"
        assert values["destination"] == "Delivery Address"
        assert values["return_location"] == "Empty Return Yard"
        assert values["customer_name"] == "Acme Corp"
        assert values["customer_email"] == "acme@example.com"
        assert values["customer_phone"] == "555-1234"
        assert values["booking_number"] == "BOOK123"
        assert values["shipping_line"] == "COSCO"
        assert values["commodity"] == "Electronics"
        assert values["seal_number"] == "SEAL123"
        assert values["chassis_number"] == "CHAS456"
        assert values["weight"] == 42000
        assert values["total_miles"] == 37.5
        assert values["last_free_day"] == datetime(2026, 1, 30, tzinfo=timezone.utc)
        assert values["eta"] == datetime(2026, 1, 27, 14, tzinfo=timezone.utc)
        assert values["pickup_time"] == datetime(2026, 1, 26, 8, tzinfo=timezone.utc)
        assert values["billing_total"] == 1000
        assert values["load_margin"] == 600
        assert values["portpro_reference"] == "REF-001"
        assert values["portpro_load_id"] == "pp-123"
        assert values["public_notes"] == "PortPro: REF-001 - IMPORT"
        assert values["updated_at"] == synced_at
        assert "tracking_number" not in values

    def test_origin_falls_back_to_shipper_then_terminal(self):
        with_shipper = PortProLoad.model_validate({"shipper": {"company_name": "Shipper Location"}})
        terminal_only = PortProLoad.model_validate({"terminal": {"company_name": "Terminal Only"}})
        assert build_load_values(with_shipper)["origin"] == "Shipper Location"
        assert build_load_values(terminal_only)["origin"] == "Terminal Only"

    def test_sparse_payload(self):
        values = build_load_values(PortProLoad.model_validate({"reference_number": "REF-9"}))
        assert values["status"] == "booked"
        assert values["origin"] is None
        assert values["customer_name"] is None
        assert values["eta"] is None
        assert values["load_margin"] is None
        assert values["public_notes"] == "PortPro: REF-9"
        assert "updated_at" not in values
