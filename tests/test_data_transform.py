"""Unit tests for the local <-> remote record format adapter.

Tests:
- to_remote / from_remote field mapping, lists and pass-through values
- date sanitizing (canonical output, unparsable -> None)
- round trip of mapped and date fields
"""
from datetime import date, datetime, timezone, timedelta

from shopcrm.services.data_transform import (
    format_timestamp,
    from_remote,
    safe_date_parse,
    to_remote,
)


# ═══════════════════════════════════════════════
# Field mapping
# ═══════════════════════════════════════════════

class TestToRemote:

    def test_maps_known_fields(self):
        remote = to_remote({
            "id": "j1",
            "customerId": "c1",
            "vehicleMake": "BMW",
            "licensePlate": "KA-01",
            "totalPrice": 1200,
        })
        assert remote == {
            "id": "j1",
            "customer_id": "c1",
            "vehicle_make": "BMW",
            "license_plate": "KA-01",
            "total_price": 1200,
        }

    def test_unknown_fields_pass_through(self):
        assert to_remote({"notes": "x", "color": "red"}) == {"notes": "x", "color": "red"}

    def test_camel_case_twin_wins(self):
        assert to_remote({"customerId": "a", "customer_id": "b"}) == {"customer_id": "a"}

    def test_lists_are_mapped_element_wise(self):
        assert to_remote([{"dueDate": "x"}, {"assignedTo": "u"}]) == [{"due_date": "x"}, {"assigned_to": "u"}]

    def test_non_dict_values_pass_through(self):
        assert to_remote(None) is None
        assert to_remote("abc") == "abc"
        assert to_remote([1, None]) == [1, None]


class TestFromRemote:

    def test_maps_back_to_camel_case(self):
        local = from_remote({"id": "e1", "estimate_number": "EST-1001", "public_token": "tok"})
        assert local == {"id": "e1", "estimateNumber": "EST-1001", "publicToken": "tok"}

    def test_snake_case_twin_wins(self):
        assert from_remote({"customerId": "a", "customer_id": "b"}) == {"customerId": "b"}

    def test_unparsable_date_becomes_none(self):
        assert from_remote({"created_at": "not a date"}) == {"createdAt": None}

    def test_dates_are_canonicalized(self):
        local = from_remote({"valid_until": "2024-06-01", "updated_at": "2024-05-01T12:00:00+02:00"})
        assert local["validUntil"] == "2024-06-01T00:00:00.000Z"
        assert local["updatedAt"] == "2024-05-01T10:00:00.000Z"

    def test_non_date_fields_are_not_touched(self):
        assert from_remote({"notes": "not a date"}) == {"notes": "not a date"}


# ═══════════════════════════════════════════════
# Dates
# ═══════════════════════════════════════════════

class TestSafeDateParse:

    def test_empty_values(self):
        assert safe_date_parse(None) is None
        assert safe_date_parse("") is None
        assert safe_date_parse("   ") is None

    def test_non_date_types(self):
        assert safe_date_parse(12345) is None
        assert safe_date_parse({"a": 1}) is None

    def test_canonical_string_is_stable(self):
        assert safe_date_parse("2024-05-01T10:00:00.000Z") == "2024-05-01T10:00:00.000Z"

    def test_naive_datetime_is_treated_as_utc(self):
        assert safe_date_parse(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05.000Z"

    def test_aware_datetime_is_converted(self):
        dt = datetime(2024, 1, 2, 8, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
        assert safe_date_parse(dt) == "2024-01-02T02:30:00.000Z"

    def test_date_object(self):
        assert safe_date_parse(date(2024, 3, 9)) == "2024-03-09T00:00:00.000Z"

    def test_fallback_formats(self):
        assert safe_date_parse("May 01, 2024") == "2024-05-01T00:00:00.000Z"
        assert safe_date_parse("2024/05/01") == "2024-05-01T00:00:00.000Z"

    def test_garbage(self):
        assert safe_date_parse("31st of Nevertember") is None
        assert safe_date_parse("2024-13-45") is None

    def test_format_timestamp_truncates_to_milliseconds(self):
        dt = datetime(2024, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)
        assert format_timestamp(dt) == "2024-01-02T03:04:05.678Z"


# ═══════════════════════════════════════════════
# Round trip
# ═══════════════════════════════════════════════

class TestRoundTrip:

    def test_mapped_and_date_fields_survive(self):
        record = {
            "id": "j1",
            "customerId": "c1",
            "vehicleMake": "Porsche",
            "vehicleModel": "911",
            "vehicleYear": 2021,
            "vehicleColor": "Guards Red",
            "licensePlate": "MH-12-AB-1234",
            "totalPrice": 250000,
            "estimatedCompletion": "2024-06-15T00:00:00.000Z",
            "createdAt": "2024-05-01T10:00:00.000Z",
            "updatedAt": "2024-05-02T11:30:15.250Z",
        }
        assert from_remote(to_remote(record)) == record

    def test_list_round_trip(self):
        records = [
            {"id": "i1", "invoiceNumber": "INV-1001", "dueDate": "2024-07-01T00:00:00.000Z"},
            {"id": "i2", "invoiceNumber": "INV-1002", "dueDate": "2024-07-02T00:00:00.000Z"},
        ]
        assert from_remote(to_remote(records)) == records
