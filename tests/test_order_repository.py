"""
Tests for OrderRepository: search, versioned admin writes, cache tags and
backend sync.
"""

import pytest

from core.exceptions import OrderNotFoundError, StaleOrderError


BACKEND_ORDER = {
    "id": 101,
    "resortId": 1,
    "orderStatus": "ordered",
    "paymentStatus": "fully-paid",
    "salesChannel": "Cash Desk",
    "clientDetails": {"name": "Ada Lovelace", "mobile": "+447700900123", "email": "ada@example.com"},
    "mythOrderSubmissionData": {"devices": [{"deviceId": "1001", "deviceCode": "LP-1001", "deviceAllocated": True}]},
    "createdAt": "2026-01-10T09:30:00Z",
}


# Fixtures

@pytest.fixture
def stored(repository):
    """One order synced from the backend (version 1)."""
    return repository.upsert_from_backend(dict(BACKEND_ORDER))


# Reads

class TestSearch:

    def test_by_order_number(self, repository, stored):
        assert [o["id"] for o in repository.search("orderNumber", "101")] == [101]

    def test_by_device_code_is_exact(self, repository, stored):
        assert [o["id"] for o in repository.search("deviceId", "LP-1001")] == [101]
        assert repository.search("deviceId", "LP-100") == []

    def test_by_phone_fragment(self, repository, stored):
        assert [o["id"] for o in repository.search("phoneNumber", "7700900")] == [101]

    @pytest.mark.parametrize("search_type, value", [
        ("orderNumber", "abc"),
        ("orderNumber", "  "),
        ("email", "ada@example.com"),
    ])
    def test_invalid_search(self, repository, search_type, value):
        with pytest.raises(ValueError, match="Invalid search data"):
            repository.search(search_type, value)

    def test_results_are_cached_until_a_write(self, repository, stored):
        first = repository.search("orderNumber", "101")

        assert repository.search("orderNumber", "101") is first

        repository.toggle_error(101, expected_version=stored["version"])

        fresh = repository.search("orderNumber", "101")
        assert fresh is not first
        assert fresh[0]["wasError"] is True

    def test_missing_order(self, repository):
        with pytest.raises(OrderNotFoundError):
            repository.get(9)
        assert repository.find(9) is None

    def test_find_by_device_code_needs_three_characters(self, repository, stored):
        assert repository.find_by_device_code("LP") == []
        match = repository.find_by_device_code("LP-1001")[0]
        assert match["deviceInfo"]["deviceAllocated"] is True
        assert match["clientEmail"] == "ada@example.com"


# Writes

class TestVersionedWrites:
    """Optimistic concurrency on admin mutations."""

    def test_write_bumps_version(self, repository, stored):
        order, message = repository.toggle_test_order(101, expected_version=stored["version"])

        assert order["testOrder"] is True
        assert order["version"] == stored["version"] + 1
        assert message == "Order marked as test order"

    def test_stale_version_is_rejected(self, repository, stored):
        repository.toggle_test_order(101, expected_version=stored["version"])

        with pytest.raises(StaleOrderError) as exc_info:
            repository.toggle_error(101, expected_version=stored["version"])

        assert exc_info.value.expected_version == stored["version"]
        assert exc_info.value.actual_version == stored["version"] + 1
        assert repository.get(101)["wasError"] is False

    def test_write_on_missing_order(self, repository):
        with pytest.raises(OrderNotFoundError):
            repository.toggle_test_order(9, expected_version=1)

    def test_error_note_flags_order(self, repository, stored):
        order = repository.add_note(101, " Card swallowed ", "error", created_by="desk-2",
                                    expected_version=stored["version"])

        assert order["wasError"] is True
        note = order["notes"][0]
        assert note["text"] == "Card swallowed"
        assert note["type"] == "error"
        assert note["createdBy"] == "desk-2"
        assert note["resolution"] is None

    @pytest.mark.parametrize("text, note_type", [("", "note"), ("hello", "warning")])
    def test_invalid_note(self, repository, stored, text, note_type):
        with pytest.raises(ValueError):
            repository.add_note(101, text, note_type)

    def test_bulk_updates(self, repository, add_order):
        add_order(1)
        add_order(2)

        assert repository.bulk_set_test_order([1, 2], True) == "2 order(s) marked as test"
        assert repository.bulk_set_error([1], True) == "1 order(s) marked as having an error"
        assert repository.add_bulk_note([1, 2], "Checked") == "Note added to 2 order(s)"
        assert repository.get(2)["testOrder"] is True
        assert len(repository.get(2)["notes"]) == 1

    def test_bulk_requires_selection(self, repository):
        with pytest.raises(ValueError, match="No orders selected"):
            repository.bulk_set_error([], True)


# Sync

class TestUpsertFromBackend:

    def test_keeps_local_notes(self, repository, stored):
        repository.add_note(101, "Local note")

        updated = repository.upsert_from_backend({**BACKEND_ORDER, "orderStatus": "order-active", "notes": []})

        assert updated["orderStatus"] == "order-active"
        assert len(updated["notes"]) == 1

    def test_created_at_is_parsed(self, stored):
        assert stored["createdAt"].startswith("2026-01-10T09:30:00")
