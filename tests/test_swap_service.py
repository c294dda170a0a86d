"""
Tests for the persisted lifepass swap saga and lifepass return.
"""

import pytest

from models.action_result import ActionResult
from models.swap import SwapStep, format_myth_swap_error
from services.swap_service import SwapService


# Fixtures

@pytest.fixture
def swaps(cash_desk, repository, session_factory):
    return SwapService(cash_desk, repository, session_factory)


@pytest.fixture
def saga(swaps, add_order):
    add_order(500, myth_order_submission_data={
        "devices": [{"deviceId": "12345", "deviceCode": "LP-12345", "deviceAllocated": True}],
    })
    return swaps.start(500, 1, "12345", "67890")


def ok():
    return ActionResult.ok({"success": True})


# Saga lifecycle

class TestStart:

    def test_new_saga_starts_at_step_one(self, saga):
        assert saga.current_step == SwapStep.SWAP_ON_MYTH
        assert saga.completed_steps == []
        assert saga.old_pass_status.on_myth is True
        assert saga.new_pass_status.on_myth is False

    def test_unfinished_saga_is_resumed(self, swaps, saga):
        again = swaps.start(500, 1, " 12345 ", "67890")

        assert again.id == saga.id
        assert len(swaps.list_for_order(500)) == 1

    @pytest.mark.parametrize("old, new, message", [
        ("12345", "", "Please enter a new pass ID"),
        ("", "67890", "Please select the pass to swap"),
        ("12345", "12345", "must differ"),
    ])
    def test_invalid_pass_ids(self, swaps, old, new, message):
        with pytest.raises(ValueError, match=message):
            swaps.start(500, 1, old, new)


# Steps

class TestRunNextStep:
    """One remote request per call; failures leave the saga where it was."""

    def test_step_one_uses_myth_device_code(self, swaps, saga, cash_desk):
        cash_desk.swap_active_lifepass.return_value = ok()

        result = swaps.run_next_step(saga.id)

        cash_desk.swap_active_lifepass.assert_called_once_with(500, 1, "LP-12345", "67890")
        assert result.data.current_step == SwapStep.CREATE_NEW_SKIPASS
        assert result.data.completed_steps == ["1"]

    def test_failed_step_two_keeps_saga_at_step_two(self, swaps, saga, cash_desk):
        cash_desk.swap_active_lifepass.return_value = ok()
        cash_desk.create_skipass.return_value = ActionResult.failure(
            "Failed to create skipass. Please try again.",
            details={"data": {"success": False}, "display": "SKIDATA ERROR: Ticket exists"},
        )

        swaps.run_next_step(saga.id)
        result = swaps.run_next_step(saga.id)

        assert result.success is False
        assert result.error == "SKIDATA ERROR: Ticket exists"
        progress = swaps.get(saga.id)
        assert progress.current_step == SwapStep.CREATE_NEW_SKIPASS
        assert progress.completed_steps == ["1"]
        assert progress.attempts == {"2": 1}
        assert progress.last_error == "SKIDATA ERROR: Ticket exists"
        assert result.details["progress"].current_step == SwapStep.CREATE_NEW_SKIPASS

        # Re-running repeats only the failed step
        cash_desk.create_skipass.return_value = ok()
        result = swaps.run_next_step(saga.id)

        assert result.success is True
        cash_desk.swap_active_lifepass.assert_called_once()
        assert result.data.last_error is None

    def test_full_swap(self, swaps, saga, cash_desk):
        cash_desk.swap_active_lifepass.return_value = ok()
        cash_desk.create_skipass.return_value = ok()
        cash_desk.cancel_skipass.return_value = ok()

        for _ in range(3):
            result = swaps.run_next_step(saga.id)

        assert result.data.is_complete
        assert result.data.completed_steps == ["1", "2", "3"]
        cash_desk.create_skipass.assert_called_once_with(500, "LP-12345", "67890")
        cash_desk.cancel_skipass.assert_called_once_with(500, "LP-12345")
        assert result.data.old_pass_status.skipass_active is False
        assert result.data.new_pass_status.active_pass is True

        # Completed sagas send nothing
        swaps.run_next_step(saga.id)
        assert cash_desk.cancel_skipass.call_count == 1

    def test_every_step_sends_the_myth_device_code(self, swaps, cash_desk, add_order):
        add_order(700, myth_order_submission_data={
            "devices": [{"deviceId": "A1B2C3D4", "deviceCode": "123456"}],
        })
        for name in ("swap_active_lifepass", "create_skipass", "cancel_skipass"):
            getattr(cash_desk, name).return_value = ok()
        saga = swaps.start(700, 1, "A1B2C3D4", "654321")

        for _ in range(3):
            swaps.run_next_step(saga.id)

        assert saga.old_device_code == "123456"
        cash_desk.swap_active_lifepass.assert_called_once_with(700, 1, "123456", "654321")
        cash_desk.create_skipass.assert_called_once_with(700, "123456", "654321")
        cash_desk.cancel_skipass.assert_called_once_with(700, 123456)

    def test_completed_saga_allows_a_new_one(self, swaps, saga, cash_desk):
        for name in ("swap_active_lifepass", "create_skipass", "cancel_skipass"):
            getattr(cash_desk, name).return_value = ok()
        for _ in range(3):
            swaps.run_next_step(saga.id)

        again = swaps.start(500, 1, "12345", "67890")

        assert again.id != saga.id

    def test_unknown_saga(self, swaps):
        result = swaps.run_next_step(999)

        assert result.error_type == "not_found"

    def test_concurrent_run_is_rejected(self, swaps, saga, cash_desk):
        nested = []

        def swap(*args):
            nested.append(swaps.run_next_step(saga.id))
            return ok()

        cash_desk.swap_active_lifepass.side_effect = swap

        swaps.run_next_step(saga.id)

        assert nested[0].error == "Swap step already in progress"
        assert cash_desk.swap_active_lifepass.call_count == 1


# Advisory lookups / return

class TestAllocationsAndReturn:

    def test_find_allocations_skips_own_order_and_free_devices(self, swaps, add_order):
        add_order(500, myth_order_submission_data={"devices": [{"deviceCode": "LP-1", "deviceAllocated": True}]})
        add_order(501, myth_order_submission_data={"devices": [{"deviceCode": "LP-1", "deviceAllocated": True}]})
        add_order(502, myth_order_submission_data={"devices": [{"deviceCode": "LP-1", "deviceAllocated": False}]})

        matches = swaps.find_allocations("LP-1", exclude_order_id=500)

        assert [m["id"] for m in matches] == [501]

    def test_return_lifepass_invalidates_cache(self, swaps, repository, cash_desk):
        repository.cache.set("k", "v", tags=["orders"])
        cash_desk.return_lifepass.return_value = ActionResult.ok({"message": "Successfully returned 1 lifepass(es)"})

        result = swaps.return_lifepass(500, ["111"])

        assert result.success is True
        assert repository.cache.get("k") is None


class TestMythErrorFormatting:

    def test_provider_detail_wins(self):
        data = {"error": "X", "details": {"response": {"detail": "Device is blocked"}}}

        assert format_myth_swap_error(data) == "Device is blocked"

    def test_code_and_message(self):
        assert format_myth_swap_error({"error": "NOT_FOUND", "message": "No device"}) == "NOT FOUND: No device"

    def test_unreadable(self):
        assert format_myth_swap_error(None) == "Unknown error"
