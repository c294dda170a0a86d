"""
Tests for lifepass device status validation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from models.device import validate_device_status


NOW = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)


def response(**status):
    device = {
        "deviceCode": "LP-1001",
        "dtaCode": "DTA-9",
        "deviceAllocated": False,
        "battery": 85,
        "connected": True,
        "lastConnected": (NOW - timedelta(minutes=5)).isoformat(),
    }
    device.update(status)
    return {"success": True, "data": {"devices": [{"deviceStatus": device}]}}


class TestValidateDeviceStatus:

    def test_healthy_device(self):
        result = validate_device_status(response(), now=NOW)

        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []
        assert result.criteria["hasRecentConnection"].value == "5 minutes ago"

    def test_allocated_and_flat_battery(self):
        result = validate_device_status(response(deviceAllocated=True, battery=10), now=NOW)

        assert result.is_valid is False
        assert "Device is already allocated to another order" in result.errors
        assert "Battery is critically low" in result.errors

    @pytest.mark.parametrize("battery, severity, valid", [
        (70, "success", True),
        (60, "warning", False),
        (30, "warning", False),
        (19, "error", False),
    ])
    def test_battery_thresholds(self, battery, severity, valid):
        result = validate_device_status(response(battery=battery), now=NOW)

        assert result.criteria["hasSufficientBattery"].severity == severity
        assert result.is_valid is valid

    def test_missing_dta_code_invalidates(self):
        result = validate_device_status(response(dtaCode=""), now=NOW)

        assert result.is_valid is False
        assert "DTA code is missing - device may not work at turnstiles" in result.errors

    def test_connectivity_only_warns(self):
        result = validate_device_status(
            response(connected=False, lastConnected=(NOW - timedelta(hours=2)).isoformat()), now=NOW,
        )

        assert result.is_valid is True
        assert result.criteria["hasRecentConnection"].value == "2 hours ago"
        assert result.criteria["hasRecentConnection"].severity == "warning"
        assert "Device is offline - may have connectivity issues" in result.warnings

    def test_never_connected(self):
        result = validate_device_status(response(lastConnected=None), now=NOW)

        assert result.criteria["hasRecentConnection"].value == "Never"

    @pytest.mark.parametrize("body", [None, {}, {"data": {"devices": []}}, {"data": {"devices": [{}]}}])
    def test_no_device_data(self, body):
        result = validate_device_status(body, now=NOW)

        assert result.is_valid is False
        assert result.errors == ["No device data returned from API"]
        assert result.to_dict()["hasErrors"] is True
