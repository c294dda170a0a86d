"""
Lifepass device status validation.

The cash desk checks every scanned lifepass before it is put on an order:
codes present, not already allocated, battery and connectivity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class ValidationCriterion:
    passed: bool
    severity: str
    """One of "error", "warning", "info", "success"."""
    label: str
    value: Any
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "severity": self.severity,
            "label": self.label,
            "value": self.value,
            "message": self.message,
        }


@dataclass
class DeviceValidation:
    is_valid: bool
    criteria: Dict[str, ValidationCriterion]
    device_data: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "hasErrors": self.has_errors,
            "hasWarnings": self.has_warnings,
            "deviceData": self.device_data,
            "criteria": {k: c.to_dict() for k, c in self.criteria.items()},
            "summary": {"errors": list(self.errors), "warnings": list(self.warnings)},
        }


def _since_text(minutes: int) -> str:
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def _battery(level: float):
    if level >= 70:
        return "success", "Good battery level"
    if level >= 50:
        return "warning", "Battery is moderate, consider charging"
    if level >= 20:
        return "warning", "Battery is low, charging recommended"
    return "error", "Battery is critically low"


def _no_data() -> DeviceValidation:
    message = "No device data returned from API"
    criteria = {
        "hasDeviceCode": ValidationCriterion(False, "error", "Device Code", "Missing", message),
        "hasDtaCode": ValidationCriterion(False, "error", "DTA Code", "Missing", message),
        "isNotAllocated": ValidationCriterion(
            False, "error", "Availability", "Unknown", "Cannot determine availability"),
        "hasSufficientBattery": ValidationCriterion(
            False, "error", "Battery", "Unknown", "Cannot determine battery level"),
        "isConnected": ValidationCriterion(
            False, "error", "Connection", "Unknown", "Cannot determine connection status"),
        "hasRecentConnection": ValidationCriterion(
            False, "error", "Last Seen", "Unknown", "Cannot determine last connection"),
    }
    return DeviceValidation(is_valid=False, criteria=criteria, errors=[message])


def validate_device_status(
    response: Dict[str, Any],
    now: Optional[datetime] = None,
) -> DeviceValidation:
    """
    Evaluate the first device in a device-status response.

    ``is_valid`` requires both codes, an unallocated device and battery of
    at least 70%. Connectivity only produces warnings.
    """
    devices = ((response or {}).get("data") or {}).get("devices") or []
    first = devices[0] if devices else None
    if not first or not first.get("deviceStatus"):
        return _no_data()

    data = first["deviceStatus"]
    now = now or datetime.now(timezone.utc)

    device_code = data.get("deviceCode") or ""
    dta_code = data.get("dtaCode") or ""
    allocated = bool(data.get("deviceAllocated"))
    battery = data.get("battery") or 0
    connected = bool(data.get("connected"))

    last_seen = None
    raw_last = data.get("lastConnected")
    if raw_last:
        try:
            last_seen = datetime.fromisoformat(str(raw_last).replace("Z", "+00:00"))
        except ValueError:
            last_seen = None
    if last_seen is not None and last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)
    minutes_ago = int((now - last_seen).total_seconds() // 60) if last_seen else 10 ** 6
    is_recent = minutes_ago <= 30
    since = _since_text(minutes_ago) if last_seen else "Never"

    battery_severity, battery_message = _battery(battery)

    criteria = {
        "hasDeviceCode": ValidationCriterion(
            bool(device_code), "success" if device_code else "error", "Device Code",
            device_code or "Missing",
            f"Device code: {device_code}" if device_code else "Device code is missing",
        ),
        "hasDtaCode": ValidationCriterion(
            bool(dta_code), "success" if dta_code else "error", "DTA Code",
            dta_code or "Missing",
            "DTA code present" if dta_code
            else "DTA code is missing - device may not work at turnstiles",
        ),
        "isNotAllocated": ValidationCriterion(
            not allocated, "error" if allocated else "success", "Availability",
            "Allocated" if allocated else "Available",
            "Device is already allocated to another order" if allocated
            else "Device is available for use",
        ),
        "hasSufficientBattery": ValidationCriterion(
            battery >= 70, battery_severity, "Battery", f"{battery}%", battery_message,
        ),
        "isConnected": ValidationCriterion(
            connected, "success" if connected else "warning", "Connection",
            "Connected" if connected else "Disconnected",
            "Device is currently connected" if connected
            else "Device is offline - may have connectivity issues",
        ),
        "hasRecentConnection": ValidationCriterion(
            is_recent,
            "success" if is_recent else ("warning" if minutes_ago > 60 else "info"),
            "Last Seen", since,
            f"Last connected {since}" if is_recent else f"Device was last seen {since}",
        ),
    }

    errors = [c.message for c in criteria.values() if not c.passed and c.severity == "error"]
    warnings = [c.message for c in criteria.values() if not c.passed and c.severity == "warning"]

    is_valid = (
        criteria["hasDeviceCode"].passed
        and criteria["hasDtaCode"].passed
        and criteria["isNotAllocated"].passed
        and criteria["hasSufficientBattery"].passed
    )
    return DeviceValidation(
        is_valid=is_valid,
        criteria=criteria,
        device_data=dict(data),
        errors=errors,
        warnings=warnings,
    )
