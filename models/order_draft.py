"""
Order draft models.

The draft is what the operator fills in on the order form: resort, start
date, customer contact and one line per physical device. It flows through
the checkout saga: form -> price review -> payment -> submission.

Thread Safety:
    - OrderDraft is mutable and owned by the checkout saga
    - Use OrderDraft.freeze() to hand an immutable snapshot to the payment
      poll thread
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple


LANGUAGE_CODES = ("en", "it", "fr", "de")


@dataclass
class OrderDevice:
    """
    One physical lifepass and the ticket loaded on it.
    """

    device_id: str
    """Lifepass ID scanned or typed by the operator."""

    product_id: str
    """Catalog product (ticket type)."""

    consumer_category_id: str
    """Consumer category (adult, child, senior...)."""

    insurance: bool = False
    """Whether ski insurance is added to this line."""

    def product_payload(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "consumerCategoryId": self.consumer_category_id,
            "insurance": self.insurance,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"deviceId": self.device_id, **self.product_payload()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderDevice":
        return cls(
            device_id=str(data.get("deviceId", data.get("device_id", ""))).strip(),
            product_id=str(data.get("productId", data.get("product_id", ""))),
            consumer_category_id=str(
                data.get("consumerCategoryId", data.get("consumer_category_id", ""))
            ),
            insurance=bool(data.get("insurance", False)),
        )


@dataclass
class OrderDraft:
    """
    Order being assembled at the cash desk.

    Only presence is checked locally (``missing_fields``); schema validation
    is left to the pricing endpoint.
    """

    resort_id: int = 0
    start_date: Optional[date] = None
    name: str = ""
    telephone: str = ""
    email: str = ""
    language_code: str = "en"
    devices: List[OrderDevice] = field(default_factory=list)
    terminal_id: str = ""
    """Card reader selected for payment; empty means no terminal."""

    @property
    def device_ids(self) -> List[str]:
        return [device.device_id for device in self.devices]

    @property
    def start_date_iso(self) -> str:
        return self.start_date.isoformat() if self.start_date else ""

    def missing_fields(self) -> List[str]:
        """Names of required fields that are empty."""
        missing = []
        if not self.resort_id:
            missing.append("resortId")
        if self.start_date is None:
            missing.append("startDate")
        if not self.name.strip():
            missing.append("name")
        if not self.telephone.strip():
            missing.append("telephone")
        if not self.devices:
            missing.append("devices")
        for index, device in enumerate(self.devices):
            if not device.device_id:
                missing.append(f"devices.{index}.deviceId")
            if not device.product_id:
                missing.append(f"devices.{index}.productId")
            if not device.consumer_category_id:
                missing.append(f"devices.{index}.consumerCategoryId")
        return missing

    def order_data_hash(self) -> str:
        """
        Key identifying the logical order for order-intent reuse.

        Device order does not matter; any change to resort, date or the set
        of device IDs produces a new key.
        """
        return order_data_hash(self.resort_id, self.start_date, self.device_ids)

    # =========================================================================
    # PAYLOADS
    # =========================================================================

    def pricing_payload(self) -> Dict[str, Any]:
        """Body for calculate-order-price and create-order-intent."""
        return {
            "resortId": self.resort_id,
            "startDate": self.start_date_iso,
            "products": [device.product_payload() for device in self.devices],
        }

    def submission_payload(
        self,
        order_id: int,
        payment_bypassed: bool,
        resubmit: bool,
    ) -> Dict[str, Any]:
        """Body for submit-order."""
        return {
            "orderId": order_id,
            "resortId": self.resort_id,
            "telephone": self.telephone,
            "name": self.name,
            "email": self.email,
            "languageCode": self.language_code,
            "devices": [device.to_dict() for device in self.devices],
            "startDate": self.start_date_iso,
            "paymentBypassed": payment_bypassed,
            "resubmit": resubmit,
        }

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resortId": self.resort_id,
            "startDate": self.start_date_iso,
            "name": self.name,
            "telephone": self.telephone,
            "email": self.email,
            "languageCode": self.language_code,
            "devices": [device.to_dict() for device in self.devices],
            "terminalId": self.terminal_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderDraft":
        start = data.get("startDate") or None
        if isinstance(start, str):
            start = date.fromisoformat(start[:10])
        language = data.get("languageCode", "en")
        return cls(
            resort_id=int(data.get("resortId") or 0),
            start_date=start,
            name=data.get("name", ""),
            telephone=data.get("telephone", ""),
            email=data.get("email", ""),
            language_code=language if language in LANGUAGE_CODES else "en",
            devices=[OrderDevice.from_dict(d) for d in data.get("devices", [])],
            terminal_id=data.get("terminalId", ""),
        )

    def with_device_ids(self, device_ids: Sequence[str]) -> "OrderDraft":
        """
        Copy of this draft with edited device IDs.

        Extra IDs add lines that reuse the last line's product; fewer IDs
        drop trailing lines.
        """
        devices = []
        for index, device_id in enumerate(device_ids):
            if index < len(self.devices):
                template = self.devices[index]
            elif self.devices:
                template = self.devices[-1]
            else:
                template = OrderDevice("", "", "")
            devices.append(OrderDevice(
                device_id=str(device_id).strip(),
                product_id=template.product_id,
                consumer_category_id=template.consumer_category_id,
                insurance=template.insurance,
            ))
        draft = OrderDraft.from_dict(self.to_dict())
        draft.devices = devices
        return draft

    def freeze(self) -> "FrozenOrderDraft":
        return FrozenOrderDraft(
            resort_id=self.resort_id,
            start_date=self.start_date_iso,
            name=self.name,
            telephone=self.telephone,
            email=self.email,
            language_code=self.language_code,
            devices=tuple(device.product_payload() for device in self.devices),
            device_ids=tuple(self.device_ids),
            terminal_id=self.terminal_id,
        )


@dataclass(frozen=True)
class FrozenOrderDraft:
    """
    Immutable snapshot of a draft for the payment thread.

    The payment thread owns this data exclusively; the operator may keep
    editing the saga's draft while the terminal is waiting for a card.
    """

    resort_id: int
    start_date: str
    name: str
    telephone: str
    email: str
    language_code: str
    devices: Tuple[Dict[str, Any], ...]
    device_ids: Tuple[str, ...]
    terminal_id: str

    def terminal_payment_payload(self, order_id: int, terminal_id: str) -> Dict[str, Any]:
        """Body for create-terminal-payment."""
        payload: Dict[str, Any] = {
            "terminalId": terminal_id,
            "resortId": self.resort_id,
            "orderId": order_id,
            "startDate": self.start_date,
            "telephone": self.telephone,
            "name": self.name,
            "devices": [dict(d) for d in self.devices],
            "languageCode": self.language_code,
        }
        if self.email:
            payload["email"] = self.email
        return payload


def order_data_hash(resort_id: int, start_date: Optional[date], device_ids: Sequence[str]) -> str:
    """"{resortId}-{startDate ISO}-{sorted device IDs joined by ','}"."""
    start = start_date.isoformat() if start_date else ""
    return f"{resort_id}-{start}-{','.join(sorted(device_ids))}"


def needs_resubmit(original_device_ids: Sequence[str], current_device_ids: Sequence[str]) -> bool:
    """
    True when the device list differs from the one originally ordered.

    Any ID changed at the same position, or a different count, means the
    downstream ticketing submissions must be redone.
    """
    if len(original_device_ids) != len(current_device_ids):
        return True
    return any(a != b for a, b in zip(original_device_ids, current_device_ids))
