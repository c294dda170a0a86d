"""
Calculated price models.

Mirrors the JSON returned by the pricing endpoint. The price is never
persisted on its own; ``CalculatedOrderPrice.to_dict()`` is the snapshot
stored on the order row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class TaxDetails:
    name: str = ""
    tax_value: float = 0.0
    tax_amount: float = 0.0
    tax_short_name: str = ""
    sort_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "taxValue": self.tax_value,
            "taxAmount": self.tax_amount,
            "taxShortName": self.tax_short_name,
            "sortOrder": self.sort_order,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TaxDetails":
        data = data or {}
        return cls(
            name=data.get("name", ""),
            tax_value=data.get("taxValue", 0.0),
            tax_amount=data.get("taxAmount", 0.0),
            tax_short_name=data.get("taxShortName", ""),
            sort_order=data.get("sortOrder", 0),
        )


@dataclass
class PriceDetails:
    """Net and gross amount with tax breakdown."""

    amount_net: float = 0.0
    amount_gross: float = 0.0
    currency_code: str = "EUR"
    tax_details: TaxDetails = field(default_factory=TaxDetails)
    calculate_from_previous_amount: bool = False
    net_price: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amountNet": self.amount_net,
            "amountGross": self.amount_gross,
            "currencyCode": self.currency_code,
            "taxDetails": self.tax_details.to_dict(),
            "calculateFromPreviousAmount": self.calculate_from_previous_amount,
            "netPrice": self.net_price,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PriceDetails":
        data = data or {}
        return cls(
            amount_net=data.get("amountNet", 0.0),
            amount_gross=data.get("amountGross", 0.0),
            currency_code=data.get("currencyCode", "EUR"),
            tax_details=TaxDetails.from_dict(data.get("taxDetails")),
            calculate_from_previous_amount=data.get("calculateFromPreviousAmount", False),
            net_price=data.get("netPrice", False),
        )


@dataclass
class CalculatedPrice:
    """Base price and best (discounted) price for one line or the whole order."""

    base_price: PriceDetails = field(default_factory=PriceDetails)
    best_price: PriceDetails = field(default_factory=PriceDetails)
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "basePrice": self.base_price.to_dict(),
            "bestPrice": self.best_price.to_dict(),
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["CalculatedPrice"]:
        if not data:
            return None
        return cls(
            base_price=PriceDetails.from_dict(data.get("basePrice")),
            best_price=PriceDetails.from_dict(data.get("bestPrice")),
            success=data.get("success", True),
        )


@dataclass
class OrderItemPrice:
    """Price of one device line: ski ticket, insurance and lifepass rental."""

    product_id: str
    consumer_category_id: str
    product_price: Optional[CalculatedPrice] = None
    insurance_price: Optional[CalculatedPrice] = None
    lifepass_rental_price: Optional[CalculatedPrice] = None
    success: bool = True

    @property
    def total_gross(self) -> float:
        total = 0.0
        for price in (self.product_price, self.insurance_price, self.lifepass_rental_price):
            if price is not None:
                total += price.best_price.amount_gross
        return total

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "productId": self.product_id,
            "consumerCategoryId": self.consumer_category_id,
            "success": self.success,
        }
        if self.product_price is not None:
            data["productPrice"] = self.product_price.to_dict()
        if self.insurance_price is not None:
            data["insurancePrice"] = self.insurance_price.to_dict()
        if self.lifepass_rental_price is not None:
            data["lifepassRentalPrice"] = self.lifepass_rental_price.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderItemPrice":
        return cls(
            product_id=str(data.get("productId", "")),
            consumer_category_id=str(data.get("consumerCategoryId", "")),
            product_price=CalculatedPrice.from_dict(data.get("productPrice")),
            insurance_price=CalculatedPrice.from_dict(data.get("insurancePrice")),
            lifepass_rental_price=CalculatedPrice.from_dict(data.get("lifepassRentalPrice")),
            success=data.get("success", True),
        )


@dataclass
class CalculatedOrderPrice:
    """
    Full pricing result for an order.

    ``cumulated_price`` is the order total; ``order_item_prices`` has one
    entry per device, in device order.
    """

    start_date: str
    days_validity: int
    cumulated_price: CalculatedPrice
    order_item_prices: List[OrderItemPrice] = field(default_factory=list)

    @property
    def total_gross(self) -> float:
        return self.cumulated_price.best_price.amount_gross

    @property
    def currency_code(self) -> str:
        return self.cumulated_price.best_price.currency_code

    @property
    def item_count(self) -> int:
        return len(self.order_item_prices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date,
            "daysValidity": self.days_validity,
            "cumulatedPrice": self.cumulated_price.to_dict(),
            "orderItemPrices": [item.to_dict() for item in self.order_item_prices],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CalculatedOrderPrice":
        return cls(
            start_date=data.get("startDate", ""),
            days_validity=int(data.get("daysValidity", 0) or 0),
            cumulated_price=CalculatedPrice.from_dict(data.get("cumulatedPrice")) or CalculatedPrice(),
            order_item_prices=[
                OrderItemPrice.from_dict(item) for item in data.get("orderItemPrices", [])
            ],
        )


# =============================================================================
# CATALOG LOOKUPS
# =============================================================================

def _localized(value: Any, language: str = "en") -> str:
    if isinstance(value, dict):
        return value.get(language) or value.get("en") or ""
    return value or ""


def describe_item(
    catalog: Any,
    product_id: str,
    consumer_category_id: str,
    language: str = "en",
) -> Dict[str, Any]:
    """
    Display names for one priced line, looked up in the product catalog.

    Returns {"product": ..., "category": ..., "days": ...}; unknown IDs fall
    back to the raw IDs.
    """
    products = catalog.get("products", []) if isinstance(catalog, dict) else (catalog or [])
    for product in products:
        if str(product.get("id")) != str(product_id):
            continue
        category_name = consumer_category_id
        for category in product.get("priceCategories", []) or []:
            if str(category.get("consumerCategoryId")) == str(consumer_category_id):
                data = category.get("consumerCategoryData") or {}
                category_name = _localized(data.get("name"), language) or consumer_category_id
                break
        validity = product.get("validityCategory") or {}
        return {
            "product": _localized(product.get("name"), language) or product_id,
            "category": category_name,
            "days": validity.get("value"),
        }
    return {"product": product_id, "category": consumer_category_id, "days": None}


def catalog_options(catalog: Any, language: str = "en") -> List[Dict[str, Any]]:
    """
    Product choices for the order form.

    Returns [{"id", "name", "days", "categories": [{"id", "name"}]}].
    """
    products = catalog.get("products", []) if isinstance(catalog, dict) else (catalog or [])
    options = []
    for product in products:
        categories = [
            {
                "id": str(category.get("consumerCategoryId")),
                "name": _localized((category.get("consumerCategoryData") or {}).get("name"), language)
                or str(category.get("consumerCategoryId")),
            }
            for category in product.get("priceCategories", []) or []
        ]
        options.append({
            "id": str(product.get("id")),
            "name": _localized(product.get("name"), language) or str(product.get("id")),
            "days": (product.get("validityCategory") or {}).get("value"),
            "categories": categories,
        })
    return options
