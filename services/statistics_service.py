"""
Revenue statistics for one resort over a date range.

``compute_statistics`` is a pure function over order dicts (the shape of
OrderRecord.to_dict). StatisticsService adds the database query and
memoises the result for the current request in ``flask.g`` so several
widgets on one page share a single query.

Amounts:
    - Order revenue: calculatedOrderPrice.cumulatedPrice.bestPrice.amountGross
    - Line amounts: <productPrice|insurancePrice|lifepassRentalPrice>.basePrice.amountGross
    - Lifepasses: number of orderItemPrices
    - Rental days: daysValidity x lifepasses

The sales tax report works per priced device line: gross and
basePrice.taxDetails.taxAmount of the ski ticket, lifepass rental and
insurance, grouped by tax rate and by weekday for the weekly CSV export.
"""

from __future__ import annotations

import csv
import re
from datetime import date, datetime
from io import StringIO
from typing import Any, Dict, List, Optional

import phonenumbers
from flask import g, has_app_context

from logging_config import get_logger
from models.pricing import TaxDetails
from services.order_repository import OrderRepository


logger = get_logger(__name__)

_KIOSK_PREFIX = re.compile(r"^kiosk - id = ", re.IGNORECASE)


def clean_sales_channel_name(channel: str) -> Optional[str]:
    """
    Display name of a sales channel, or None for channels left out of
    statistics (swapped lifepasses).
    """
    normalized = channel.lower()
    if "swapped lifepass" in normalized:
        return None
    if normalized.startswith("kiosk - id = "):
        return _KIOSK_PREFIX.sub("", channel)
    if "cash" in normalized and "desk" in normalized:
        return "Cash Desk"
    if "click" in normalized and "collect" in normalized:
        return "Click & Collect"
    return channel


def phone_prefix_label(telephone: str) -> Optional[str]:
    """"GB (+44)" for an international number; None if it cannot be parsed."""
    try:
        number = phonenumbers.parse(telephone, None)
    except phonenumbers.NumberParseException:
        logger.debug(f"Failed to parse phone number: {telephone}")
        return None
    region = phonenumbers.region_code_for_number(number)
    if not region or region == "ZZ":
        return None
    return f"{region} (+{number.country_code})"


def _gross(price: Any) -> float:
    """basePrice.amountGross of a price block, 0 when absent."""
    if not isinstance(price, dict):
        return 0
    base = price.get("basePrice") or {}
    return base.get("amountGross") or 0


def _order_amount(calculated: Dict[str, Any]) -> float:
    cumulated = calculated.get("cumulatedPrice") or {}
    best = cumulated.get("bestPrice") or {}
    return best.get("amountGross") or 0


def _empty_channel() -> Dict[str, float]:
    return {"amount": 0, "orderCount": 0, "lifepassCount": 0, "days": 0}


def _distribution(orders: List[Dict[str, Any]], key: str) -> Dict[str, Dict[str, Any]]:
    result: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        calculated = order.get("calculatedOrderPrice") or {}
        items = calculated.get("orderItemPrices")
        if not items:
            continue
        days = calculated.get("daysValidity") or 0
        for item in items:
            item_key = item.get(key) or "unknown"
            stats = result.setdefault(
                item_key, {"total": 0, "orderCount": 0, "lifepassCount": 0, "daysValidity": days},
            )
            stats["total"] += _gross(item.get("productPrice"))
            stats["orderCount"] += 1
            stats["lifepassCount"] += 1
            stats["daysValidity"] = days
    return result


def compute_statistics(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate already-filtered orders into the statistics payload.
    """
    channel_names = set()
    for order in orders:
        cleaned = clean_sales_channel_name(order.get("salesChannel") or "undefined")
        if cleaned:
            channel_names.add(cleaned)

    # =========================================================================
    # SALES BY DATE AND CHANNEL
    # =========================================================================
    by_date: Dict[str, Dict[str, Dict[str, float]]] = {}
    for order in orders:
        created = order.get("createdAt")
        if not created:
            continue
        day = str(created)[:10]
        channel = clean_sales_channel_name(order.get("salesChannel") or "undefined")
        if not channel:
            continue

        calculated = order.get("calculatedOrderPrice") or {}
        lifepasses = len(calculated.get("orderItemPrices") or [])
        days = (calculated.get("daysValidity") or 0) * lifepasses

        if day not in by_date:
            by_date[day] = {name: _empty_channel() for name in channel_names}
        data = by_date[day].setdefault(channel, _empty_channel())
        data["amount"] += _order_amount(calculated)
        data["orderCount"] += 1
        data["lifepassCount"] += lifepasses
        data["days"] += days

    sales_by_channel = [
        {"date": day, "channels": channels} for day, channels in sorted(by_date.items())
    ]

    # =========================================================================
    # TOTALS
    # =========================================================================
    total_revenue = 0
    total_lifepasses = 0
    total_rental_days = 0
    for order in orders:
        calculated = order.get("calculatedOrderPrice") or {}
        lifepasses = len(calculated.get("orderItemPrices") or [])
        total_revenue += _order_amount(calculated)
        total_lifepasses += lifepasses
        total_rental_days += (calculated.get("daysValidity") or 0) * lifepasses
    total_orders = len(orders)

    # =========================================================================
    # PHONE PREFIXES
    # =========================================================================
    prefix_counts: Dict[str, int] = {}
    for order in orders:
        myth = order.get("mythOrderSubmissionData") or {}
        telephone = (myth.get("contactDetails") or {}).get("telephone")
        if not telephone:
            continue
        label = phone_prefix_label(telephone)
        if label:
            prefix_counts[label] = prefix_counts.get(label, 0) + 1
    phone_prefixes = sorted(
        ({"prefix": prefix, "count": count} for prefix, count in prefix_counts.items()),
        key=lambda entry: entry["count"],
        reverse=True,
    )

    # =========================================================================
    # REVENUE SPLIT
    # =========================================================================
    split = {"insurance": 0, "lifepass": 0, "skiTicket": 0}
    for order in orders:
        for item in (order.get("calculatedOrderPrice") or {}).get("orderItemPrices") or []:
            split["skiTicket"] += _gross(item.get("productPrice"))
            split["insurance"] += _gross(item.get("insurancePrice"))
            split["lifepass"] += _gross(item.get("lifepassRentalPrice"))

    products = _distribution(orders, "productId")
    categories = _distribution(orders, "consumerCategoryId")

    return {
        "totalRevenue": total_revenue,
        "totalOrders": total_orders,
        "totalLifepasses": total_lifepasses,
        "averageOrderValue": total_revenue / total_orders if total_orders else 0,
        "totalRentalDays": total_rental_days,
        "salesByChannel": sales_by_channel,
        "phonePrefixDistribution": phone_prefixes,
        "productDistribution": [{"productId": k, **v} for k, v in products.items()],
        "consumerCategoryDistribution": [{"categoryId": k, **v} for k, v in categories.items()],
        "revenueSplit": split,
    }


# =============================================================================
# SALES TAX REPORT
# =============================================================================

# Price blocks of one device line, in report column order
TAX_COMPONENTS = (
    ("lifepass", "lifepassRentalPrice"),
    ("skipass", "productPrice"),
    ("insurance", "insurancePrice"),
)

DAYS_OF_WEEK = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def is_online_channel(channel: str) -> bool:
    """Online sales include click-and-collect; everything else is a kiosk/desk sale."""
    return channel.lower() in ("online", "click-and-collect", "click_and_collect")


def _tax(price: Any) -> TaxDetails:
    if not isinstance(price, dict):
        return TaxDetails()
    return TaxDetails.from_dict((price.get("basePrice") or {}).get("taxDetails"))


def sales_tax_lines(orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    One line per priced device with gross and tax amounts per component.

    Orders without orderItemPrices are skipped.
    """
    lines = []
    for order in orders:
        items = (order.get("calculatedOrderPrice") or {}).get("orderItemPrices")
        if not items:
            logger.warning(f"Order {order.get('id')} has no price data")
            continue
        for item in items:
            line = {
                "orderId": order.get("id"),
                "createdAt": order.get("createdAt"),
                "salesChannel": order.get("salesChannel") or "",
                "productId": item.get("productId"),
                "consumerCategoryId": item.get("consumerCategoryId"),
                "testOrder": bool(order.get("testOrder")),
                "taxes": [],
            }
            for name, block in TAX_COMPONENTS:
                price = item.get(block)
                tax = _tax(price)
                line[f"{name}Total"] = _gross(price)
                line[f"{name}Tax"] = tax.tax_amount
                if price:
                    line["taxes"].append((name, tax))
            lines.append(line)
    return lines


def _revenue(lines: List[Dict[str, Any]]) -> Dict[str, float]:
    stats: Dict[str, float] = {"totalItems": len(lines)}
    for name, _ in TAX_COMPONENTS:
        stats[f"{name}Revenue"] = sum(line[f"{name}Total"] for line in lines)
        stats[f"{name}Tax"] = sum(line[f"{name}Tax"] for line in lines)
    return stats


def _by_tax_rate(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Gross and tax summed per (component, tax short name, rate)."""
    groups: Dict[tuple, Dict[str, Any]] = {}
    for line in lines:
        for name, tax in line["taxes"]:
            key = (name, tax.tax_short_name, tax.tax_value)
            group = groups.setdefault(key, {
                "component": name,
                "taxName": tax.name,
                "taxShortName": tax.tax_short_name,
                "taxValue": tax.tax_value,
                "sortOrder": tax.sort_order,
                "gross": 0,
                "taxAmount": 0,
                "itemCount": 0,
            })
            group["gross"] += line[f"{name}Total"]
            group["taxAmount"] += tax.tax_amount
            group["itemCount"] += 1
    for group in groups.values():
        group["net"] = group["gross"] - group["taxAmount"]
    return sorted(groups.values(), key=lambda g: (g["component"], g["sortOrder"], g["taxValue"]))


def compute_sales_tax(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Sales tax report: revenue and tax per component, live and test orders
    kept apart, plus the per-rate breakdown and channel totals of live lines.
    """
    lines = sales_tax_lines(orders)
    live = [line for line in lines if not line["testOrder"]]
    test = [line for line in lines if line["testOrder"]]
    online = [line for line in live if is_online_channel(line["salesChannel"])]
    kiosk = [line for line in live if not is_online_channel(line["salesChannel"])]

    return {
        "totalItems": len(lines),
        "liveStats": _revenue(live),
        "testStats": _revenue(test),
        "taxRates": _by_tax_rate(live),
        "onlineStats": _revenue(online),
        "kioskStats": _revenue(kiosk),
        "items": [{k: v for k, v in line.items() if k != "taxes"} for line in lines],
    }


def _empty_day() -> Dict[str, float]:
    day: Dict[str, float] = {"totalCharge": 0, "itemCount": 0}
    for name, _ in TAX_COMPONENTS:
        day[f"{name}Gross"] = 0
        day[f"{name}Tax"] = 0
        day[f"{name}Net"] = 0
    return day


def _add_line(day: Dict[str, float], line: Dict[str, Any]) -> None:
    day["itemCount"] += 1
    for name, _ in TAX_COMPONENTS:
        gross = line[f"{name}Total"]
        tax = line[f"{name}Tax"]
        day["totalCharge"] += gross
        day[f"{name}Gross"] += gross
        day[f"{name}Tax"] += tax
        day[f"{name}Net"] += gross - tax


def _sum_days(days: List[Dict[str, float]]) -> Dict[str, float]:
    total = _empty_day()
    for day in days:
        for key, value in day.items():
            total[key] += value
    return total


def weekly_breakdown(lines: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Lines bucketed by weekday (Mon..Sun) and channel.

    Returns {"kiosk": {"days": [7 dicts], "total": {...}}, "online": ..., "combined": {"total": ...}}
    """
    result: Dict[str, Dict[str, Any]] = {}
    for channel in ("kiosk", "online"):
        result[channel] = {"days": [_empty_day() for _ in DAYS_OF_WEEK]}
    for line in lines:
        created = line.get("createdAt")
        if not created:
            continue
        weekday = date.fromisoformat(str(created)[:10]).weekday()
        channel = "online" if is_online_channel(line["salesChannel"]) else "kiosk"
        _add_line(result[channel]["days"][weekday], line)
    for channel in ("kiosk", "online"):
        result[channel]["total"] = _sum_days(result[channel]["days"])
    result["combined"] = {"total": _sum_days([result["kiosk"]["total"], result["online"]["total"]])}
    return result


def _euro(value: float) -> str:
    return "" if value == 0 else f"{value:.2f}"


_GROUP_HEADER = ["", "Total Charge", "LifePass", "", "", "Skipasses", "", "", "Insurance", "", "", "Items"]
_COLUMN_HEADER = ["Day", "€", "Gross", "Tax", "Net", "Gross", "Tax", "Net", "Gross", "Tax", "Net", "#"]


def _day_row(label: str, day: Dict[str, float], blank_count: bool = True) -> List[Any]:
    row: List[Any] = [label, _euro(day["totalCharge"])]
    for name, _ in TAX_COMPONENTS:
        row += [_euro(day[f"{name}Gross"]), _euro(day[f"{name}Tax"]), _euro(day[f"{name}Net"])]
    count = day["itemCount"]
    row.append("" if blank_count and not count else count)
    return row


def weekly_export_csv(lines: List[Dict[str, Any]], day_from: date, day_to: date) -> str:
    """
    Weekly sales report as CSV: a Mon..Sun block per channel, the combined
    total and a summary table. Zero amounts are left blank.
    """
    week = weekly_breakdown(lines)
    kiosk = week["kiosk"]["total"]
    online = week["online"]["total"]
    combined = week["combined"]["total"]

    rows: List[List[Any]] = [
        ["Weekly Sales Report", day_from.strftime("%d/%m/%Y"), "-", day_to.strftime("%d/%m/%Y")],
        [],
    ]
    for title, channel in (("KIOSKS", "kiosk"), ("ONLINE (includes click-and-collect)", "online")):
        rows += [[title], _GROUP_HEADER, _COLUMN_HEADER]
        for label, day in zip(DAYS_OF_WEEK, week[channel]["days"]):
            rows.append(_day_row(label, day))
        rows += [_day_row("TOTAL", week[channel]["total"], blank_count=False), [], []]

    rows += [
        ["COMBINED TOTALS (Kiosks + Online)"], _GROUP_HEADER, _COLUMN_HEADER,
        _day_row("TOTAL", combined, blank_count=False), [], [],
        ["SUMMARY"],
        ["Category", "Kiosks", "Online", "Total"],
        ["Items Sold", kiosk["itemCount"], online["itemCount"], combined["itemCount"]],
    ]
    summary = (
        ("Total Revenue (Gross)", lambda d: d["totalCharge"]),
        ("Skipass Revenue", lambda d: d["skipassGross"]),
        ("LifePass Revenue", lambda d: d["lifepassGross"]),
        ("Insurance Revenue", lambda d: d["insuranceGross"]),
        ("Total Tax", lambda d: d["skipassTax"] + d["lifepassTax"] + d["insuranceTax"]),
    )
    for label, pick in summary:
        rows.append([label, _euro(pick(kiosk)), _euro(pick(online)), _euro(pick(combined))])

    output = StringIO()
    csv.writer(output).writerows(rows)
    return output.getvalue()


def weekly_export_filename(day_from: date, day_to: date) -> str:
    return f"weekly-report-{day_from:%d-%m-%Y}-{day_to:%d-%m-%Y}.csv"


class StatisticsService:
    """
    Query + aggregate, memoised per request.
    """

    def __init__(self, repository: OrderRepository):
        self._repository = repository

    def get_statistics(
        self,
        resort_id: int,
        date_from: Optional[datetime],
        date_to: Optional[datetime],
        include_test_orders: bool = False,
    ) -> Dict[str, Any]:
        """
        Raises:
            ValueError: date_from or date_to missing
        """
        if date_from is None or date_to is None:
            raise ValueError("Date range must be specified")

        key = (
            f"statistics:{resort_id}:{date_from.isoformat()}:"
            f"{date_to.isoformat()}:{include_test_orders}"
        )
        memo = None
        if has_app_context():
            memo = g.setdefault("_statistics_memo", {})
            if key in memo:
                return memo[key]

        logger.info(
            f"Fetching statistics for resort {resort_id} "
            f"({date_from.date()} - {date_to.date()}, test orders: {include_test_orders})"
        )
        orders = self._repository.list_for_statistics(
            resort_id, date_from, date_to, include_test_orders,
        )
        statistics = compute_statistics(orders)
        logger.info(f"Statistics: {statistics['totalOrders']} order(s), revenue {statistics['totalRevenue']}")

        if memo is not None:
            memo[key] = statistics
        return statistics

    def get_sales_tax(
        self,
        resort_id: int,
        date_from: Optional[datetime],
        date_to: Optional[datetime],
    ) -> Dict[str, Any]:
        """
        Sales tax report for paid orders; test orders are reported apart.

        Raises:
            ValueError: date_from or date_to missing
        """
        if date_from is None or date_to is None:
            raise ValueError("Date range must be specified")

        key = f"sales_tax:{resort_id}:{date_from.isoformat()}:{date_to.isoformat()}"
        memo = None
        if has_app_context():
            memo = g.setdefault("_statistics_memo", {})
            if key in memo:
                return memo[key]

        logger.info(f"Fetching sales tax data for resort {resort_id} ({date_from.date()} - {date_to.date()})")
        orders = self._repository.list_for_statistics(
            resort_id, date_from, date_to, include_test_orders=True,
        )
        report = compute_sales_tax(orders)
        logger.info(
            f"Sales tax: {report['liveStats']['totalItems']} live item(s), "
            f"{report['testStats']['totalItems']} test item(s)"
        )

        if memo is not None:
            memo[key] = report
        return report

    def weekly_export(
        self,
        resort_id: int,
        date_from: datetime,
        date_to: datetime,
        include_test_orders: bool = False,
    ) -> str:
        """Weekly sales report CSV over the report's items."""
        report = self.get_sales_tax(resort_id, date_from, date_to)
        items = report["items"]
        if not include_test_orders:
            items = [item for item in items if not item["testOrder"]]
        return weekly_export_csv(items, date_from.date(), date_to.date())
