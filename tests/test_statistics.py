"""
Tests for revenue statistics aggregation.
"""

import csv
from datetime import date, datetime
from unittest.mock import MagicMock

import pytest
from flask import Flask

from conftest import naive, price_block
from services.statistics_service import (
    StatisticsService,
    clean_sales_channel_name,
    compute_sales_tax,
    compute_statistics,
    is_online_channel,
    phone_prefix_label,
    sales_tax_lines,
    weekly_breakdown,
    weekly_export_csv,
    weekly_export_filename,
)


def line(product_id, category_id, ticket, insurance=None, rental=None):
    item = {"productId": product_id, "consumerCategoryId": category_id, "productPrice": price_block(ticket)}
    if insurance is not None:
        item["insurancePrice"] = price_block(insurance)
    if rental is not None:
        item["lifepassRentalPrice"] = price_block(rental)
    return item


def order(channel, created, total, days, items, telephone=None):
    data = {
        "salesChannel": channel,
        "createdAt": created,
        "calculatedOrderPrice": {
            "daysValidity": days,
            "cumulatedPrice": price_block(total),
            "orderItemPrices": items,
        },
    }
    if telephone:
        data["mythOrderSubmissionData"] = {"contactDetails": {"telephone": telephone}}
    return data


ORDERS = [
    order("Cash Desk - Main", "2026-01-10T09:00:00", 100, 2,
          [line("p1", "adult", 40, insurance=5, rental=5), line("p1", "child", 50)],
          telephone="+447400123456"),
    order("Kiosk - ID = Lobby", "2026-01-11T10:00:00", 60, 1,
          [line("p2", "adult", 60)],
          telephone="+39 06 1234 5678"),
]


# Helpers

class TestSalesChannelNames:

    @pytest.mark.parametrize("raw, expected", [
        ("Kiosk - ID = Lobby", "Lobby"),
        ("kiosk - id = 7", "7"),
        ("Main cash desk", "Cash Desk"),
        ("Click and Collect web", "Click & Collect"),
        ("Swapped Lifepass", None),
        ("Partner", "Partner"),
    ])
    def test_clean(self, raw, expected):
        assert clean_sales_channel_name(raw) == expected


class TestPhonePrefix:

    def test_international_numbers(self):
        assert phone_prefix_label("+447400123456") == "GB (+44)"
        assert phone_prefix_label("+39 06 1234 5678") == "IT (+39)"

    def test_unparseable(self):
        assert phone_prefix_label("not a number") is None
        assert phone_prefix_label("07700900123") is None


# Aggregation

class TestComputeStatistics:

    def test_totals(self):
        stats = compute_statistics(ORDERS)

        assert stats["totalRevenue"] == 160
        assert stats["totalOrders"] == 2
        assert stats["averageOrderValue"] == 80
        assert stats["totalLifepasses"] == 3
        assert stats["totalRentalDays"] == 5

    def test_sales_by_channel_fills_every_channel_per_day(self):
        stats = compute_statistics(ORDERS)

        first, second = stats["salesByChannel"]
        assert first["date"] == "2026-01-10"
        assert first["channels"]["Cash Desk"] == {"amount": 100, "orderCount": 1, "lifepassCount": 2, "days": 4}
        assert first["channels"]["Lobby"]["orderCount"] == 0
        assert second["channels"]["Lobby"]["amount"] == 60

    def test_swapped_lifepasses_leave_channels_but_count_in_totals(self):
        swapped = order("Swapped Lifepass", "2026-01-10T11:00:00", 0, 1, [line("p1", "adult", 0)])

        stats = compute_statistics(ORDERS + [swapped])

        assert "Swapped Lifepass" not in stats["salesByChannel"][0]["channels"]
        assert stats["totalOrders"] == 3

    def test_revenue_split_and_distributions(self):
        stats = compute_statistics(ORDERS)

        assert stats["revenueSplit"] == {"insurance": 5, "lifepass": 5, "skiTicket": 150}
        products = {p["productId"]: p for p in stats["productDistribution"]}
        assert products["p1"]["total"] == 90
        assert products["p1"]["lifepassCount"] == 2
        categories = {c["categoryId"]: c for c in stats["consumerCategoryDistribution"]}
        assert categories["adult"]["orderCount"] == 2

    def test_phone_prefix_distribution(self):
        stats = compute_statistics(ORDERS + [dict(ORDERS[0])])

        assert stats["phonePrefixDistribution"][0] == {"prefix": "GB (+44)", "count": 2}
        assert {"prefix": "IT (+39)", "count": 1} in stats["phonePrefixDistribution"]

    def test_empty(self):
        stats = compute_statistics([])

        assert stats["averageOrderValue"] == 0
        assert stats["salesByChannel"] == []


# Service

class TestStatisticsService:

    def test_requires_date_range(self):
        service = StatisticsService(MagicMock())

        with pytest.raises(ValueError, match="Date range must be specified"):
            service.get_statistics(1, None, datetime(2026, 1, 31))

    def test_memoised_per_request(self):
        repository = MagicMock()
        repository.list_for_statistics.return_value = ORDERS
        service = StatisticsService(repository)
        span = (naive(2026, 1, 1), naive(2026, 1, 31))

        with Flask(__name__).test_request_context():
            first = service.get_statistics(1, *span)
            second = service.get_statistics(1, *span)

        assert first is second
        repository.list_for_statistics.assert_called_once_with(1, span[0], span[1], False)

    def test_filters_unpaid_and_test_orders(self, repository, add_order):
        paid = {"calculated_order_price": ORDERS[0]["calculatedOrderPrice"], "payment_status": "fully-paid"}
        add_order(1, created_at=naive(2026, 1, 10), **paid)
        add_order(2, created_at=naive(2026, 1, 10), test_order=True, **paid)
        add_order(3, created_at=naive(2026, 1, 10), payment_status="payment-failed")
        add_order(4, created_at=naive(2026, 1, 10), order_status="order-complete")
        add_order(5, created_at=naive(2026, 3, 1), **paid)
        service = StatisticsService(repository)

        stats = service.get_statistics(1, naive(2026, 1, 1), naive(2026, 1, 31))
        with_tests = service.get_statistics(1, naive(2026, 1, 1), naive(2026, 1, 31), include_test_orders=True)

        assert stats["totalOrders"] == 2
        assert with_tests["totalOrders"] == 3


# Sales tax

def taxed(gross, tax, short, rate):
    block = price_block(gross)
    block["basePrice"]["amountNet"] = gross - tax
    block["basePrice"]["taxDetails"] = {
        "name": f"{short} {rate}%", "taxValue": rate, "taxAmount": tax, "taxShortName": short, "sortOrder": 1,
    }
    return block


def taxed_order(order_id, channel, created, items, test_order=False):
    return {
        "id": order_id,
        "salesChannel": channel,
        "createdAt": created,
        "testOrder": test_order,
        "calculatedOrderPrice": {"daysValidity": 1, "cumulatedPrice": price_block(0), "orderItemPrices": items},
    }


# 2026-01-12 is a Monday
TAX_ORDERS = [
    taxed_order(1, "Kiosk - ID = Lobby", "2026-01-12T09:00:00", [{
        "productId": "p1", "consumerCategoryId": "adult",
        "productPrice": taxed(122, 22, "IVA", 22),
        "lifepassRentalPrice": taxed(10, 1.8, "IVA", 22),
        "insurancePrice": taxed(5, 0, "ESE", 0),
    }]),
    taxed_order(2, "online", "2026-01-13T10:00:00+00:00", [{
        "productId": "p2", "consumerCategoryId": "child",
        "productPrice": taxed(110, 10, "IVA", 10),
    }]),
    taxed_order(3, "click-and-collect", "2026-01-14T10:00:00", [{
        "productId": "p2", "consumerCategoryId": "child",
        "productPrice": taxed(50, 5, "IVA", 10),
    }], test_order=True),
]


class TestSalesTax:

    @pytest.mark.parametrize("channel, online", [
        ("online", True),
        ("Click-and-Collect", True),
        ("click_and_collect", True),
        ("Kiosk - ID = Lobby", False),
        ("Cash Desk", False),
    ])
    def test_online_channels(self, channel, online):
        assert is_online_channel(channel) is online

    def test_lines_per_device(self):
        lines = sales_tax_lines(TAX_ORDERS)

        assert len(lines) == 3
        first = lines[0]
        assert first["skipassTotal"] == 122 and first["skipassTax"] == 22
        assert first["lifepassTotal"] == 10 and first["lifepassTax"] == 1.8
        assert lines[1]["insuranceTotal"] == 0

    def test_orders_without_prices_are_skipped(self):
        unpriced = {"id": 9, "salesChannel": "online", "createdAt": "2026-01-12", "calculatedOrderPrice": None}

        assert sales_tax_lines([unpriced]) == []

    def test_live_and_test_kept_apart(self):
        report = compute_sales_tax(TAX_ORDERS)

        assert report["totalItems"] == 3
        assert report["liveStats"]["totalItems"] == 2
        assert report["liveStats"]["skipassRevenue"] == 232
        assert report["liveStats"]["skipassTax"] == 32
        assert report["testStats"]["skipassRevenue"] == 50
        assert report["kioskStats"]["totalItems"] == 1
        assert report["onlineStats"]["skipassRevenue"] == 110

    def test_grouped_by_tax_rate(self):
        report = compute_sales_tax(TAX_ORDERS)

        rates = {(r["component"], r["taxShortName"], r["taxValue"]): r for r in report["taxRates"]}
        assert rates[("skipass", "IVA", 22)]["net"] == 100
        assert rates[("skipass", "IVA", 10)]["gross"] == 110
        assert rates[("skipass", "IVA", 10)]["itemCount"] == 1
        assert rates[("insurance", "ESE", 0)]["taxAmount"] == 0
        assert "taxes" not in report["items"][0]

    def test_weekly_breakdown(self):
        week = weekly_breakdown(sales_tax_lines(TAX_ORDERS[:2]))

        monday = week["kiosk"]["days"][0]
        assert monday["totalCharge"] == 137
        assert monday["lifepassNet"] == pytest.approx(8.2)
        assert week["online"]["days"][1]["skipassGross"] == 110
        assert week["combined"]["total"]["itemCount"] == 2

    def test_weekly_export_csv(self):
        content = weekly_export_csv(sales_tax_lines(TAX_ORDERS[:2]), date(2026, 1, 12), date(2026, 1, 18))

        rows = list(csv.reader(content.splitlines()))
        assert rows[0] == ["Weekly Sales Report", "12/01/2026", "-", "18/01/2026"]
        days = [row for row in rows if row and row[0] in ("Mon", "Tue")]
        assert days[0] == ["Mon", "137.00", "10.00", "1.80", "8.20", "122.00", "22.00", "100.00", "5.00", "", "5.00", "1"]
        assert days[1] == ["Tue"] + [""] * 11
        summary = {row[0]: row[1:] for row in rows if row}
        assert summary["Items Sold"] == ["1", "1", "2"]
        assert summary["Total Tax"] == ["23.80", "10.00", "33.80"]

    def test_export_filename(self):
        assert weekly_export_filename(date(2026, 1, 12), date(2026, 1, 18)) == "weekly-report-12-01-2026-18-01-2026.csv"

    def test_service_reads_test_orders_for_the_report(self):
        repository = MagicMock()
        repository.list_for_statistics.return_value = TAX_ORDERS
        service = StatisticsService(repository)
        span = (naive(2026, 1, 12), naive(2026, 1, 18))

        report = service.get_sales_tax(1, *span)

        assert report["testStats"]["totalItems"] == 1
        repository.list_for_statistics.assert_called_once_with(1, span[0], span[1], include_test_orders=True)

    def test_weekly_export_leaves_out_test_orders(self):
        repository = MagicMock()
        repository.list_for_statistics.return_value = TAX_ORDERS
        service = StatisticsService(repository)
        span = (naive(2026, 1, 12), naive(2026, 1, 18))

        live = list(csv.reader(service.weekly_export(1, *span).splitlines()))
        every = list(csv.reader(service.weekly_export(1, *span, include_test_orders=True).splitlines()))

        assert {row[0]: row for row in live if row}["Items Sold"][3] == "2"
        assert {row[0]: row for row in every if row}["Items Sold"][3] == "3"

    def test_sales_tax_requires_date_range(self):
        with pytest.raises(ValueError, match="Date range must be specified"):
            StatisticsService(MagicMock()).get_sales_tax(1, naive(2026, 1, 1), None)
