"""Tests for sales-sheet reconciliation against stock checks."""

import pytest

from bakery.errors import SpreadsheetError
from bakery.models import ProductRequest, StockCount
from bakery.services import store
from bakery.services.demo_data import build_requests_sheet, build_sales_sheet
from bakery.services.reconcile import (
    expected_closing,
    parse_requests_received,
    reconcile_sales,
    requests_received_by_product,
)

from conftest import SALES_DATE


def _reconcile(conn, data, **kw):
    return reconcile_sales(
        data,
        store.load_stock_checks(conn),
        store.load_products(conn),
        conversions=store.load_conversions(conn),
        outlets=store.load_outlets(conn),
        **kw,
    )


class TestExpectedClosing:
    def test_identity_for_integers(self):
        for o, r, w, s in [(5, 10, 1, 6), (0, 0, 0, 0), (3, 7, 2, 12), (100, 0, 5, 1)]:
            exp = expected_closing(o, r, w, s)
            assert exp == o + r - w - s
            assert isinstance(exp, int)


class TestReconcileSales:
    def test_matched_row_without_discrepancy(self, conn, ids, make_check):
        """Opening 5 + received 10 - wastage 1 - sold 6 = 8, counted 8."""
        make_check(
            "Downtown",
            SALES_DATE,
            [StockCount(ids.croissant, quantity=8, opening_stock=5, received_stock=10, wastage=1)],
        )
        data = build_sales_sheet("Downtown", "01/03/2024", [("Croissant", "pcs", 6)])

        result = _reconcile(conn, data)

        assert result.outlet_matched and result.date_matched
        assert result.sheet_date == SALES_DATE
        assert result.stock_check_date == SALES_DATE
        row = result.rows[0]
        assert (row.opening, row.received, row.wastage, row.closing) == (5, 10, 1, 8)
        assert row.expected_closing == 8
        assert row.discrepancy == 0
        assert result.errors == []

    def test_shortage_is_negative(self, conn, ids, make_check):
        make_check(
            "Downtown",
            SALES_DATE,
            [StockCount(ids.croissant, quantity=5, opening_stock=5, received_stock=10, wastage=1)],
        )
        data = build_sales_sheet("Downtown", "01/03/2024", [("Croissant", "pcs", 6)])

        assert _reconcile(conn, data).rows[0].discrepancy == -3

    def test_outlet_match_is_case_and_space_insensitive(self, conn, ids, make_check):
        make_check("Downtown", SALES_DATE, [StockCount(ids.croissant, quantity=1)])
        data = build_sales_sheet("  downtown ", "2024-03-01", [("Croissant", "pcs", 1)])

        result = _reconcile(conn, data)

        assert result.outlet_matched
        assert result.matched_outlet_name == "Downtown"

    def test_latest_same_date_check_wins(self, conn, ids, make_check):
        make_check("Downtown", SALES_DATE, [StockCount(ids.croissant, quantity=1)], timestamp=100.0)
        make_check("Downtown", SALES_DATE, [StockCount(ids.croissant, quantity=9)], timestamp=200.0)
        data = build_sales_sheet("Downtown", "01/03/2024", [("Croissant", "pcs", 0)])

        assert _reconcile(conn, data).rows[0].closing == 9

    def test_date_mismatch_lists_sold_only(self, conn, ids, make_check):
        make_check("Downtown", "2024-02-28", [StockCount(ids.croissant, quantity=4)])
        data = build_sales_sheet("Downtown", "01/03/2024", [("Croissant", "pcs", 6)])

        result = _reconcile(conn, data)

        assert result.outlet_matched
        assert not result.date_matched
        assert result.stock_check_date == "2024-02-28"
        assert result.rows[0].sold == 6
        assert result.rows[0].expected_closing is None
        assert any("2024-02-28" in e for e in result.errors)

    def test_unknown_outlet_is_not_fatal(self, conn, ids, make_check):
        make_check("Downtown", SALES_DATE, [StockCount(ids.croissant, quantity=4)])
        data = build_sales_sheet("Uptown", "01/03/2024", [("Croissant", "pcs", 6)])

        result = _reconcile(conn, data)

        assert not result.outlet_matched
        assert not result.date_matched
        assert len(result.rows) == 1
        assert any("Uptown" in e for e in result.errors)

    def test_missing_header_cells(self, conn, ids):
        data = build_sales_sheet(None, None, [("Croissant", "pcs", 1)])

        result = _reconcile(conn, data)

        assert result.sheet_date is None
        assert any("J5" in e for e in result.errors)
        assert any("H9" in e for e in result.errors)

    def test_bad_rows_are_reported_not_raised(self, conn, ids, make_check):
        make_check("Downtown", SALES_DATE, [StockCount(ids.croissant, quantity=4)])
        data = build_sales_sheet(
            "Downtown",
            "01/03/2024",
            [("Muffin", "pcs", 2), (None, "pcs", 1), ("Croissant", "pcs", 1)],
        )

        result = _reconcile(conn, data)

        assert [r.product_id for r in result.rows] == [None, None, ids.croissant]
        assert result.rows[0].notes == "Product not found in master list"
        assert len(result.errors) == 2

    def test_unreadable_workbook_raises(self, conn, ids):
        with pytest.raises(SpreadsheetError):
            _reconcile(conn, b"definitely not a workbook")

    def test_requests_received_added_to_received(self, conn, ids, make_check):
        make_check(
            "Downtown",
            SALES_DATE,
            [StockCount(ids.croissant, quantity=10, opening_stock=5, received_stock=2, wastage=0)],
        )
        data = build_sales_sheet("Downtown", "01/03/2024", [("Croissant", "pcs", 1)])

        row = _reconcile(conn, data, requests_received_by_product_id={ids.croissant: 4}).rows[0]

        assert row.received == 6
        assert row.expected_closing == 10
        assert row.discrepancy == 0


class TestSplitUnits:
    def test_whole_row_combines_slice_stock(self, conn, ids, make_check):
        make_check(
            "Downtown",
            SALES_DATE,
            [
                StockCount(ids.cake_whole, quantity=2, opening_stock=3, received_stock=2, wastage=0),
                StockCount(ids.cake_slice, quantity=2, opening_stock=5, received_stock=0, wastage=1),
            ],
        )
        data = build_sales_sheet("Downtown", "01/03/2024", [("Cake", "Whole", 2)])

        row = _reconcile(conn, data).rows[0]

        assert (row.opening, row.received, row.wastage, row.closing) == (3.5, 2, 0.1, 2.2)
        assert row.expected_closing == 3.4
        assert row.discrepancy == -1.2

        whole, slices = row.split_units
        assert (whole.unit, whole.expected_closing, whole.discrepancy) == ("Whole", 3, -1)
        assert (slices.unit, slices.expected_closing, slices.discrepancy) == ("Slice", 4, -2)

    def test_slice_row_scales_whole_stock(self, conn, ids, make_check):
        make_check(
            "Downtown",
            SALES_DATE,
            [
                StockCount(ids.cake_whole, quantity=1, opening_stock=1, received_stock=1, wastage=0),
                StockCount(ids.cake_slice, quantity=4, opening_stock=6, received_stock=0, wastage=0),
            ],
        )
        data = build_sales_sheet("Downtown", "01/03/2024", [("Cake", "Slice", 2)])

        row = _reconcile(conn, data).rows[0]

        assert (row.opening, row.received, row.closing) == (16, 10, 14)
        assert row.expected_closing == 24
        assert row.discrepancy == -10

    def test_no_breakdown_when_partner_holds_nothing(self, conn, ids, make_check):
        make_check(
            "Downtown",
            SALES_DATE,
            [
                StockCount(ids.cake_whole, quantity=2, opening_stock=3, received_stock=1, wastage=0),
                StockCount(ids.cake_slice, quantity=0, opening_stock=0, received_stock=0, wastage=0),
            ],
        )
        data = build_sales_sheet("Downtown", "01/03/2024", [("Cake", "Whole", 2)])

        row = _reconcile(conn, data).rows[0]

        assert row.split_units is None
        assert row.opening == 3


class TestRequestsReceived:
    def test_parse_filters_outlet_and_date(self, conn, ids):
        data = build_requests_sheet(
            [
                ("Croissant", "pcs", 10, "Downtown", "01/03/2024"),
                ("Croissant", "pcs", 5, "Downtown", "01/03/2024"),
                ("Croissant", "pcs", 7, "Mall", "01/03/2024"),
                ("Croissant", "pcs", 9, "Downtown", "02/03/2024"),
                ("Unknown Bun", "pcs", 3, "Downtown", "01/03/2024"),
            ]
        )

        received = parse_requests_received(data, store.load_products(conn), outlet="Downtown", date=SALES_DATE)

        assert received == {ids.croissant: 15}

    def test_approved_requests_only(self):
        requests = [
            ProductRequest("r1", "p1", 4, "Central Kitchen", "Downtown", "approved", SALES_DATE),
            ProductRequest("r2", "p1", 6, "Central Kitchen", "Downtown", "pending", SALES_DATE),
            ProductRequest("r3", "p1", 1, "Central Kitchen", "downtown", "approved", SALES_DATE),
            ProductRequest("r4", "p2", 2, "Central Kitchen", "Mall", "approved", SALES_DATE),
        ]

        assert requests_received_by_product(requests, outlet="Downtown", date=SALES_DATE) == {"p1": 5}
