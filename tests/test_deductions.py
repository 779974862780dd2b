"""Tests for posting reconciled sales to the ledger and the production FIFO pool."""

import pytest

from bakery.errors import PartialApplicationError
from bakery.events import APPLIED, INSUFFICIENT, REFUSED, SKIPPED
from bakery.models import InventoryStock, OutletStock, RawConsumptionResult, RawConsumptionRow, StockCount
from bakery.services import store
from bakery.services.deductions import (
    apply_raw_deductions,
    apply_sales_deductions,
    available_net_stock,
    credit_ledger,
    deduct_fifo,
    deduct_from_ledger,
    production_checks,
)
from bakery.services.demo_data import build_sales_sheet
from bakery.services.reconcile import reconcile_sales

from conftest import SALES_DATE


def _reconciled(conn, lines, *, sheet_date="01/03/2024"):
    data = build_sales_sheet("Downtown", sheet_date, lines)
    return reconcile_sales(
        data,
        store.load_stock_checks(conn),
        store.load_products(conn),
        conversions=store.load_conversions(conn),
        outlets=store.load_outlets(conn),
    )


def _received(conn, check_id, product_id):
    return store.get_stock_check(conn, check_id).count_for(product_id).received_stock


@pytest.fixture
def flour_pool(make_check, ids):
    """Two production checks: newest nets 20 kg of flour, the older 15 kg."""
    older = make_check(
        "Central Kitchen",
        "2024-02-28",
        [StockCount(ids.flour, quantity=0, received_stock=17, wastage=2)],
        timestamp=100.0,
        check_id="older",
    )
    newest = make_check(
        "Central Kitchen",
        "2024-02-29",
        [StockCount(ids.flour, quantity=0, received_stock=20, wastage=0)],
        timestamp=200.0,
        check_id="newest",
    )
    return newest, older


class TestLedger:
    def test_borrow_across_whole_units(self, conn, ids):
        store.save_inventory_stock(
            conn,
            InventoryStock(product_id=ids.cake_whole, outlet_stocks=(OutletStock("Downtown", 2, 5),)),
        )
        downtown = store.get_outlet(conn, "Downtown")

        after = deduct_from_ledger(
            conn, outlet=downtown, whole_product_id=ids.cake_whole, whole_qty=2, slice_qty=3, conversion_factor=10
        )

        assert after.outlet("Downtown") == OutletStock("Downtown", 0, 2)
        assert store.get_inventory_stock(conn, ids.cake_whole).outlet("Downtown") == OutletStock("Downtown", 0, 2)

    def test_never_blocks_and_credit_restores(self, conn, ids):
        kitchen = store.get_outlet(conn, "Central Kitchen")

        debited = deduct_from_ledger(
            conn, outlet=kitchen, whole_product_id=ids.cake_whole, whole_qty=1, slice_qty=4, conversion_factor=10
        )
        assert (debited.production_whole, debited.production_slices) == (-2, 6)

        restored = credit_ledger(
            conn, outlet=kitchen, whole_product_id=ids.cake_whole, whole_qty=1, slice_qty=4, conversion_factor=10
        )
        assert (restored.production_whole, restored.production_slices) == (0, 0)


class TestFifo:
    def test_pool_only_counts_production_outlets(self, conn, ids, make_check, flour_pool):
        make_check("Downtown", SALES_DATE, [StockCount(ids.flour, quantity=0, received_stock=99)])

        checks = production_checks(store.load_stock_checks(conn), store.load_outlets(conn))

        assert [c.id for c in checks] == ["newest", "older"]
        assert available_net_stock(checks, ids.flour) == 35
        assert available_net_stock(checks, ids.butter) is None

    def test_newest_first_across_checks(self, conn, ids, flour_pool):
        events = []

        status = deduct_fifo(
            conn, outlet_name="Downtown", product_id=ids.flour, sales_date=SALES_DATE, required=30, on_event=events.append
        )

        assert status == APPLIED
        assert _received(conn, "newest", ids.flour) == 0
        # 15 net in the older check, 10 taken: 5 net left
        assert _received(conn, "older", ids.flour) == 7
        (deduction,) = store.load_sales_deductions(conn)
        assert deduction.ledger == "fifo"
        assert deduction.whole_deducted == 30
        assert [(a.stock_check_id, a.quantity) for a in deduction.allocations] == [("newest", 20), ("older", 10)]
        assert [e.kind for e in events] == [APPLIED]

    def test_insufficient_pool_is_untouched(self, conn, ids, flour_pool):
        events = []

        status = deduct_fifo(
            conn, outlet_name="Downtown", product_id=ids.flour, sales_date=SALES_DATE, required=50, on_event=events.append
        )

        assert status == INSUFFICIENT
        assert _received(conn, "newest", ids.flour) == 20
        assert _received(conn, "older", ids.flour) == 17
        assert store.load_sales_deductions(conn) == []
        assert events[0].kind == INSUFFICIENT
        assert "available=35" in events[0].detail

    def test_rerun_is_skipped(self, conn, ids, flour_pool):
        deduct_fifo(conn, outlet_name="Downtown", product_id=ids.flour, sales_date=SALES_DATE, required=30)

        status = deduct_fifo(conn, outlet_name="Downtown", product_id=ids.flour, sales_date=SALES_DATE, required=30)

        assert status == SKIPPED
        assert _received(conn, "newest", ids.flour) == 0
        assert _received(conn, "older", ids.flour) == 7
        assert len(store.load_sales_deductions(conn)) == 1


class TestApplySalesDeductions:
    @pytest.fixture
    def downtown_day(self, conn, ids, make_check):
        make_check(
            "Downtown",
            SALES_DATE,
            [
                StockCount(ids.cake_whole, quantity=0, opening_stock=2, received_stock=1, wastage=0),
                StockCount(ids.cake_slice, quantity=2, opening_stock=5, received_stock=0, wastage=0),
                StockCount(ids.croissant, quantity=0, opening_stock=0, received_stock=0, wastage=0),
            ],
            check_id="downtown",
        )
        store.save_inventory_stock(
            conn,
            InventoryStock(product_id=ids.cake_whole, outlet_stocks=(OutletStock("Downtown", 2, 5),)),
        )

    def test_whole_and_slice_rows_deducted_once(self, conn, ids, downtown_day):
        result = _reconciled(conn, [("Cake", "Whole", 2), ("Cake", "Slice", 3)])

        report = apply_sales_deductions(conn, result)

        stock = store.get_inventory_stock(conn, ids.cake_whole)
        assert stock.outlet("Downtown") == OutletStock("Downtown", 0, 2)
        (deduction,) = store.load_sales_deductions(conn)
        assert deduction.product_id == ids.cake_whole
        assert (deduction.whole_deducted, deduction.slices_deducted) == (2, 3)
        assert deduction.ledger == "outlet"
        assert len(report.applied) == 1

    def test_received_credited_to_prods_req_once(self, conn, ids, downtown_day):
        result = _reconciled(conn, [("Cake", "Whole", 1), ("Cake", "Slice", 1)])

        apply_sales_deductions(conn, result)

        stock = store.get_inventory_stock(conn, ids.cake_whole)
        assert (stock.prods_req_whole, stock.prods_req_slices) == (1, 0)
        assert store.load_sales_deductions(conn)[0].prods_req_credited == 10

    def test_reupload_is_idempotent(self, conn, ids, downtown_day):
        result = _reconciled(conn, [("Cake", "Whole", 2), ("Cake", "Slice", 3)])
        apply_sales_deductions(conn, result)
        before = store.get_inventory_stock(conn, ids.cake_whole)

        report = apply_sales_deductions(conn, result)

        assert store.get_inventory_stock(conn, ids.cake_whole) == before
        assert report.applied == []
        assert len(report.skipped) == 1
        assert len(store.load_sales_deductions(conn)) == 1

    def test_other_units_use_fifo(self, conn, ids, downtown_day, make_check):
        make_check(
            "Central Kitchen",
            SALES_DATE,
            [StockCount(ids.croissant, quantity=0, received_stock=50, wastage=5)],
            check_id="kitchen",
        )
        result = _reconciled(conn, [("Croissant", "pcs", 40)])

        report = apply_sales_deductions(conn, result)

        assert _received(conn, "kitchen", ids.croissant) == 10
        assert len(report.applied) == 1

    def test_insufficient_fifo_reported(self, conn, ids, downtown_day):
        result = _reconciled(conn, [("Croissant", "pcs", 4)])

        report = apply_sales_deductions(conn, result)

        assert report.insufficient == [f"{ids.croissant} @ Downtown"]
        assert report.errors
        assert store.load_sales_deductions(conn) == []

    def test_date_mismatch_refused_with_zero_writes(self, conn, ids, downtown_day):
        events = []
        result = _reconciled(conn, [("Cake", "Whole", 2), ("Croissant", "pcs", 1)], sheet_date="02/03/2024")
        before_stock = store.get_inventory_stock(conn, ids.cake_whole)
        before_check = store.get_stock_check(conn, "downtown")

        report = apply_sales_deductions(conn, result, on_event=events.append)

        assert report.refused
        assert report.writes == 0
        assert store.get_inventory_stock(conn, ids.cake_whole) == before_stock
        assert store.get_stock_check(conn, "downtown") == before_check
        assert store.load_sales_deductions(conn) == []
        assert [e.kind for e in events] == [REFUSED]

    def test_failure_midway_names_applied_steps(self, conn, ids, downtown_day, monkeypatch):
        result = _reconciled(conn, [("Cake", "Whole", 1)])

        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "record_sales_deduction", boom)

        with pytest.raises(PartialApplicationError) as exc:
            apply_sales_deductions(conn, result)

        assert exc.value.step.startswith("sales deduction Downtown")
        assert any(step.startswith("ledger Downtown") for step in exc.value.applied)
        assert "disk full" in str(exc.value)
        rows = exc.value.as_rows()
        assert [r["Status"] for r in rows[:-1]] == ["applied"] * len(exc.value.applied)
        assert rows[-1] == {"Step": exc.value.step, "Status": "failed: disk full"}
        # the ledger write already went through
        assert store.get_inventory_stock(conn, ids.cake_whole).outlet("Downtown") == OutletStock("Downtown", 1, 5)


class TestApplyRawDeductions:
    def test_raw_rows_use_fifo_pool(self, conn, ids, make_check):
        make_check("Downtown", SALES_DATE, [StockCount(ids.croissant, quantity=0)], check_id="downtown")
        make_check(
            "Central Kitchen",
            SALES_DATE,
            [
                StockCount(ids.flour, quantity=0, received_stock=10, wastage=0),
                StockCount(ids.butter, quantity=0, received_stock=1, wastage=0),
            ],
            check_id="kitchen",
        )
        result = _reconciled(conn, [("Croissant", "pcs", 100)])
        raw = RawConsumptionResult(
            outlet="Downtown",
            date=SALES_DATE,
            rows=[
                RawConsumptionRow(raw_product_id=ids.butter, raw_name="Butter", raw_unit="kg", consumed=2),
                RawConsumptionRow(raw_product_id=ids.flour, raw_name="Flour", raw_unit="kg", consumed=5),
            ],
        )

        report = apply_raw_deductions(conn, raw, result=result)

        assert report.applied == ["Flour @ Downtown"]
        assert report.insufficient == ["Butter @ Downtown"]
        assert _received(conn, "kitchen", ids.flour) == 5
        assert _received(conn, "kitchen", ids.butter) == 1

    def test_sold_product_also_used_in_recipe_is_deducted_for_both(self, conn, ids, make_check):
        make_check("Downtown", SALES_DATE, [StockCount(ids.loaf, quantity=0)], check_id="downtown")
        make_check(
            "Central Kitchen",
            SALES_DATE,
            [StockCount(ids.loaf, quantity=0, received_stock=100, wastage=0)],
            check_id="kitchen",
        )
        result = _reconciled(conn, [("Sourdough Loaf", "pcs", 5)])
        # seven sandwiches at one loaf each
        raw = RawConsumptionResult(
            outlet="Downtown",
            date=SALES_DATE,
            rows=[RawConsumptionRow(raw_product_id=ids.loaf, raw_name="Sourdough Loaf", raw_unit="pcs", consumed=7)],
        )

        sales = apply_sales_deductions(conn, result)
        report = apply_raw_deductions(conn, raw, result=result)

        assert len(sales.applied) == 1
        assert report.applied == ["Sourdough Loaf @ Downtown"]
        assert report.skipped == []
        assert _received(conn, "kitchen", ids.loaf) == 88
        assert sorted(d.source for d in store.load_sales_deductions(conn)) == ["raw", "sales"]

        again = apply_raw_deductions(conn, raw, result=result)

        assert again.skipped == ["Sourdough Loaf @ Downtown"]
        assert _received(conn, "kitchen", ids.loaf) == 88
