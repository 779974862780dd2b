from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

from bakery.errors import PartialApplicationError
from bakery.events import (
    APPLIED,
    CREDITED,
    INSUFFICIENT,
    REFUSED,
    SKIPPED,
    DeductionEvent,
    EventHandler,
    emit,
)
from bakery.models import (
    FifoAllocation,
    InventoryStock,
    Outlet,
    RawConsumptionResult,
    SalesDeduction,
    SalesReconcileResult,
    StockCheck,
)
from bakery.services import ledger, store
from bakery.services.catalog import ConversionResolver, ProductPair
from bakery.utils import new_id, norm_key

logger = logging.getLogger(__name__)


@dataclass
class DeductionReport:
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    insufficient: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    refused: Optional[str] = None

    @property
    def writes(self) -> int:
        return len(self.applied)


class _Steps:
    """Ordered log of persisted writes, so a failure can say what already went through."""

    def __init__(self):
        self.done: list[str] = []

    def run(self, label: str, fn, *args, **kwargs):
        try:
            out = fn(*args, **kwargs)
        except Exception as e:
            raise PartialApplicationError(label, self.done, e) from e
        self.done.append(label)
        return out


# -------------------------
# Production-stock FIFO pool
# -------------------------

def production_checks(stock_checks: Iterable[StockCheck], outlets: Iterable[Outlet]) -> list[StockCheck]:
    """Stock checks of production outlets, newest first."""
    names = {norm_key(o.name) for o in outlets if o.outlet_type == "production"}
    checks = [c for c in stock_checks if norm_key(c.outlet) in names]
    return sorted(checks, key=lambda c: c.timestamp, reverse=True)


def _net(check: StockCheck, product_id: str) -> float:
    count = check.count_for(product_id)
    if count is None:
        return 0
    return max(0, (count.received_stock or 0) - (count.wastage or 0))


def available_net_stock(checks: Iterable[StockCheck], product_id: str) -> Optional[float]:
    """Summed received - wastage (floored at 0 per check); None when no check counts the product."""
    counted = [c for c in checks if c.count_for(product_id) is not None]
    if not counted:
        return None
    return sum(_net(c, product_id) for c in counted)


def plan_fifo(checks: list[StockCheck], product_id: str, required: float) -> Optional[list[FifoAllocation]]:
    """Allocations newest-first, or None when the pool cannot cover `required`."""
    if (available_net_stock(checks, product_id) or 0) < required:
        return None
    remaining = required
    plan: list[FifoAllocation] = []
    for check in checks:
        if remaining <= 0:
            break
        net = _net(check, product_id)
        if net <= 0:
            continue
        take = min(net, remaining)
        plan.append(FifoAllocation(stock_check_id=check.id, quantity=take))
        remaining -= take
    return plan


def deduct_fifo(
    conn,
    *,
    outlet_name: str,
    product_id: str,
    sales_date: str,
    required: float,
    stock_checks: Optional[list[StockCheck]] = None,
    outlets: Optional[list[Outlet]] = None,
    source: str = "sales",
    on_event: Optional[EventHandler] = None,
    steps: Optional[_Steps] = None,
) -> str:
    """
    Deduct a non-convertible product from the production-stock pool.

    Returns "applied", "skipped" (already deducted for this outlet/product/date
    and source) or "insufficient" (nothing written). Sales and raw-material
    consumption of one product are separate deductions and both apply.
    """
    steps = steps or _Steps()
    if store.has_sales_deduction(conn, outlet_name, product_id, sales_date, source):
        emit(on_event, DeductionEvent(SKIPPED, outlet_name, product_id, sales_date, required, "already deducted"))
        return SKIPPED

    checks = production_checks(
        stock_checks if stock_checks is not None else store.load_stock_checks(conn),
        outlets if outlets is not None else store.load_outlets(conn),
    )
    plan = plan_fifo(checks, product_id, required)
    if plan is None:
        available = available_net_stock(checks, product_id) or 0
        emit(
            on_event,
            DeductionEvent(INSUFFICIENT, outlet_name, product_id, sales_date, required, f"available={available}"),
        )
        return INSUFFICIENT

    by_id = {c.id: c for c in checks}
    for alloc in plan:
        check = by_id[alloc.stock_check_id]
        counts = [
            replace(c, received_stock=max(0, (c.received_stock or 0) - alloc.quantity)) if c.product_id == product_id else c
            for c in check.counts
        ]
        steps.run(
            f"stock check {check.id} ({check.outlet} {check.date}) -{alloc.quantity} {product_id}",
            store.update_stock_check,
            conn,
            check.id,
            counts,
        )
        check.counts = counts

    steps.run(
        f"{source} deduction {outlet_name}/{product_id}/{sales_date}",
        store.record_sales_deduction,
        conn,
        SalesDeduction(
            id=new_id(),
            outlet_name=outlet_name,
            product_id=product_id,
            sales_date=sales_date,
            whole_deducted=required,
            slices_deducted=0,
            ledger="fifo",
            source=source,
            allocations=tuple(plan),
        ),
    )
    emit(on_event, DeductionEvent(APPLIED, outlet_name, product_id, sales_date, required, "fifo"))
    return APPLIED


# -------------------------
# Whole/slice ledger
# -------------------------

def deduct_from_ledger(
    conn,
    *,
    outlet: Outlet,
    whole_product_id: str,
    whole_qty: int,
    slice_qty: int,
    conversion_factor: int,
) -> InventoryStock:
    """
    Subtract from the production section or the outlet's entry, normalising slices.

    Never blocks: the record may go negative in whole units.
    """
    delta = ledger.total_slices(whole_qty, slice_qty, conversion_factor)
    return _move_ledger(conn, outlet, whole_product_id, -delta, conversion_factor)


def credit_ledger(
    conn,
    *,
    outlet: Outlet,
    whole_product_id: str,
    whole_qty: int,
    slice_qty: int,
    conversion_factor: int,
) -> InventoryStock:
    delta = ledger.total_slices(whole_qty, slice_qty, conversion_factor)
    return _move_ledger(conn, outlet, whole_product_id, delta, conversion_factor)


def _move_ledger(conn, outlet: Outlet, whole_product_id: str, delta_slices: int, conversion_factor: int) -> InventoryStock:
    stock = store.get_inventory_stock(conn, whole_product_id) or InventoryStock(product_id=whole_product_id)
    updated = ledger.apply_to_section(
        stock,
        outlet_name=outlet.name,
        outlet_type=outlet.outlet_type,
        delta_slices=delta_slices,
        conversion_factor=conversion_factor,
    )
    return store.save_inventory_stock(conn, updated)


def credit_prods_req(conn, *, whole_product_id: str, delta_slices: int, conversion_factor: int) -> InventoryStock:
    stock = store.get_inventory_stock(conn, whole_product_id) or InventoryStock(product_id=whole_product_id)
    updated = ledger.with_prods_req(stock, delta_slices, conversion_factor)
    return store.update_inventory_stock(
        conn,
        whole_product_id,
        {"prods_req_whole": updated.prods_req_whole, "prods_req_slices": updated.prods_req_slices},
    )


def _apply_pair(
    conn,
    *,
    outlet: Outlet,
    pair: ProductPair,
    sales_date: str,
    sold_slices: int,
    received_slices: int,
    on_event: Optional[EventHandler],
    steps: _Steps,
    source: str = "sales",
) -> str:
    if store.has_sales_deduction(conn, outlet.name, pair.whole_product_id, sales_date, source):
        emit(on_event, DeductionEvent(SKIPPED, outlet.name, pair.whole_product_id, sales_date, sold_slices, "already deducted"))
        return SKIPPED

    whole, slices = ledger.split_slices(sold_slices, pair.conversion_factor)
    steps.run(
        f"ledger {outlet.name} {pair.whole_product_id} -{whole}W/{slices}S",
        deduct_from_ledger,
        conn,
        outlet=outlet,
        whole_product_id=pair.whole_product_id,
        whole_qty=whole,
        slice_qty=slices,
        conversion_factor=pair.conversion_factor,
    )
    emit(on_event, DeductionEvent(APPLIED, outlet.name, pair.whole_product_id, sales_date, sold_slices, "ledger slices"))

    if received_slices > 0:
        steps.run(
            f"prods req {pair.whole_product_id} +{received_slices}S",
            credit_prods_req,
            conn,
            whole_product_id=pair.whole_product_id,
            delta_slices=received_slices,
            conversion_factor=pair.conversion_factor,
        )
        emit(on_event, DeductionEvent(CREDITED, outlet.name, pair.whole_product_id, sales_date, received_slices, "prods req slices"))

    steps.run(
        f"{source} deduction {outlet.name}/{pair.whole_product_id}/{sales_date}",
        store.record_sales_deduction,
        conn,
        SalesDeduction(
            id=new_id(),
            outlet_name=outlet.name,
            product_id=pair.whole_product_id,
            sales_date=sales_date,
            whole_deducted=whole,
            slices_deducted=slices,
            ledger="production" if outlet.outlet_type == "production" else "outlet",
            source=source,
            prods_req_credited=received_slices,
        ),
    )
    return APPLIED


def _own_received(row) -> float:
    # split rows carry the partner's stock in `received`
    if row.split_units:
        own = next((s for s in row.split_units if s.product_id == row.product_id), None)
        if own is not None:
            return own.received or 0
    return row.received or 0


def _tally(report: DeductionReport, status: str, label: str) -> None:
    if status == APPLIED:
        report.applied.append(label)
    elif status == SKIPPED:
        report.skipped.append(label)
    elif status == INSUFFICIENT:
        report.insufficient.append(label)
        report.errors.append(f"Insufficient production stock for {label}; nothing deducted.")


def _refuse(report: DeductionReport, reason: str, outlet: str, sales_date: str, on_event) -> DeductionReport:
    report.refused = reason
    emit(on_event, DeductionEvent(REFUSED, outlet or "", "", sales_date or "", 0, reason))
    return report


def _target_outlet(conn, result_outlet: Optional[str], outlets: Optional[list[Outlet]]) -> Optional[Outlet]:
    if not result_outlet:
        return None
    pool = outlets if outlets is not None else store.load_outlets(conn)
    return next((o for o in pool if norm_key(o.name) == norm_key(result_outlet)), None)


def _precheck(conn, result: SalesReconcileResult, report, outlets, on_event) -> Optional[Outlet]:
    if not result.outlet_matched:
        _refuse(report, "Outlet not matched; no deductions posted.", result.outlet, result.sheet_date, on_event)
        return None
    if not result.date_matched or not result.sheet_date:
        _refuse(report, "No stock check for the sales date; no deductions posted.", result.outlet, result.sheet_date, on_event)
        return None
    outlet = _target_outlet(conn, result.outlet, outlets)
    if outlet is None:
        _refuse(report, f"Outlet {result.outlet} is not registered; no deductions posted.", result.outlet, result.sheet_date, on_event)
    return outlet


def apply_sales_deductions(
    conn,
    result: SalesReconcileResult,
    *,
    conversions=None,
    outlets: Optional[list[Outlet]] = None,
    on_event: Optional[EventHandler] = None,
) -> DeductionReport:
    """
    Post a reconciled sales sheet to the ledger and the production pool.

    Refuses (zero writes) unless both outlet and date matched. Whole and slice
    rows of one pair are deducted together, once per outlet/product/date.
    Raises PartialApplicationError if a write fails midway.
    """
    report = DeductionReport()
    outlet = _precheck(conn, result, report, outlets, on_event)
    if outlet is None:
        return report

    resolver = ConversionResolver(conversions if conversions is not None else store.load_conversions(conn))
    sales_date = result.sheet_date
    steps = _Steps()

    pairs: dict[str, tuple[ProductPair, int, int]] = {}
    others: dict[str, float] = {}
    for row in result.rows:
        if not row.product_id or not row.sold:
            continue
        pair = resolver(row.product_id)
        if pair is None:
            others[row.product_id] = others.get(row.product_id, 0) + row.sold
            continue
        _, sold, received = pairs.get(pair.whole_product_id, (pair, 0, 0))
        sold += ledger.quantity_to_slices(row.sold, pair, row.product_id)
        own_received = _own_received(row)
        if own_received:
            received += ledger.quantity_to_slices(own_received, pair, row.product_id)
        pairs[pair.whole_product_id] = (pair, sold, received)

    for whole_id, (pair, sold, received) in pairs.items():
        status = _apply_pair(
            conn,
            outlet=outlet,
            pair=pair,
            sales_date=sales_date,
            sold_slices=sold,
            received_slices=received,
            on_event=on_event,
            steps=steps,
        )
        _tally(report, status, f"{whole_id} @ {outlet.name}")

    checks = store.load_stock_checks(conn) if others else []
    all_outlets = outlets if outlets is not None else store.load_outlets(conn)
    for product_id, sold in others.items():
        status = deduct_fifo(
            conn,
            outlet_name=outlet.name,
            product_id=product_id,
            sales_date=sales_date,
            required=sold,
            stock_checks=checks,
            outlets=all_outlets,
            on_event=on_event,
            steps=steps,
        )
        _tally(report, status, f"{product_id} @ {outlet.name}")

    logger.info(
        "Sales deductions for %s on %s: applied=%s skipped=%s insufficient=%s",
        outlet.name,
        sales_date,
        len(report.applied),
        len(report.skipped),
        len(report.insufficient),
    )
    return report


def apply_raw_deductions(
    conn,
    raw: RawConsumptionResult,
    *,
    result: SalesReconcileResult,
    conversions=None,
    outlets: Optional[list[Outlet]] = None,
    on_event: Optional[EventHandler] = None,
) -> DeductionReport:
    """
    Post recipe-derived raw consumption, with the same guards as sales rows.

    Recorded under the "raw" source, so a product that is both sold and a
    recipe component is deducted for both.
    """
    report = DeductionReport()
    outlet = _precheck(conn, result, report, outlets, on_event)
    if outlet is None:
        return report

    resolver = ConversionResolver(conversions if conversions is not None else store.load_conversions(conn))
    sales_date = result.sheet_date
    steps = _Steps()
    checks = store.load_stock_checks(conn)
    all_outlets = outlets if outlets is not None else store.load_outlets(conn)

    for row in raw.rows:
        if row.consumed <= 0:
            continue
        pair = resolver(row.raw_product_id)
        if pair is not None:
            status = _apply_pair(
                conn,
                outlet=outlet,
                pair=pair,
                sales_date=sales_date,
                sold_slices=ledger.quantity_to_slices(row.consumed, pair, row.raw_product_id),
                received_slices=0,
                on_event=on_event,
                steps=steps,
                source="raw",
            )
        else:
            status = deduct_fifo(
                conn,
                outlet_name=outlet.name,
                product_id=row.raw_product_id,
                sales_date=sales_date,
                required=row.consumed,
                stock_checks=checks,
                outlets=all_outlets,
                on_event=on_event,
                steps=steps,
                source="raw",
            )
        _tally(report, status, f"{row.raw_name} @ {outlet.name}")
    return report
