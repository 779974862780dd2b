from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from bakery.errors import SpreadsheetError
from bakery.events import EventHandler
from bakery.models import KitchenStockCheckResult, RawConsumptionResult, SalesReconcileResult
from bakery.services import history, store
from bakery.services.deductions import DeductionReport, apply_raw_deductions, apply_sales_deductions
from bakery.services.kitchen import reconcile_kitchen
from bakery.services.raw_materials import raw_consumption_from_result
from bakery.services.reconcile import parse_requests_received, reconcile_sales, requests_received_by_product

logger = logging.getLogger(__name__)


@dataclass
class UploadOutcome:
    result: SalesReconcileResult
    raw: Optional[RawConsumptionResult] = None
    sales_report: Optional[DeductionReport] = None
    raw_report: Optional[DeductionReport] = None
    history_written: bool = False
    synced: bool = False


def reconcile_upload(
    conn,
    data: bytes,
    *,
    requests_data: Optional[bytes] = None,
    use_approved_requests: bool = False,
) -> SalesReconcileResult:
    """
    Reconcile only (no writes). An unreadable workbook becomes a result with errors.

    Extra received quantities come from the requests export when given, or
    from approved requests into the outlet on the sheet date when asked for.
    """
    products = store.load_products(conn)
    checks = store.load_stock_checks(conn)
    conversions = store.load_conversions(conn)
    outlets = store.load_outlets(conn)
    try:
        first = reconcile_sales(data, checks, products, conversions=conversions, outlets=outlets)
        if not first.outlet or not first.sheet_date:
            return first
        if requests_data is not None:
            extra = parse_requests_received(requests_data, products, outlet=first.outlet, date=first.sheet_date)
        elif use_approved_requests:
            extra = requests_received_by_product(store.load_requests(conn), outlet=first.outlet, date=first.sheet_date)
        else:
            extra = {}
        if not extra:
            return first
        return reconcile_sales(
            data,
            checks,
            products,
            conversions=conversions,
            outlets=outlets,
            requests_received_by_product_id=extra,
        )
    except SpreadsheetError as e:
        logger.warning("Sales upload rejected: %s", e)
        return SalesReconcileResult(errors=[str(e)])


def process_sales_upload(
    conn,
    data: bytes,
    *,
    requests_data: Optional[bytes] = None,
    use_approved_requests: bool = False,
    apply_deductions: bool = True,
    on_event: Optional[EventHandler] = None,
    trigger_sync: Optional[Callable[[], None]] = None,
) -> UploadOutcome:
    """Reconcile, compute raw consumption, post deductions, record history, then sync."""
    result = reconcile_upload(
        conn, data, requests_data=requests_data, use_approved_requests=use_approved_requests
    )
    outcome = UploadOutcome(result=result)
    if not result.rows and not result.outlet_matched:
        return outcome

    outlets = store.load_outlets(conn)
    if result.outlet_matched and result.date_matched:
        outcome.raw = raw_consumption_from_result(
            result,
            store.load_stock_checks(conn),
            store.load_products(conn),
            store.load_recipes(conn),
            outlets=outlets,
        )

    if apply_deductions:
        conversions = store.load_conversions(conn)
        outcome.sales_report = apply_sales_deductions(
            conn, result, conversions=conversions, outlets=outlets, on_event=on_event
        )
        if outcome.raw is not None and outcome.raw.rows:
            outcome.raw_report = apply_raw_deductions(
                conn, outcome.raw, result=result, conversions=conversions, outlets=outlets, on_event=on_event
            )

    if result.outlet_matched and result.date_matched:
        outcome.history_written = history.upsert(conn, result)

    if trigger_sync is not None and outcome.history_written:
        trigger_sync()
        outcome.synced = True
    return outcome


def process_kitchen_upload(
    conn,
    data: bytes,
    *,
    manual_stock_data: Optional[bytes] = None,
) -> KitchenStockCheckResult:
    products = store.load_products(conn)
    try:
        manual = None
        if manual_stock_data is not None:
            manual = parse_requests_received(manual_stock_data, products)
        return reconcile_kitchen(
            data,
            store.load_stock_checks(conn),
            products,
            manual_stock_by_product_id=manual,
        )
    except SpreadsheetError as e:
        logger.warning("Kitchen upload rejected: %s", e)
        return KitchenStockCheckResult(errors=[str(e)])
