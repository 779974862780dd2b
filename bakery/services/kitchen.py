from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from bakery.config import KITCHEN_LAYOUT, KitchenSheetLayout
from bakery.models import KitchenDiscrepancy, KitchenStockCheckResult, Product, StockCheck
from bakery.services.catalog import Found, ProductCatalog
from bakery.spreadsheet import read_first_sheet
from bakery.utils import norm_key, normalize_date, r3

logger = logging.getLogger(__name__)


def _production_date(raw) -> Optional[str]:
    # "Date From 21/10/2025" or a native date cell
    if isinstance(raw, str):
        low = raw.lower()
        if "date from" in low:
            raw = raw[low.index("date from") + len("date from"):]
    return normalize_date(raw)


def reconcile_kitchen(
    data: bytes,
    stock_checks: Iterable[StockCheck],
    products: Iterable[Product],
    *,
    manual_stock_by_product_id: Optional[Mapping[str, float]] = None,
    layout: KitchenSheetLayout = KITCHEN_LAYOUT,
) -> KitchenStockCheckResult:
    """
    Compare declared kitchen production with stock received on the same-date check.

    discrepancy = kitchen production - received in stock check. With a manual
    override map, its quantities replace the stock check's received values.
    """
    ws = read_first_sheet(data)
    result = KitchenStockCheckResult()

    result.production_date = _production_date(ws.value(layout.date_cell))
    if not result.production_date:
        found = ws.raw_date(layout.date_cell) or "(empty)"
        result.errors.append(
            f"Could not parse production date from cell {layout.date_cell}. Found: \"{found}\". "
            "Expected \"Date From DD/MM/YYYY\"."
        )
        return result
    result.stock_check_date = result.production_date

    result.outlet_name = ws.text(layout.outlet_cell)
    if not result.outlet_name:
        result.errors.append(f"Missing outlet name in cell {layout.outlet_cell}.")
        return result

    candidates = sorted(
        (
            c
            for c in stock_checks
            if c.date == result.stock_check_date and norm_key(c.outlet) == norm_key(result.outlet_name)
        ),
        key=lambda c: c.timestamp,
        reverse=True,
    )
    if not candidates:
        result.errors.append(f"No stock check found for outlet \"{result.outlet_name}\" on {result.stock_check_date}.")
        return result
    check = candidates[0]

    col = ws.find_in_row(layout.header_row, result.outlet_name, layout.max_columns)
    if col is None:
        result.errors.append(
            f"Could not find outlet \"{result.outlet_name}\" in row {layout.header_row} of the production sheet."
        )
        return result

    if manual_stock_by_product_id is not None:
        received_by_id = dict(manual_stock_by_product_id)
    else:
        received_by_id = {c.product_id: c.received_stock or 0 for c in check.counts}

    catalog = ProductCatalog(products)
    last = min(layout.last_row, max(ws.max_row, layout.first_row))
    for i in range(layout.first_row, last + 1):
        name = ws.text(f"{layout.name_col}{i}")
        unit = ws.text(f"{layout.unit_col}{i}")
        qty = ws.number(f"{col}{i}")
        if not name or not unit or qty is None:
            continue

        found = catalog.find(name, unit)
        if not isinstance(found, Found):
            result.errors.append(f"Row {i}: product \"{name}\" ({unit}) not found in master list.")
            result.discrepancies.append(
                KitchenDiscrepancy(
                    product_name=name,
                    unit=unit,
                    opening_stock=0,
                    received_in_stock_check=0,
                    kitchen_production=qty,
                    discrepancy=qty,
                )
            )
            continue

        pid = found.product.id
        count = check.count_for(pid)
        received = received_by_id.get(pid, 0)
        result.discrepancies.append(
            KitchenDiscrepancy(
                product_name=name,
                unit=unit,
                opening_stock=(count.opening_stock or 0) if count else 0,
                received_in_stock_check=received,
                kitchen_production=qty,
                discrepancy=r3(qty - received),
                product_id=pid,
            )
        )

    result.matched = True
    logger.info(
        "Kitchen check for %s on %s: %s lines, %s errors",
        result.outlet_name,
        result.production_date,
        len(result.discrepancies),
        len(result.errors),
    )
    return result
