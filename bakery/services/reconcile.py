from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from bakery.config import SALES_LAYOUT, SalesSheetLayout
from bakery.models import (
    Outlet,
    Product,
    ProductConversion,
    ProductRequest,
    SalesReconcileResult,
    SalesRow,
    SplitUnit,
    StockCheck,
    StockCount,
)
from bakery.services.catalog import ConversionResolver, Found, ProductCatalog
from bakery.spreadsheet import read_all_sheets, read_first_sheet
from bakery.utils import norm_key, normalize_date, r3, to_number

logger = logging.getLogger(__name__)


def expected_closing(opening: float, received: float, wastage: float, sold: float) -> float:
    return opening + received - wastage - sold


def _match_outlet(
    outlet_from_sheet: Optional[str],
    stock_checks: list[StockCheck],
    outlets: Optional[Iterable[Outlet]],
) -> Optional[str]:
    if not outlet_from_sheet:
        return None
    key = norm_key(outlet_from_sheet)
    names = [o.name for o in outlets] if outlets is not None else [c.outlet for c in stock_checks]
    return next((n for n in names if norm_key(n) == key), None)


def _pick_check(stock_checks: list[StockCheck], outlet: str, sheet_date: Optional[str]) -> tuple[Optional[StockCheck], Optional[StockCheck]]:
    """(same-date check, latest check) for the outlet; most recent timestamp wins."""
    candidates = sorted(
        (c for c in stock_checks if norm_key(c.outlet) == norm_key(outlet)),
        key=lambda c: c.timestamp,
        reverse=True,
    )
    latest = candidates[0] if candidates else None
    same_date = next((c for c in candidates if sheet_date and c.date == sheet_date), None)
    return same_date, latest


def _values(count: Optional[StockCount], extra_received: float = 0) -> tuple[float, float, float, float]:
    if count is None:
        return 0, 0 + extra_received, 0, 0
    return (
        count.opening_stock or 0,
        (count.received_stock or 0) + extra_received,
        count.wastage or 0,
        count.quantity or 0,
    )


def _split_units(
    product: Product,
    sold: float,
    own: tuple[float, float, float, float],
    check: StockCheck,
    catalog: ProductCatalog,
    resolver: ConversionResolver,
    extra: Mapping[str, float],
) -> tuple[tuple[float, float, float, float], list[SplitUnit]]:
    """
    Whole/slice breakdown when the partner product also holds stock on the check.

    Returns the combined totals in the row's own unit plus one SplitUnit per unit.
    """
    pair = resolver(product.id)
    if pair is None:
        return own, []
    partner_id = pair.slices_product_id if pair.is_whole(product.id) else pair.whole_product_id
    partner = catalog.get(partner_id)
    partner_count = check.count_for(partner_id)
    if not isinstance(partner, Found) or partner_count is None:
        return own, []

    alt = _values(partner_count, extra.get(partner_id, 0))
    if alt[0] + alt[1] <= 0:
        return own, []

    if pair.is_whole(product.id):
        combined = tuple(r3(a + b / pair.conversion_factor) for a, b in zip(own, alt))
    else:
        combined = tuple(a + b * pair.conversion_factor for a, b in zip(own, alt))

    splits = []
    for p, (o, rcv, w, c), s in ((product, own, sold), (partner.product, alt, 0)):
        exp = expected_closing(o, rcv, w, s)
        splits.append(
            SplitUnit(
                unit=p.unit,
                opening=o,
                received=rcv,
                wastage=w,
                closing=c,
                expected_closing=exp,
                discrepancy=c - exp,
                product_id=p.id,
            )
        )
    return combined, splits


def reconcile_sales(
    data: bytes,
    stock_checks: Iterable[StockCheck],
    products: Iterable[Product],
    *,
    conversions: Iterable[ProductConversion] = (),
    outlets: Optional[Iterable[Outlet]] = None,
    requests_received_by_product_id: Optional[Mapping[str, float]] = None,
    layout: SalesSheetLayout = SALES_LAYOUT,
) -> SalesReconcileResult:
    """
    Match a sales sheet against the same-date stock check of its outlet.

    Per-row problems go to `errors`; only an unreadable workbook raises
    (SpreadsheetError).
    """
    ws = read_first_sheet(data)
    checks = list(stock_checks)
    catalog = ProductCatalog(products)
    resolver = ConversionResolver(conversions)
    extra = dict(requests_received_by_product_id or {})

    result = SalesReconcileResult()
    result.outlet_from_sheet = ws.text(layout.outlet_cell)
    result.sheet_date = ws.date(layout.date_cell)

    if not result.outlet_from_sheet:
        result.errors.append(f"Missing outlet in sheet cell {layout.outlet_cell}.")
    if not result.sheet_date:
        found = ws.raw_date(layout.date_cell) or "(empty)"
        result.errors.append(f"Missing or invalid sales date in sheet cell {layout.date_cell}. Found: \"{found}\".")

    matched_name = _match_outlet(result.outlet_from_sheet, checks, list(outlets) if outlets is not None else None)
    matched_check: Optional[StockCheck] = None
    if matched_name:
        result.outlet_matched = True
        result.matched_outlet_name = matched_name
        matched_check, latest = _pick_check(checks, matched_name, result.sheet_date)
        if matched_check is not None:
            result.stock_check_date = matched_check.date
        elif latest is not None:
            result.stock_check_date = latest.date
    elif result.outlet_from_sheet:
        known = sorted({c.outlet for c in checks if c.outlet})
        result.errors.append(
            f"No outlet matches \"{result.outlet_from_sheet}\" from {layout.outlet_cell}. "
            f"Outlets with stock checks: {', '.join(known) or 'None'}."
        )

    result.date_matched = matched_check is not None
    if result.outlet_matched and result.sheet_date and not result.date_matched:
        result.errors.append(
            f"No stock check for {result.matched_outlet_name} on {result.sheet_date}"
            + (f" (latest is {result.stock_check_date})." if result.stock_check_date else ".")
            + " Sold quantities are listed without reconciliation."
        )

    last = min(layout.last_row, max(ws.max_row, layout.first_row))
    for i in range(layout.first_row, last + 1):
        name = ws.text(f"{layout.name_col}{i}")
        unit = ws.text(f"{layout.unit_col}{i}")
        sold_raw = ws.number(f"{layout.sold_col}{i}")

        if not name and not unit and sold_raw is None:
            continue
        sold = sold_raw or 0

        if not name or not unit:
            result.rows.append(SalesRow(name=name or "", unit=unit or "", sold=sold, row_index=i, notes="Missing product name or unit"))
            result.errors.append(f"Row {i}: missing product name or unit.")
            continue

        found = catalog.find(name, unit)
        if not isinstance(found, Found):
            result.rows.append(SalesRow(name=name, unit=unit, sold=sold, row_index=i, notes="Product not found in master list"))
            result.errors.append(f"Row {i}: product \"{name}\" ({unit}) not found in master list.")
            continue
        product = found.product

        row = SalesRow(name=name, unit=unit, sold=sold, product_id=product.id, row_index=i)
        if matched_check is not None:
            own = _values(matched_check.count_for(product.id), extra.get(product.id, 0))
            (opening, received, wastage, closing), splits = _split_units(
                product, sold, own, matched_check, catalog, resolver, extra
            )
            exp = expected_closing(opening, received, wastage, sold)
            row.opening = opening
            row.received = received
            row.wastage = wastage
            row.closing = closing
            row.expected_closing = r3(exp)
            row.discrepancy = r3(closing - exp)
            row.split_units = splits or None
        result.rows.append(row)

    logger.info(
        "Reconciled %s rows for %s on %s (outlet_matched=%s, date_matched=%s, errors=%s)",
        len(result.rows),
        result.outlet,
        result.sheet_date,
        result.outlet_matched,
        result.date_matched,
        len(result.errors),
    )
    return result


# -------------------------
# Received-quantity overrides
# -------------------------

def _header_index(headers: list[str], *needles: str) -> int:
    for n in needles:
        for i, h in enumerate(headers):
            if n in h:
                return i
    return -1


def _cell(row: tuple, idx: int):
    return row[idx] if 0 <= idx < len(row) else None


def parse_requests_received(
    data: bytes,
    products: Iterable[Product],
    *,
    outlet: Optional[str] = None,
    date: Optional[str] = None,
) -> dict[str, float]:
    """
    Received quantities per product id from a transfer/request export.

    Every sheet is scanned; the first row holds the headers (product, unit,
    quantity, to outlet, date). Rows for other outlets or dates are ignored.
    """
    catalog = ProductCatalog(products)
    received: dict[str, float] = {}

    for ws in read_all_sheets(data):
        rows = list(ws.rows())
        if not rows:
            continue
        headers = [norm_key(h) for h in rows[0]]
        i_product = _header_index(headers, "product")
        i_qty = _header_index(headers, "quantity", "qty")
        i_unit = _header_index(headers, "unit")
        i_to = _header_index(headers, "to outlet")
        i_date = _header_index(headers, "date")
        if i_product == -1 or i_qty == -1:
            logger.info("Sheet %s has no product/quantity headers, skipped", ws.title)
            continue

        for row in rows[1:]:
            name = _cell(row, i_product)
            qty = to_number(_cell(row, i_qty))
            if not name or not qty:
                continue

            to_outlet = _cell(row, i_to)
            if outlet and to_outlet and norm_key(to_outlet) != norm_key(outlet):
                continue
            row_date = _cell(row, i_date)
            if date and row_date and normalize_date(row_date) != date:
                continue

            found = catalog.find(str(name), str(_cell(row, i_unit) or "") or None)
            if not isinstance(found, Found):
                continue
            pid = found.product.id
            received[pid] = received.get(pid, 0) + qty

    return received


def requests_received_by_product(
    requests: Iterable[ProductRequest],
    *,
    outlet: str,
    date: str,
) -> dict[str, float]:
    """Approved requests into `outlet` dated `date`, summed per product."""
    received: dict[str, float] = {}
    for r in requests:
        if r.status != "approved":
            continue
        if norm_key(r.to_outlet) != norm_key(outlet) or r.request_date != date:
            continue
        received[r.product_id] = received.get(r.product_id, 0) + r.quantity
    return received
