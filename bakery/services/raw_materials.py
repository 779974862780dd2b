from __future__ import annotations

import logging
from typing import Iterable, Optional

from bakery.models import (
    Outlet,
    Product,
    ProductConversion,
    RawConsumptionResult,
    RawConsumptionRow,
    Recipe,
    SalesReconcileResult,
    StockCheck,
)
from bakery.services.deductions import available_net_stock, production_checks
from bakery.services.reconcile import reconcile_sales
from bakery.utils import norm_key, r3

logger = logging.getLogger(__name__)

RECIPE_TYPES = {"menu", "kitchen"}


def _sold_by_product(result: SalesReconcileResult) -> dict[str, float]:
    sold: dict[str, float] = {}
    for row in result.rows:
        if row.product_id:
            sold[row.product_id] = sold.get(row.product_id, 0) + (row.sold or 0)
    return sold


def raw_consumption_from_result(
    result: SalesReconcileResult,
    stock_checks: Iterable[StockCheck],
    products: Iterable[Product],
    recipes: Iterable[Recipe],
    *,
    outlets: Optional[Iterable[Outlet]] = None,
) -> RawConsumptionResult:
    """
    Raw materials consumed by the sold menu/kitchen products of a reconciled sheet.

    Consumption is summed per raw product across every recipe that uses it.
    total_stock is the production pool still available (None when no
    production check counts the raw product).
    """
    checks = list(stock_checks)
    products_by_id = {p.id: p for p in products}
    recipe_by_menu = {r.menu_product_id: r for r in recipes}

    totals: dict[str, float] = {}
    for pid, sold in _sold_by_product(result).items():
        p = products_by_id.get(pid)
        if p is None or p.type not in RECIPE_TYPES or sold <= 0:
            continue
        if not p.sales_based_raw_calc:
            continue
        recipe = recipe_by_menu.get(pid)
        if recipe is None:
            continue
        for c in recipe.components:
            totals[c.raw_product_id] = totals.get(c.raw_product_id, 0) + sold * c.quantity_per_unit

    same_date = None
    if result.date_matched and result.outlet:
        same_date = next(
            (c for c in sorted(checks, key=lambda c: c.timestamp, reverse=True)
             if norm_key(c.outlet) == norm_key(result.outlet) and c.date == result.sheet_date),
            None,
        )
    pool = production_checks(checks, outlets) if outlets is not None else []

    rows: list[RawConsumptionRow] = []
    for raw_id, consumed in totals.items():
        raw = products_by_id.get(raw_id)
        if raw is None:
            logger.warning("Recipe component %s is not in the product list, skipped", raw_id)
            continue
        count = same_date.count_for(raw_id) if same_date is not None else None
        total = available_net_stock(pool, raw_id)
        rows.append(
            RawConsumptionRow(
                raw_product_id=raw_id,
                raw_name=raw.name,
                raw_unit=raw.unit,
                consumed=r3(consumed),
                opening_stock=count.opening_stock if count else None,
                received_stock=count.received_stock if count else None,
                total_stock=r3(total) if total is not None else None,
                expected_closing=r3(total - consumed) if total is not None else None,
            )
        )

    rows.sort(key=lambda r: r.raw_name.lower())
    return RawConsumptionResult(
        outlet=result.outlet,
        date=result.stock_check_date or result.sheet_date,
        rows=rows,
    )


def compute_raw_consumption(
    data: bytes,
    stock_checks: Iterable[StockCheck],
    products: Iterable[Product],
    recipes: Iterable[Recipe],
    *,
    conversions: Iterable[ProductConversion] = (),
    outlets: Optional[Iterable[Outlet]] = None,
) -> RawConsumptionResult:
    checks = list(stock_checks)
    products = list(products)
    outlets = list(outlets) if outlets is not None else None
    result = reconcile_sales(data, checks, products, conversions=conversions, outlets=outlets)
    return raw_consumption_from_result(result, checks, products, recipes, outlets=outlets)
