from __future__ import annotations

import random
from datetime import date, datetime
from io import BytesIO
from typing import Iterable, Optional

from openpyxl import Workbook

from bakery.config import KITCHEN_LAYOUT, SALES_LAYOUT, KitchenSheetLayout, SalesSheetLayout
from bakery.db import ensure_schema, q
from bakery.models import InventoryStock, OutletStock, RecipeComponent, StockCount
from bakery.services import store
from bakery.utils import iso_today

DEFAULT_OUTLETS = [
    ("Central Kitchen", "production", "Industrial Area"),
    ("Downtown Cafe", "sales", "CBD"),
    ("Mall Kiosk", "sales", "Westgate Mall"),
]

# name, unit, type, category
DEFAULT_PRODUCTS = [
    ("Chocolate Cake", "whole", "menu", "Cakes"),
    ("Chocolate Cake", "slice", "menu", "Cakes"),
    ("Carrot Cake", "whole", "menu", "Cakes"),
    ("Carrot Cake", "slice", "menu", "Cakes"),
    ("Croissant", "pcs", "menu", "Pastries"),
    ("Sourdough Loaf", "pcs", "kitchen", "Bread"),
    ("Flour", "kg", "raw", "Dry Goods"),
    ("Butter", "kg", "raw", "Dairy"),
    ("Sugar", "kg", "raw", "Dry Goods"),
]

DEFAULT_CONVERSIONS = [
    ("Chocolate Cake", 8),
    ("Carrot Cake", 10),
]

# menu product (name, unit) -> [(raw name, qty per unit)]
DEFAULT_RECIPES = {
    ("Croissant", "pcs"): [("Flour", 0.05), ("Butter", 0.03)],
    ("Sourdough Loaf", "pcs"): [("Flour", 0.5)],
}


def _product_ids(conn) -> dict[tuple[str, str], str]:
    return {(str(r["name"]), str(r["unit"])): str(r["id"]) for r in q(conn, "SELECT id, name, unit FROM products")}


def upsert_reference_data(conn) -> None:
    ensure_schema(conn)

    known_outlets = {o.name for o in store.load_outlets(conn)}
    for name, outlet_type, location in DEFAULT_OUTLETS:
        if name not in known_outlets:
            store.add_outlet(conn, name=name, outlet_type=outlet_type, location=location)

    ids = _product_ids(conn)
    for name, unit, ptype, category in DEFAULT_PRODUCTS:
        if (name, unit) not in ids:
            ids[(name, unit)] = store.add_product(conn, name=name, unit=unit, type=ptype, category=category)

    pairs = {(c.from_product_id, c.to_product_id) for c in store.load_conversions(conn)}
    for name, factor in DEFAULT_CONVERSIONS:
        whole_id, slice_id = ids[(name, "whole")], ids[(name, "slice")]
        if (whole_id, slice_id) not in pairs:
            store.add_conversion(conn, whole_product_id=whole_id, slice_product_id=slice_id, conversion_factor=factor)

    with_recipe = {r.menu_product_id for r in store.load_recipes(conn)}
    for key, components in DEFAULT_RECIPES.items():
        if ids[key] in with_recipe:
            continue
        store.add_recipe(
            conn,
            menu_product_id=ids[key],
            components=[RecipeComponent(raw_product_id=ids[(raw, "kg")], quantity_per_unit=qty) for raw, qty in components],
        )


def wipe_all(conn) -> None:
    # Keep schema, delete data (order matters for FKs).
    for t in [
        "reconciliation_history",
        "sales_deduction_allocations",
        "sales_deductions",
        "stock_counts",
        "stock_checks",
        "product_requests",
        "outlet_stocks",
        "inventory_stocks",
        "recipe_components",
        "recipes",
        "product_conversions",
        "products",
        "outlets",
    ]:
        conn.execute(f"DELETE FROM {t};")
    conn.commit()


def load_demo_data(conn, *, seed: int = 7, check_date: Optional[str] = None) -> str:
    """Reference data, today's stock checks and a starting ledger. Returns the check date."""
    random.seed(seed)
    upsert_reference_data(conn)
    ids = _product_ids(conn)
    day = check_date or iso_today()

    kitchen_counts = [
        StockCount(product_id=ids[(name, "kg")], quantity=0, opening_stock=5, received_stock=random.randint(20, 40), wastage=1)
        for name in ("Flour", "Butter", "Sugar")
    ]
    kitchen_counts.append(
        StockCount(product_id=ids[("Croissant", "pcs")], quantity=0, opening_stock=0, received_stock=120, wastage=0)
    )
    store.save_stock_check(conn, store.new_stock_check("Central Kitchen", day, kitchen_counts, completed_by="demo"))

    cafe_counts = []
    for name, unit in (("Chocolate Cake", "whole"), ("Carrot Cake", "whole"), ("Croissant", "pcs")):
        opening = random.randint(2, 6)
        received = random.randint(4, 10)
        cafe_counts.append(
            StockCount(
                product_id=ids[(name, unit)],
                quantity=max(0, opening + received - random.randint(3, 8)),
                opening_stock=opening,
                received_stock=received,
                wastage=0,
            )
        )
    cafe_counts.append(
        StockCount(product_id=ids[("Chocolate Cake", "slice")], quantity=2, opening_stock=4, received_stock=0, wastage=1)
    )
    store.save_stock_check(conn, store.new_stock_check("Downtown Cafe", day, cafe_counts, completed_by="demo"))

    for name in ("Chocolate Cake", "Carrot Cake"):
        store.save_inventory_stock(
            conn,
            InventoryStock(
                product_id=ids[(name, "whole")],
                production_whole=random.randint(10, 20),
                outlet_stocks=(
                    OutletStock(outlet_name="Downtown Cafe", whole=random.randint(3, 8)),
                    OutletStock(outlet_name="Mall Kiosk", whole=random.randint(1, 4)),
                ),
            ),
        )
    return day


# -------------------------
# Sample workbooks
# -------------------------

def _to_bytes(wb: Workbook) -> bytes:
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def build_sales_sheet(
    outlet: Optional[str],
    sales_date,
    lines: Iterable[tuple],
    *,
    layout: SalesSheetLayout = SALES_LAYOUT,
) -> bytes:
    """A POS-style sales export: outlet and date in the header cells, one (name, unit, sold) per row."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Sales"
    if outlet is not None:
        ws[layout.outlet_cell] = outlet
    if sales_date is not None:
        ws[layout.date_cell] = sales_date
    for i, (name, unit, sold) in enumerate(lines, start=layout.first_row):
        ws[f"{layout.name_col}{i}"] = name
        ws[f"{layout.unit_col}{i}"] = unit
        ws[f"{layout.sold_col}{i}"] = sold
    return _to_bytes(wb)


def build_kitchen_sheet(
    outlet: Optional[str],
    production_date,
    lines: Iterable[tuple],
    *,
    outlet_column: str = "G",
    layout: KitchenSheetLayout = KITCHEN_LAYOUT,
) -> bytes:
    """Kitchen production export; quantities sit under the outlet's header in row 9."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Production"
    if isinstance(production_date, (date, datetime)):
        ws[layout.date_cell] = production_date
    elif production_date is not None:
        ws[layout.date_cell] = f"Date From {production_date}"
    if outlet is not None:
        ws[layout.outlet_cell] = outlet
        ws[f"{outlet_column}{layout.header_row}"] = outlet
    ws[f"{layout.name_col}{layout.header_row}"] = "Product"
    ws[f"{layout.unit_col}{layout.header_row}"] = "Unit"
    for i, (name, unit, qty) in enumerate(lines, start=layout.header_row + 1):
        ws[f"{layout.name_col}{i}"] = name
        ws[f"{layout.unit_col}{i}"] = unit
        ws[f"{outlet_column}{i}"] = qty
    return _to_bytes(wb)


def build_requests_sheet(rows: Iterable[tuple]) -> bytes:
    """Transfer export: (product, unit, quantity, to outlet, date) per row."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Requests"
    ws.append(["Product", "Unit", "Quantity", "From Outlet", "To Outlet", "Date"])
    for product, unit, qty, to_outlet, when in rows:
        ws.append([product, unit, qty, "Central Kitchen", to_outlet, when])
    return _to_bytes(wb)


def sample_sales_sheet(*, outlet: str = "Downtown Cafe", sales_date: Optional[str] = None) -> bytes:
    """Sales sheet for the demo cafe, dated like the demo stock checks (DD/MM/YYYY)."""
    day = date.fromisoformat(sales_date or iso_today())
    return build_sales_sheet(
        outlet,
        day.strftime("%d/%m/%Y"),
        [
            ("Chocolate Cake", "whole", 2),
            ("Chocolate Cake", "slice", 5),
            ("Carrot Cake", "whole", 3),
            ("Croissant", "pcs", 40),
        ],
    )
