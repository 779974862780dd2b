from __future__ import annotations

from typing import Any, Iterable, Optional

from bakery.db import q, x, xmany
from bakery.models import (
    FifoAllocation,
    InventoryStock,
    Outlet,
    OUTLET_TYPES,
    OutletStock,
    Product,
    ProductConversion,
    ProductRequest,
    PRODUCT_TYPES,
    Recipe,
    RecipeComponent,
    SalesDeduction,
    StockCheck,
    StockCount,
)
from bakery.utils import epoch_now, iso_now, new_id, norm_key


def _opt_float(v: Any) -> Optional[float]:
    if v is None:
        return None
    f = float(v)
    return int(f) if f.is_integer() else f


# -------------------------
# Loaders
# -------------------------

def load_products(conn) -> list[Product]:
    rows = q(conn, "SELECT * FROM products ORDER BY name, unit")
    return [
        Product(
            id=str(r["id"]),
            name=str(r["name"]),
            unit=str(r["unit"]),
            type=str(r["type"]),
            category=r["category"],
            track_in_stock=bool(r["track_in_stock"]),
            sales_based_raw_calc=bool(r["sales_based_raw_calc"]),
        )
        for r in rows
    ]


def load_conversions(conn) -> list[ProductConversion]:
    rows = q(conn, "SELECT * FROM product_conversions")
    return [
        ProductConversion(
            id=str(r["id"]),
            from_product_id=str(r["from_product_id"]),
            to_product_id=str(r["to_product_id"]),
            conversion_factor=int(r["conversion_factor"]),
        )
        for r in rows
    ]


def load_outlets(conn) -> list[Outlet]:
    rows = q(conn, "SELECT * FROM outlets ORDER BY name")
    return [
        Outlet(id=str(r["id"]), name=str(r["name"]), location=r["location"], outlet_type=str(r["outlet_type"]))
        for r in rows
    ]


def get_outlet(conn, name: str) -> Optional[Outlet]:
    for o in load_outlets(conn):
        if norm_key(o.name) == norm_key(name):
            return o
    return None


def load_recipes(conn) -> list[Recipe]:
    recipes = q(conn, "SELECT * FROM recipes")
    comps = q(conn, "SELECT * FROM recipe_components ORDER BY id")
    by_recipe: dict[str, list[RecipeComponent]] = {}
    for c in comps:
        by_recipe.setdefault(str(c["recipe_id"]), []).append(
            RecipeComponent(raw_product_id=str(c["raw_product_id"]), quantity_per_unit=float(c["quantity_per_unit"]))
        )
    return [
        Recipe(id=str(r["id"]), menu_product_id=str(r["menu_product_id"]), components=tuple(by_recipe.get(str(r["id"]), [])))
        for r in recipes
    ]


def _counts_for(conn, check_id: str) -> list[StockCount]:
    rows = q(conn, "SELECT * FROM stock_counts WHERE check_id=? ORDER BY id", (check_id,))
    return [
        StockCount(
            product_id=str(r["product_id"]),
            quantity=_opt_float(r["quantity"]) or 0,
            opening_stock=_opt_float(r["opening_stock"]),
            received_stock=_opt_float(r["received_stock"]),
            wastage=_opt_float(r["wastage"]),
            notes=r["notes"],
        )
        for r in rows
    ]


def _check_from_row(conn, r) -> StockCheck:
    return StockCheck(
        id=str(r["id"]),
        outlet=str(r["outlet"]),
        date=str(r["date"]),
        timestamp=float(r["timestamp"]),
        counts=_counts_for(conn, str(r["id"])),
        completed_by=r["completed_by"],
        done_date=r["done_date"],
        replace_all_inventory=bool(r["replace_all_inventory"]),
    )


def load_stock_checks(conn) -> list[StockCheck]:
    rows = q(conn, "SELECT * FROM stock_checks ORDER BY timestamp DESC")
    return [_check_from_row(conn, r) for r in rows]


def get_stock_check(conn, check_id: str) -> Optional[StockCheck]:
    rows = q(conn, "SELECT * FROM stock_checks WHERE id=?", (check_id,))
    return _check_from_row(conn, rows[0]) if rows else None


def latest_check_for_outlet(conn, outlet: str, date: Optional[str] = None) -> Optional[StockCheck]:
    checks = [c for c in load_stock_checks(conn) if norm_key(c.outlet) == norm_key(outlet)]
    if date is not None:
        checks = [c for c in checks if c.date == date]
    return checks[0] if checks else None


def load_requests(conn) -> list[ProductRequest]:
    rows = q(conn, "SELECT * FROM product_requests ORDER BY request_date")
    return [
        ProductRequest(
            id=str(r["id"]),
            product_id=str(r["product_id"]),
            quantity=float(r["quantity"]),
            from_outlet=str(r["from_outlet"]),
            to_outlet=str(r["to_outlet"]),
            status=str(r["status"]),
            request_date=r["request_date"],
            priority=str(r["priority"]),
        )
        for r in rows
    ]


def load_inventory_stocks(conn) -> list[InventoryStock]:
    rows = q(conn, "SELECT * FROM inventory_stocks ORDER BY product_id")
    return [_inventory_from_row(conn, r) for r in rows]


def _inventory_from_row(conn, r) -> InventoryStock:
    outs = q(conn, "SELECT * FROM outlet_stocks WHERE product_id=? ORDER BY outlet_name", (r["product_id"],))
    return InventoryStock(
        product_id=str(r["product_id"]),
        production_whole=int(r["production_whole"]),
        production_slices=int(r["production_slices"]),
        prods_req_whole=int(r["prods_req_whole"]),
        prods_req_slices=int(r["prods_req_slices"]),
        outlet_stocks=tuple(
            OutletStock(outlet_name=str(o["outlet_name"]), whole=int(o["whole"]), slices=int(o["slices"])) for o in outs
        ),
    )


def get_inventory_stock(conn, product_id: str) -> Optional[InventoryStock]:
    rows = q(conn, "SELECT * FROM inventory_stocks WHERE product_id=?", (product_id,))
    return _inventory_from_row(conn, rows[0]) if rows else None


def load_sales_deductions(conn, *, sales_date: Optional[str] = None) -> list[SalesDeduction]:
    if sales_date is None:
        rows = q(conn, "SELECT * FROM sales_deductions ORDER BY updated_at")
    else:
        rows = q(conn, "SELECT * FROM sales_deductions WHERE sales_date=? ORDER BY updated_at", (sales_date,))
    out: list[SalesDeduction] = []
    for r in rows:
        allocs = q(conn, "SELECT * FROM sales_deduction_allocations WHERE deduction_id=? ORDER BY id", (r["id"],))
        out.append(
            SalesDeduction(
                id=str(r["id"]),
                outlet_name=str(r["outlet_name"]),
                product_id=str(r["product_id"]),
                sales_date=str(r["sales_date"]),
                whole_deducted=_opt_float(r["whole_deducted"]) or 0,
                slices_deducted=_opt_float(r["slices_deducted"]) or 0,
                ledger=str(r["ledger"]),
                source=str(r["source"]),
                prods_req_credited=_opt_float(r["prods_req_credited"]) or 0,
                allocations=tuple(
                    FifoAllocation(stock_check_id=str(a["stock_check_id"]), quantity=float(a["quantity"])) for a in allocs
                ),
            )
        )
    return out


def has_sales_deduction(conn, outlet_name: str, product_id: str, sales_date: str, source: str = "sales") -> bool:
    rows = q(
        conn,
        "SELECT 1 FROM sales_deductions WHERE outlet_name=? AND product_id=? AND sales_date=? AND source=?",
        (outlet_name, product_id, sales_date, source),
    )
    return bool(rows)


# -------------------------
# Writers (persistence contract)
# -------------------------

def _count_params(check_id: str, c: StockCount) -> tuple:
    return (check_id, c.product_id, float(c.quantity or 0), c.opening_stock, c.received_stock, c.wastage, c.notes)


_INSERT_COUNT = """
    INSERT INTO stock_counts (check_id, product_id, quantity, opening_stock, received_stock, wastage, notes)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""


def save_stock_check(conn, check: StockCheck) -> str:
    """Insert or replace a whole stock check with its counts."""
    if not check.outlet:
        raise ValueError("Stock check outlet is required.")
    if not check.date:
        raise ValueError("Stock check date is required.")

    statements: list[tuple[str, Iterable[Any]]] = [
        ("DELETE FROM stock_counts WHERE check_id=?", (check.id,)),
        (
            """
            INSERT OR REPLACE INTO stock_checks (
                id, outlet, date, timestamp, completed_by, done_date, replace_all_inventory
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                check.id,
                check.outlet,
                check.date,
                float(check.timestamp),
                check.completed_by,
                check.done_date,
                1 if check.replace_all_inventory else 0,
            ),
        ),
    ]
    statements.extend((_INSERT_COUNT, _count_params(check.id, c)) for c in check.counts)
    xmany(conn, statements)
    return check.id


def update_stock_check(conn, check_id: str, counts: list[StockCount]) -> None:
    """Replace the counts of an existing stock check."""
    if not q(conn, "SELECT 1 FROM stock_checks WHERE id=?", (check_id,)):
        raise ValueError(f"Stock check {check_id} not found.")
    statements: list[tuple[str, Iterable[Any]]] = [("DELETE FROM stock_counts WHERE check_id=?", (check_id,))]
    statements.extend((_INSERT_COUNT, _count_params(check_id, c)) for c in counts)
    xmany(conn, statements)


def new_stock_check(outlet: str, date: str, counts: list[StockCount], **kwargs) -> StockCheck:
    return StockCheck(id=new_id(), outlet=outlet, date=date, timestamp=epoch_now(), counts=counts, **kwargs)


_INVENTORY_FIELDS = {"production_whole", "production_slices", "prods_req_whole", "prods_req_slices"}


def update_inventory_stock(conn, product_id: str, fields: dict[str, Any]) -> InventoryStock:
    """
    Partial update of one ledger record (created lazily).

    `fields` may carry any scalar column plus `outlet_stocks`, which replaces
    the outlet entries wholesale.
    """
    unknown = set(fields) - _INVENTORY_FIELDS - {"outlet_stocks"}
    if unknown:
        raise ValueError(f"Unknown inventory fields: {', '.join(sorted(unknown))}.")

    current = get_inventory_stock(conn, product_id) or InventoryStock(product_id=product_id)
    values = {k: int(getattr(current, k)) for k in _INVENTORY_FIELDS}
    values.update({k: int(v) for k, v in fields.items() if k in _INVENTORY_FIELDS})

    statements: list[tuple[str, Iterable[Any]]] = [
        (
            """
            INSERT INTO inventory_stocks (
                product_id, production_whole, production_slices, prods_req_whole, prods_req_slices, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(product_id) DO UPDATE SET
                production_whole=excluded.production_whole,
                production_slices=excluded.production_slices,
                prods_req_whole=excluded.prods_req_whole,
                prods_req_slices=excluded.prods_req_slices,
                updated_at=excluded.updated_at
            """,
            (
                product_id,
                values["production_whole"],
                values["production_slices"],
                values["prods_req_whole"],
                values["prods_req_slices"],
                iso_now(),
            ),
        )
    ]
    if "outlet_stocks" in fields:
        statements.append(("DELETE FROM outlet_stocks WHERE product_id=?", (product_id,)))
        statements.extend(
            (
                "INSERT INTO outlet_stocks (product_id, outlet_name, whole, slices) VALUES (?, ?, ?, ?)",
                (product_id, o.outlet_name, int(o.whole), int(o.slices)),
            )
            for o in fields["outlet_stocks"]
        )
    xmany(conn, statements)
    return get_inventory_stock(conn, product_id)


def save_inventory_stock(conn, stock: InventoryStock) -> InventoryStock:
    return update_inventory_stock(
        conn,
        stock.product_id,
        {
            "production_whole": stock.production_whole,
            "production_slices": stock.production_slices,
            "prods_req_whole": stock.prods_req_whole,
            "prods_req_slices": stock.prods_req_slices,
            "outlet_stocks": stock.outlet_stocks,
        },
    )


def clear_all_inventory(conn) -> None:
    xmany(conn, [("DELETE FROM outlet_stocks", ()), ("DELETE FROM inventory_stocks", ())])


def record_sales_deduction(conn, deduction: SalesDeduction) -> str:
    statements: list[tuple[str, Iterable[Any]]] = [
        (
            """
            INSERT INTO sales_deductions (
                id, outlet_name, product_id, sales_date,
                whole_deducted, slices_deducted, ledger, source, prods_req_credited, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                deduction.id,
                deduction.outlet_name,
                deduction.product_id,
                deduction.sales_date,
                float(deduction.whole_deducted),
                float(deduction.slices_deducted),
                deduction.ledger,
                deduction.source,
                float(deduction.prods_req_credited),
                iso_now(),
            ),
        )
    ]
    statements.extend(
        (
            "INSERT INTO sales_deduction_allocations (deduction_id, stock_check_id, quantity) VALUES (?, ?, ?)",
            (deduction.id, a.stock_check_id, float(a.quantity)),
        )
        for a in deduction.allocations
    )
    xmany(conn, statements)
    return deduction.id


def delete_sales_deduction(conn, deduction_id: str) -> None:
    x(conn, "DELETE FROM sales_deductions WHERE id=?", (deduction_id,))


# -------------------------
# Reference data writers
# -------------------------

def add_outlet(conn, *, name: str, outlet_type: str = "sales", location: Optional[str] = None) -> str:
    name = str(name).strip()
    if not name:
        raise ValueError("Outlet name is required.")
    if outlet_type not in OUTLET_TYPES:
        raise ValueError("Invalid outlet_type. Use 'production' or 'sales'.")
    outlet_id = new_id()
    x(conn, "INSERT INTO outlets (id, name, location, outlet_type) VALUES (?, ?, ?, ?)", (outlet_id, name, location, outlet_type))
    return outlet_id


def add_product(
    conn,
    *,
    name: str,
    unit: str,
    type: str = "raw",
    category: Optional[str] = None,
    track_in_stock: bool = True,
    sales_based_raw_calc: bool = True,
    product_id: Optional[str] = None,
) -> str:
    if not str(name).strip() or not str(unit).strip():
        raise ValueError("Product name and unit are required.")
    if type not in PRODUCT_TYPES:
        raise ValueError("Invalid product type. Use 'menu', 'kitchen' or 'raw'.")
    pid = product_id or new_id()
    x(
        conn,
        """
        INSERT INTO products (id, name, unit, type, category, track_in_stock, sales_based_raw_calc)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (pid, str(name).strip(), str(unit).strip(), type, category, int(bool(track_in_stock)), int(bool(sales_based_raw_calc))),
    )
    return pid


def add_conversion(conn, *, whole_product_id: str, slice_product_id: str, conversion_factor: int) -> str:
    if int(conversion_factor) < 1:
        raise ValueError("Conversion factor must be >= 1.")
    if whole_product_id == slice_product_id:
        raise ValueError("A product cannot convert into itself.")
    conv_id = new_id()
    x(
        conn,
        "INSERT INTO product_conversions (id, from_product_id, to_product_id, conversion_factor) VALUES (?, ?, ?, ?)",
        (conv_id, whole_product_id, slice_product_id, int(conversion_factor)),
    )
    return conv_id


def add_recipe(conn, *, menu_product_id: str, components: list[RecipeComponent]) -> str:
    if not components:
        raise ValueError("A recipe needs at least one component.")
    recipe_id = new_id()
    statements: list[tuple[str, Iterable[Any]]] = [
        ("INSERT INTO recipes (id, menu_product_id) VALUES (?, ?)", (recipe_id, menu_product_id))
    ]
    statements.extend(
        (
            "INSERT INTO recipe_components (recipe_id, raw_product_id, quantity_per_unit) VALUES (?, ?, ?)",
            (recipe_id, c.raw_product_id, float(c.quantity_per_unit)),
        )
        for c in components
    )
    xmany(conn, statements)
    return recipe_id


def add_request(
    conn,
    *,
    product_id: str,
    quantity: float,
    from_outlet: str,
    to_outlet: str,
    request_date: str,
    status: str = "pending",
    priority: str = "medium",
) -> str:
    if float(quantity) <= 0:
        raise ValueError("Requested quantity must be > 0.")
    if status not in {"pending", "approved"}:
        raise ValueError("Invalid status. Use 'pending' or 'approved'.")
    req_id = new_id()
    x(
        conn,
        """
        INSERT INTO product_requests (id, product_id, quantity, from_outlet, to_outlet, status, request_date, priority)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (req_id, product_id, float(quantity), from_outlet, to_outlet, status, request_date, priority),
    )
    return req_id


def approve_request(conn, request_id: str) -> None:
    x(conn, "UPDATE product_requests SET status='approved' WHERE id=?", (request_id,))
