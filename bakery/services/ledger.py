from __future__ import annotations

from dataclasses import replace

from bakery.models import InventoryStock, OutletStock
from bakery.services.catalog import ProductPair


def _check_factor(conversion_factor: int) -> int:
    f = int(conversion_factor)
    if f < 1:
        raise ValueError("Conversion factor must be >= 1.")
    return f


def total_slices(whole: int, slices: int, conversion_factor: int) -> int:
    return int(whole) * _check_factor(conversion_factor) + int(slices)


def normalize(whole: int, slices: int, conversion_factor: int) -> tuple[int, int]:
    """
    Carry/borrow so that 0 <= slices < conversion_factor.

    A negative total leaves whole negative; slices stay in range.
    """
    f = _check_factor(conversion_factor)
    return divmod(total_slices(whole, slices, f), f)


def quantity_to_slices(qty: float, pair: ProductPair, product_id: str) -> int:
    """Sold/received quantity of either side of the pair, in slices."""
    if pair.is_whole(product_id):
        return int(round(float(qty) * pair.conversion_factor))
    return int(round(float(qty)))


def split_slices(total: int, conversion_factor: int) -> tuple[int, int]:
    return normalize(0, int(total), conversion_factor)


def with_outlet_stock(
    stock: InventoryStock,
    outlet_name: str,
    delta_slices: int,
    conversion_factor: int,
) -> InventoryStock:
    """New record with `delta_slices` applied to one outlet's entry (zeroed entry created when absent)."""
    entries = list(stock.outlet_stocks)
    idx = next((i for i, o in enumerate(entries) if o.outlet_name == outlet_name), None)
    current = entries[idx] if idx is not None else OutletStock(outlet_name=outlet_name)

    whole, slices = normalize(current.whole, int(current.slices) + int(delta_slices), conversion_factor)
    updated = OutletStock(outlet_name=outlet_name, whole=whole, slices=slices)

    if idx is None:
        entries.append(updated)
    else:
        entries[idx] = updated
    return replace(stock, outlet_stocks=tuple(entries))


def with_production(stock: InventoryStock, delta_slices: int, conversion_factor: int) -> InventoryStock:
    whole, slices = normalize(
        stock.production_whole,
        int(stock.production_slices) + int(delta_slices),
        conversion_factor,
    )
    return replace(stock, production_whole=whole, production_slices=slices)


def with_prods_req(stock: InventoryStock, delta_slices: int, conversion_factor: int) -> InventoryStock:
    whole, slices = normalize(
        stock.prods_req_whole,
        int(stock.prods_req_slices) + int(delta_slices),
        conversion_factor,
    )
    return replace(stock, prods_req_whole=whole, prods_req_slices=slices)


def apply_to_section(
    stock: InventoryStock,
    *,
    outlet_name: str,
    outlet_type: str,
    delta_slices: int,
    conversion_factor: int,
) -> InventoryStock:
    """Production outlets move the production section; sales outlets move their outlet entry."""
    if outlet_type == "production":
        return with_production(stock, delta_slices, conversion_factor)
    return with_outlet_stock(stock, outlet_name, delta_slices, conversion_factor)


def section_total(stock: InventoryStock, *, outlet_name: str, outlet_type: str, conversion_factor: int) -> int:
    if outlet_type == "production":
        return total_slices(stock.production_whole, stock.production_slices, conversion_factor)
    o = stock.outlet(outlet_name)
    if o is None:
        return 0
    return total_slices(o.whole, o.slices, conversion_factor)
