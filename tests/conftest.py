"""Pytest configuration and fixtures."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from bakery.db import _connect, ensure_schema
from bakery.models import RecipeComponent, StockCheck, StockCount
from bakery.services import store

SALES_DATE = "2024-03-01"


@dataclass
class Ids:
    cake_whole: str
    cake_slice: str
    croissant: str
    flour: str
    butter: str
    loaf: str


@pytest.fixture(scope="function")
def conn(tmp_path):
    """Fresh SQLite database per test."""
    c = _connect(tmp_path / "test.db")
    ensure_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture(scope="function")
def ids(conn) -> Ids:
    """Two outlets, a cake sold whole or by the slice (factor 10), and a croissant recipe."""
    store.add_outlet(conn, name="Central Kitchen", outlet_type="production")
    store.add_outlet(conn, name="Downtown", outlet_type="sales")

    out = Ids(
        cake_whole=store.add_product(conn, name="Cake", unit="Whole", type="menu"),
        cake_slice=store.add_product(conn, name="Cake", unit="Slice", type="menu"),
        croissant=store.add_product(conn, name="Croissant", unit="pcs", type="menu"),
        flour=store.add_product(conn, name="Flour", unit="kg", type="raw"),
        butter=store.add_product(conn, name="Butter", unit="kg", type="raw"),
        loaf=store.add_product(conn, name="Sourdough Loaf", unit="pcs", type="kitchen", sales_based_raw_calc=False),
    )
    store.add_conversion(conn, whole_product_id=out.cake_whole, slice_product_id=out.cake_slice, conversion_factor=10)
    store.add_recipe(
        conn,
        menu_product_id=out.croissant,
        components=[
            RecipeComponent(raw_product_id=out.flour, quantity_per_unit=0.05),
            RecipeComponent(raw_product_id=out.butter, quantity_per_unit=0.02),
        ],
    )
    store.add_recipe(
        conn,
        menu_product_id=out.loaf,
        components=[RecipeComponent(raw_product_id=out.flour, quantity_per_unit=0.5)],
    )
    return out


def add_check(conn, outlet: str, date: str, counts: list[StockCount], *, timestamp: float, check_id: str | None = None) -> StockCheck:
    check = StockCheck(
        id=check_id or f"{outlet}-{date}-{int(timestamp)}",
        outlet=outlet,
        date=date,
        timestamp=timestamp,
        counts=counts,
    )
    store.save_stock_check(conn, check)
    return check


@pytest.fixture
def make_check(conn):
    def _make(outlet, date, counts, *, timestamp=1000.0, check_id=None):
        return add_check(conn, outlet, date, counts, timestamp=timestamp, check_id=check_id)

    return _make
