from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

PRODUCT_TYPES = {"menu", "kitchen", "raw"}
OUTLET_TYPES = {"production", "sales"}


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    unit: str
    type: str = "raw"
    category: Optional[str] = None
    track_in_stock: bool = True
    sales_based_raw_calc: bool = True


@dataclass(frozen=True)
class ProductConversion:
    id: str
    from_product_id: str  # whole
    to_product_id: str  # slice
    conversion_factor: int


@dataclass(frozen=True)
class Outlet:
    id: str
    name: str
    location: Optional[str] = None
    outlet_type: str = "sales"


@dataclass(frozen=True)
class RecipeComponent:
    raw_product_id: str
    quantity_per_unit: float


@dataclass(frozen=True)
class Recipe:
    id: str
    menu_product_id: str
    components: tuple[RecipeComponent, ...] = ()


@dataclass(frozen=True)
class OutletStock:
    outlet_name: str
    whole: int = 0
    slices: int = 0


@dataclass(frozen=True)
class InventoryStock:
    product_id: str
    production_whole: int = 0
    production_slices: int = 0
    prods_req_whole: int = 0
    prods_req_slices: int = 0
    outlet_stocks: tuple[OutletStock, ...] = ()

    def outlet(self, outlet_name: str) -> Optional[OutletStock]:
        return next((o for o in self.outlet_stocks if o.outlet_name == outlet_name), None)


@dataclass
class StockCount:
    product_id: str
    quantity: float = 0
    opening_stock: Optional[float] = None
    received_stock: Optional[float] = None
    wastage: Optional[float] = None
    notes: Optional[str] = None


@dataclass
class StockCheck:
    id: str
    outlet: str
    date: str
    timestamp: float
    counts: list[StockCount] = field(default_factory=list)
    completed_by: Optional[str] = None
    done_date: Optional[str] = None
    replace_all_inventory: bool = False

    def count_for(self, product_id: str) -> Optional[StockCount]:
        return next((c for c in self.counts if c.product_id == product_id), None)


@dataclass(frozen=True)
class ProductRequest:
    id: str
    product_id: str
    quantity: float
    from_outlet: str
    to_outlet: str
    status: str = "pending"
    request_date: Optional[str] = None
    priority: str = "medium"


@dataclass(frozen=True)
class FifoAllocation:
    stock_check_id: str
    quantity: float


@dataclass(frozen=True)
class SalesDeduction:
    id: str
    outlet_name: str
    product_id: str
    sales_date: str
    whole_deducted: float
    slices_deducted: float
    ledger: str = "fifo"  # production / outlet / fifo
    source: str = "sales"  # sales / raw
    prods_req_credited: float = 0
    allocations: tuple[FifoAllocation, ...] = ()


# -------------------------
# Reconciliation results
# -------------------------

@dataclass
class SplitUnit:
    unit: str
    opening: float
    received: float
    wastage: float
    closing: float
    expected_closing: float
    discrepancy: float
    product_id: Optional[str] = None


@dataclass
class SalesRow:
    name: str
    unit: str
    sold: float
    product_id: Optional[str] = None
    opening: Optional[float] = None
    received: Optional[float] = None
    wastage: Optional[float] = None
    closing: Optional[float] = None
    expected_closing: Optional[float] = None
    discrepancy: Optional[float] = None
    notes: Optional[str] = None
    row_index: Optional[int] = None
    split_units: Optional[list[SplitUnit]] = None


@dataclass
class SalesReconcileResult:
    outlet_from_sheet: Optional[str] = None
    matched_outlet_name: Optional[str] = None
    outlet_matched: bool = False
    sheet_date: Optional[str] = None
    stock_check_date: Optional[str] = None
    date_matched: bool = False
    rows: list[SalesRow] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def outlet(self) -> Optional[str]:
        return self.matched_outlet_name or self.outlet_from_sheet

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "SalesReconcileResult":
        rows = []
        for r in d.get("rows", []):
            r = dict(r)
            splits = r.pop("split_units", None)
            rows.append(SalesRow(**r, split_units=[SplitUnit(**s) for s in splits] if splits else None))
        return cls(
            outlet_from_sheet=d.get("outlet_from_sheet"),
            matched_outlet_name=d.get("matched_outlet_name"),
            outlet_matched=bool(d.get("outlet_matched")),
            sheet_date=d.get("sheet_date"),
            stock_check_date=d.get("stock_check_date"),
            date_matched=bool(d.get("date_matched")),
            rows=rows,
            errors=list(d.get("errors", [])),
        )


@dataclass
class KitchenDiscrepancy:
    product_name: str
    unit: str
    opening_stock: float
    received_in_stock_check: float
    kitchen_production: float
    discrepancy: float
    product_id: Optional[str] = None


@dataclass
class KitchenStockCheckResult:
    matched: bool = False
    outlet_name: Optional[str] = None
    production_date: Optional[str] = None
    stock_check_date: Optional[str] = None
    discrepancies: list[KitchenDiscrepancy] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class RawConsumptionRow:
    raw_product_id: str
    raw_name: str
    raw_unit: str
    consumed: float
    opening_stock: Optional[float] = None
    received_stock: Optional[float] = None
    total_stock: Optional[float] = None
    expected_closing: Optional[float] = None


@dataclass
class RawConsumptionResult:
    outlet: Optional[str] = None
    date: Optional[str] = None
    rows: list[RawConsumptionRow] = field(default_factory=list)


@dataclass(frozen=True)
class HistoryEntry:
    date: str
    outlet: str
    timestamp: str
    result: SalesReconcileResult
