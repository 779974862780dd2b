from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Optional

import pandas as pd
from openpyxl.styles import Font, PatternFill

from bakery.models import KitchenStockCheckResult, RawConsumptionResult, SalesReconcileResult

DISCREPANCY_FILL = PatternFill(start_color="FFCCCC", end_color="FFCCCC", fill_type="solid")
DISCREPANCY_FONT = Font(color="CC0000")
HEADER_FONT = Font(bold=True)

SALES_COLUMNS = [
    "Product Name",
    "Unit",
    "Sold",
    "Opening Stock",
    "Received",
    "Wastage",
    "Closing Stock",
    "Expected Closing",
    "Discrepancy",
    "Notes",
]


def _z(v) -> float:
    return v if v is not None else 0


def _style(ws, highlight_col: Optional[str] = None) -> None:
    for cell in ws[1]:
        cell.font = HEADER_FONT
    for column in ws.columns:
        width = max(len(str(c.value)) if c.value is not None else 0 for c in column)
        ws.column_dimensions[column[0].column_letter].width = min(width + 2, 40)
    if highlight_col is None:
        return
    for cell in ws[highlight_col][1:]:
        if isinstance(cell.value, (int, float)) and cell.value != 0:
            cell.fill = DISCREPANCY_FILL
            cell.font = DISCREPANCY_FONT


def _write(writer, df: pd.DataFrame, sheet: str, highlight: Optional[str] = None) -> None:
    df.to_excel(writer, sheet_name=sheet, index=False)
    ws = writer.sheets[sheet]
    col = None
    if highlight is not None and highlight in df.columns:
        col = ws.cell(row=1, column=list(df.columns).index(highlight) + 1).column_letter
    _style(ws, col)


def _summary(result: SalesReconcileResult) -> pd.DataFrame:
    now = datetime.now().strftime("%d/%m/%Y %H:%M")
    return pd.DataFrame(
        [
            {"Field": "Sales Date", "Value": result.sheet_date or ""},
            {"Field": "Stock Check Date Used", "Value": result.stock_check_date or ""},
            {"Field": "Outlet (from sheet)", "Value": result.outlet_from_sheet or ""},
            {"Field": "Matched Outlet", "Value": result.matched_outlet_name or ""},
            {"Field": "Date Matched", "Value": f"Yes - reconciled {now}" if result.date_matched else "No"},
            {"Field": "Formula", "Value": "Discrepancy = Closing - (Opening + Received - Wastage - Sold)"},
            {"Field": "Errors", "Value": len(result.errors)},
            {"Field": "Generated At", "Value": now},
        ]
    )


def _discrepancies(result: SalesReconcileResult) -> pd.DataFrame:
    rows = [
        [
            r.name,
            r.unit,
            r.sold,
            _z(r.opening),
            _z(r.received),
            _z(r.wastage),
            _z(r.closing),
            _z(r.expected_closing),
            _z(r.discrepancy),
            r.notes or "",
        ]
        for r in result.rows
    ]
    return pd.DataFrame(rows, columns=SALES_COLUMNS)


def _by_unit(result: SalesReconcileResult) -> pd.DataFrame:
    rows = []
    for r in result.rows:
        if not r.split_units:
            continue
        for s in r.split_units:
            sold = r.sold if s.product_id == r.product_id else 0
            rows.append([r.name, s.unit, sold, s.opening, s.received, s.wastage, s.closing, s.expected_closing, s.discrepancy])
        rows.append(
            [
                f"{r.name} (Combined Total)",
                r.unit,
                r.sold,
                _z(r.opening),
                _z(r.received),
                _z(r.wastage),
                _z(r.closing),
                _z(r.expected_closing),
                _z(r.discrepancy),
            ]
        )
    return pd.DataFrame(rows, columns=SALES_COLUMNS[:-1])


def _raw(raw: RawConsumptionResult) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Raw Material": r.raw_name,
                "Unit": r.raw_unit,
                "Consumed": r.consumed,
                "Opening Stock": r.opening_stock,
                "Received in Stock Check": r.received_stock,
                "Available Production Stock": r.total_stock,
                "Expected Closing": r.expected_closing,
            }
            for r in raw.rows
        ]
    )


def export_sales_report(result: SalesReconcileResult, raw: Optional[RawConsumptionResult] = None) -> bytes:
    """xlsx bytes: Summary, Discrepancies, By Unit (when split) and Raw Consumption (when given)."""
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        _write(writer, _summary(result), "Summary")
        _write(writer, _discrepancies(result), "Discrepancies", highlight="Discrepancy")
        if any(r.split_units for r in result.rows):
            _write(writer, _by_unit(result), "By Unit", highlight="Discrepancy")
        if raw is not None and raw.rows:
            _write(writer, _raw(raw), "Raw Consumption")
    return buf.getvalue()


def export_kitchen_report(result: KitchenStockCheckResult) -> bytes:
    buf = BytesIO()
    summary = pd.DataFrame(
        [
            {"Field": "Outlet", "Value": result.outlet_name or ""},
            {"Field": "Production Date", "Value": result.production_date or ""},
            {"Field": "Stock Check Date", "Value": result.stock_check_date or ""},
            {"Field": "Matched", "Value": "Yes" if result.matched else "No"},
            {"Field": "Formula", "Value": "Discrepancy = Kitchen Production - Received"},
        ]
    )
    lines = pd.DataFrame(
        [
            {
                "Product Name": d.product_name,
                "Unit": d.unit,
                "Opening Stock": d.opening_stock,
                "Received in Stock Check": d.received_in_stock_check,
                "Kitchen Production": d.kitchen_production,
                "Discrepancy": d.discrepancy,
            }
            for d in result.discrepancies
        ],
        columns=["Product Name", "Unit", "Opening Stock", "Received in Stock Check", "Kitchen Production", "Discrepancy"],
    )
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        _write(writer, summary, "Summary")
        _write(writer, lines, "Discrepancies", highlight="Discrepancy")
        if result.errors:
            _write(writer, pd.DataFrame({"Error": result.errors}), "Errors")
    return buf.getvalue()
