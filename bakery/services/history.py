from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from bakery.db import q, x
from bakery.events import RESTORED, DeductionEvent, EventHandler, emit
from bakery.models import HistoryEntry, SalesDeduction, SalesReconcileResult
from bakery.services import ledger, store
from bakery.services.catalog import ConversionResolver

logger = logging.getLogger(__name__)

_COMPARED = ("sold", "opening", "received", "closing")


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _entry_from_row(r) -> HistoryEntry:
    return HistoryEntry(
        date=str(r["date"]),
        outlet=str(r["outlet"]),
        timestamp=str(r["timestamp"]),
        result=SalesReconcileResult.from_dict(json.loads(r["result_json"])),
    )


def get(conn, date: str, outlet: str) -> Optional[HistoryEntry]:
    rows = q(conn, "SELECT * FROM reconciliation_history WHERE date=? AND outlet=?", (date, outlet))
    return _entry_from_row(rows[0]) if rows else None


def list_entries(conn) -> list[HistoryEntry]:
    rows = q(conn, "SELECT * FROM reconciliation_history ORDER BY timestamp DESC, id DESC")
    return [_entry_from_row(r) for r in rows]


def add_reconciliation_history_entry(conn, entry: HistoryEntry) -> None:
    x(
        conn,
        """
        INSERT INTO reconciliation_history (date, outlet, timestamp, result_json)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(date, outlet) DO UPDATE SET
            timestamp=excluded.timestamp,
            result_json=excluded.result_json
        """,
        (entry.date, entry.outlet, entry.timestamp, json.dumps(entry.result.to_dict())),
    )


def has_changed(old: SalesReconcileResult, new: SalesReconcileResult) -> bool:
    if len(old.rows) != len(new.rows):
        return True
    for a, b in zip(old.rows, new.rows):
        if any(getattr(a, f) != getattr(b, f) for f in _COMPARED):
            return True
    return False


def upsert(conn, result: SalesReconcileResult, *, timestamp: Optional[str] = None) -> bool:
    """
    Store a reconciliation keyed by (sheet date, outlet).

    Returns True when something was written. An identical re-upload writes
    nothing and keeps the stored timestamp.
    """
    if not result.sheet_date or not result.outlet:
        raise ValueError("A reconciliation needs a sheet date and an outlet to be stored.")

    existing = get(conn, result.sheet_date, result.outlet)
    if existing is not None and not has_changed(existing.result, result):
        logger.info("History for %s on %s unchanged", result.outlet, result.sheet_date)
        return False

    add_reconciliation_history_entry(
        conn,
        HistoryEntry(date=result.sheet_date, outlet=result.outlet, timestamp=timestamp or _stamp(), result=result),
    )
    logger.info(
        "History for %s on %s %s",
        result.outlet,
        result.sheet_date,
        "replaced" if existing is not None else "added",
    )
    return True


def delete(conn, date: str, outlet: str) -> None:
    x(conn, "DELETE FROM reconciliation_history WHERE date=? AND outlet=?", (date, outlet))


def delete_all(conn) -> None:
    x(conn, "DELETE FROM reconciliation_history")


# -------------------------
# Clear a date (with restoration)
# -------------------------

@dataclass
class ClearSummary:
    date: str
    history_deleted: int = 0
    deductions_reversed: int = 0
    errors: list[str] = field(default_factory=list)


def _restore_fifo(conn, d: SalesDeduction) -> None:
    # every check must still exist before any is credited
    checks = [store.get_stock_check(conn, a.stock_check_id) for a in d.allocations]
    missing = [a.stock_check_id for a, c in zip(d.allocations, checks) if c is None]
    if missing:
        raise ValueError(f"Stock check {', '.join(missing)} no longer exists.")

    for alloc, check in zip(d.allocations, checks):
        counts = [
            replace(c, received_stock=(c.received_stock or 0) + alloc.quantity) if c.product_id == d.product_id else c
            for c in check.counts
        ]
        store.update_stock_check(conn, check.id, counts)


def _restore_ledger(conn, d: SalesDeduction, resolver: ConversionResolver) -> None:
    pair = resolver(d.product_id)
    if pair is None:
        raise ValueError(f"No conversion for {d.product_id}; ledger cannot be restored.")
    f = pair.conversion_factor
    stock = store.get_inventory_stock(conn, d.product_id)
    if stock is None:
        raise ValueError(f"No inventory record for {d.product_id}.")

    stock = ledger.apply_to_section(
        stock,
        outlet_name=d.outlet_name,
        outlet_type="production" if d.ledger == "production" else "sales",
        delta_slices=ledger.total_slices(int(d.whole_deducted), int(d.slices_deducted), f),
        conversion_factor=f,
    )
    if d.prods_req_credited:
        stock = ledger.with_prods_req(stock, -int(d.prods_req_credited), f)
    store.save_inventory_stock(conn, stock)


def clear_for_date(conn, date: str, *, on_event: Optional[EventHandler] = None) -> ClearSummary:
    """
    Remove a date's history and reverse every sales deduction posted for it.

    Ledger deductions are credited back, products-required credits removed and
    FIFO allocations returned to their stock checks. A deduction that cannot
    be reversed is kept and reported in `errors`.
    """
    summary = ClearSummary(date=date)
    resolver = ConversionResolver(store.load_conversions(conn))

    for d in store.load_sales_deductions(conn, sales_date=date):
        try:
            if d.ledger == "fifo":
                _restore_fifo(conn, d)
            else:
                _restore_ledger(conn, d, resolver)
        except ValueError as e:
            summary.errors.append(f"{d.outlet_name}/{d.product_id}: {e}")
            logger.warning("Could not restore deduction %s: %s", d.id, e)
            continue
        store.delete_sales_deduction(conn, d.id)
        summary.deductions_reversed += 1
        qty = d.whole_deducted if d.ledger == "fifo" else d.slices_deducted
        emit(on_event, DeductionEvent(RESTORED, d.outlet_name, d.product_id, date, qty, d.ledger))

    summary.history_deleted = len(q(conn, "SELECT 1 FROM reconciliation_history WHERE date=?", (date,)))
    x(conn, "DELETE FROM reconciliation_history WHERE date=?", (date,))
    logger.info(
        "Cleared %s: %s history entries, %s deductions reversed, %s errors",
        date,
        summary.history_deleted,
        summary.deductions_reversed,
        len(summary.errors),
    )
    return summary
