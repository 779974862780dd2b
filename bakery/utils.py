from __future__ import annotations

import re
import time
import uuid
from datetime import datetime, date, timezone
from typing import Any, Optional

_DMY = re.compile(r"(\d{1,2})[-/.](\d{1,2})[-/.](\d{2,4})")
_YMD = re.compile(r"(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})")


def iso_today() -> str:
    return date.today().isoformat()


def iso_now() -> str:
    # Use UTC ISO timestamps for consistency.
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def epoch_now() -> float:
    return time.time()


def new_id() -> str:
    return uuid.uuid4().hex


def r3(v: float) -> float:
    """Round to 3 decimals, leaving ints untouched."""
    if isinstance(v, int):
        return v
    out = round(float(v), 3)
    return int(out) if out.is_integer() else out


def norm_key(s: Any) -> str:
    """Trimmed, lower-cased, inner whitespace collapsed."""
    if s is None:
        return ""
    return " ".join(str(s).strip().lower().split())


def _ymd(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(val: Any) -> Optional[str]:
    """
    Normalise a spreadsheet date value to YYYY-MM-DD.

    Day-first for slashed dates: 10/11/2025 is 10 November 2025.
    Two-digit years are taken as 20YY.
    """
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.date().isoformat()
    if isinstance(val, date):
        return val.isoformat()

    s = str(val).strip()
    if not s:
        return None

    m = _YMD.search(s)
    if m:
        return _ymd(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DMY.search(s)
    if m:
        year = m.group(3)
        y = int(year) + 2000 if len(year) == 2 else int(year)
        return _ymd(y, int(m.group(2)), int(m.group(1)))

    return None


def to_number(val: Any) -> Optional[float]:
    """Numeric cell value, or None. Ints stay ints."""
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return val
    s = str(val).strip().replace(",", "")
    if not s:
        return None
    try:
        n = float(s)
    except ValueError:
        return None
    return int(n) if n.is_integer() else n
