from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

APPLIED = "applied"
SKIPPED = "skipped"
INSUFFICIENT = "insufficient"
CREDITED = "credited"
RESTORED = "restored"
REFUSED = "refused"


@dataclass(frozen=True)
class DeductionEvent:
    kind: str
    outlet: str
    product_id: str
    sales_date: str
    quantity: float = 0
    detail: str = ""


EventHandler = Callable[[DeductionEvent], None]


def emit(handler: Optional[EventHandler], event: DeductionEvent) -> None:
    level = logging.WARNING if event.kind in (INSUFFICIENT, REFUSED) else logging.INFO
    logger.log(
        level,
        "%s %s qty=%s outlet=%s date=%s %s",
        event.kind,
        event.product_id,
        event.quantity,
        event.outlet,
        event.sales_date,
        event.detail,
    )
    if handler is not None:
        handler(event)
