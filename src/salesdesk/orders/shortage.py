from __future__ import annotations

import math
from typing import Any, Mapping, Sequence

from .schema import OrderLine, PlanRow


def shortfall(item: Mapping[str, Any], qty: float) -> float:
    """Units missing to fulfil ``qty``: ``max(0, qty - stock)``, 0 for untracked items."""
    if item.get("track_inventory") is not True:
        return 0.0
    stock = item.get("available_stock")
    if stock is None:
        stock = item.get("actual_available_stock")
    try:
        stock = float(stock)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(stock):
        return 0.0
    return max(0.0, float(qty) - stock)


def derive_plan(lines: Sequence[OrderLine], items: Mapping[str, Mapping[str, Any]]) -> list[PlanRow]:
    """Purchase plan for the lines that cannot be served from stock.

    ``items`` maps item_id to a normalized item. Lines for the same item are
    summed before comparing against stock.
    """
    wanted: dict[str, float] = {}
    for line in lines:
        wanted[line.item_id] = wanted.get(line.item_id, 0.0) + float(line.qty)

    plan = []
    for item_id, qty in wanted.items():
        item = items.get(item_id)
        if item is None:
            continue
        missing = shortfall(item, qty)
        if missing > 0:
            plan.append(PlanRow(item_id=item_id, quantity=missing))
    return plan
