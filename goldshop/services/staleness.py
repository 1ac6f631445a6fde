# goldshop/services/staleness.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..errors import StalePrices
from ..utils.money import D, Money
from .pricing import PriceTable, stamp_cart_line

DEFAULT_THRESHOLD_PCT = 2.0
DEFAULT_MAX_AGE_HOURS = 24


@dataclass(frozen=True)
class PriceChange:
    has_changed: bool
    percentage_change: float
    old_price: Money
    new_price: Money


def check_price_change(old_price, new_price, threshold_pct: float = DEFAULT_THRESHOLD_PCT) -> PriceChange:
    """Classify a snapshot against the live price.

    Moves strictly below ``threshold_pct`` percent are tolerated; a move at
    or above it counts as changed. A missing or zero snapshot always counts
    as changed since there is nothing to compare against.
    """
    old, new = D(old_price), D(new_price)
    if old <= 0:
        return PriceChange(True, 100.0, old, new)
    pct = abs((new - old) / old * 100)
    return PriceChange(
        has_changed=pct >= D(str(threshold_pct)),
        percentage_change=round(float(pct), 1),
        old_price=old,
        new_price=new,
    )


def is_price_stale(locked_at: Optional[datetime], now: Optional[datetime] = None,
                   max_age_hours: int = DEFAULT_MAX_AGE_HOURS) -> bool:
    if locked_at is None:
        return True
    now = now or datetime.utcnow()
    return now - locked_at >= timedelta(hours=max_age_hours)


def find_changed_lines(items: Iterable, prices: PriceTable,
                       threshold_pct: float = DEFAULT_THRESHOLD_PCT,
                       max_age_hours: Optional[int] = None,
                       now: Optional[datetime] = None) -> list[dict]:
    changes = []
    for item in items:
        product = item.product
        live = prices.price_for(product.gold_type)
        change = check_price_change(item.gold_price_snapshot or 0, live, threshold_pct)
        too_old = max_age_hours is not None and is_price_stale(item.locked_at, now, max_age_hours)
        if change.has_changed or too_old:
            changes.append({
                "cart_item_id": item.id,
                "product_id": product.id,
                "product_name": product.name,
                "old_price": float(change.old_price),
                "new_price": float(change.new_price),
                "percentage_change": change.percentage_change,
                "reason": "price_moved" if change.has_changed else "snapshot_expired",
            })
    return changes


def ensure_fresh_prices(items: Iterable, prices: PriceTable, **kw) -> None:
    """Checkout gate: raise StalePrices naming every line that needs a refresh."""
    changes = find_changed_lines(items, prices, **kw)
    if changes:
        raise StalePrices(changes)


def refresh_cart_prices(items: Iterable, prices: PriceTable, now: Optional[datetime] = None) -> int:
    """Re-stamp every line with the live price. Returns the number of lines touched."""
    count = 0
    for item in items:
        if item.product is None:
            continue
        stamp_cart_line(item, prices, now)
        count += 1
    return count
