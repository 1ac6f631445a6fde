# goldshop/services/stock_gate.py
"""Last-moment inventory check before an order is written.

Stock is read straight from the product table for exactly the requested
ids (column query, so nothing cached in the session is reused). The check
and the later write are NOT one atomic step: two concurrent checkouts can
both pass for the last unit. See DESIGN.md, "stock race".
"""
from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterable, Mapping
import logging

from ..errors import InsufficientStock
from ..extensions import db
from ..models.order import OrderItem
from ..models.product import Product

log = logging.getLogger(__name__)


@dataclass
class StockCheck:
    ok: bool
    shortages: list[dict] = field(default_factory=list)


def _aggregate(requested) -> "OrderedDict[int, int]":
    pairs = requested.items() if isinstance(requested, Mapping) else requested
    totals: "OrderedDict[int, int]" = OrderedDict()
    for product_id, qty in pairs:
        totals[int(product_id)] = totals.get(int(product_id), 0) + int(qty)
    return totals


def read_stock(product_ids: Iterable[int]) -> dict[int, tuple[str, int]]:
    ids = list(product_ids)
    if not ids:
        return {}
    rows = (db.session.query(Product.id, Product.name, Product.stock)
            .filter(Product.id.in_(ids))
            .all())
    return {pid: (name, int(stock or 0)) for pid, name, stock in rows}


def check_stock(requested) -> StockCheck:
    """``requested`` is a mapping or iterable of (product_id, quantity) pairs."""
    totals = _aggregate(requested)
    live = read_stock(totals.keys())

    shortages = []
    for pid, qty in totals.items():
        name, available = live.get(pid, (f"Product {pid}", 0))
        shortfall = qty - available
        if shortfall > 0:
            shortages.append({
                "product_id": pid,
                "product_name": name,
                "requested": qty,
                "available": available,
                "shortfall": shortfall,
            })

    if shortages:
        log.info("Stock gate rejected: %s", [s["product_name"] for s in shortages])
    return StockCheck(ok=not shortages, shortages=shortages)


def ensure_in_stock(requested) -> None:
    result = check_stock(requested)
    if not result.ok:
        raise InsufficientStock(result.shortages)


def check_order_stock(order_id: str) -> StockCheck:
    """Re-run the gate for an order that already exists (e.g. before admin fulfilment)."""
    rows = (db.session.query(OrderItem.product_id, OrderItem.quantity)
            .filter(OrderItem.order_id == order_id)
            .all())
    return check_stock([(pid, qty) for pid, qty in rows if pid is not None])
