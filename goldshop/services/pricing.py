# goldshop/services/pricing.py
"""Gold-price based line pricing.

Unit price is ``price_per_gram * weight + labour_fee``. Every monetary value
is rounded to cents at the line level, and order totals are sums of rounded
lines, so two clients computing the same cart always agree to the cent.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from ..errors import PriceUnavailable
from ..models.product import GoldPrice, Product
from ..utils.money import D, Money, round_money


@dataclass(frozen=True)
class PriceTable:
    """Gold prices fetched once per request and passed around explicitly."""
    prices: Mapping[str, Money] = field(default_factory=dict)

    @classmethod
    def from_db(cls) -> "PriceTable":
        rows = GoldPrice.query.all()
        return cls({r.gold_type: D(r.price_per_gram) for r in rows})

    def price_for(self, gold_type: str) -> Money:
        price = self.prices.get(gold_type)
        if price is None or D(price) <= 0:
            raise PriceUnavailable(gold_type)
        return D(price)


@dataclass(frozen=True)
class LinePrice:
    gold_price: Money
    weight_grams: Money
    labour_fee: Money
    unit_price: Money
    quantity: int
    line_total: Money


def unit_price(price_per_gram, weight_grams, labour_fee) -> Money:
    return round_money(D(price_per_gram) * D(weight_grams) + D(labour_fee))


def line_total(unit, quantity: int) -> Money:
    return round_money(D(unit) * int(quantity))


def effective_weight(product: Product, selected_variants: Optional[dict] = None) -> Money:
    # A variant carrying its own weight replaces the base weight
    for variant in (selected_variants or {}).values():
        adj = (variant or {}).get("weight_adjustment")
        if adj:
            return D(adj)
    return D(product.weight_grams)


def price_line(product: Product, quantity: int, prices: PriceTable,
               selected_variants: Optional[dict] = None) -> LinePrice:
    gold = prices.price_for(product.gold_type)
    weight = effective_weight(product, selected_variants)
    fee = D(product.labour_fee)
    unit = unit_price(gold, weight, fee)
    return LinePrice(
        gold_price=gold,
        weight_grams=weight,
        labour_fee=fee,
        unit_price=unit,
        quantity=int(quantity),
        line_total=line_total(unit, quantity),
    )


def stamp_cart_line(item, prices: PriceTable, now: Optional[datetime] = None):
    """Record the price the shopper saw so later comparisons are possible."""
    lp = price_line(item.product, item.quantity, prices, item.selected_variants)
    item.gold_price_snapshot = lp.gold_price
    item.calculated_price = lp.unit_price
    item.locked_at = now or datetime.utcnow()
    return lp


def cart_total(lines) -> Money:
    return round_money(sum((lp.line_total for lp in lines), D(0)))
