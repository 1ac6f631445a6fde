# goldshop/services/order_writer.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Optional
import logging
import time

from flask import current_app
from sqlalchemy import update

from ..errors import ValidationError
from ..extensions import db
from ..models.cart import CartItem
from ..models.order import Order, OrderItem, PreOrder, OrderSequence, PAYMENT_METHODS
from ..models.product import Product
from ..utils.money import D, round_money
from .notifications import Notifier
from .pricing import PriceTable, price_line
from .staleness import ensure_fresh_prices
from .stock_gate import ensure_in_stock, read_stock

log = logging.getLogger(__name__)


@dataclass
class CheckoutRequest:
    full_name: str
    phone_number: str
    payment_method: str
    email: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict) -> "CheckoutRequest":
        data = data or {}
        return cls(
            full_name=(data.get("full_name") or "").strip(),
            phone_number=(data.get("phone_number") or "").strip(),
            payment_method=(data.get("payment_method") or "").strip().lower(),
            email=(data.get("email") or "").strip() or None,
            notes=(data.get("notes") or "").strip() or None,
        )

    def validate(self):
        missing = [f for f in ("full_name", "phone_number", "payment_method") if not getattr(self, f)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)
        if self.payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method '{self.payment_method}'",
                                  allowed=list(PAYMENT_METHODS))


# -----------------
# Order numbers
# -----------------

def next_order_sequence() -> int:
    """Bump the counter row and return the new value (committed on its own)."""
    res = db.session.execute(
        update(OrderSequence)
        .where(OrderSequence.id == 1)
        .values(last_value=OrderSequence.last_value + 1)
    )
    if res.rowcount == 0:
        db.session.add(OrderSequence(id=1, last_value=1))
    db.session.commit()
    return db.session.get(OrderSequence, 1, populate_existing=True).last_value


def timestamp_order_number(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


def allocate_order_number(prefix: Optional[str] = None,
                          allocator: Optional[Callable[[], int]] = None) -> str:
    """``JJ-00042`` from the sequence; ``JJ-<epoch millis>`` if the allocator fails."""
    prefix = prefix or current_app.config.get("ORDER_NUMBER_PREFIX", "JJ")
    try:
        seq = (allocator or next_order_sequence)()
        return f"{prefix}-{int(seq):05d}"
    except Exception as e:
        db.session.rollback()
        number = timestamp_order_number(prefix)
        log.warning("Order sequence unavailable (%s); using fallback %s", e, number)
        return number


# -----------------
# Checkout
# -----------------

def _deposit_for(product: Product, quantity: int, line_total):
    deposit = round_money(D(product.preorder_deposit) * quantity)
    return min(deposit, line_total)


def place_order(checkout: CheckoutRequest, cart_items: list[CartItem], prices: PriceTable, *,
                user_id: Optional[int] = None,
                notifier: Optional[Notifier] = None,
                allocator: Optional[Callable[[], int]] = None) -> Order:
    """Gate, price and persist an order from the shopper's cart.

    Order, lines and pre-order records go in with one commit together with
    the stock decrement and cart clear. Notifications go out afterwards and
    cannot undo the order.
    """
    checkout.validate()
    if not cart_items:
        raise ValidationError("Cart is empty")

    cfg = current_app.config
    ensure_fresh_prices(cart_items, prices,
                        threshold_pct=cfg.get("PRICE_CHANGE_THRESHOLD_PCT", 2.0),
                        max_age_hours=cfg.get("PRICE_MAX_AGE_HOURS", 24))
    ensure_in_stock([(it.product_id, it.quantity) for it in cart_items])

    # Snapshot lines before the sequence commit expires the cart rows
    lines = [(it.product, it.quantity, it.variant_label(), price_line(it.product, it.quantity, prices, it.selected_variants))
             for it in cart_items]
    cart_ids = [it.id for it in cart_items]

    order_number = allocate_order_number(allocator=allocator)

    total = round_money(sum((lp.line_total for _, _, _, lp in lines), D(0)))
    order = Order(
        order_number=order_number,
        user_id=user_id,
        full_name=checkout.full_name,
        phone_number=checkout.phone_number,
        email=checkout.email,
        notes=checkout.notes,
        total_amount=total,
        payment_method=checkout.payment_method,
        payment_status="pending",
        order_status="pending",
    )

    pre_orders = []
    for product, qty, variant, lp in lines:
        order.items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            gold_type=product.gold_type,
            weight_grams=lp.weight_grams,
            labour_fee=lp.labour_fee,
            gold_price_at_purchase=lp.gold_price,
            variant_selection=variant or None,
            quantity=qty,
            subtotal=lp.line_total,
        ))
        if product.is_deposit_eligible:
            deposit = _deposit_for(product, qty, lp.line_total)
            po = PreOrder(product_id=product.id, deposit_paid=deposit,
                          balance_due=lp.line_total - deposit, status="pending")
            order.pre_orders.append(po)
            pre_orders.append((product, po))

    try:
        db.session.add(order)
        for product, qty, _, _ in lines:
            # Unconditional decrement: the gate above is a separate read (known race)
            db.session.execute(
                update(Product).where(Product.id == product.id).values(stock=Product.stock - qty)
            )
        CartItem.query.filter(CartItem.id.in_(cart_ids)).delete(synchronize_session=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("Order %s could not be written", order_number)
        raise

    log.info("Order %s created (%s lines, total %s, %s)",
             order.order_number, len(lines), total, order.payment_method)

    notifier = notifier or Notifier()
    for product, po in pre_orders:
        notifier.add(
            "new_pre_order", "New Pre-order",
            f"Order {order.order_number}: pre-order for {product.name}, "
            f"deposit RM {po.deposit_paid}, balance RM {po.balance_due}.",
            order_id=order.id, product_id=product.id,
        )
    involved = {product.id for product, _, _, _ in lines}
    try:
        for pid, (name, stock) in read_stock(involved).items():
            if stock == 0:
                notifier.add(
                    "out_of_stock", "Product Out of Stock",
                    f"{name} is out of stock after order {order.order_number}.",
                    order_id=order.id, product_id=pid,
                )
    except Exception as e:
        # the order is committed; a failed re-read only loses the alert
        db.session.rollback()
        log.warning("Stock re-read after order %s failed: %s", order_number, e)
    notifier.dispatch()
    return order
