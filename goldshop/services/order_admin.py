# goldshop/services/order_admin.py
from __future__ import annotations
from datetime import datetime
import logging

from sqlalchemy import update

from ..errors import Conflict, NotFound
from ..extensions import db
from ..models.order import Order
from ..models.product import Product

log = logging.getLogger(__name__)

FINAL_ORDER_STATUSES = ("completed", "cancelled", "refunded")


def cancel_order(order_id: str, actor_id: int) -> Order:
    """Cancel an order and put its units back on the shelf, in one commit."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.order_status in FINAL_ORDER_STATUSES:
        raise Conflict(f"Order {order.order_number} is already {order.order_status}")

    order_number = order.order_number
    try:
        order.order_status = "cancelled"
        order.updated_at = datetime.utcnow()
        for po in order.pre_orders:
            if po.status not in ("completed", "cancelled"):
                po.status = "cancelled"
        restock = order.payment_status != "failed"  # failed payments were restocked already
        for item in (order.items if restock else ()):
            if item.product_id is None:
                continue
            db.session.execute(
                update(Product).where(Product.id == item.product_id)
                .values(stock=Product.stock + item.quantity)
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("Cancelling order %s failed", order_number)
        raise

    log.info("Order %s cancelled by user %s (stock restored: %s)", order_number, actor_id, restock)
    return order
