from flask import jsonify
from flask_login import current_user

from ...errors import NotFound
from ...extensions import db
from ...models.order import Order
from ...security import roles_required
from ...services.order_admin import cancel_order
from ...services.stock_gate import check_order_stock
from . import admin_bp


@admin_bp.get("/orders/<order_id>")
@roles_required("admin")
def order_detail(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    body = order.as_api()
    if order.manual_payment is not None:
        body["manual_payment"] = order.manual_payment.as_api()
    return jsonify({"ok": True, "order": body})


@admin_bp.get("/orders/<order_id>/stock")
@roles_required("admin")
def order_stock(order_id):
    if db.session.get(Order, order_id) is None:
        raise NotFound("Order not found")
    result = check_order_stock(order_id)
    return jsonify({"ok": True, "in_stock": result.ok, "shortages": result.shortages})


@admin_bp.post("/orders/<order_id>/cancel")
@roles_required("admin")
def cancel(order_id):
    order = cancel_order(order_id, current_user.id)
    return jsonify({"ok": True, "order": order.as_api()})
