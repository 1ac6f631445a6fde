# goldshop/blueprints/payments/routes.py
import logging

from flask import current_app, jsonify, request
from flask_login import current_user

from ...errors import GatewayError, NotFound
from ...extensions import db
from ...models.order import Order
from ...security import admin_or_cron
from ...services.gateway import get_gateway
from ...services.gateway_checkout import start_gateway_checkout
from ...services.reconciler import handle_webhook_event, lookback_start, sync_order, sync_pending_payments
from . import payments_bp

log = logging.getLogger(__name__)


# -----------------
# Helpers
# -----------------

def can_act_on(order: Order) -> bool:
    """Owner or admin for account orders; guest orders are addressed by their unguessable id."""
    if order.user_id is None:
        return True
    return bool(
        current_user.is_authenticated
        and (current_user.is_admin or current_user.id == order.user_id)
    )


def load_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or not can_act_on(order):
        raise NotFound("Order not found")
    return order


# -----------------
# Reconciliation (cron / admin)
# -----------------

@payments_bp.post("/sync")
@admin_or_cron
def sync_payments():
    data = request.get_json(silent=True) or {}
    hours = data.get("hours", current_app.config.get("SYNC_LOOKBACK_HOURS", 48))
    try:
        hours = int(hours)
    except (TypeError, ValueError):
        hours = current_app.config.get("SYNC_LOOKBACK_HOURS", 48)

    results = sync_pending_payments(since=lookback_start(hours))
    return jsonify({
        "message": f"Synced {results.updated} of {results.total} pending payments",
        "results": results.to_dict(),
    })


# -----------------
# Single order (payment return page)
# -----------------

@payments_bp.post("/verify/<order_id>")
def verify_payment(order_id):
    load_order(order_id)
    return jsonify({"ok": True, **sync_order(order_id)})


# -----------------
# Start payment: hosted checkout session
# -----------------

@payments_bp.post("/checkout/<order_id>")
def start_checkout(order_id):
    order = load_order(order_id)
    data = request.get_json(silent=True) or {}
    base = (current_app.config.get("EXTERNAL_BASE_URL") or "").rstrip("/")
    success_url = data.get("success_url") or \
        f"{base}/order-confirmation/{order.id}?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = data.get("cancel_url") or f"{base}/checkout?cancelled={order.id}"

    session = start_gateway_checkout(order, success_url, cancel_url)
    return jsonify({"ok": True, "order_number": order.order_number, **session})


# -----------------
# Stripe webhook (public, signature-verified)
# -----------------

@payments_bp.post("/webhook")
def webhook():
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise GatewayError("Webhook secret is not configured")
    event = get_gateway().construct_event(
        request.get_data(), request.headers.get("Stripe-Signature", ""), secret,
    )
    return jsonify(handle_webhook_event(event)), 200
