# goldshop/services/gateway_checkout.py
from __future__ import annotations
import logging

from flask import current_app

from ..errors import Conflict, ValidationError
from ..extensions import db
from ..models.order import Order
from ..utils.money import to_cents
from .gateway import get_gateway

log = logging.getLogger(__name__)

METHOD_TYPES = {
    "gateway_fpx": ["fpx"],
    "gateway_card": ["card"],
}


def _check_url(name: str, url: str) -> str:
    url = (url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise ValidationError(f"{name} must be an absolute http(s) URL")
    return url


def start_gateway_checkout(order: Order, success_url: str, cancel_url: str, gateway=None) -> dict:
    """Open a hosted checkout session and remember its id and URL on the order."""
    if not order.uses_gateway:
        raise ValidationError("Order is not paid through the gateway")
    if order.payment_status != "pending":
        raise Conflict(f"Order {order.order_number} payment is already {order.payment_status}")

    success_url = _check_url("success_url", success_url)
    cancel_url = _check_url("cancel_url", cancel_url)

    # Reuse an open session so a double click doesn't create two
    if order.stripe_session_id and order.stripe_session_url:
        return {"session_id": order.stripe_session_id, "url": order.stripe_session_url, "reused": True}

    session = (gateway or get_gateway()).create_checkout_session(
        order_id=order.id,
        order_number=order.order_number,
        amount_cents=to_cents(order.total_amount),
        currency=current_app.config.get("CURRENCY", "myr"),
        payment_method_types=METHOD_TYPES[order.payment_method],
        success_url=success_url,
        cancel_url=cancel_url,
        user_ref=str(order.user_id) if order.user_id else "guest",
    )

    try:
        order.stripe_session_id = session.id
        order.stripe_session_url = session.url
        db.session.commit()
    except Exception:
        db.session.rollback()
        # The reconciler can still find the payment by metadata search
        log.exception("Could not store session %s on order %s", session.id, order.order_number)
        raise
    return {"session_id": session.id, "url": session.url, "reused": False}
