from datetime import datetime

from flask import current_app, jsonify, request

from ...errors import NotFound, ValidationError
from ...extensions import db
from ...models.cart import CartItem
from ...models.product import Product
from ...services.pricing import PriceTable, cart_total, price_line, stamp_cart_line
from ...services.staleness import find_changed_lines, refresh_cart_prices
from . import shop_bp
from .owner import cart_owner, cart_query


def _cart_payload(items, prices: PriceTable):
    cfg = current_app.config
    lines = [price_line(it.product, it.quantity, prices, it.selected_variants) for it in items]
    changes = find_changed_lines(
        items, prices,
        threshold_pct=cfg.get("PRICE_CHANGE_THRESHOLD_PCT", 2.0),
        max_age_hours=cfg.get("PRICE_MAX_AGE_HOURS", 24),
    )
    return {
        "ok": True,
        "items": [
            {**it.as_api(), "unit_price": float(lp.unit_price), "line_total": float(lp.line_total)}
            for it, lp in zip(items, lines)
        ],
        "total": float(cart_total(lines)),
        "needs_refresh": bool(changes),
        "price_changes": changes,
    }


@shop_bp.get("/cart")
def view_cart():
    items = cart_query(cart_owner()).order_by(CartItem.created_at).all()
    return jsonify(_cart_payload(items, PriceTable.from_db()))


@shop_bp.post("/cart/items")
def add_to_cart():
    data = request.get_json(silent=True) or {}
    try:
        product_id = int(data.get("product_id"))
        quantity = int(data.get("quantity", 1))
    except (TypeError, ValueError):
        raise ValidationError("product_id and quantity must be integers")
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    variants = data.get("selected_variants") or None
    if variants is not None and not isinstance(variants, dict):
        raise ValidationError("selected_variants must be an object")

    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found")

    owner = cart_owner()
    prices = PriceTable.from_db()
    item = next((it for it in cart_query(owner).filter(CartItem.product_id == product_id)
                 if (it.selected_variants or None) == variants), None)
    if item is None:
        item = CartItem(product=product, product_id=product_id, quantity=quantity,
                        selected_variants=variants, **owner)
        db.session.add(item)
    else:
        item.quantity += quantity
    stamp_cart_line(item, prices)
    db.session.commit()
    return jsonify({"ok": True, "item": item.as_api()}), 201


@shop_bp.delete("/cart/items/<int:item_id>")
def remove_from_cart(item_id):
    item = cart_query(cart_owner()).filter(CartItem.id == item_id).first()
    if item is None:
        raise NotFound("Cart item not found")
    db.session.delete(item)
    db.session.commit()
    return jsonify({"ok": True})


@shop_bp.post("/cart/refresh")
def refresh_cart():
    """Accept current gold prices for every line (after a stale-price rejection)."""
    items = cart_query(cart_owner()).order_by(CartItem.created_at).all()
    prices = PriceTable.from_db()
    refreshed = refresh_cart_prices(items, prices, datetime.utcnow())
    db.session.commit()
    payload = _cart_payload(items, prices)
    payload["refreshed"] = refreshed
    return jsonify(payload)
