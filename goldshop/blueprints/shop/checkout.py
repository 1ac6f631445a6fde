from flask import jsonify, request
from flask_login import current_user

from ...models.cart import CartItem
from ...services.order_writer import CheckoutRequest, place_order
from ...services.pricing import PriceTable
from . import shop_bp
from .owner import cart_owner, cart_query


@shop_bp.post("/checkout")
def checkout():
    checkout_req = CheckoutRequest.from_json(request.get_json(silent=True))
    owner = cart_owner()
    items = cart_query(owner).order_by(CartItem.created_at).all()

    order = place_order(
        checkout_req, items, PriceTable.from_db(),
        user_id=current_user.id if current_user.is_authenticated else None,
    )

    body = {"ok": True, "order": order.as_api()}
    if order.uses_gateway:
        body["next"] = {"action": "gateway_checkout", "endpoint": f"/payments/checkout/{order.id}"}
    else:
        body["next"] = {"action": "upload_receipt", "endpoint": f"/payments/ewallet/{order.id}/receipt"}
    return jsonify(body), 201
