# goldshop/blueprints/payments/receipts.py
from flask import jsonify, request, send_file

from ...services.manual_settlement import resolve_receipt_token, submit_receipt
from ..shop.owner import cart_owner, owner_ref
from . import payments_bp
from .routes import load_order


@payments_bp.post("/ewallet/<order_id>/receipt")
def upload_receipt(order_id):
    order = load_order(order_id)
    payment = submit_receipt(order, request.files.get("receipt"), owner_ref(cart_owner()))
    return jsonify({"ok": True, "manual_payment": payment.as_api(),
                    "message": "Receipt received. We'll confirm your payment shortly."}), 201


@payments_bp.get("/receipts/<token>")
def serve_receipt(token):
    path = resolve_receipt_token(token)
    resp = send_file(path, conditional=False, max_age=0)
    resp.headers["Cache-Control"] = "private, no-store"
    return resp
