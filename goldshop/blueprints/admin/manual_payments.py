from flask import jsonify, request
from flask_login import current_user

from ...errors import NotFound
from ...extensions import db
from ...models.payment import ManualPayment
from ...security import roles_required
from ...services.manual_settlement import receipt_preview_url, verify_manual_payment
from . import admin_bp


@admin_bp.get("/manual-payments")
@roles_required("admin")
def list_manual_payments():
    q = ManualPayment.query
    status = request.args.get("status", "pending")
    if status == "pending":
        q = q.filter(ManualPayment.verified.is_(False))
    elif status == "verified":
        q = q.filter(ManualPayment.verified.is_(True))
    rows = q.order_by(ManualPayment.created_at.desc()).limit(200).all()
    return jsonify({"ok": True, "manual_payments": [p.as_api() for p in rows]})


@admin_bp.get("/manual-payments/<int:payment_id>/preview")
@roles_required("admin")
def preview_receipt(payment_id):
    payment = db.session.get(ManualPayment, payment_id)
    if payment is None:
        raise NotFound("Manual payment not found")
    # fresh link on every request; old links simply expire
    return jsonify({"ok": True, **receipt_preview_url(payment)})


@admin_bp.post("/manual-payments/<int:payment_id>/verify")
@roles_required("admin")
def verify_payment(payment_id):
    payment = verify_manual_payment(payment_id, current_user.id)
    return jsonify({
        "ok": True,
        "manual_payment": payment.as_api(),
        "order": {
            "id": payment.order.id,
            "order_number": payment.order.order_number,
            "payment_status": payment.order.payment_status,
            "order_status": payment.order.order_status,
        },
    })
