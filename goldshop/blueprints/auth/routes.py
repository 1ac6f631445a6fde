# goldshop/blueprints/auth/routes.py
import logging

from flask import jsonify, request, session
from flask_login import current_user, login_required, logout_user

from ...extensions import db
from ...models.cart import CartItem
from ...services.otp import request_otp, sign_in_with_otp, verify_otp
from . import auth_bp

log = logging.getLogger(__name__)


def _adopt_guest_cart(user_id: int):
    """Lines added before sign-in follow the shopper into their account."""
    sid = session.pop("cart_session", None) or request.headers.get("X-Session-Id")
    if not sid:
        return 0
    moved = (CartItem.query
             .filter(CartItem.session_id == sid, CartItem.user_id.is_(None))
             .update({"user_id": user_id, "session_id": None}, synchronize_session=False))
    db.session.commit()
    return moved


# -----------------
# OTP sign-in
# -----------------

@auth_bp.post("/otp/request")
def otp_request():
    data = request.get_json(silent=True) or {}
    issued = request_otp(data.get("phone_number") or "")
    return jsonify({"ok": True, "message": "OTP sent successfully", **issued})


@auth_bp.post("/otp/verify")
def otp_verify():
    data = request.get_json(silent=True) or {}
    phone, code = data.get("phone_number") or "", data.get("otp_code") or ""
    user, created = verify_otp(phone, code, data.get("full_name") or "")
    user = sign_in_with_otp(phone, code)
    try:
        moved = _adopt_guest_cart(user.id)
    except Exception as e:
        db.session.rollback()
        log.warning("Guest cart adoption failed for user %s: %s", user.id, e)
        moved = 0
    return jsonify({
        "ok": True,
        "message": "Signed in",
        "user": {"id": user.id, "full_name": user.full_name, "phone_number": user.phone_number,
                 "role": user.role},
        "is_new_user": created,
        "cart_items_adopted": moved,
    })


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/me")
def me():
    if not current_user.is_authenticated:
        return jsonify({"ok": True, "user": None})
    return jsonify({"ok": True, "user": {"id": current_user.id, "full_name": current_user.full_name,
                                         "phone_number": current_user.phone_number,
                                         "role": current_user.role}})
