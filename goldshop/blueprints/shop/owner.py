# goldshop/blueprints/shop/owner.py
import uuid

from flask import request, session
from flask_login import current_user

from ...models.cart import CartItem


def cart_owner() -> dict:
    """Signed-in user, or a guest identified by X-Session-Id / the session cookie."""
    if current_user.is_authenticated:
        return {"user_id": current_user.id}
    sid = (request.headers.get("X-Session-Id") or session.get("cart_session") or "").strip()
    if not sid:
        sid = uuid.uuid4().hex
    session["cart_session"] = sid
    return {"session_id": sid[:64]}


def owner_ref(owner: dict) -> str:
    return str(owner.get("user_id") or f"guest-{owner.get('session_id')}")


def cart_query(owner: dict):
    if "user_id" in owner:
        return CartItem.query.filter(CartItem.user_id == owner["user_id"])
    return CartItem.query.filter(CartItem.session_id == owner["session_id"])
