# goldshop/services/manual_settlement.py
"""E-wallet orders: receipt upload, private storage and admin verification."""
from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.utils import secure_filename

from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models.order import Order
from ..models.payment import ManualPayment
from .notifications import Notifier

log = logging.getLogger(__name__)

RECEIPT_TOKEN_SALT = "receipt-preview"


def receipt_base() -> Path:
    base = current_app.config.get("RECEIPT_FOLDER")
    if not base:
        base = Path(current_app.instance_path) / "receipts"
    else:
        base = Path(base)
    base.mkdir(parents=True, exist_ok=True)
    return base


def receipt_ext(filename: str) -> str:
    exts = current_app.config.get("RECEIPT_ALLOWED_EXTENSIONS") or {"png", "jpg", "jpeg", "pdf"}
    suffix = Path(secure_filename(filename or "")).suffix.lower().lstrip(".")
    if not suffix or suffix not in exts:
        raise ValidationError("Receipt must be an image or PDF", allowed=sorted(exts))
    return suffix


def save_receipt(file_storage, owner: str, order_id: str) -> str:
    """
    Saves to RECEIPT_FOLDER / <owner> / <order-id>-<timestamp>.<ext>, returns the
    path relative to the store. Nothing here is served statically.
    """
    ext = receipt_ext(file_storage.filename)
    base = receipt_base()
    target_dir = base / secure_filename(owner)
    target_dir.mkdir(parents=True, exist_ok=True)

    stamp = int(datetime.utcnow().timestamp() * 1000)
    dest = target_dir / f"{secure_filename(order_id)}-{stamp}.{ext}"
    file_storage.save(dest)
    return dest.relative_to(base).as_posix()


def submit_receipt(order: Order, file_storage, owner_id: Optional[str] = None,
                   notifier: Optional[Notifier] = None) -> ManualPayment:
    if order.payment_method != "e_wallet":
        raise ValidationError("Receipts are only accepted for e-wallet orders")
    if order.payment_status != "pending":
        raise Conflict(f"Order {order.order_number} payment is already {order.payment_status}")
    if file_storage is None or not file_storage.filename:
        raise ValidationError("No receipt file uploaded")

    owner = owner_id or (str(order.user_id) if order.user_id else "guest")
    path = save_receipt(file_storage, owner, order.id)

    payment = order.manual_payment
    try:
        if payment is None:
            payment = ManualPayment(order_id=order.id, receipt_path=path)
            db.session.add(payment)
        elif payment.verified:
            raise Conflict("Payment has already been verified")
        else:
            # re-upload replaces the pending receipt
            payment.receipt_path = path
            payment.created_at = datetime.utcnow()
        db.session.commit()
    except Exception:
        db.session.rollback()
        _discard(path)
        raise

    log.info("Receipt stored for %s at %s", order.order_number, path)
    (notifier or Notifier()).add(
        "new_manual_payment", "New E-wallet Payment",
        f"Order {order.order_number}: receipt uploaded for RM {order.total_amount}, awaiting verification.",
        order_id=order.id,
    ).dispatch()
    return payment


def _discard(path: str):
    try:
        (receipt_base() / path).unlink(missing_ok=True)
    except OSError as e:
        log.warning("Could not remove orphan receipt %s: %s", path, e)


# -----------------
# Signed previews
# -----------------

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=RECEIPT_TOKEN_SALT)


def receipt_preview_token(payment: ManualPayment) -> str:
    return _serializer().dumps({"p": payment.id, "path": payment.receipt_path})


def receipt_preview_url(payment: ManualPayment) -> dict:
    """A fresh link each call; the link expires, the stored path does not."""
    base = (current_app.config.get("EXTERNAL_BASE_URL") or "").rstrip("/")
    ttl = current_app.config.get("RECEIPT_URL_TTL_SECONDS", 55)
    return {
        "url": f"{base}/payments/receipts/{receipt_preview_token(payment)}",
        "expires_in": ttl,
    }


def resolve_receipt_token(token: str, max_age: Optional[int] = None) -> Path:
    """Returns the absolute file path for a still-valid token."""
    max_age = max_age if max_age is not None else current_app.config.get("RECEIPT_URL_TTL_SECONDS", 55)
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise ValidationError("Receipt link has expired")
    except BadSignature:
        raise NotFound("Receipt not found")

    payment = db.session.get(ManualPayment, data.get("p"))
    if payment is None or payment.receipt_path != data.get("path"):
        raise NotFound("Receipt not found")

    base = receipt_base().resolve()
    full = (base / payment.receipt_path).resolve()
    if base not in full.parents or not full.is_file():
        raise NotFound("Receipt not found")
    return full


# -----------------
# Verification
# -----------------

def verify_manual_payment(payment_id: int, verifier_id: int) -> ManualPayment:
    """Mark the receipt verified and the order paid, both or neither."""
    payment = db.session.get(ManualPayment, payment_id)
    if payment is None:
        raise NotFound("Manual payment not found")
    if payment.verified:
        raise Conflict("Payment has already been verified")

    order = payment.order
    order_number = order.order_number
    try:
        payment.verified = True
        payment.verified_by = verifier_id
        payment.verified_at = datetime.utcnow()
        order.payment_status = "completed"
        order.order_status = "processing"
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("Verification of manual payment %s (order %s) failed; nothing saved",
                      payment_id, order_number)
        raise

    log.info("Manual payment %s verified by user %s (order %s)", payment_id, verifier_id, order_number)
    return payment
