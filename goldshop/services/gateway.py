# goldshop/services/gateway.py
"""Thin Stripe client used by checkout, the webhook and the reconciler.

Stripe objects are flattened into small records so the rest of the code
(and the tests' fake gateway) never depends on SDK object shapes.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlsplit
import logging
import re

import stripe
from flask import current_app

from ..errors import GatewayError, ValidationError

log = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^cs_(test|live)_[A-Za-z0-9]{10,250}$")
PAYMENT_INTENT_RE = re.compile(r"^pi_[A-Za-z0-9]{10,250}$")


@dataclass
class GatewaySession:
    id: str
    status: Optional[str] = None            # open|complete|expired
    payment_status: Optional[str] = None    # paid|unpaid|no_payment_required
    payment_intent: Optional[str] = None
    url: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class GatewayIntent:
    id: str
    status: str                             # succeeded|canceled|requires_payment_method|requires_action|processing...
    created: int = 0
    metadata: dict = field(default_factory=dict)


# -----------------
# Correlation ids
# -----------------

def validate_session_id(value: str) -> str:
    value = (value or "").strip()
    if not SESSION_ID_RE.match(value):
        raise ValidationError(f"Malformed checkout session id: {value[:40]!r}")
    return value


def validate_payment_intent_id(value: str) -> str:
    value = (value or "").strip()
    if not PAYMENT_INTENT_RE.match(value):
        raise ValidationError(f"Malformed payment intent id: {value[:40]!r}")
    return value


def session_id_from_url(url: str) -> str:
    """Checkout URLs end in .../pay/<session id>#<fragment>."""
    path = urlsplit((url or "").strip()).path.rstrip("/")
    if not path:
        raise ValidationError("Stored session URL is empty or unparseable")
    return validate_session_id(path.rsplit("/", 1)[-1])


# -----------------
# Stripe client
# -----------------

def _field(obj, name, default=None):
    if isinstance(obj, dict):
        value = obj.get(name)
    else:
        value = getattr(obj, name, None)
    return default if value is None else value


def _ref_id(value) -> Optional[str]:
    """Expandable fields arrive as an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def to_session(obj) -> GatewaySession:
    return GatewaySession(
        id=_field(obj, "id"),
        status=_field(obj, "status"),
        payment_status=_field(obj, "payment_status"),
        payment_intent=_ref_id(_field(obj, "payment_intent")),
        url=_field(obj, "url"),
        metadata=dict(_field(obj, "metadata", {}) or {}),
    )


def to_intent(obj) -> GatewayIntent:
    return GatewayIntent(
        id=_field(obj, "id"),
        status=_field(obj, "status", ""),
        created=int(_field(obj, "created", 0) or 0),
        metadata=dict(_field(obj, "metadata", {}) or {}),
    )


class StripeGateway:
    def __init__(self, api_key: str, *, timeout: int = 20, max_network_retries: int = 1):
        if not api_key:
            raise GatewayError("STRIPE_SECRET_KEY is not configured")
        self.api_key = api_key
        # Per-call timeout for every request this process makes to Stripe
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        stripe.max_network_retries = max_network_retries

    def retrieve_session(self, session_id: str) -> GatewaySession:
        validate_session_id(session_id)
        try:
            return to_session(stripe.checkout.Session.retrieve(session_id, api_key=self.api_key))
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe session lookup failed: {e}") from e

    def retrieve_payment_intent(self, intent_id: str) -> GatewayIntent:
        validate_payment_intent_id(intent_id)
        try:
            return to_intent(stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key))
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe payment intent lookup failed: {e}") from e

    def search_payment_intents(self, order_id: str, order_number: str) -> list[GatewayIntent]:
        query = f"metadata['orderId']:'{order_id}' OR metadata['orderNumber']:'{order_number}'"
        try:
            result = stripe.PaymentIntent.search(query=query, limit=10, api_key=self.api_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe payment intent search failed: {e}") from e
        return [to_intent(pi) for pi in _field(result, "data", [])]

    def find_session_for_intent(self, intent_id: str) -> Optional[GatewaySession]:
        try:
            result = stripe.checkout.Session.list(payment_intent=intent_id, limit=1, api_key=self.api_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Stripe session list failed: {e}") from e
        data = _field(result, "data", [])
        return to_session(data[0]) if data else None

    def create_checkout_session(self, *, order_id: str, order_number: str, amount_cents: int,
                                currency: str, payment_method_types: list[str],
                                success_url: str, cancel_url: str, user_ref: str) -> GatewaySession:
        metadata = {"orderId": order_id, "orderNumber": order_number, "userId": user_ref}
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                payment_method_types=payment_method_types,
                line_items=[{
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": f"Order {order_number}", "description": "Gold jewelry purchase"},
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                # copied onto the intent so metadata search can find it later
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            log.exception("Stripe checkout session create failed for %s", order_number)
            raise GatewayError(f"Could not start payment: {e}") from e
        log.info("Stripe session %s created for %s", _field(session, "id"), order_number)
        return to_session(session)

    def construct_event(self, payload: bytes, signature: str, secret: str):
        try:
            return stripe.Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise ValidationError(f"Invalid webhook payload: {e}") from e


def get_gateway():
    """The gateway in use by this app (tests install a fake under the same key)."""
    ext = current_app.extensions
    if "gateway" not in ext:
        cfg = current_app.config
        ext["gateway"] = StripeGateway(
            cfg.get("STRIPE_SECRET_KEY"),
            timeout=cfg.get("STRIPE_TIMEOUT_SECONDS", 20),
            max_network_retries=cfg.get("STRIPE_MAX_NETWORK_RETRIES", 1),
        )
    return ext["gateway"]
