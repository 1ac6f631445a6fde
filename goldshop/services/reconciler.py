# goldshop/services/reconciler.py
"""Gateway payment reconciliation.

A safety net for missed redirects/webhooks: every gateway order still in
``payment_status = pending`` is looked up at Stripe and moved to
``completed`` or ``failed`` when Stripe has a final answer.

Which lookup runs is decided once per order, when the batch is scanned:

* phase 1: the order carries a correlation (session id, session URL or
  payment intent id) and is resolved directly from it;
* phase 2: it carries none, so payment intents are searched by the order's
  id / number in metadata. A hit also backfills the session id so the next
  run can use phase 1.

Writes are guarded by ``payment_status = 'pending'`` so repeated runs, or a
run racing the webhook, never apply a second transition.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
import logging
import threading

from sqlalchemy import case, func, or_, update

from ..errors import GatewayError, NotFound
from ..extensions import db
from ..models.order import Order, OrderItem, GATEWAY_METHODS
from ..models.product import Product
from .gateway import (GatewayIntent, GatewaySession, get_gateway, session_id_from_url,
                      to_intent, to_session, validate_payment_intent_id, validate_session_id)
from .notifications import Notifier

log = logging.getLogger(__name__)

PHASE_CORRELATION = 1
PHASE_SEARCH = 2

# Resolution outcomes
COMPLETED = "completed"
FAILED = "failed"
UNCHANGED = "unchanged"    # gateway has no final answer yet
SKIPPED = "skipped"        # nothing at the gateway, payment probably never started

INTENT_FAILED_STATES = {"canceled", "requires_payment_method"}


@dataclass
class Resolution:
    outcome: str
    gateway_status: Optional[str] = None
    payment_intent: Optional[str] = None
    session_id: Optional[str] = None
    session_url: Optional[str] = None
    reason: Optional[str] = None


def _from_session(session: GatewaySession) -> Resolution:
    status = f"{session.status}/{session.payment_status}"
    if session.payment_status == "paid":
        return Resolution(COMPLETED, status, session.payment_intent, session.id, session.url)
    if session.status == "expired":
        return Resolution(FAILED, status, session.payment_intent, session.id, session.url,
                          reason="checkout session expired")
    return Resolution(UNCHANGED, status, session.payment_intent, session.id,
                      reason="awaiting payer action")


def _from_intent(intent: GatewayIntent) -> Resolution:
    if intent.status == "succeeded":
        return Resolution(COMPLETED, intent.status, intent.id)
    if intent.status in INTENT_FAILED_STATES:
        return Resolution(FAILED, intent.status, intent.id, reason=f"payment intent {intent.status}")
    # requires_action, processing, requires_confirmation, requires_capture ...
    return Resolution(UNCHANGED, intent.status, intent.id, reason="payment intent in progress")


class PaymentResolver:
    """Looks up the gateway's view of one order."""

    def __init__(self, gateway):
        self.gateway = gateway

    def resolve(self, order: Order, phase: int) -> Resolution:
        if phase == PHASE_CORRELATION:
            return self.resolve_by_correlation(order)
        return self.resolve_by_metadata_search(order)

    def resolve_by_correlation(self, order: Order) -> Resolution:
        session_id = order.stripe_session_id and validate_session_id(order.stripe_session_id)
        if not session_id and order.stripe_session_url:
            # id never persisted, but the redirect URL was
            session_id = session_id_from_url(order.stripe_session_url)

        if session_id:
            return _from_session(self.gateway.retrieve_session(session_id))

        intent_id = validate_payment_intent_id(order.stripe_payment_id)
        res = _from_intent(self.gateway.retrieve_payment_intent(intent_id))
        if res.outcome == COMPLETED:
            self._backfill_session(res)
        return res

    def resolve_by_metadata_search(self, order: Order) -> Resolution:
        intents = [
            pi for pi in self.gateway.search_payment_intents(order.id, order.order_number)
            if pi.metadata.get("orderId") == order.id or pi.metadata.get("orderNumber") == order.order_number
        ]
        if not intents:
            return Resolution(SKIPPED, reason="no payment intent found; payment likely never started")

        succeeded = [pi for pi in intents if pi.status == "succeeded"]
        intent = succeeded[0] if succeeded else max(intents, key=lambda pi: pi.created)
        res = _from_intent(intent)
        if res.outcome == COMPLETED:
            self._backfill_session(res)
        return res

    def _backfill_session(self, res: Resolution):
        try:
            session = self.gateway.find_session_for_intent(res.payment_intent)
        except GatewayError as e:
            log.warning("Could not look up session for %s: %s", res.payment_intent, e)
            return
        if session:
            res.session_id = session.id
            res.session_url = session.url


# -----------------
# Applying transitions
# -----------------

def apply_resolution(order_id: str, res: Resolution) -> bool:
    """Write a final outcome if the order is still pending. Returns True if a row changed."""
    if res.outcome == COMPLETED:
        values = {
            "payment_status": "completed",
            "order_status": case((Order.order_status == "pending", "processing"), else_=Order.order_status),
        }
    elif res.outcome == FAILED:
        values = {"payment_status": "failed"}
    else:
        return False

    if res.payment_intent:
        values["stripe_payment_id"] = res.payment_intent
    if res.session_id:
        values["stripe_session_id"] = func.coalesce(Order.stripe_session_id, res.session_id)
    if res.session_url:
        values["stripe_session_url"] = func.coalesce(Order.stripe_session_url, res.session_url)
    values["updated_at"] = datetime.utcnow()

    try:
        result = db.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.payment_status == "pending")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        changed = result.rowcount == 1
        if changed and res.outcome == FAILED:
            _restore_stock(order_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return changed


def _restore_stock(order_id: str):
    """Put a failed order's units back on sale. Runs inside the caller's transaction."""
    status = db.session.query(Order.order_status).filter(Order.id == order_id).scalar()
    if status == "cancelled":
        return  # cancel_order already put the units back
    rows = (db.session.query(OrderItem.product_id, OrderItem.quantity)
            .filter(OrderItem.order_id == order_id, OrderItem.product_id.isnot(None))
            .all())
    for product_id, quantity in rows:
        db.session.execute(
            update(Product).where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
        )
    if rows:
        log.info("Restored stock for %s line(s) of failed order %s", len(rows), order_id)


def _queue_synced(notifier: Notifier, order_id: str, order_number: str, source: str):
    notifier.add(
        "payment_synced", "Payment Status Synced",
        f"Order {order_number} payment status updated from pending to completed (synced from {source}).",
        order_id=order_id,
    )


# -----------------
# Batch
# -----------------

@dataclass
class SyncResults:
    total: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    details: list = field(default_factory=list)

    def __post_init__(self):
        self._lock = threading.Lock()

    def record(self, order_number: str, status: str, phase: int, **context):
        entry = {"order_number": order_number, "status": status, "phase": phase}
        entry.update({k: v for k, v in context.items() if v is not None})
        with self._lock:
            if status == "updated":
                self.updated += 1
            elif status == "error":
                self.failed += 1
            else:
                self.skipped += 1
            self.details.append(entry)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "updated": self.updated,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": list(self.details),
        }


def pending_gateway_orders(since: Optional[datetime] = None) -> list[Order]:
    q = Order.query.filter(
        Order.payment_status == "pending",
        Order.payment_method.in_(GATEWAY_METHODS),
    )
    if since is not None:
        q = q.filter(Order.created_at >= since)
    return q.order_by(Order.created_at.desc()).all()


def lookback_start(hours: int) -> Optional[datetime]:
    return datetime.utcnow() - timedelta(hours=hours) if hours and hours > 0 else None


def reconcile_order(resolver: PaymentResolver, order: Order, phase: int,
                    results: SyncResults, notifier: Notifier):
    order_id, order_number = order.id, order.order_number
    res = resolver.resolve(order, phase)

    if res.outcome in (UNCHANGED, SKIPPED):
        results.record(order_number, "skipped", phase,
                       gateway_status=res.gateway_status, reason=res.reason)
        return

    if not apply_resolution(order_id, res):
        results.record(order_number, "skipped", phase,
                       gateway_status=res.gateway_status, reason="already resolved")
        return

    log.info("Order %s -> payment %s (phase %s, gateway %s)",
             order_number, res.outcome, phase, res.gateway_status)
    results.record(order_number, "updated", phase,
                   payment_status=res.outcome, gateway_status=res.gateway_status,
                   payment_intent=res.payment_intent,
                   backfilled_session=res.session_id if phase == PHASE_SEARCH else None)
    if res.outcome == COMPLETED:
        _queue_synced(notifier, order_id, order_number, "Stripe")
        notifier.dispatch()


def sync_pending_payments(gateway=None, *, since: Optional[datetime] = None,
                          notifier: Optional[Notifier] = None) -> SyncResults:
    """Run both phases over every pending gateway order. Safe to re-run."""
    resolver = PaymentResolver(gateway or get_gateway())
    notifier = notifier or Notifier()

    # Phase is fixed here, before any order is touched
    scan = [(o, PHASE_CORRELATION if o.has_correlation else PHASE_SEARCH)
            for o in pending_gateway_orders(since)]
    results = SyncResults(total=len(scan))
    log.info("Payment sync: %s pending gateway orders", results.total)

    for order, phase in scan:
        order_number = order.order_number
        try:
            reconcile_order(resolver, order, phase, results, notifier)
        except Exception as e:
            db.session.rollback()
            log.warning("Payment sync error for %s (phase %s): %s", order_number, phase, e)
            results.record(order_number, "error", phase, error=str(e))

    log.info("Payment sync done: total=%s updated=%s failed=%s skipped=%s",
             results.total, results.updated, results.failed, results.skipped)
    return results


def sync_order(order_id: str, gateway=None) -> dict:
    """Resolve a single order on demand (e.g. from the payment return page)."""
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.payment_status != "pending":
        return {"order_number": order.order_number, "status": order.payment_status,
                "message": "Payment already resolved"}
    if not order.uses_gateway:
        return {"order_number": order.order_number, "status": order.payment_status,
                "message": "Order is settled manually"}

    phase = PHASE_CORRELATION if order.has_correlation else PHASE_SEARCH
    results = SyncResults(total=1)
    reconcile_order(PaymentResolver(gateway or get_gateway()), order, phase, results, Notifier())
    db.session.refresh(order)
    return {"order_number": order.order_number, "status": order.payment_status,
            "detail": results.details[0]}


# -----------------
# Webhook
# -----------------

def _order_for_session(session: GatewaySession) -> Optional[Order]:
    order_id = session.metadata.get("orderId")
    if order_id:
        order = db.session.get(Order, order_id)
        if order:
            return order
    return Order.query.filter(Order.stripe_session_id == session.id).first()


def _order_for_intent(intent: GatewayIntent) -> Optional[Order]:
    conds = [Order.stripe_payment_id == intent.id]
    if intent.metadata.get("orderId"):
        conds.append(Order.id == intent.metadata["orderId"])
    return Order.query.filter(or_(*conds)).first()


def handle_webhook_event(event) -> dict:
    """Apply a verified Stripe event through the same guarded transitions."""
    event_type = event["type"]
    obj = event["data"]["object"]

    if event_type.startswith("checkout.session."):
        session = to_session(obj)
        order = _order_for_session(session)
        if event_type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
            res = _from_session(session) if event_type.endswith("completed") else \
                Resolution(COMPLETED, "async_payment_succeeded", session.payment_intent, session.id, session.url)
        elif event_type in ("checkout.session.expired", "checkout.session.async_payment_failed"):
            res = Resolution(FAILED, event_type.rsplit(".", 1)[-1], session.payment_intent, session.id, session.url)
        else:
            return {"received": True, "handled": False}
    elif event_type == "payment_intent.succeeded":
        intent = to_intent(obj)
        order = _order_for_intent(intent)
        res = _from_intent(intent)
    else:
        return {"received": True, "handled": False}

    if order is None:
        log.warning("Webhook %s matched no order", event_type)
        return {"received": True, "handled": False}

    order_id, order_number = order.id, order.order_number
    updated = apply_resolution(order_id, res)
    log.info("Webhook %s for %s: outcome=%s updated=%s", event_type, order_number, res.outcome, updated)
    if updated and res.outcome == COMPLETED:
        notifier = Notifier()
        _queue_synced(notifier, order_id, order_number, "Stripe webhook")
        notifier.dispatch()
    return {"received": True, "handled": True, "order_number": order_number,
            "outcome": res.outcome, "updated": updated}
