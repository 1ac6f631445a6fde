# goldshop/models/order.py
import uuid
from datetime import datetime
from ..extensions import db


PAYMENT_METHODS = ("gateway_fpx", "gateway_card", "e_wallet")
GATEWAY_METHODS = ("gateway_fpx", "gateway_card")
PAYMENT_STATUSES = ("pending", "completed", "failed")
ORDER_STATUSES = ("pending", "processing", "completed", "cancelled", "refunded")
PREORDER_STATUSES = ("pending", "ready_for_payment", "completed", "cancelled")


def _uuid() -> str:
    return str(uuid.uuid4())


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)  # JJ-00042
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)           # null for guests

    # Customer snapshot
    full_name = db.Column(db.String(120), nullable=False)
    phone_number = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255))
    notes = db.Column(db.Text)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False)

    # gateway_fpx|gateway_card|e_wallet
    payment_method = db.Column(db.String(20), nullable=False)
    # pending|completed|failed
    payment_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # pending|processing|completed|cancelled|refunded
    order_status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    # Gateway correlation (any of these may be missing if the redirect was interrupted)
    stripe_session_id = db.Column(db.String(255), index=True)
    stripe_session_url = db.Column(db.Text)
    stripe_payment_id = db.Column(db.String(255), index=True)

    tracking_number = db.Column(db.String(64))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    pre_orders = db.relationship(
        "PreOrder",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def uses_gateway(self) -> bool:
        return self.payment_method in GATEWAY_METHODS

    @property
    def has_correlation(self) -> bool:
        return bool(self.stripe_session_id or self.stripe_payment_id or self.stripe_session_url)

    def as_api(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer": {
                "full_name": self.full_name,
                "phone_number": self.phone_number,
                "email": self.email,
            },
            "notes": self.notes,
            "total_amount": float(self.total_amount or 0),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "order_status": self.order_status,
            "stripe_session_id": self.stripe_session_id,
            "stripe_payment_id": self.stripe_payment_id,
            "tracking_number": self.tracking_number,
            "items": [i.as_api() for i in self.items],
            "pre_orders": [p.as_api() for p in self.pre_orders],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class OrderItem(db.Model):
    """Written once at checkout; never updated."""
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), index=True)

    product_name = db.Column(db.String(255))
    gold_type = db.Column(db.String(8))
    weight_grams = db.Column(db.Numeric(10, 3))
    labour_fee = db.Column(db.Numeric(12, 2))
    gold_price_at_purchase = db.Column(db.Numeric(12, 2))
    variant_selection = db.Column(db.String(255))

    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Numeric(12, 2))

    def as_api(self):
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "gold_type": self.gold_type,
            "weight_grams": float(self.weight_grams or 0),
            "labour_fee": float(self.labour_fee or 0),
            "gold_price_at_purchase": float(self.gold_price_at_purchase or 0),
            "variant_selection": self.variant_selection,
            "quantity": self.quantity,
            "subtotal": float(self.subtotal or 0),
        }


class PreOrder(db.Model):
    __tablename__ = "pre_orders"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False)

    deposit_paid = db.Column(db.Numeric(12, 2), nullable=False)
    balance_due = db.Column(db.Numeric(12, 2), nullable=False)
    # pending|ready_for_payment|completed|cancelled
    status = db.Column(db.String(20), nullable=False, default="pending")
    notes = db.Column(db.Text)

    ready_at = db.Column(db.DateTime)
    final_payment_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "deposit_paid": float(self.deposit_paid or 0),
            "balance_due": float(self.balance_due or 0),
            "status": self.status,
        }


class OrderSequence(db.Model):
    """Single-row counter behind human order numbers."""
    __tablename__ = "order_sequence"

    id = db.Column(db.Integer, primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)
