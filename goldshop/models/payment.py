# goldshop/models/payment.py
from datetime import datetime
from ..extensions import db


class ManualPayment(db.Model):
    """E-wallet receipt awaiting (or past) admin review."""
    __tablename__ = "manual_payment"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), unique=True, nullable=False, index=True)

    # path inside the private receipt store, never a public URL
    receipt_path = db.Column(db.String(512), nullable=False)

    verified = db.Column(db.Boolean, default=False, nullable=False)
    verified_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    verified_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    order = db.relationship("Order", backref=db.backref("manual_payment", uselist=False))

    def as_api(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "receipt_path": self.receipt_path,
            "verified": self.verified,
            "verified_by": self.verified_by,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
