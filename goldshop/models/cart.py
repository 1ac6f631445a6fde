# goldshop/models/cart.py
from datetime import datetime
from ..extensions import db


class CartItem(db.Model):
    __tablename__ = "cart_item"

    id = db.Column(db.Integer, primary_key=True)

    # owner: signed-in user or guest session (exactly one is set)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True)
    session_id = db.Column(db.String(64), index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    selected_variants = db.Column(db.JSON)   # {"Size": {"name": "Size", "value": "5cm", "weight_adjustment": 2.1}}

    # price snapshot taken at add-to-cart / refresh time
    gold_price_snapshot = db.Column(db.Numeric(12, 2))
    calculated_price = db.Column(db.Numeric(12, 2))
    locked_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    product = db.relationship("Product", lazy="joined")

    def variant_label(self) -> str:
        """Variants rendered as "Size: 5cm, Color: Gold", as stored on order lines."""
        variants = self.selected_variants or {}
        return ", ".join(f"{v.get('name')}: {v.get('value')}" for v in variants.values())

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "selected_variants": self.selected_variants or {},
            "gold_price_snapshot": float(self.gold_price_snapshot) if self.gold_price_snapshot is not None else None,
            "calculated_price": float(self.calculated_price) if self.calculated_price is not None else None,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
        }
