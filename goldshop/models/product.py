# goldshop/models/product.py
from datetime import datetime
from ..extensions import db


GOLD_TYPES = ("916", "999")


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    gold_type = db.Column(db.String(8), nullable=False)        # 916|999
    weight_grams = db.Column(db.Numeric(10, 3), nullable=False)
    labour_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)

    # Deposit-based items: shopper pays preorder_deposit per unit upfront
    is_preorder = db.Column(db.Boolean, default=False)
    preorder_deposit = db.Column(db.Numeric(12, 2))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_deposit_eligible(self) -> bool:
        return bool(self.is_preorder and self.preorder_deposit and self.preorder_deposit > 0)


class GoldPrice(db.Model):
    """Published price per gram, one row per gold type."""
    __tablename__ = "gold_price"

    gold_type = db.Column(db.String(8), primary_key=True)
    price_per_gram = db.Column(db.Numeric(12, 2), nullable=False)
    updated_by = db.Column(db.Integer, db.ForeignKey("user.id"))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
