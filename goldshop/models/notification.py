# goldshop/models/notification.py
from datetime import datetime
from ..extensions import db


# payment_synced|new_pre_order|out_of_stock|new_order|new_manual_payment
NOTIFICATION_TYPES = ("payment_synced", "new_pre_order", "out_of_stock", "new_order", "new_manual_payment")


class AdminNotification(db.Model):
    __tablename__ = "admin_notification"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)

    # deep-link context; plain columns so a notification outlives its target
    order_id = db.Column(db.String(36), index=True)
    product_id = db.Column(db.Integer)

    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def as_api(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
