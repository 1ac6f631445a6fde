# goldshop/models/otp.py
from datetime import datetime
from ..extensions import db


class OtpVerification(db.Model):
    __tablename__ = "otp_verification"

    id = db.Column(db.Integer, primary_key=True)
    phone_number = db.Column(db.String(32), nullable=False, index=True)
    code_hash = db.Column(db.String(255), nullable=False)
    attempts = db.Column(db.Integer, default=0)

    expires_at = db.Column(db.DateTime, nullable=False)
    verified = db.Column(db.Boolean, default=False)
    verified_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() >= self.expires_at
