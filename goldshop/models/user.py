# goldshop/models/user.py
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from ..extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(120), default="")
    phone_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255))

    # customer|admin
    role = db.Column(db.String(20), nullable=False, default="customer", index=True)

    # Transient credential installed by OTP verification; replaced on every sign-in
    password_hash = db.Column(db.String(255))

    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # --- Auth helpers ---
    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return bool(self.password_hash) and check_password_hash(self.password_hash, password)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def mark_login(self):
        self.last_login_at = datetime.utcnow()
