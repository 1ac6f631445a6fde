# goldshop/services/otp.py
"""Phone sign-in with one-time codes.

Verification installs the code as the user's transient password; the
sign-in step then authenticates with it. That credential may not be
readable on the very first attempt after it is written, so sign-in runs
under a short fixed retry schedule before giving up.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
import logging
import re
import secrets

from flask import current_app
from flask_login import login_user
from werkzeug.security import check_password_hash, generate_password_hash

from ..errors import OtpSignInFailed, ValidationError
from ..extensions import db
from ..models.otp import OtpVerification
from ..models.user import User
from ..retry import RetryExhausted, retry_fixed

log = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "+60"
# one immediate attempt, then three retries
SIGNIN_DELAYS = (0.0, 0.5, 1.0, 2.0)


class CredentialNotReady(Exception):
    pass


def normalize_phone(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """``011-1234 5678`` / ``601112345678`` / ``+60 11 1234 5678`` -> ``+601112345678``."""
    digits = re.sub(r"\D+", "", raw or "")
    if len(digits) < 7:
        raise ValidationError("A valid phone number is required")
    cc = country_code.lstrip("+")
    if digits.startswith(cc):
        return f"+{digits}"
    if digits.startswith("0"):
        digits = digits[1:]
    return f"+{cc}{digits}"


def _mask(phone: str) -> str:
    return f"{phone[:4]}****{phone[-3:]}"


def request_otp(phone: str) -> dict:
    phone = normalize_phone(phone)
    code = f"{secrets.randbelow(900000) + 100000}"
    ttl = current_app.config.get("OTP_TTL_MINUTES", 5)

    try:
        db.session.add(OtpVerification(
            phone_number=phone,
            code_hash=generate_password_hash(code),
            expires_at=datetime.utcnow() + timedelta(minutes=ttl),
        ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("Could not store OTP for %s", _mask(phone))
        raise

    # delivery (SMS) is plugged in by the deployment
    sender = current_app.extensions.get("otp_sender")
    if sender is not None:
        sender(phone, f"Your verification code is: {code}. Valid for {ttl} minutes.")
    log.info("OTP issued for %s (expires in %s min)", _mask(phone), ttl)
    return {"phone_number": phone, "expires_in": ttl * 60}


def verify_otp(phone: str, code: str, full_name: str = "") -> tuple[User, bool]:
    """Check the newest live code for the number; returns (user, created)."""
    phone = normalize_phone(phone)
    code = (code or "").strip()
    if not code:
        raise ValidationError("Phone number and OTP code are required")

    otp = (OtpVerification.query
           .filter(OtpVerification.phone_number == phone,
                   OtpVerification.verified.is_(False),
                   OtpVerification.expires_at > datetime.utcnow())
           .order_by(OtpVerification.created_at.desc(), OtpVerification.id.desc())
           .first())
    max_attempts = current_app.config.get("OTP_MAX_ATTEMPTS", 5)
    if otp is None or (otp.attempts or 0) >= max_attempts:
        raise ValidationError("Invalid or expired OTP code")

    if not check_password_hash(otp.code_hash, code):
        otp.attempts = (otp.attempts or 0) + 1
        db.session.commit()
        raise ValidationError("Invalid or expired OTP code")

    created = False
    try:
        otp.verified = True
        otp.verified_at = datetime.utcnow()
        user = User.query.filter_by(phone_number=phone).first()
        if user is None:
            user = User(phone_number=phone, full_name=(full_name or "").strip(), role="customer")
            db.session.add(user)
            created = True
        user.set_password(code)
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.exception("OTP verification for %s could not be finalized", _mask(phone))
        raise

    log.info("OTP verified for %s (user %s, new=%s)", _mask(phone), user.id, created)
    return user, created


def _attempt_sign_in(phone: str, code: str) -> User:
    db.session.expire_all()
    user = User.query.filter_by(phone_number=phone).first()
    if user is None or not user.check_password(code):
        raise CredentialNotReady(f"credential for {_mask(phone)} not accepted yet")
    user.mark_login()
    db.session.commit()
    login_user(user)
    return user


def sign_in_with_otp(phone: str, code: str, *, delays=None, sleep=None) -> User:
    phone = normalize_phone(phone)
    delays = delays if delays is not None else current_app.config.get("OTP_SIGNIN_DELAYS", SIGNIN_DELAYS)
    kwargs = {"retry_on": (CredentialNotReady,), "label": f"OTP sign-in {_mask(phone)}"}
    if sleep is not None:
        kwargs["sleep"] = sleep
    try:
        return retry_fixed(lambda: _attempt_sign_in(phone, code), delays, **kwargs)
    except RetryExhausted as e:
        log.warning("OTP sign-in gave up for %s after %s attempts", _mask(phone), e.attempts)
        raise OtpSignInFailed("Sign-in failed. Please request a new code.")
