import re

import pytest
from flask_login import current_user

from goldshop.errors import OtpSignInFailed, ValidationError
from goldshop.models import OtpVerification, User
from goldshop.services import otp


@pytest.fixture
def outbox(app):
    sent = []
    app.extensions["otp_sender"] = lambda phone, message: sent.append((phone, message))
    return sent


def _code(outbox):
    return re.search(r"\b(\d{6})\b", outbox[-1][1]).group(1)


@pytest.mark.parametrize("raw", ["011-1111 2222", "+60 11 1111 2222", "601111112222", "1111112222"])
def test_phone_normalization(raw):
    assert otp.normalize_phone(raw) == "+601111112222"


def test_code_is_stored_hashed(outbox):
    issued = otp.request_otp("0111111222")
    code = _code(outbox)
    row = OtpVerification.query.one()
    assert issued["expires_in"] == 300
    assert row.code_hash != code and len(code) == 6


def test_verify_creates_user_with_transient_credential(outbox):
    otp.request_otp("0111111222")
    code = _code(outbox)
    user, created = otp.verify_otp("0111111222", code, "Aminah")
    assert created and user.full_name == "Aminah"
    assert user.check_password(code)
    assert OtpVerification.query.one().verified


def test_wrong_code_counts_attempts(outbox):
    otp.request_otp("0111111222")
    with pytest.raises(ValidationError):
        otp.verify_otp("0111111222", "000000" if _code(outbox) != "000000" else "111111")
    assert OtpVerification.query.one().attempts == 1


def test_code_cannot_be_reused(outbox):
    otp.request_otp("0111111222")
    code = _code(outbox)
    otp.verify_otp("0111111222", code)
    with pytest.raises(ValidationError):
        otp.verify_otp("0111111222", code)


def test_sign_in_logs_the_user_in(app, outbox):
    otp.request_otp("0111111222")
    code = _code(outbox)
    otp.verify_otp("0111111222", code)
    with app.test_request_context():
        user = otp.sign_in_with_otp("0111111222", code, delays=(0, 0, 0), sleep=lambda s: None)
        assert current_user.is_authenticated and current_user.id == user.id
    assert User.query.one().last_login_at is not None


def test_sign_in_tries_at_once_then_retries_three_times(app, monkeypatch):
    events = []

    def never_ready(phone, code):
        events.append("attempt")
        raise otp.CredentialNotReady("not yet")
    monkeypatch.setattr(otp, "_attempt_sign_in", never_ready)
    app.config["OTP_SIGNIN_DELAYS"] = otp.SIGNIN_DELAYS

    with app.test_request_context():
        with pytest.raises(OtpSignInFailed, match="request a new code"):
            otp.sign_in_with_otp("0111111222", "123456", sleep=events.append)
    assert events == ["attempt", 0.5, "attempt", 1.0, "attempt", 2.0, "attempt"]


def test_sign_in_recovers_when_credential_appears(app, monkeypatch, outbox):
    otp.request_otp("0111111222")
    code = _code(outbox)
    otp.verify_otp("0111111222", code)

    real = otp._attempt_sign_in
    calls = []

    def slow_propagation(phone, c):
        calls.append(1)
        if len(calls) == 1:
            raise otp.CredentialNotReady("not yet")
        return real(phone, c)
    monkeypatch.setattr(otp, "_attempt_sign_in", slow_propagation)

    with app.test_request_context():
        otp.sign_in_with_otp("0111111222", code, delays=(0, 0, 0))
        assert current_user.is_authenticated
    assert len(calls) == 2
