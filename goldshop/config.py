# goldshop/config.py
import os
from dotenv import load_dotenv

load_dotenv()

def _as_bool(val: str | None, default=False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}

def _as_list(val: str | None) -> list[str]:
    return [v.strip() for v in (val or "").split(",") if v.strip()]

def _as_delays(val: str | None) -> tuple[float, ...]:
    return tuple(float(v) for v in _as_list(val))

class Config:
    # --- Core ---
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    APP_VERSION = os.getenv("APP_VERSION")
    EXTERNAL_BASE_URL = os.getenv("EXTERNAL_BASE_URL", "http://localhost:5000")

    # DB
    SQLALCHEMY_DATABASE_URI = (
        os.getenv("SQLALCHEMY_DATABASE_URI")
        or os.getenv("DATABASE_URL")
        or "sqlite:///goldshop.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # --- Orders ---
    ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "JJ")
    CURRENCY = os.getenv("CURRENCY", "myr")

    # --- Gold price gate ---
    PRICE_CHANGE_THRESHOLD_PCT = float(os.getenv("PRICE_CHANGE_THRESHOLD_PCT", "2.0"))
    PRICE_MAX_AGE_HOURS = int(os.getenv("PRICE_MAX_AGE_HOURS", "24"))

    # --- Payments: Stripe ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_TIMEOUT_SECONDS = int(os.getenv("STRIPE_TIMEOUT_SECONDS", "20"))
    STRIPE_MAX_NETWORK_RETRIES = int(os.getenv("STRIPE_MAX_NETWORK_RETRIES", "1"))
    # 0 disables the window and scans every pending order
    SYNC_LOOKBACK_HOURS = int(os.getenv("SYNC_LOOKBACK_HOURS", "48"))
    CRON_SECRET = os.getenv("CRON_SECRET")

    # --- E-wallet receipts (private) ---
    RECEIPT_FOLDER = os.getenv("RECEIPT_FOLDER", "instance/receipts")
    RECEIPT_URL_TTL_SECONDS = int(os.getenv("RECEIPT_URL_TTL_SECONDS", "55"))
    RECEIPT_ALLOWED_EXTENSIONS = set(_as_list(os.getenv("RECEIPT_ALLOWED_EXTENSIONS", "png,jpg,jpeg,webp,pdf")))
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(10 * 1024 * 1024)))  # 10MB

    # --- OTP sign-in ---
    OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "5"))
    OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", "5"))
    OTP_SIGNIN_DELAYS = _as_delays(os.getenv("OTP_SIGNIN_DELAYS", "0,0.5,1,2"))  # first try is immediate

    # --- Mail (admin alerts) ---
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _as_bool(os.getenv("MAIL_USE_TLS", "1"))
    MAIL_USE_SSL = _as_bool(os.getenv("MAIL_USE_SSL", "0"))  # don't enable together with TLS
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME)
    MAIL_SUPPRESS_SEND = _as_bool(os.getenv("MAIL_SUPPRESS_SEND", "0"))
    ADMIN_ALERT_EMAILS = _as_list(os.getenv("ADMIN_ALERT_EMAILS"))

    # --- Logging ---
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "logs")
    LOG_FILENAME = os.getenv("LOG_FILENAME", "goldshop.log")
    LOG_JSON = _as_bool(os.getenv("LOG_JSON", "0"))
    LOG_TO_FILE = _as_bool(os.getenv("LOG_TO_FILE", "1"))

    # --- Sentry ---
    SENTRY_DSN = os.getenv("SENTRY_DSN", "")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0"))

    # --- Security cookies (recommended for prod) ---
    SESSION_COOKIE_SECURE = _as_bool(os.getenv("SESSION_COOKIE_SECURE", "1"))
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    CRON_SECRET = "cron-test"
    SYNC_LOOKBACK_HOURS = 0
    OTP_SIGNIN_DELAYS = (0.0, 0.0, 0.0, 0.0)
    MAIL_SUPPRESS_SEND = True
    ADMIN_ALERT_EMAILS = []
    SESSION_COOKIE_SECURE = False
    LOG_TO_FILE = False
