# goldshop/security.py
from functools import wraps
import hmac

from flask import current_app, jsonify, request
from flask_login import current_user


def _error(message, status):
    return jsonify({"ok": False, "error": "unauthorized" if status == 401 else "forbidden",
                    "message": message}), status


def roles_required(*roles, message: str | None = None):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                return _error("Unauthorized", 401)
            if current_user.role not in roles:
                return _error(message or "Forbidden", 403)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


def has_cron_secret() -> bool:
    expected = current_app.config.get("CRON_SECRET")
    given = request.headers.get("X-Cron-Secret", "")
    return bool(expected) and hmac.compare_digest(given, expected)


def admin_or_cron(fn):
    """Admins from the dashboard, or the scheduler presenting X-Cron-Secret."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if has_cron_secret():
            return fn(*args, **kwargs)
        if not current_user.is_authenticated:
            return _error("Unauthorized", 401)
        if not current_user.is_admin:
            return _error("Admin access required", 403)
        return fn(*args, **kwargs)
    return wrapper
