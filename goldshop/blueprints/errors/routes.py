import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from ...errors import ShopError
from ...extensions import db
from . import errors_bp

log = logging.getLogger(__name__)


def _rollback():
    # if a DB action caused this, rollback so the session isn't stuck in a bad transaction
    try:
        db.session.rollback()
    except Exception as e:
        log.warning("Rollback after error failed: %s", e)


# Domain errors: validation, stale prices, stock, gateway ...
@errors_bp.app_errorhandler(ShopError)
def err_shop(e: ShopError):
    _rollback()
    if e.status_code >= 500:
        log.error("%s %s -> %s: %s", request.method, request.path, e.code, e.message)
    return jsonify(e.to_dict()), e.status_code


# 413 – Payload Too Large (receipt uploads)
@errors_bp.app_errorhandler(413)
def err_413(e):
    return jsonify({"ok": False, "error": "payload_too_large",
                    "message": "Uploaded file is too large"}), 413


# Any other HTTPException (404, 405, ...)
@errors_bp.app_errorhandler(HTTPException)
def err_http(e: HTTPException):
    return jsonify({"ok": False, "error": e.name.lower().replace(" ", "_"),
                    "message": e.description}), e.code


# Last-resort: any other Exception
@errors_bp.app_errorhandler(Exception)
def err_unexpected(e):
    _rollback()
    log.exception("Unhandled error on %s %s", request.method, request.path)
    # Don't leak internals
    return jsonify({"ok": False, "error": "internal_error",
                    "message": "Something went wrong. Please try again."}), 500
