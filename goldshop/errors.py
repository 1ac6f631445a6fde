# goldshop/errors.py
"""Domain exceptions.

Every error a shopper or admin can act on derives from ShopError so the
errors blueprint can render it as JSON with the right status code.
"""


class ShopError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message, **self.extra}


class ValidationError(ShopError):
    code = "validation_error"


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class Conflict(ShopError):
    status_code = 409
    code = "conflict"


class PriceUnavailable(ShopError):
    status_code = 409
    code = "price_unavailable"

    def __init__(self, gold_type: str):
        super().__init__(f"Gold price for {gold_type} is not available; checkout is paused.",
                         gold_type=gold_type)
        self.gold_type = gold_type


class StalePrices(ShopError):
    status_code = 409
    code = "stale_prices"

    def __init__(self, changes: list[dict]):
        names = ", ".join(c["product_name"] for c in changes)
        super().__init__(f"Gold price changed for: {names}. Refresh your cart to continue.",
                         changes=changes)
        self.changes = changes


class InsufficientStock(ShopError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, shortages: list[dict]):
        names = ", ".join(s["product_name"] for s in shortages)
        super().__init__(f"Not enough stock for: {names}", shortages=shortages)
        self.shortages = shortages


class GatewayError(ShopError):
    status_code = 502
    code = "gateway_error"


class OtpSignInFailed(ShopError):
    status_code = 401
    code = "otp_signin_failed"
