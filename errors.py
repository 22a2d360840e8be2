"""
API error taxonomy.

Every error raised from the domain modules is an ApiError; app.py turns it
into a JSON body of {"message": ..., **extra} with the class status code.
"""


class ApiError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, **self.extra}


class Unauthenticated(ApiError):
    status_code = 401
    default_message = "Unauthorized. Please login."


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access denied."

    def __init__(self, message: str | None = None, reason: str = "forbidden", **extra):
        super().__init__(message, reason=reason, **extra)


class Blocked(Forbidden):
    default_message = "Your account has been blocked. Please contact support."

    def __init__(self, blocked_reason: str | None = None):
        super().__init__(reason="blocked", blockedReason=blocked_reason, isBlocked=True)


class PromoAbuse(Forbidden):
    def __init__(self, message: str):
        super().__init__(message, reason="promo_abuse", promoAbuse=True)


class NotFound(ApiError):
    status_code = 404
    default_message = "Not found"


class ValidationFailed(ApiError):
    status_code = 400
    default_message = "Validation failed"

    def __init__(self, message: str | None = None, errors: list | None = None, **extra):
        super().__init__(message, errors=errors or [], **extra)


class StaleCart(ApiError):
    status_code = 400

    def __init__(self, product_id):
        super().__init__(
            f"Invalid product ID: {product_id}. Your cart might contain old data. "
            "Please clear your cart and try again.",
            staleCart=True,
        )


class OrderLimitExceeded(ApiError):
    status_code = 400

    def __init__(self, active_orders: int, limit: int):
        super().__init__(
            f"You have reached the maximum limit of {limit} active orders. Please wait for "
            "your existing orders to be delivered before placing new ones.",
            orderLimitReached=True,
            activeOrders=active_orders,
        )


class InvalidStatus(ApiError):
    status_code = 400
    default_message = "Invalid status"


class RuleViolation(ApiError):
    """Admin self-protection and user-state guards; nothing is changed."""

    status_code = 400

    def __init__(self, message: str, reason: str):
        super().__init__(message, reason=reason)


class Conflict(ApiError):
    status_code = 409
    default_message = "Conflict"


class IllegalTransition(Conflict):
    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change order status from {current} to {requested}",
            currentStatus=current,
            requestedStatus=requested,
        )


class ValidationUnavailable(ApiError):
    status_code = 503
    default_message = "Order validation is temporarily unavailable. Please try again."
