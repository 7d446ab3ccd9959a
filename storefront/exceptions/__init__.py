"""Custom exceptions for the storefront checkout backend."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(StorefrontError):
    """Raised for malformed or unacceptable input."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ForbiddenError(StorefrontError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Not authorized to perform this action"):
        super().__init__(message, 403)


class ConflictError(StorefrontError):
    """Raised when the request conflicts with current state."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class InsufficientStockError(ConflictError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_name, required, available, product_id=None):
        self.product_name = product_name
        self.required = required
        self.available = available
        message = f"Only {available} {product_name} available in stock (requested {required})"
        super().__init__(message, payload={
            'product_id': product_id,
            'product_name': product_name,
            'requested': required,
            'available': available,
        })


class InvalidTransitionError(ConflictError):
    """Raised when an order or payment status change is not allowed."""
    def __init__(self, current, target, kind='order'):
        self.current = current
        self.target = target
        message = f"Cannot move {kind} status from '{current}' to '{target}'"
        super().__init__(message, payload={'current': current, 'target': target})


class ExternalServiceError(StorefrontError):
    """Raised when the payment gateway is unreachable or rejects a call."""
    def __init__(self, message="Payment gateway error", payload=None):
        super().__init__(message, 502, payload)


class InvariantViolationError(StorefrontError):
    """Raised when internal bookkeeping would break an invariant."""
    def __init__(self, message):
        super().__init__(message, 500)


class InvalidSignatureError(ValidationError):
    """Raised when a gateway signature does not match."""
    def __init__(self, message="Payment verification failed: Invalid signature"):
        super().__init__(message)


class CouponRejectedError(ValidationError):
    """Base class for coupon validation failures."""
    reason = 'REJECTED'

    def __init__(self, message, code=None):
        self.code = code
        super().__init__(message, payload={'reason': self.reason, 'code': code})


class CouponNotFoundError(CouponRejectedError):
    reason = 'NOT_FOUND'

    def __init__(self, code):
        super().__init__(f'Invalid coupon code: {code}', code)


class CouponExpiredError(CouponRejectedError):
    reason = 'EXPIRED'

    def __init__(self, code):
        super().__init__(f'Coupon {code} is not valid at this time', code)


class CouponUsageLimitError(CouponRejectedError):
    reason = 'USAGE_LIMIT_REACHED'

    def __init__(self, code):
        super().__init__(f'Coupon {code} has reached its usage limit', code)


class CouponMinimumNotMetError(CouponRejectedError):
    reason = 'MINIMUM_NOT_MET'

    def __init__(self, code, minimum):
        self.minimum = minimum
        super().__init__(f'Minimum order amount of {minimum} required for coupon {code}', code)


class CouponCategoryMismatchError(CouponRejectedError):
    reason = 'CATEGORY_MISMATCH'

    def __init__(self, code):
        super().__init__(f'Coupon {code} is not applicable to the products in this order', code)
