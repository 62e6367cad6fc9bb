"""
Classified errors for the marketplace API.

Every service operation either returns a value or raises exactly one
MarketError. The HTTP layer turns these into {code, message, details}
payloads with the matching status code.
"""
from typing import Any, Dict, Optional


class MarketError(Exception):
    kind = "SystemError"
    code = "SYSTEM_ERROR"
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


# Boundary errors, raised by the auth dependencies only

class AuthRequired(MarketError):
    kind = "AuthRequired"
    code = "AUTH_REQUIRED"
    status_code = 401
    default_message = "Authentication required"


class AuthInvalidToken(MarketError):
    kind = "AuthInvalidToken"
    code = "AUTH_INVALID_TOKEN"
    status_code = 401
    default_message = "Invalid or expired token"


class AuthForbidden(MarketError):
    kind = "AuthForbidden"
    code = "AUTH_FORBIDDEN"
    status_code = 403
    default_message = "Insufficient permissions"


# Domain errors

class InvalidInput(MarketError):
    kind = "ValidationError"
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Validation failed"


class NotFound(MarketError):
    kind = "NotFound"
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"
    default_message = "Product not found"


class CategoryNotFound(NotFound):
    code = "CATEGORY_NOT_FOUND"
    default_message = "Category not found"


class ParentNotFound(NotFound):
    code = "CATEGORY_PARENT_NOT_FOUND"
    default_message = "Parent category not found"


class ShippingAddressNotFound(NotFound):
    code = "SHIPPING_ADDRESS_NOT_FOUND"
    default_message = "Shipping address not found"


class CartOrItemNotFound(NotFound):
    code = "CART_NOT_FOUND"
    default_message = "Cart not found"


class Duplicate(MarketError):
    kind = "Conflict"
    code = "DUPLICATE"
    status_code = 409
    default_message = "Resource already exists"


class UnavailableState(MarketError):
    kind = "UnavailableState"
    status_code = 422


class ProductUnavailable(UnavailableState):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 400
    default_message = "Product is not available"


class ParentInactive(UnavailableState):
    code = "CATEGORY_PARENT_INACTIVE"
    default_message = "Parent category is not active"


class InsufficientQuantity(MarketError):
    kind = "QuantityExceeded"
    code = "INSUFFICIENT_QUANTITY"
    status_code = 400
    default_message = "Insufficient product quantity"


class MaxLevelExceeded(MarketError):
    kind = "MaxLevelExceeded"
    code = "CATEGORY_MAX_LEVEL_EXCEEDED"
    status_code = 422
    default_message = "Maximum category level exceeded"


class UserLocked(MarketError):
    kind = "Forbidden"
    code = "USER_LOCKED"
    status_code = 403
    default_message = "User account is locked"


class ProfileIncomplete(MarketError):
    kind = "Forbidden"
    code = "PROFILE_INCOMPLETE"
    status_code = 400
    default_message = "Profile incomplete. Please complete your profile before selling."
