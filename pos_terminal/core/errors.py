"""Error taxonomy and user-facing message constants."""

from typing import Optional


class errmsg:
    """Message constants for notices and rejections."""

    OUT_OF_STOCK = "Out of stock"
    NO_MORE_STOCK = "No more stock available"
    EXCEEDS_STOCK = "Cannot exceed available stock"
    CART_CLEARED = "Cart cleared"
    CART_EMPTY = "Cart is empty"
    CART_NOT_EMPTY = "Cart must be empty to resume a held order"
    NO_SHOP = "No shop selected"
    ITEM_NOT_IN_CART = "Item not in cart"
    PRODUCT_NOT_FOUND = "Product not found"
    CUSTOMER_NOT_FOUND = "Customer not found"
    CUSTOMER_REQUIRED = "Please select a customer for credit payment"
    INVALID_PAYMENT_METHOD = "Invalid payment method"
    CHECKOUT_IN_PROGRESS = "Checkout in progress"
    SALE_COMPLETED = "Sale completed successfully!"
    SALE_FAILED = "Sale failed"
    INVALID_SALE_RESPONSE = "Invalid response from server"
    ORDER_HELD = "Order held"
    HELD_ORDER_NOT_FOUND = "Held order not found"
    SESSION_NOT_FOUND = "Session not found"
    SESSION_CLOSED = "Session is closed"
    NO_RECEIPT = "No receipt available"
    STOCK_LOAD_FAILED = "Failed to load stock"
    STOCK_REDUCED = "Stock changed on the server; quantity adjusted"


class PosError(Exception):
    """Base error carrying a machine code and a user-facing message."""

    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or type(self).__name__

    def as_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationRejected(PosError):
    """Rejected locally before any network call; no state was mutated."""

    status_code = 422


class NotFound(PosError):
    status_code = 404


class CheckoutInProgress(PosError):
    status_code = 409


class BackendError(PosError):
    """Transport or server failure talking to the REST backend."""

    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message, code=code)
        self.status = status


class BackendAuthError(BackendError):
    """Backend answered 401; stored tokens were discarded."""

    status_code = 401
