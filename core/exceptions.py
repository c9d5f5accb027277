"""Domain errors raised by the storefront services."""
from fastapi import status


class StorefrontError(Exception):
    """
    Base exception for storefront business errors.

    Subclasses carry the HTTP status and title the API renders them with.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    title: str = "Internal Server Error"


class CustomerNotFoundError(StorefrontError):
    """Raised when a customer id does not resolve."""

    status_code = status.HTTP_404_NOT_FOUND
    title = "Customer Not Found"


class DuplicateCustomerError(StorefrontError):
    """Raised when registering an email or phone number already in use."""

    status_code = status.HTTP_409_CONFLICT
    title = "Duplicate Customer"


class ProductNotFoundError(StorefrontError):
    """Raised when a product id does not resolve or the product is inactive."""

    status_code = status.HTTP_404_NOT_FOUND
    title = "Product Not Found"


class OrderNotFoundError(StorefrontError):
    """Raised when an order or active cart is missing, or the cart is empty."""

    status_code = status.HTTP_404_NOT_FOUND
    title = "Order Not Found"


class InsufficientStockError(StorefrontError):
    """Raised when a cart quantity exceeds available stock."""

    status_code = status.HTTP_400_BAD_REQUEST
    title = "Insufficient Stock"


class PaymentFailedError(StorefrontError):
    """
    Raised when every authorization attempt was declined.

    Also raised by the status query when an order has no payment record.
    When raised by checkout the order and payment are already in their
    terminal states; callers must not retry the write.
    """

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    title = "Payment Failed"


class TokenizationRejectedError(StorefrontError):
    """Raised when the tokenizer declines a request."""

    status_code = 422  # Unprocessable Content
    title = "Tokenization Rejected"


class InvalidCardDataError(StorefrontError):
    """Raised for expired or malformed card data."""

    status_code = status.HTTP_400_BAD_REQUEST
    title = "Invalid Card Data"


class TokenGenerationError(StorefrontError):
    """Raised when no unique token could be generated."""

    title = "Token Generation Failed"
