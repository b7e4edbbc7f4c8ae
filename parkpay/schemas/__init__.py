from parkpay.schemas.checkout import (
    CheckoutRequestSchema,
    SessionDetailsRequestSchema,
    SubscriptionChangeRequestSchema,
    first_error_message,
)

__all__ = [
    "CheckoutRequestSchema",
    "SessionDetailsRequestSchema",
    "SubscriptionChangeRequestSchema",
    "first_error_message",
]
