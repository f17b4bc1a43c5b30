"""
Core module for the storybook print pipeline.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- fulfillment_client: Print partner REST client (import directly; depends on models)
- webhook_verifier: HMAC verification for inbound webhooks
"""

from .exceptions import (
    StorybookPrintError,
    ValidationError,
    ConfigurationError,
    RenderError,
    StorageError,
    SignatureError,
    OrderNotFoundError,
    FulfillmentError,
    AuthError,
    NoShippingOptionsError,
    SubmissionError,
)
from .webhook_verifier import (
    compute_signature,
    verify,
    verify_payment_signature,
    verify_partner_signature,
)

__all__ = [
    "StorybookPrintError",
    "ValidationError",
    "ConfigurationError",
    "RenderError",
    "StorageError",
    "SignatureError",
    "OrderNotFoundError",
    "FulfillmentError",
    "AuthError",
    "NoShippingOptionsError",
    "SubmissionError",
    "compute_signature",
    "verify",
    "verify_payment_signature",
    "verify_partner_signature",
]
