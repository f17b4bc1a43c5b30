"""
Custom exceptions for the storybook print pipeline.

Exception Hierarchy:
    StorybookPrintError (base)
    ├── ValidationError          - Bad geometry or order input (caller error)
    ├── ConfigurationError       - Missing credentials/settings (startup failure)
    ├── RenderError              - A single asset failed (degrade, don't abort)
    ├── StorageError             - Document upload or URL signing failed
    ├── SignatureError           - Inbound webhook failed verification
    ├── OrderNotFoundError       - No order matches the given reference
    └── FulfillmentError         - Print partner call failed
        ├── AuthError               - Token exchange failed
        ├── NoShippingOptionsError  - Every shipping level was rejected
        └── SubmissionError         - Partner rejected the print job

Usage:
    Only RenderError is recovered locally (inside the renderer).
    Everything else surfaces to the orchestration step or webhook handler,
    which leaves the order in its last good status.
"""

from typing import Optional, Dict, Any, List


class StorybookPrintError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON error responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# INPUT / CONFIGURATION ERRORS
# =============================================================================

class ValidationError(StorybookPrintError):
    """
    Input failed validation before any side effect took place.

    Raised for page counts that break binding rules (odd, below 24, above
    800), incomplete shipping addresses, non-resolvable document URLs and
    malformed order payloads.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = dict(details or {})
        if field:
            error_details["field"] = field
        super().__init__(message, error_details)
        self.field = field


class ConfigurationError(StorybookPrintError):
    """
    Required configuration is missing or inconsistent.

    Typical causes:
    - Partner credentials not set for the selected environment
    - Unknown LULU_ENVIRONMENT value
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"resolution": "Check the .env file or process environment"}
        if setting:
            details["setting"] = setting
        super().__init__(message, details)
        self.setting = setting


# =============================================================================
# RENDERING / STORAGE ERRORS
# =============================================================================

class RenderError(StorybookPrintError):
    """
    A single asset could not be rendered.

    The renderer never lets this escape: the affected page falls back to a
    text-only page (or a plain cover background) and the failure is logged
    as a partial degradation.
    """

    def __init__(self, message: str, asset_url: str = "", page_index: Optional[int] = None):
        details: Dict[str, Any] = {"asset_url": asset_url}
        if page_index is not None:
            details["page_index"] = page_index
        super().__init__(message, details)
        self.asset_url = asset_url
        self.page_index = page_index


class StorageError(StorybookPrintError):
    """Rendered document could not be stored or exposed as a URL."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, {"path": path})
        self.path = path


# =============================================================================
# WEBHOOK / ORDER ERRORS
# =============================================================================

class SignatureError(StorybookPrintError):
    """
    Inbound webhook failed authenticity checks.

    Maps to a 401 response. The body must not be parsed once this is raised.
    """

    def __init__(self, message: str = "Invalid webhook signature", source: str = ""):
        super().__init__(message, {"source": source} if source else {})
        self.source = source


class OrderNotFoundError(StorybookPrintError):
    """No order matches the given id, payment session or partner job."""

    def __init__(self, reference: str, kind: str = "order_id"):
        super().__init__(f"Order not found: {kind}={reference}", {kind: reference})
        self.reference = reference
        self.kind = kind


# =============================================================================
# FULFILLMENT (PRINT PARTNER) ERRORS
# =============================================================================

class FulfillmentError(StorybookPrintError):
    """
    Base class for print partner failures.

    Every fulfillment error carries the partner environment (sandbox or
    production) so operators can tell which account produced it.
    """

    def __init__(
        self,
        message: str,
        environment: str,
        status_code: Optional[int] = None,
        response_text: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = dict(details or {})
        error_details["environment"] = environment
        if status_code is not None:
            error_details["status_code"] = status_code
        if response_text:
            error_details["response"] = response_text[:500]
        super().__init__(message, error_details)
        self.environment = environment
        self.status_code = status_code
        self.response_text = response_text


class AuthError(FulfillmentError):
    """Client-credentials token exchange failed. Fatal for this attempt."""


class NoShippingOptionsError(FulfillmentError):
    """
    Every shipping level was rejected for this address/product.

    A single rejected level is skipped; only zero successful levels raise.
    """

    def __init__(self, environment: str, rejected_levels: List[str]):
        super().__init__(
            "No shipping options available for this address",
            environment,
            details={"rejected_levels": list(rejected_levels)},
        )
        self.rejected_levels = list(rejected_levels)


class SubmissionError(FulfillmentError):
    """
    Partner rejected the print job payload.

    The order stays in `processing` so a retry can resume.
    """
