"""
Configuration for the storybook print service.

Print partner credentials are per environment (sandbox / production); the
active environment is chosen by LULU_ENVIRONMENT. The fulfillment client
refuses to start without credentials for the selected environment.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent

# Development fallback; production refuses to start with it
DEFAULT_SECRET_KEY = "dev-secret-key"


def _lulu_environment() -> str:
    """LULU_ENVIRONMENT, falling back to the legacy LULU_USE_SANDBOX flag."""
    explicit = os.environ.get("LULU_ENVIRONMENT")
    if explicit:
        return explicit.strip().lower()
    if os.environ.get("LULU_USE_SANDBOX", "true").strip().lower() in ("0", "false", "no"):
        return "production"
    return "sandbox"


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", DEFAULT_SECRET_KEY)
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # webhook and JSON bodies only
    # Refuse to start without operator key and signing secrets
    ENFORCE_SECRETS = False

    # ==========================================================================
    # Print partner
    # ==========================================================================
    LULU_ENVIRONMENT = _lulu_environment()
    LULU_SANDBOX_CLIENT_KEY = os.environ.get("LULU_SANDBOX_CLIENT_KEY", "")
    LULU_SANDBOX_CLIENT_SECRET = os.environ.get("LULU_SANDBOX_CLIENT_SECRET", "")
    LULU_PRODUCTION_CLIENT_KEY = os.environ.get("LULU_PRODUCTION_CLIENT_KEY", "")
    LULU_PRODUCTION_CLIENT_SECRET = os.environ.get("LULU_PRODUCTION_CLIENT_SECRET", "")
    LULU_SANDBOX_API_URL = os.environ.get("LULU_SANDBOX_API_URL", "https://api.sandbox.lulu.com")
    LULU_PRODUCTION_API_URL = os.environ.get("LULU_PRODUCTION_API_URL", "https://api.lulu.com")
    FULFILLMENT_TIMEOUT_SECONDS = float(os.environ.get("FULFILLMENT_TIMEOUT_SECONDS", "30"))

    # ==========================================================================
    # Payment webhooks
    # ==========================================================================
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    # Seconds a signed payment event stays valid; 0 disables the check
    STRIPE_SIGNATURE_TOLERANCE = int(os.environ.get("STRIPE_SIGNATURE_TOLERANCE", "300"))

    # ==========================================================================
    # Rendering and documents
    # ==========================================================================
    BOOK_PAGE_COUNT = int(os.environ.get("BOOK_PAGE_COUNT", "32"))
    IMAGE_FETCH_TIMEOUT = float(os.environ.get("IMAGE_FETCH_TIMEOUT", "30"))
    RENDER_WORKERS = int(os.environ.get("RENDER_WORKERS", "4"))

    # "local" (served by /documents) or "s3" (any S3-compatible bucket)
    DOCUMENT_STORAGE_BACKEND = os.environ.get("DOCUMENT_STORAGE_BACKEND", "local")
    DOCUMENT_STORAGE_DIR = os.environ.get("DOCUMENT_STORAGE_DIR", str(BASE_DIR / "storage"))
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000")
    DOCUMENT_SIGNING_SECRET = os.environ.get("DOCUMENT_SIGNING_SECRET", SECRET_KEY)
    SIGNED_URL_TTL = int(os.environ.get("SIGNED_URL_TTL", str(24 * 60 * 60)))
    EBOOK_URL_TTL = int(os.environ.get("EBOOK_URL_TTL", str(7 * 24 * 60 * 60)))

    DOCUMENT_BUCKET = os.environ.get("DOCUMENT_BUCKET", "")
    DOCUMENT_KEY_PREFIX = os.environ.get("DOCUMENT_KEY_PREFIX", "")
    S3_ENDPOINT_URL = os.environ.get("S3_ENDPOINT_URL", "")
    S3_REGION = os.environ.get("S3_REGION", "")
    S3_ACCESS_KEY_ID = os.environ.get("S3_ACCESS_KEY_ID", "")
    S3_SECRET_ACCESS_KEY = os.environ.get("S3_SECRET_ACCESS_KEY", "")

    # ==========================================================================
    # Notifications and operations
    # ==========================================================================
    EMAIL_SERVICE_URL = os.environ.get("EMAIL_SERVICE_URL", "")
    EMAIL_SERVICE_TOKEN = os.environ.get("EMAIL_SERVICE_TOKEN", "")
    AUTO_PROCESS_ORDERS = _flag("AUTO_PROCESS_ORDERS", "true")
    # Latest pipeline outcomes kept in memory for GET /orders/<id>
    PIPELINE_RESULT_LIMIT = int(os.environ.get("PIPELINE_RESULT_LIMIT", "1000"))
    OPERATOR_API_KEY = os.environ.get("OPERATOR_API_KEY", "")


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    ENVIRONMENT = "production"
    ENFORCE_SECRETS = True


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    ENVIRONMENT = "testing"

    LULU_ENVIRONMENT = "sandbox"
    LULU_SANDBOX_CLIENT_KEY = "test-key"
    LULU_SANDBOX_CLIENT_SECRET = "test-partner-secret"
    LULU_SANDBOX_API_URL = "https://api.sandbox.lulu.test"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PUBLIC_BASE_URL = "http://testserver"
    DOCUMENT_SIGNING_SECRET = "test-signing-secret"
    EMAIL_SERVICE_URL = ""
    AUTO_PROCESS_ORDERS = False
    OPERATOR_API_KEY = ""
