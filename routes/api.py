"""
Service routes.

Handles:
- /health - Health check endpoint
"""

from flask import Blueprint, current_app

from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "fulfillment_environment": None,
        "checks": {}
    }

    # Check print partner client
    client = current_app.config.get("FULFILLMENT_CLIENT")
    if client is not None:
        health_status["fulfillment_environment"] = client.environment
        health_status["checks"]["fulfillment_client"] = "configured"
    else:
        health_status["checks"]["fulfillment_client"] = "not_configured"
        health_status["status"] = "degraded"

    # Check webhook secrets
    if current_app.config.get("STRIPE_WEBHOOK_SECRET"):
        health_status["checks"]["payment_webhook"] = "ok"
    else:
        health_status["checks"]["payment_webhook"] = "no_secret"
        health_status["status"] = "degraded"

    # Check pipeline runner
    if current_app.config.get("PIPELINE_RUNNER"):
        health_status["checks"]["pipeline_runner"] = "ok"
    else:
        health_status["checks"]["pipeline_runner"] = "not_available"
        health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
