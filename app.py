"""
Storybook print service - Flask Application Entry Point.

This is a slim app factory that:
1. Loads configuration and sets up logging
2. Builds the print partner client (fail-fast on missing credentials)
3. Wires repositories, storage, renderer and notifier
4. Creates the fulfillment service, pipeline runner and webhook service
5. Registers route blueprints and JSON error handlers

ARCHITECTURE:
    Main Thread
    ├── Flask request handling (webhooks, operator endpoints)
    └── Cleanup on shutdown (join pipeline threads)

    Pipeline Threads (one per paid order)
    └── render -> preflight -> upload -> submit

    Render / rate pools (short-lived ThreadPoolExecutors)
    └── image fetches and shipping level quotes

Components live in app.config (e.g. app.config["WEBHOOK_SERVICE"]) so
routes reach them through current_app. Tests pass replacements as keyword
arguments to create_app().
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from logging_config import setup_logging, get_logger
from config import DEFAULT_SECRET_KEY
from core.exceptions import (
    AuthError,
    ConfigurationError,
    FulfillmentError,
    NoShippingOptionsError,
    OrderNotFoundError,
    SignatureError,
    StorybookPrintError,
    SubmissionError,
    ValidationError,
)
from core.fulfillment_client import FulfillmentClient, FulfillmentConfig
from modules.pdf_analyzer import PDFAnalyzer
from modules.pdf_renderer import PDFRenderer
from services.content_repository import InMemoryContentRepository
from services.document_storage import build_document_storage
from services.fulfillment_service import FulfillmentService
from services.notifier import EmailServiceNotifier, LoggingNotifier
from services.order_repository import InMemoryOrderRepository
from services.order_state_machine import OrderStateMachine
from services.pipeline_runner import PipelineRunner
from services.webhook_service import WebhookService
from routes import register_blueprints


# Module logger (configured after setup_logging)
logger = get_logger(__name__)

# Most specific class wins (checked in order)
ERROR_STATUS_CODES = (
    (ValidationError, 400),
    (SignatureError, 401),
    (OrderNotFoundError, 404),
    (NoShippingOptionsError, 422),
    (AuthError, 502),
    (SubmissionError, 502),
    (FulfillmentError, 502),
)


def status_for_error(error: StorybookPrintError) -> int:
    """HTTP status for an application error."""
    for error_class, status in ERROR_STATUS_CODES:
        if isinstance(error, error_class):
            return status
    return 500


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In PyInstaller bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def _require_production_secrets(settings: Any) -> None:
    """
    Refuse to start when a protecting secret is empty or still the default.

    Raises:
        ConfigurationError: Naming the first offending setting
    """
    required = ["OPERATOR_API_KEY", "SECRET_KEY"]
    if (settings.get("DOCUMENT_STORAGE_BACKEND") or "local").strip().lower() == "local":
        required.append("DOCUMENT_SIGNING_SECRET")

    for name in required:
        value = settings.get(name) or ""
        if not value or value == DEFAULT_SECRET_KEY:
            logger.error(f"FATAL: {name} is empty or left at its default")
            raise ConfigurationError(f"{name} must be set to a non-default value", setting=name)


def create_app(config_object: str = "config.Config", **components: Any) -> Flask:
    """
    Application factory - creates and configures Flask app.

    FAIL-FAST: If print partner credentials for the selected environment
    are missing, the app will not start.

    Args:
        config_object: Import path of the Config class
        **components: Replacements for wired components (order_repository,
            content_repository, storage, fulfillment_client, notifier,
            renderer)

    Returns:
        Configured Flask application

    Raises:
        ConfigurationError: Missing or inconsistent print partner settings,
            or (production) an empty or default operator key or signing secret
    """
    # Load .env from base path (next to executable in production)
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    app = Flask(__name__)
    app.config.from_object(config_object)

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production"

    root_logger = setup_logging(
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting storybook print service in {app.config.get('ENVIRONMENT')} mode")

    if app.config.get("ENFORCE_SECRETS"):
        _require_production_secrets(app.config)

    # =========================================================================
    # PRINT PARTNER (FAIL-FAST)
    # =========================================================================

    fulfillment_client: Optional[FulfillmentClient] = components.get("fulfillment_client")
    if fulfillment_client is None:
        try:
            fulfillment_config = FulfillmentConfig.from_settings(app.config)
        except ConfigurationError as e:
            logger.error(f"FATAL: Cannot start application - {e}")
            raise
        fulfillment_client = FulfillmentClient(fulfillment_config)

    environment = fulfillment_client.environment
    partner_secret = app.config.get(f"LULU_{environment.upper()}_CLIENT_SECRET", "")
    logger.info(f"Print partner environment: {environment}")

    # =========================================================================
    # COLLABORATORS
    # =========================================================================

    order_repository = components.get("order_repository") or InMemoryOrderRepository()
    content_repository = components.get("content_repository") or InMemoryContentRepository()

    storage = components.get("storage") or build_document_storage(app.config)

    notifier = components.get("notifier")
    if notifier is None:
        if app.config.get("EMAIL_SERVICE_URL"):
            notifier = EmailServiceNotifier(app.config["EMAIL_SERVICE_URL"],
                                            app.config.get("EMAIL_SERVICE_TOKEN", ""))
        else:
            notifier = LoggingNotifier()

    renderer = components.get("renderer") or PDFRenderer(
        fetch_timeout=app.config["IMAGE_FETCH_TIMEOUT"],
        max_workers=app.config["RENDER_WORKERS"],
    )

    # =========================================================================
    # SERVICES
    # =========================================================================

    state_machine = OrderStateMachine(order_repository)
    fulfillment_service = FulfillmentService(
        state_machine,
        content_repository,
        storage,
        renderer,
        fulfillment_client,
        notifier=notifier,
        analyzer=PDFAnalyzer(),
        page_count=app.config["BOOK_PAGE_COUNT"],
        signed_url_ttl=app.config["SIGNED_URL_TTL"],
        ebook_url_ttl=app.config["EBOOK_URL_TTL"],
    )
    pipeline_runner = PipelineRunner(fulfillment_service,
                                     max_results=app.config.get("PIPELINE_RESULT_LIMIT", 1000))
    webhook_service = WebhookService(
        state_machine,
        payment_secret=app.config.get("STRIPE_WEBHOOK_SECRET", ""),
        partner_secret=partner_secret,
        environment=environment,
        dispatcher=pipeline_runner.dispatch if app.config.get("AUTO_PROCESS_ORDERS") else None,
        notifier=notifier,
        content_repository=content_repository,
        signature_tolerance=app.config.get("STRIPE_SIGNATURE_TOLERANCE", 300),
    )

    # Store in app config for access by routes
    app.config["ORDER_REPOSITORY"] = order_repository
    app.config["CONTENT_REPOSITORY"] = content_repository
    app.config["DOCUMENT_STORAGE"] = storage
    app.config["FULFILLMENT_CLIENT"] = fulfillment_client
    app.config["STATE_MACHINE"] = state_machine
    app.config["FULFILLMENT_SERVICE"] = fulfillment_service
    app.config["PIPELINE_RUNNER"] = pipeline_runner
    app.config["WEBHOOK_SERVICE"] = webhook_service

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")
        pipeline_runner.shutdown()
        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.errorhandler(StorybookPrintError)
    def handle_app_error(e: StorybookPrintError):
        status = status_for_error(e)
        if status >= 500:
            logger.error(f"{type(e).__name__}: {e}")
        else:
            logger.info(f"{type(e).__name__} -> {status}: {e.message}")
        return jsonify(e.to_dict()), status

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.name, "message": e.description}), e.code

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        return jsonify({"error": "InternalServerError",
                        "message": "An unexpected error occurred."}), 500

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode)
