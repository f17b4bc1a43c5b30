"""
Flask route blueprints for the storybook print service.

This module contains all route handlers organized by functionality:
- webhooks: Payment provider and print partner webhooks
- orders: Order creation and operator actions
- shipping: Shipping rates, pricing, book types
- documents: Signed document downloads
- api: Health check

Each blueprint is registered with the Flask app in create_app().
"""

from .webhooks import webhooks_bp
from .orders import orders_bp
from .shipping import shipping_bp
from .documents import documents_bp
from .api import api_bp

__all__ = [
    "webhooks_bp",
    "orders_bp",
    "shipping_bp",
    "documents_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(shipping_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(api_bp)
