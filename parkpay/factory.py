# -*- coding: utf-8 -*-
from typing import Any, Mapping, Optional

from flask import Flask
from flask_cors import CORS
from flask_jwt_extended import JWTManager

from parkpay.config import Config
from parkpay.database import db

# Observability imports
from parkpay.services.metrics import init_metrics
from parkpay.services.request_context import init_request_context
from parkpay.services.structured_logging import get_logger, init_logging

from parkpay.middleware.errors import register_error_handlers
from parkpay.services.gateway import init_gateway


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Config: environment first, then explicit overrides ---
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # --- DB ---
    db.init_app(app)

    # --- JWT bearer tokens ---
    JWTManager(app)

    # --- CORS ---
    cors_origins = [
        origin.strip()
        for origin in str(app.config.get("CORS_ALLOWED_ORIGINS", "")).split(",")
        if origin.strip()
    ]
    cors_options = {
        "origins": cors_origins,
        "methods": ["POST", "OPTIONS"],
        "allow_headers": ["Content-Type", "Authorization", "X-Request-ID"],
        "supports_credentials": False,
        "max_age": 600,
    }
    CORS(app, resources={
        r"/checkout.*": cors_options,
        r"/subscription/.*": cors_options,
    })

    # --- Observability ---
    init_request_context(app)
    init_logging(app)
    init_metrics(app)

    register_error_handlers(app)

    # --- Outbound clients ---
    init_gateway(app)

    # --- Blueprints ---
    from parkpay.routes.checkout import checkout_bp
    from parkpay.routes.health import health_bp
    from parkpay.routes.subscriptions import subscriptions_bp
    from parkpay.routes.webhooks import webhooks_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(subscriptions_bp)
    app.register_blueprint(webhooks_bp)

    with app.app_context():
        import parkpay.models  # noqa: F401  ensure all tables are registered
        if app.config.get("AUTO_CREATE_TABLES", True):
            db.create_all()

    get_logger('parkpay.startup').info(
        "Application ready",
        webhook_processing=app.config.get("WEBHOOK_PROCESSING"),
        stripe_configured=bool(app.config.get("STRIPE_SECRET_KEY")),
    )
    return app
