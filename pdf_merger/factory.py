"""Flask app factory."""

from __future__ import annotations

from typing import Optional

from flask import Flask

from pdf_merger import bootstrap
from pdf_merger.config import RuntimeConfig, load_runtime_config
from pdf_merger.routes.api_routes import api_bp
from pdf_merger.routes.web_routes import web_bp
from pdf_merger.services import api_service


def create_app(config: Optional[RuntimeConfig] = None) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    runtime_config = config or load_runtime_config()
    service = api_service.configure_app(app, runtime_config)

    app.register_blueprint(web_bp)
    app.register_blueprint(api_bp)
    api_service.register_error_handlers(app)

    bootstrap.bootstrap_runtime(service.sweeper, runtime_config.sweep_interval_seconds)
    return app
