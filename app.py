"""
Four-Panel Story Classroom — Flask Web Application

Students plan a four-panel story across three steps; teachers manage the
class, review works and control the AI story helper. All actions go through
one JSON endpoint (see blueprints/api.py and actions.py).
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask, Response

import database
import read_cache
from blueprints import register_blueprints
from config import config_by_name
from extensions import limiter
from logging_config import init_logging
from oauth import init_oauth, oauth_bp
from ttl_store import connect_redis, init_ttl_store
from write_lock import init_write_lock


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config; explicit test overrides go on top of TestingConfig
    env = "testing" if test_config is not None else os.environ.get("FLASK_ENV", "development")
    cfg = config_by_name.get(env, config_by_name["development"])
    app.config.from_object(cfg)
    if test_config is not None:
        app.config.update(test_config)
    elif hasattr(cfg, "validate"):
        cfg.validate()

    app.secret_key = app.config["SECRET_KEY"]

    # Structured logging
    init_logging(app)

    # Row store connection, storage bootstrap and the per-request read cache
    database.init_app(app)
    read_cache.init_app(app)

    # Shared backends: Redis when configured and reachable, else in-process
    redis_client = app.config.get("REDIS_CLIENT") or connect_redis(app)
    init_ttl_store(app, redis_client)
    init_write_lock(app, redis_client)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    register_blueprints(app)

    # Google OAuth (optional)
    init_oauth(app)
    app.register_blueprint(oauth_bp)

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug and not app.testing:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5001)
