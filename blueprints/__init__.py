"""
Blueprint registration for the classroom story app.

All blueprints are registered without URL prefixes.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.api import bp as api_bp

    app.register_blueprint(api_bp)
