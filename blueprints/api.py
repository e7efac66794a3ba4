"""JSON action endpoint and health check."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request, session

from actions import dispatch
from extensions import limiter
from oauth import FEDERATED_EMAIL_KEY

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)


def _api_rate_limit() -> str:
    return current_app.config.get("API_RATE_LIMIT", "120 per minute")


@bp.route("/api", methods=["POST"])
@limiter.limit(_api_rate_limit)
def api():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"success": False, "error": "Request body must be a JSON object."}), 400
    result = dispatch(payload, federated_email=session.get(FEDERATED_EMAIL_KEY))
    return jsonify(result)


@bp.route("/healthz")
def healthz():
    return jsonify({"status": "ok"})
