"""Google OAuth integration — optional federated teacher sign-in.

A successful callback only records the Google-asserted email in the signed
session cookie. Whether that email may act as a teacher is decided per
request by teacher_auth.resolve_caller().
"""

from __future__ import annotations

import logging

from authlib.integrations.flask_client import OAuth
from flask import Blueprint, current_app, jsonify, session, url_for

from audit import log_event

logger = logging.getLogger(__name__)

oauth_bp = Blueprint("oauth", __name__)

FEDERATED_EMAIL_KEY = "federated_email"

oauth = OAuth()


def init_oauth(app):
    """Initialize OAuth with the Flask app. Call from create_app()."""
    client_id = app.config.get("GOOGLE_OAUTH_CLIENT_ID", "")
    if not client_id:
        logger.info("GOOGLE_OAUTH_CLIENT_ID not set — Google OAuth disabled")
        return

    oauth.init_app(app)
    oauth.register(
        name="google",
        client_id=client_id,
        client_secret=app.config.get("GOOGLE_OAUTH_CLIENT_SECRET", ""),
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )


def is_oauth_available() -> bool:
    """Check if Google OAuth is configured."""
    client_id = current_app.config.get("GOOGLE_OAUTH_CLIENT_ID", "")
    return bool(client_id) and oauth.create_client("google") is not None


def _not_configured():
    return jsonify({"success": False, "error": "Google login is not configured."}), 503


@oauth_bp.route("/login/google")
def google_login():
    """Redirect to Google OAuth consent screen."""
    if not is_oauth_available():
        return _not_configured()
    redirect_uri = url_for("oauth.google_callback", _external=True)
    return oauth.google.authorize_redirect(redirect_uri)


@oauth_bp.route("/callback/google")
def google_callback():
    """Handle Google OAuth callback."""
    if not is_oauth_available():
        return _not_configured()

    try:
        token = oauth.google.authorize_access_token()
        user_info = token.get("userinfo")
        if not user_info:
            user_info = oauth.google.userinfo()
    except Exception as e:
        logger.error("Google OAuth error: %s", e)
        return jsonify({"success": False, "error": "Google login failed. Please try again."}), 400

    email = (user_info.get("email") or "").strip().lower()
    if not email or not user_info.get("email_verified", True):
        return jsonify({"success": False, "error": "Could not get a verified email from Google."}), 400

    session[FEDERATED_EMAIL_KEY] = email
    log_event("federated_sign_in", email)
    return jsonify({"success": True, "email": email})


@oauth_bp.route("/logout/google")
def google_logout():
    email = session.pop(FEDERATED_EMAIL_KEY, None)
    if email:
        log_event("federated_sign_out", email)
    return jsonify({"success": True})
