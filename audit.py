"""
Audit logging — records security-relevant events.

Events go to a dedicated ``audit`` logger so deployments can route them
separately. Never pass PINs, passwords, hashes or tokens as detail.
"""

from __future__ import annotations

import logging

from flask import g, has_request_context, request

logger = logging.getLogger("audit")


def log_event(action: str, actor: str | None = None, detail: str = "") -> None:
    """Emit a structured audit line for ``action`` performed by ``actor``."""
    ip = ""
    request_id = "-"
    if has_request_context():
        ip = request.remote_addr or ""
        request_id = getattr(g, "request_id", "-")
    logger.info(
        "audit: %s actor=%s detail=%s ip=%s",
        action, actor or "-", detail, ip,
        extra={"request_id": request_id},
    )
