"""
Audit logger – after-request hook that records every API interaction
in the medchain.audit log. Credentials are redacted before logging.
"""

import json
import logging
from flask import request, g

logger = logging.getLogger("medchain.audit")

REDACTED_FIELDS = ("password", "token", "access_token", "refresh_token")


def audit_after_request(response):
    """Log every API request/response pair."""
    if not request.path.startswith("/api/"):
        return response

    # Skip health checks from filling the log
    if request.path == "/api/health":
        return response

    try:
        session = getattr(g, "current_session", None)
        user_id = session.user_id if session else None

        # Capture request body (truncated for safety)
        req_body = None
        if request.is_json:
            body = request.get_json(silent=True)
            if isinstance(body, dict):
                safe_body = {k: v for k, v in body.items() if k not in REDACTED_FIELDS}
                req_body = json.dumps(safe_body, default=str)[:2000]

        logger.info(
            "%s %s -> %s user=%s body=%s",
            request.method, request.path, response.status_code, user_id, req_body,
        )
    except (TypeError, ValueError) as exc:
        logger.warning("Audit logging failed: %s", exc)

    return response
