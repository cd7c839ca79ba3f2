"""
Authentication middleware – JWT-based session access.
All /api/* routes (except /api/auth/* and /api/health) require a valid JWT.
The decoded token becomes the request's SessionContext, and the record store
is bound to that session for the rest of the request.
"""

from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, request
import jwt as pyjwt

from medchain.config import Config
from medchain.database import get_app_store
from medchain.models.models import Role
from medchain.services.auth_service import SessionContext, decode_token

# Routes that do not require authentication
PUBLIC_PREFIXES = ("/api/auth", "/api/health")
# Auth routes that still need the caller's session
SESSION_ROUTES = ("/api/auth/signout", "/api/auth/session")


def jwt_required_middleware():
    """Before-request hook: validates JWT bearer token."""
    if request.method == "OPTIONS":
        return None

    path = request.path
    if not path.startswith("/api/"):
        return None

    needs_session = path.startswith(SESSION_ROUTES) or not any(
        path.startswith(p) for p in PUBLIC_PREFIXES
    )
    if not needs_session:
        return None

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return jsonify({"error": "Missing or invalid Authorization header."}), 401

    token = auth_header.split(" ", 1)[1]
    secret = current_app.config.get("JWT_SECRET") or Config.JWT_SECRET
    try:
        session = decode_token(token, secret)
    except pyjwt.ExpiredSignatureError:
        return jsonify({"error": "Token has expired."}), 401
    except pyjwt.InvalidTokenError:
        return jsonify({"error": "Invalid token."}), 401

    g.current_session = session
    g.store = get_app_store().bind(session.auth_session())
    return None


def get_current_session() -> Optional[SessionContext]:
    """Convenience accessor for the authenticated session."""
    return getattr(g, "current_session", None)


def role_required(role: Role):
    """Restrict a route to sessions holding *role*."""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            session = get_current_session()
            if session is None:
                return jsonify({"error": "Authentication required."}), 401
            if session.role is not role:
                return jsonify({
                    "error": f"You do not have permissions to access the {role.value} dashboard.",
                }), 403
            return view(*args, **kwargs)
        return wrapped
    return decorator
