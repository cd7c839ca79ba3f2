"""
Authentication routes – two-step sign-up, role-checked sign-in, sign-out.
Returns JWT tokens for authenticated sessions.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from medchain.database import get_app_store, get_store, get_view_registry
from medchain.middleware.auth_middleware import get_current_session
from medchain.models.models import Role
from medchain.routes.common import json_object, validation_error
from medchain.services import auth_service
from medchain.services.auth_service import RoleMismatchError
from medchain.services.forms import (
    FormValidationError,
    SignInForm,
    SignUpWizard,
    password_strength,
    validate_form,
)
from medchain.services.record_store.base_store import AuthenticationError

logger = logging.getLogger("medchain.routes.auth")

auth_bp = Blueprint("auth", __name__)

BASIC_FIELDS = ("name", "email", "phone_number", "password")
ADDITIONAL_FIELDS = ("business_name", "govt_credential")


def _wizard_from(data: dict) -> SignUpWizard:
    """Replay step 1 of the wizard from a request body."""
    wizard = SignUpWizard()
    role = Role.parse(data.get("role"))
    if role is not None:
        wizard.select_role(role)
    wizard.submit_basic_info({k: data.get(k, "") for k in BASIC_FIELDS})
    return wizard


@auth_bp.route("/signup/validate", methods=["POST"])
def validate_signup_step():
    """Gate for step 1: the client advances only on a 200."""
    data = json_object()
    wizard = _wizard_from(data)
    state = wizard.to_dict()
    state["password_strength"] = password_strength(data.get("password", ""))
    if wizard.step != 2:
        return jsonify({"error": "Validation failed.", "fields": wizard.errors, "wizard": state}), 422
    return jsonify({"wizard": state}), 200


@auth_bp.route("/signup", methods=["POST"])
def signup():
    """Submit both steps and create the account."""
    data = json_object()
    wizard = _wizard_from(data)
    if wizard.step != 2:
        return jsonify({"error": "Validation failed.", "fields": wizard.errors}), 422

    try:
        payload = wizard.submit_additional_info({k: data.get(k, "") for k in ADDITIONAL_FIELDS})
    except FormValidationError as exc:
        return validation_error(exc)

    try:
        auth_service.sign_up(get_app_store(), payload)
    except AuthenticationError as exc:
        logger.error("Error creating account: %s", exc)
        return jsonify({
            "error": "Failed to create account",
            "description": str(exc) or "Please try again later.",
        }), 400

    wizard.reset()
    return jsonify({
        "message": "Account created successfully!",
        "description": "Please check your email for verification.",
        "redirect": "/signin",
    }), 201


@auth_bp.route("/signin", methods=["POST"])
def signin():
    """Authenticate, check the claimed role and return a JWT."""
    data = json_object()
    try:
        form = validate_form(SignInForm, data)
    except FormValidationError as exc:
        return validation_error(exc)

    try:
        session = auth_service.sign_in(get_app_store(), str(form.email), form.password, form.role)
    except RoleMismatchError as exc:
        return jsonify({"error": "Failed to sign in", "description": str(exc)}), 403
    except AuthenticationError as exc:
        return jsonify({
            "error": "Failed to sign in",
            "description": str(exc) or "Please check your credentials and try again.",
        }), 401

    # A fresh sign-in starts with fresh views.
    get_view_registry().close_user(session.user_id)

    token = auth_service.issue_token(
        session,
        current_app.config["JWT_SECRET"],
        ttl_hours=current_app.config.get("SESSION_TTL_HOURS", 12),
    )
    return jsonify({
        "token": token,
        "session": session.to_dict(),
        "redirect": session.dashboard_path,
        "message": "Successfully signed in",
    }), 200


@auth_bp.route("/signout", methods=["POST"])
def signout():
    session = get_current_session()
    get_view_registry().close_user(session.user_id)
    try:
        auth_service.sign_out(get_store(), session)
    except AuthenticationError as exc:
        logger.warning("Backend sign-out failed for %s: %s", session.email, exc)
    return jsonify({"message": "Signed out", "redirect": "/signin"}), 200


@auth_bp.route("/session", methods=["GET"])
def current_session():
    return jsonify({"session": get_current_session().to_dict()}), 200


@auth_bp.route("/password-strength", methods=["POST"])
def check_password_strength():
    data = json_object()
    return jsonify({"score": password_strength(data.get("password", ""))}), 200
