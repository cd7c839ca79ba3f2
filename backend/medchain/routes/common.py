"""Helpers shared by the dashboard blueprints."""

from datetime import date
from typing import Optional

from flask import abort, jsonify, make_response, request

from medchain.services.forms import FormValidationError


def validation_error(exc: FormValidationError):
    return jsonify({"error": "Validation failed.", "fields": exc.errors}), 422


def json_object() -> dict:
    """The request's JSON body as a dict; aborts with 400 when it is not an object."""
    data = request.get_json(force=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(make_response(jsonify({"error": "Request body must be a JSON object."}), 400))
    return data


def parse_date_arg(value: Optional[str]) -> Optional[date]:
    """Parse an optional ``YYYY-MM-DD`` query argument; raises ValueError."""
    if not value:
        return None
    return date.fromisoformat(value)
