"""
Live view routes – verification notifications and view teardown.
The browser polls /notifications to surface toasts and calls /close when it
navigates away from a dashboard.
"""

from flask import Blueprint, jsonify

from medchain.database import get_view_registry
from medchain.middleware.auth_middleware import get_current_session

views_bp = Blueprint("views", __name__)


@views_bp.route("/notifications", methods=["GET"])
def notifications():
    session = get_current_session()
    drained = []
    for view in get_view_registry().views_for(session.user_id):
        drained.extend(view.drain_notifications())
    return jsonify({"notifications": drained}), 200


@views_bp.route("/close", methods=["POST"])
def close_views():
    closed = get_view_registry().close_user(get_current_session().user_id)
    return jsonify({"closed": closed}), 200
