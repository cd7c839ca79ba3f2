"""
Distributor dashboard routes – shipment tracking, status moves and
shipment verification QR codes.
"""

import logging
from functools import partial

from flask import Blueprint, jsonify, request

from medchain.database import get_id_generator, get_store, get_view_registry
from medchain.middleware.auth_middleware import get_current_session, role_required
from medchain.models.models import Role, ShipmentStatus
from medchain.routes.common import json_object, validation_error
from medchain.services import shipment_service
from medchain.services.dashboard_service import distributor_stats, filter_shipments_by_status
from medchain.services.forms import FormValidationError, ShipmentForm, validate_form
from medchain.services.qr_service import QRGenerationError, generate_qr_data_url, shipment_qr_payload
from medchain.services.shipment_service import InvalidStatusTransitionError

logger = logging.getLogger("medchain.routes.distributor")

distributor_bp = Blueprint("distributor", __name__)

VIEW_KIND = "shipments"
STATUS_FILTERS = ("all",) + tuple(s.value for s in ShipmentStatus)


def _shipment_view(session):
    store = get_store()
    return get_view_registry().open(
        session.user_id,
        VIEW_KIND,
        loader=partial(shipment_service.fetch_shipments_by_distributor, store, session.user_id),
        fetch_one=partial(shipment_service.fetch_shipment, store),
    )


def _own_shipment(session, shipment_id):
    shipment = shipment_service.fetch_shipment(get_store(), shipment_id)
    if shipment is None or session.user_id not in (shipment.sender, shipment.receiver):
        return None
    return shipment


@distributor_bp.route("/shipments", methods=["GET"])
@role_required(Role.DISTRIBUTOR)
def list_shipments():
    """Shipments sent or received by the distributor, filterable by status."""
    status = request.args.get("status", "all")
    if status not in STATUS_FILTERS:
        return jsonify({"error": f"Unknown status filter: {status}"}), 400

    view = _shipment_view(get_current_session())
    shipments = filter_shipments_by_status(view.load(), status)
    return jsonify({
        "shipments": [s.to_dict() for s in shipments],
        "pending": sorted(view.poller.pending_ids),
    }), 200


@distributor_bp.route("/shipments", methods=["POST"])
@role_required(Role.DISTRIBUTOR)
def create_shipment():
    session = get_current_session()
    try:
        form = validate_form(ShipmentForm, json_object())
    except FormValidationError as exc:
        return validation_error(exc)

    shipment = shipment_service.add_shipment(
        get_store(),
        drug_ids=form.drug_ids,
        sender=session.user_id,
        receiver=form.receiver,
        ship_date=form.ship_date.isoformat(),
        status=form.status,
        id_generator=get_id_generator(),
    )
    if shipment is None:
        return jsonify({"error": "Failed to create shipment. Please try again."}), 502

    _shipment_view(session).track(shipment)
    return jsonify({"shipment": shipment.to_dict(), "message": "Shipment created successfully"}), 201


@distributor_bp.route("/shipments/<shipment_id>/status", methods=["POST"])
@role_required(Role.DISTRIBUTOR)
def advance_shipment(shipment_id):
    """
    Move a shipment forward.

    Body: {"status": "in_transit" | "delivered", "location": "..."}
    Without "status" the shipment moves to its next status.
    """
    session = get_current_session()
    shipment = _own_shipment(session, shipment_id)
    if shipment is None:
        return jsonify({"error": "Shipment not found."}), 404

    data = json_object()
    if data.get("status"):
        try:
            target = ShipmentStatus(data["status"])
        except ValueError:
            return jsonify({"error": "Validation failed.", "fields": {"status": "Unknown shipment status"}}), 422
    else:
        target = shipment.status.next()
        if target is None:
            return jsonify({"error": "Shipment has already been delivered."}), 409
    location = (data.get("location") or shipment_service.INITIAL_LOCATION).strip()

    try:
        ok = shipment_service.update_shipment_status(get_store(), shipment_id, target, location, session.user_id)
    except InvalidStatusTransitionError as exc:
        return jsonify({"error": str(exc)}), 409
    if not ok:
        return jsonify({"error": "Failed to update shipment status. Please try again."}), 502
    return jsonify({
        "shipment_id": shipment_id,
        "status": target.value,
        "message": f"Shipment marked as {target.value.replace('_', ' ')}",
    }), 200


@distributor_bp.route("/shipments/<shipment_id>/qr", methods=["GET"])
@role_required(Role.DISTRIBUTOR)
def shipment_qr(shipment_id):
    shipment = _own_shipment(get_current_session(), shipment_id)
    if shipment is None:
        return jsonify({"error": "Shipment not found."}), 404

    payload = shipment_qr_payload(shipment)
    try:
        data_url = generate_qr_data_url(payload)
    except QRGenerationError as exc:
        return jsonify({"error": str(exc)}), 500
    return jsonify({
        "qr_code": data_url,
        "payload": payload,
        "verification": shipment.verification.to_dict(),
        "message": "QR code for shipment verification has been generated.",
    }), 200


@distributor_bp.route("/stats", methods=["GET"])
@role_required(Role.DISTRIBUTOR)
def stats():
    session = get_current_session()
    shipments = shipment_service.fetch_shipments_by_distributor(get_store(), session.user_id)
    return jsonify({"stats": distributor_stats(shipments)}), 200
