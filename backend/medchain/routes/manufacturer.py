"""
Manufacturer dashboard routes – drug batch registration, handling history,
verification QR codes and distribution channels.
"""

import logging
from datetime import date
from functools import partial

from flask import Blueprint, jsonify, request

from medchain.database import get_id_generator, get_store, get_view_registry
from medchain.middleware.auth_middleware import get_current_session, role_required
from medchain.models.models import DrugStatus, Role, ShipmentStatus
from medchain.routes.common import json_object, validation_error
from medchain.services import drug_service, shipment_service, user_service
from medchain.services.dashboard_service import (
    eligible_drugs_for_shipment,
    filter_by_expiry,
    manufacturer_stats,
    search_drugs,
    search_users,
)
from medchain.services.forms import DrugForm, FormValidationError, validate_form
from medchain.services.qr_service import (
    QRGenerationError,
    drug_qr_payload,
    generate_qr_data_url,
    qr_filename,
)

logger = logging.getLogger("medchain.routes.manufacturer")

manufacturer_bp = Blueprint("manufacturer", __name__)

VIEW_KIND = "drugs"
DISTRIBUTION_MODES = ("direct", "fixed")


def _drug_view(session):
    store = get_store()
    return get_view_registry().open(
        session.user_id,
        VIEW_KIND,
        loader=partial(drug_service.fetch_drugs_by_manufacturer, store, session.user_id),
        fetch_one=partial(drug_service.fetch_drug, store),
    )


def _own_drug(session, drug_id):
    drug = drug_service.fetch_drug(get_store(), drug_id)
    if drug is None or drug.manufacturer != session.user_id:
        return None
    return drug


@manufacturer_bp.route("/drugs", methods=["GET"])
@role_required(Role.MANUFACTURER)
def list_drugs():
    """List the manufacturer's batches, optionally searched and filtered by expiry."""
    session = get_current_session()
    view = _drug_view(session)
    drugs = view.load()
    drugs = search_drugs(drugs, request.args.get("q", ""))
    drugs = filter_by_expiry(drugs, request.args.get("status", "all"))
    return jsonify({
        "drugs": [d.to_dict() for d in drugs],
        "pending": sorted(view.poller.pending_ids),
    }), 200


@manufacturer_bp.route("/drugs", methods=["POST"])
@role_required(Role.MANUFACTURER)
def create_drug():
    """Register a new drug batch; it starts out pending verification."""
    session = get_current_session()
    try:
        form = validate_form(DrugForm, json_object())
    except FormValidationError as exc:
        return validation_error(exc)

    drug = drug_service.add_drug(
        get_store(),
        name=form.name,
        manufacturer=session.user_id,
        manufacture_date=form.manufacture_date.isoformat(),
        expiry_date=form.expiry_date.isoformat(),
        batch_number=form.batch_number,
        id_generator=get_id_generator(),
    )
    if drug is None:
        return jsonify({"error": "Failed to add drug. Please try again."}), 502

    _drug_view(session).track(drug)
    return jsonify({"drug": drug.to_dict(), "message": "Drug added successfully"}), 201


@manufacturer_bp.route("/drugs/<drug_id>/history", methods=["GET"])
@role_required(Role.MANUFACTURER)
def drug_history(drug_id):
    session = get_current_session()
    if _own_drug(session, drug_id) is None:
        return jsonify({"error": "Drug not found."}), 404
    updates = drug_service.fetch_drug_status_updates(get_store(), drug_id)
    return jsonify({
        "drug_id": drug_id,
        "current_status": updates[0].status.value if updates else None,
        "updates": [u.to_dict() for u in updates],
    }), 200


@manufacturer_bp.route("/drugs/<drug_id>/status", methods=["POST"])
@role_required(Role.MANUFACTURER)
def add_status(drug_id):
    session = get_current_session()
    if _own_drug(session, drug_id) is None:
        return jsonify({"error": "Drug not found."}), 404

    data = json_object()
    try:
        status = DrugStatus(data.get("status", ""))
    except ValueError:
        return jsonify({"error": "Validation failed.", "fields": {"status": "Unknown drug status"}}), 422
    location = (data.get("location") or "").strip()
    if not location:
        return jsonify({"error": "Validation failed.", "fields": {"location": "Location is required"}}), 422

    update = drug_service.add_drug_status_update(get_store(), drug_id, status, location, session.user_id)
    if update is None:
        return jsonify({"error": "Failed to record status update."}), 502
    return jsonify({"update": update.to_dict()}), 201


@manufacturer_bp.route("/drugs/<drug_id>/qr", methods=["GET"])
@role_required(Role.MANUFACTURER)
def drug_qr(drug_id):
    """Verification QR code; only available once the batch is confirmed."""
    session = get_current_session()
    drug = _own_drug(session, drug_id)
    if drug is None:
        return jsonify({"error": "Drug not found."}), 404
    if drug.verification.is_pending:
        return jsonify({"error": "QR codes are available once blockchain verification completes."}), 409

    payload = drug_qr_payload(drug)
    try:
        data_url = generate_qr_data_url(payload)
    except QRGenerationError as exc:
        return jsonify({"error": str(exc)}), 500
    return jsonify({
        "qr_code": data_url,
        "filename": qr_filename(drug),
        "payload": payload,
        "message": "QR code has been generated successfully.",
    }), 200


@manufacturer_bp.route("/stats", methods=["GET"])
@role_required(Role.MANUFACTURER)
def stats():
    session = get_current_session()
    store = get_store()
    drugs = drug_service.fetch_drugs_by_manufacturer(store, session.user_id)
    shipments = shipment_service.fetch_shipments(store)
    return jsonify({"stats": manufacturer_stats(drugs, shipments)}), 200


@manufacturer_bp.route("/partners", methods=["GET"])
@role_required(Role.MANUFACTURER)
def partners():
    """Distributors and pharmacists available as shipment receivers."""
    store = get_store()
    distributors = user_service.fetch_users_by_role(store, Role.DISTRIBUTOR)
    pharmacists = user_service.fetch_users_by_role(store, Role.PHARMACIST)
    distributors = search_users(distributors, request.args.get("distributor_q", ""))
    pharmacists = search_users(pharmacists, request.args.get("pharmacist_q", ""))
    return jsonify({
        "distributors": [u.to_dict() for u in distributors],
        "pharmacists": [u.to_dict() for u in pharmacists],
    }), 200


@manufacturer_bp.route("/distribution", methods=["POST"])
@role_required(Role.MANUFACTURER)
def create_distribution_channel():
    """
    Ship every batch not already in an open shipment.

    Body: {
        "mode": "direct" | "fixed",
        "distributor_id": "...",
        "pharmacist_id": "..."     (required for "fixed")
    }
    "direct" ships to the distributor, "fixed" ships straight to the pharmacist.
    """
    session = get_current_session()
    data = json_object()
    mode = data.get("mode", "direct")
    if mode not in DISTRIBUTION_MODES:
        return jsonify({"error": "Validation Error", "description": "Unknown distribution mode."}), 422
    if not data.get("distributor_id"):
        return jsonify({"error": "Validation Error", "description": "Please select a distributor."}), 422
    if mode == "fixed" and not data.get("pharmacist_id"):
        return jsonify({
            "error": "Validation Error",
            "description": "Please select a pharmacist for fixed distribution.",
        }), 422

    store = get_store()
    drugs = drug_service.fetch_drugs_by_manufacturer(store, session.user_id)
    shipments = shipment_service.fetch_shipments(store)
    to_ship = eligible_drugs_for_shipment(drugs, shipments)
    if not to_ship:
        return jsonify({"error": "No Eligible Drugs", "description": "No drugs available for shipment."}), 409

    receiver = data["pharmacist_id"] if mode == "fixed" else data["distributor_id"]
    shipment = shipment_service.add_shipment(
        store,
        drug_ids=[d.drug_id for d in to_ship],
        sender=session.user_id,
        receiver=receiver,
        ship_date=date.today().isoformat(),
        status=ShipmentStatus.IN_TRANSIT,
        location=drug_service.INITIAL_LOCATION,
        id_generator=get_id_generator(),
    )
    if shipment is None:
        return jsonify({"error": "Failed to create distribution channel. Please try again."}), 502
    return jsonify({
        "shipment": shipment.to_dict(),
        "message": "Distribution channel created successfully!",
    }), 201
