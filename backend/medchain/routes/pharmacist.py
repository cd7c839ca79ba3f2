"""
Pharmacist dashboard routes – prescription review and dispensing, plus the
inventory of drugs delivered to the pharmacy.
"""

import logging
from functools import partial

from flask import Blueprint, jsonify, request

from medchain.database import get_store, get_view_registry
from medchain.middleware.auth_middleware import get_current_session, role_required
from medchain.models.models import Role
from medchain.routes.common import parse_date_arg
from medchain.services import drug_service, prescription_service, shipment_service
from medchain.services.dashboard_service import (
    batch_quantity,
    expiry_status,
    filter_by_date_range,
    filter_by_expiry,
    inventory_stats,
    pharmacist_inventory,
    pharmacist_stats,
    search_drugs,
    search_prescriptions,
)
from medchain.services.prescription_service import DispenseRefusedError

logger = logging.getLogger("medchain.routes.pharmacist")

pharmacist_bp = Blueprint("pharmacist", __name__)

VIEW_KIND = "prescriptions"


def _prescription_view(session):
    store = get_store()
    return get_view_registry().open(
        session.user_id,
        VIEW_KIND,
        loader=partial(prescription_service.fetch_prescriptions, store),
        fetch_one=partial(prescription_service.fetch_prescription, store),
    )


@pharmacist_bp.route("/prescriptions", methods=["GET"])
@role_required(Role.PHARMACIST)
def list_prescriptions():
    """
    Prescriptions, newest first.

    Query: q (id/patient/doctor/notes search), from / to (issue date range),
    dispensed ("true" / "false").
    """
    try:
        start = parse_date_arg(request.args.get("from"))
        end = parse_date_arg(request.args.get("to"))
    except ValueError:
        return jsonify({"error": "Dates must use YYYY-MM-DD."}), 400

    view = _prescription_view(get_current_session())
    prescriptions = search_prescriptions(view.load(), request.args.get("q", ""))
    if start or end:
        prescriptions = filter_by_date_range(prescriptions, "issue_date", start, end)
    dispensed = request.args.get("dispensed")
    if dispensed in ("true", "false"):
        prescriptions = [p for p in prescriptions if p.dispensed == (dispensed == "true")]

    return jsonify({
        "prescriptions": [p.to_dict() for p in prescriptions],
        "pending": sorted(view.poller.pending_ids),
    }), 200


@pharmacist_bp.route("/prescriptions/<prescription_id>/dispense", methods=["POST"])
@role_required(Role.PHARMACIST)
def dispense(prescription_id):
    """Dispense a verified prescription. Pending or unverified ones are refused."""
    session = get_current_session()
    store = get_store()
    prescription = prescription_service.fetch_prescription(store, prescription_id)
    if prescription is None:
        return jsonify({"error": "Prescription not found."}), 404

    try:
        ok = prescription_service.dispense_prescription(store, prescription, session.user_id)
    except DispenseRefusedError as exc:
        return jsonify({"error": "Cannot dispense prescription", "description": str(exc)}), 409
    if not ok:
        return jsonify({"error": "Failed to update prescription. Please try again."}), 502

    if get_view_registry().get(session.user_id, VIEW_KIND) is not None:
        _prescription_view(session).track(prescription)
    return jsonify({"prescription": prescription.to_dict(), "message": "Prescription dispensed"}), 200


@pharmacist_bp.route("/inventory", methods=["GET"])
@role_required(Role.PHARMACIST)
def inventory():
    """
    Delivered drugs, searchable and filterable by expiry status, plus a
    stock summary over the whole inventory.
    """
    session = get_current_session()
    store = get_store()
    drugs = pharmacist_inventory(
        drug_service.fetch_drugs(store),
        shipment_service.fetch_shipments(store),
        session.user_id,
    )
    summary = inventory_stats(drugs)
    drugs = search_drugs(drugs, request.args.get("q", ""))
    drugs = filter_by_expiry(drugs, request.args.get("status", "all"))
    return jsonify({
        "drugs": [
            dict(d.to_dict(), expiry_status=expiry_status(d.expiry_date), quantity=batch_quantity(d.batch_number))
            for d in drugs
        ],
        "summary": summary,
    }), 200


@pharmacist_bp.route("/stats", methods=["GET"])
@role_required(Role.PHARMACIST)
def stats():
    prescriptions = prescription_service.fetch_prescriptions(get_store())
    return jsonify({"stats": pharmacist_stats(prescriptions)}), 200
