"""
Doctor dashboard routes – issuing prescriptions and their verification QR codes.
"""

import logging
from functools import partial

from flask import Blueprint, jsonify, request

from medchain.database import get_id_generator, get_store, get_view_registry
from medchain.middleware.auth_middleware import get_current_session, role_required
from medchain.models.models import Role
from medchain.routes.common import json_object, validation_error
from medchain.services import prescription_service
from medchain.services.dashboard_service import doctor_stats, search_prescriptions
from medchain.services.forms import FormValidationError, PrescriptionForm, validate_form
from medchain.services.qr_service import QRGenerationError, generate_qr_data_url, prescription_qr_payload

logger = logging.getLogger("medchain.routes.doctor")

doctor_bp = Blueprint("doctor", __name__)

VIEW_KIND = "prescriptions"


def _prescription_view(session):
    store = get_store()
    return get_view_registry().open(
        session.user_id,
        VIEW_KIND,
        loader=partial(prescription_service.fetch_prescriptions_by_doctor, store, session.user_id),
        fetch_one=partial(prescription_service.fetch_prescription, store),
    )


@doctor_bp.route("/prescriptions", methods=["GET"])
@role_required(Role.DOCTOR)
def list_prescriptions():
    view = _prescription_view(get_current_session())
    prescriptions = search_prescriptions(view.load(), request.args.get("q", ""))
    return jsonify({
        "prescriptions": [p.to_dict() for p in prescriptions],
        "pending": sorted(view.poller.pending_ids),
    }), 200


@doctor_bp.route("/prescriptions", methods=["POST"])
@role_required(Role.DOCTOR)
def create_prescription():
    """
    Issue a prescription.

    Body: {
        "patient_id": "...",
        "drug_ids": ["drug_..."],
        "issue_date": "YYYY-MM-DD",      (default today)
        "expiry_date": "YYYY-MM-DD",     (default six months after issue)
        "notes": "..."
    }
    """
    session = get_current_session()
    try:
        form = validate_form(PrescriptionForm, json_object())
    except FormValidationError as exc:
        return validation_error(exc)

    prescription = prescription_service.add_prescription(
        get_store(),
        patient_id=form.patient_id,
        doctor_id=session.user_id,
        drug_ids=form.drug_ids,
        issue_date=form.issue_date.isoformat(),
        expiry_date=form.expiry_date.isoformat() if form.expiry_date else None,
        notes=form.notes,
        id_generator=get_id_generator(),
    )
    if prescription is None:
        return jsonify({"error": "Failed to create prescription. Please try again."}), 502

    _prescription_view(session).track(prescription)
    return jsonify({
        "prescription": prescription.to_dict(),
        "message": "Prescription created successfully",
    }), 201


@doctor_bp.route("/prescriptions/<prescription_id>/qr", methods=["GET"])
@role_required(Role.DOCTOR)
def prescription_qr(prescription_id):
    session = get_current_session()
    prescription = prescription_service.fetch_prescription(get_store(), prescription_id)
    if prescription is None or prescription.doctor_id != session.user_id:
        return jsonify({"error": "Prescription not found."}), 404

    payload = prescription_qr_payload(prescription)
    try:
        data_url = generate_qr_data_url(payload)
    except QRGenerationError as exc:
        return jsonify({"error": str(exc)}), 500
    return jsonify({"qr_code": data_url, "payload": payload}), 200


@doctor_bp.route("/stats", methods=["GET"])
@role_required(Role.DOCTOR)
def stats():
    session = get_current_session()
    prescriptions = prescription_service.fetch_prescriptions_by_doctor(get_store(), session.user_id)
    return jsonify({"stats": doctor_stats(prescriptions)}), 200
