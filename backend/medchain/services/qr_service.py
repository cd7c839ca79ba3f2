"""
Verification QR codes.
Each code encodes a small JSON subset of the entity so a scanner can look the
record up and compare its transaction id. No backend call is involved.
"""

import base64
import json
import logging
from io import BytesIO

import qrcode
from qrcode.exceptions import DataOverflowError

from medchain.models.models import Drug, Prescription, Shipment

logger = logging.getLogger("medchain.qr")

DEFAULT_BOX_SIZE = 10
DEFAULT_BORDER = 2


class QRGenerationError(Exception):
    """The payload could not be encoded as a QR image."""


def drug_qr_payload(drug: Drug) -> dict:
    return {
        "drug_id": drug.drug_id,
        "name": drug.name,
        "manufacturer": drug.manufacturer,
        "batch_number": drug.batch_number,
        "manufacture_date": drug.manufacture_date,
        "expiry_date": drug.expiry_date,
        "blockchain_tx_id": drug.verification.to_tx_id(),
    }


def shipment_qr_payload(shipment: Shipment) -> dict:
    return {
        "shipment_id": shipment.shipment_id,
        "drug_ids": list(shipment.drug_ids),
        "sender": shipment.sender,
        "receiver": shipment.receiver,
        "status": shipment.status.value,
        "ship_date": shipment.ship_date,
        "blockchain_tx_id": shipment.verification.to_tx_id(),
    }


def prescription_qr_payload(prescription: Prescription) -> dict:
    return {
        "prescription_id": prescription.prescription_id,
        "patient_id": prescription.patient_id,
        "doctor_id": prescription.doctor_id,
        "drug_ids": list(prescription.drug_ids),
        "issue_date": prescription.issue_date,
        "expiry_date": prescription.expiry_date,
        "blockchain_tx_id": prescription.verification.to_tx_id(),
    }


def generate_qr_data_url(payload: dict, box_size: int = DEFAULT_BOX_SIZE,
                         border: int = DEFAULT_BORDER) -> str:
    """Encode *payload* as JSON inside a PNG QR code, returned as a data URL."""
    try:
        qr = qrcode.QRCode(version=None, box_size=box_size, border=border)
        qr.add_data(json.dumps(payload, separators=(",", ":")))
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = BytesIO()
        img.save(buffered, format="PNG")
    except (ValueError, OSError, DataOverflowError) as exc:
        logger.error("Error generating QR code: %s", exc)
        raise QRGenerationError("Failed to generate QR code. Please try again.") from exc

    img_str = base64.b64encode(buffered.getvalue()).decode()
    return f"data:image/png;base64,{img_str}"


def qr_filename(drug: Drug) -> str:
    return f"qr-{drug.name}-{drug.batch_number}.png"
