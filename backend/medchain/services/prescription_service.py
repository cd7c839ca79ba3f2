"""
Prescription data access – doctors issue prescriptions, pharmacists dispense them.

Dispensing is a one-way transition and is refused before any write unless the
prescription's verification is confirmed.
"""

import calendar
import logging
from datetime import date
from typing import Optional

from medchain.models.models import PENDING_TX_ID, DrugStatus, Prescription
from medchain.services.drug_service import add_drug_status_update
from medchain.services.id_generator import PRESCRIPTION_PREFIX, IdGenerator, TimestampIdGenerator
from medchain.services.record_store.base_store import RecordStore, RecordStoreError
from medchain.services.store_helpers import (
    actor_matches_session,
    fetch_many,
    fetch_one,
    insert_one,
    now_iso,
)

logger = logging.getLogger("medchain.prescriptions")

PRESCRIPTIONS_TABLE = "prescriptions"
DEFAULT_VALIDITY_MONTHS = 6
DISPENSE_LOCATION = "Pharmacy"

_default_ids = TimestampIdGenerator()


class DispenseRefusedError(Exception):
    """The prescription may not be dispensed in its current state."""


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def default_expiry(issue_date: str) -> str:
    return add_months(date.fromisoformat(issue_date), DEFAULT_VALIDITY_MONTHS).isoformat()


def fetch_prescriptions(store: RecordStore) -> list[Prescription]:
    return fetch_many(store, PRESCRIPTIONS_TABLE, Prescription.from_row, "prescriptions")


def fetch_prescriptions_by_doctor(store: RecordStore, doctor_id: str) -> list[Prescription]:
    return fetch_many(
        store, PRESCRIPTIONS_TABLE, Prescription.from_row, "prescriptions by doctor",
        filters={"doctor_id": doctor_id},
    )


def fetch_prescription(store: RecordStore, prescription_id: str) -> Optional[Prescription]:
    return fetch_one(
        store, PRESCRIPTIONS_TABLE, Prescription.from_row, "prescription",
        {"prescription_id": prescription_id},
    )


def add_prescription(
    store: RecordStore,
    patient_id: str,
    doctor_id: str,
    drug_ids: list[str],
    issue_date: Optional[str] = None,
    expiry_date: Optional[str] = None,
    notes: Optional[str] = None,
    id_generator: IdGenerator = _default_ids,
) -> Optional[Prescription]:
    """Issue a prescription; expiry defaults to six months after issue."""
    issue_date = issue_date or date.today().isoformat()
    row = {
        "prescription_id": id_generator.new_id(PRESCRIPTION_PREFIX),
        "patient_id": patient_id,
        "doctor_id": doctor_id,
        "drug_ids": list(drug_ids),
        "issue_date": issue_date,
        "expiry_date": expiry_date or default_expiry(issue_date),
        "notes": notes or None,
        "dispensed": False,
        "dispensed_by": None,
        "dispensed_at": None,
        "blockchain_tx_id": PENDING_TX_ID,
        "timestamp": now_iso(),
    }
    inserted = insert_one(store, PRESCRIPTIONS_TABLE, row, "prescription")
    return Prescription.from_row(inserted) if inserted else None


def check_dispensable(prescription: Prescription) -> None:
    """Raise DispenseRefusedError unless *prescription* may be dispensed."""
    if prescription.dispensed:
        raise DispenseRefusedError("Prescription has already been dispensed.")
    if prescription.verification.is_pending:
        raise DispenseRefusedError("Prescription is still pending blockchain verification.")
    if not prescription.verification.is_verified:
        raise DispenseRefusedError("Prescription has not been verified on the blockchain.")


def dispense_prescription(store: RecordStore, prescription: Prescription, pharmacist_id: str) -> bool:
    """
    Mark *prescription* dispensed by *pharmacist_id*.

    Raises DispenseRefusedError before touching the backend when the
    prescription is unverified, pending, or already dispensed. On success the
    given instance is patched with the dispensed fields and each prescribed
    drug gets a best-effort ``dispensed`` log entry.
    """
    check_dispensable(prescription)
    if not actor_matches_session(store, pharmacist_id):
        return False

    dispensed_at = now_iso()
    patch = {"dispensed": True, "dispensed_by": pharmacist_id, "dispensed_at": dispensed_at}
    try:
        store.update(PRESCRIPTIONS_TABLE, {"prescription_id": prescription.prescription_id}, patch)
    except RecordStoreError as exc:
        logger.error("Error updating prescription dispensed status: %s", exc)
        return False

    prescription.dispensed = True
    prescription.dispensed_by = pharmacist_id
    prescription.dispensed_at = dispensed_at

    for drug_id in prescription.drug_ids:
        if add_drug_status_update(store, drug_id, DrugStatus.DISPENSED, DISPENSE_LOCATION, pharmacist_id) is None:
            logger.warning("No dispensed log entry recorded for drug %s", drug_id)
    return True
