"""
Drug batch data access – manufacturer registration and the drug handling log.

A new drug is stored with a pending verification and is followed by one
``manufactured`` status update. The status update is best effort: if it fails
the drug row stays in place.
"""

import logging
from typing import Optional

from medchain.models.models import (
    PENDING_TX_ID,
    Drug,
    DrugStatus,
    DrugStatusUpdate,
)
from medchain.services.id_generator import DRUG_PREFIX, IdGenerator, TimestampIdGenerator
from medchain.services.record_store.base_store import RecordStore
from medchain.services.store_helpers import (
    actor_matches_session,
    fetch_many,
    fetch_one,
    insert_one,
    now_iso,
)

logger = logging.getLogger("medchain.drugs")

DRUGS_TABLE = "drugs"
DRUG_STATUS_TABLE = "drug_status_updates"
INITIAL_LOCATION = "Manufacturing Facility"

_default_ids = TimestampIdGenerator()


def fetch_drugs(store: RecordStore) -> list[Drug]:
    return fetch_many(store, DRUGS_TABLE, Drug.from_row, "drugs")


def fetch_drugs_by_manufacturer(store: RecordStore, manufacturer_id: str) -> list[Drug]:
    return fetch_many(
        store, DRUGS_TABLE, Drug.from_row, "drugs by manufacturer",
        filters={"manufacturer": manufacturer_id},
    )


def fetch_drug(store: RecordStore, drug_id: str) -> Optional[Drug]:
    return fetch_one(store, DRUGS_TABLE, Drug.from_row, "drug", {"drug_id": drug_id})


def add_drug(
    store: RecordStore,
    name: str,
    manufacturer: str,
    manufacture_date: str,
    expiry_date: str,
    batch_number: str,
    id_generator: IdGenerator = _default_ids,
) -> Optional[Drug]:
    """Register a drug batch. Returns the stored drug or None on failure."""
    row = {
        "drug_id": id_generator.new_id(DRUG_PREFIX),
        "name": name,
        "manufacturer": manufacturer,
        "manufacture_date": manufacture_date,
        "expiry_date": expiry_date,
        "batch_number": batch_number,
        "blockchain_tx_id": PENDING_TX_ID,
        "timestamp": now_iso(),
    }
    inserted = insert_one(store, DRUGS_TABLE, row, "drug")
    if inserted is None:
        return None

    drug = Drug.from_row(inserted)
    update = add_drug_status_update(
        store, drug.drug_id, DrugStatus.MANUFACTURED, INITIAL_LOCATION, manufacturer,
    )
    if update is None:
        logger.warning("Drug %s stored without its initial status update", drug.drug_id)
    return drug


def add_drug_status_update(
    store: RecordStore,
    drug_id: str,
    status: DrugStatus,
    location: str,
    updated_by: str,
) -> Optional[DrugStatusUpdate]:
    """Append to the drug's handling log; the actor must be the session user."""
    if not actor_matches_session(store, updated_by):
        return None

    row = {
        "drug_id": drug_id,
        "status": DrugStatus(status).value,
        "location": location,
        "updated_by": updated_by,
        "blockchain_tx_id": PENDING_TX_ID,
        "timestamp": now_iso(),
    }
    inserted = insert_one(store, DRUG_STATUS_TABLE, row, "drug status update")
    return DrugStatusUpdate.from_row(inserted) if inserted else None


def fetch_drug_status_updates(store: RecordStore, drug_id: str) -> list[DrugStatusUpdate]:
    return fetch_many(
        store, DRUG_STATUS_TABLE, DrugStatusUpdate.from_row, "drug status updates",
        filters={"drug_id": drug_id},
    )


def current_drug_status(store: RecordStore, drug_id: str) -> Optional[DrugStatus]:
    """Most recent status in the drug's log, or None if it has no entries."""
    updates = fetch_drug_status_updates(store, drug_id)
    return updates[0].status if updates else None
