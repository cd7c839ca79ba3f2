"""
Shipment data access – creation, the shipment status log, and status moves.

Status moves are forward only (pending -> in_transit -> delivered). The
shipment row is updated in place and the move is appended to its log.
"""

import logging
from typing import Optional

from medchain.models.models import (
    PENDING_TX_ID,
    Shipment,
    ShipmentStatus,
    ShipmentStatusUpdate,
)
from medchain.services.id_generator import SHIPMENT_PREFIX, IdGenerator, TimestampIdGenerator
from medchain.services.record_store.base_store import RecordStore, RecordStoreError
from medchain.services.store_helpers import (
    actor_matches_session,
    fetch_many,
    fetch_one,
    insert_one,
    now_iso,
)

logger = logging.getLogger("medchain.shipments")

SHIPMENTS_TABLE = "shipments"
SHIPMENT_STATUS_TABLE = "shipment_status_updates"
INITIAL_LOCATION = "Distribution Center"

_default_ids = TimestampIdGenerator()


class InvalidStatusTransitionError(ValueError):
    """A shipment status move would go backwards."""


def fetch_shipments(store: RecordStore) -> list[Shipment]:
    return fetch_many(store, SHIPMENTS_TABLE, Shipment.from_row, "shipments")


def fetch_shipments_by_distributor(store: RecordStore, distributor_id: str) -> list[Shipment]:
    """Shipments the distributor sends or receives."""
    return fetch_many(
        store, SHIPMENTS_TABLE, Shipment.from_row, "shipments by distributor",
        or_filters={"sender": distributor_id, "receiver": distributor_id},
    )


def fetch_shipment(store: RecordStore, shipment_id: str) -> Optional[Shipment]:
    return fetch_one(
        store, SHIPMENTS_TABLE, Shipment.from_row, "shipment", {"shipment_id": shipment_id},
    )


def add_shipment(
    store: RecordStore,
    drug_ids: list[str],
    sender: str,
    receiver: str,
    ship_date: str,
    status: ShipmentStatus = ShipmentStatus.PENDING,
    location: str = INITIAL_LOCATION,
    id_generator: IdGenerator = _default_ids,
) -> Optional[Shipment]:
    """Create a shipment with a pending verification and its first log entry."""
    row = {
        "shipment_id": id_generator.new_id(SHIPMENT_PREFIX),
        "drug_ids": list(drug_ids),
        "sender": sender,
        "receiver": receiver,
        "status": ShipmentStatus(status).value,
        "ship_date": ship_date,
        "blockchain_tx_id": PENDING_TX_ID,
        "timestamp": now_iso(),
    }
    inserted = insert_one(store, SHIPMENTS_TABLE, row, "shipment")
    if inserted is None:
        return None

    shipment = Shipment.from_row(inserted)
    update = add_shipment_status_update(
        store, shipment.shipment_id, shipment.status, location, sender,
    )
    if update is None:
        logger.warning("Shipment %s stored without its initial status update", shipment.shipment_id)
    return shipment


def add_shipment_status_update(
    store: RecordStore,
    shipment_id: str,
    status: ShipmentStatus,
    location: str,
    updated_by: str,
) -> Optional[ShipmentStatusUpdate]:
    if not actor_matches_session(store, updated_by):
        return None

    row = {
        "shipment_id": shipment_id,
        "status": ShipmentStatus(status).value,
        "location": location,
        "updated_by": updated_by,
        "blockchain_tx_id": PENDING_TX_ID,
        "timestamp": now_iso(),
    }
    inserted = insert_one(store, SHIPMENT_STATUS_TABLE, row, "shipment status update")
    return ShipmentStatusUpdate.from_row(inserted) if inserted else None


def fetch_shipment_status_updates(store: RecordStore, shipment_id: str) -> list[ShipmentStatusUpdate]:
    return fetch_many(
        store, SHIPMENT_STATUS_TABLE, ShipmentStatusUpdate.from_row, "shipment status updates",
        filters={"shipment_id": shipment_id},
    )


def update_shipment_status(
    store: RecordStore,
    shipment_id: str,
    status: ShipmentStatus,
    location: str,
    updated_by: str,
) -> bool:
    """
    Move a shipment to *status* and log the move.

    Raises InvalidStatusTransitionError unless the move goes forward.
    Returns False when the actor is not the session user, the shipment is
    missing, or the backend rejects either write.
    """
    status = ShipmentStatus(status)
    if not actor_matches_session(store, updated_by):
        return False

    shipment = fetch_shipment(store, shipment_id)
    if shipment is None:
        logger.error("Shipment %s not found", shipment_id)
        return False
    if not shipment.status.can_advance_to(status):
        raise InvalidStatusTransitionError(
            f"Shipment {shipment_id} cannot move from {shipment.status.value} to {status.value}."
        )

    try:
        store.update(SHIPMENTS_TABLE, {"shipment_id": shipment_id}, {"status": status.value})
    except RecordStoreError as exc:
        logger.error("Error updating shipment status: %s", exc)
        return False

    return add_shipment_status_update(store, shipment_id, status, location, updated_by) is not None
