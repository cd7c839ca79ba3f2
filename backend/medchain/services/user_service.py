"""User directory lookups."""

import logging
from typing import Optional

from medchain.models.models import Role, User
from medchain.services.record_store.base_store import RecordStore, RecordStoreError
from medchain.services.store_helpers import fetch_one

logger = logging.getLogger("medchain.users")

USERS_TABLE = "users"


def fetch_user_by_id(store: RecordStore, user_id: str) -> Optional[User]:
    return fetch_one(store, USERS_TABLE, User.from_row, "user", {"id": user_id})


def fetch_users_by_role(store: RecordStore, role: Role) -> list[User]:
    """Active users holding *role*, in backend order."""
    try:
        rows = store.select(USERS_TABLE, filters={"role": Role(role).value, "active": True})
    except RecordStoreError as exc:
        logger.error("Error fetching users by role: %s", exc)
        return []
    return [User.from_row(row) for row in rows]


def fetch_manufacturer_by_id(store: RecordStore, manufacturer_id: str) -> Optional[User]:
    return fetch_one(
        store, USERS_TABLE, User.from_row, "manufacturer",
        {"id": manufacturer_id, "role": Role.MANUFACTURER.value, "active": True},
    )
