"""
Helpers shared by the data-access services.
Reads degrade to empty results, writes to None/False; both are logged.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar

from medchain.services.record_store.base_store import RecordStore, RecordStoreError

logger = logging.getLogger("medchain.store")

T = TypeVar("T")

TIMESTAMP_COLUMN = "timestamp"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def fetch_many(
    store: RecordStore,
    table: str,
    build: Callable[[dict], T],
    description: str,
    filters: Optional[dict] = None,
    or_filters: Optional[dict] = None,
) -> list[T]:
    """Select rows newest first; any backend error yields []."""
    try:
        rows = store.select(
            table,
            filters=filters,
            or_filters=or_filters,
            order_by=TIMESTAMP_COLUMN,
            descending=True,
        )
    except RecordStoreError as exc:
        logger.error("Error fetching %s: %s", description, exc)
        return []
    return [build(row) for row in rows]


def fetch_one(store: RecordStore, table: str, build: Callable[[dict], T],
              description: str, filters: dict) -> Optional[T]:
    try:
        row = store.select_one(table, filters)
    except RecordStoreError as exc:
        logger.error("Error fetching %s: %s", description, exc)
        return None
    return build(row) if row else None


def insert_one(store: RecordStore, table: str, row: dict, description: str) -> Optional[dict]:
    try:
        inserted = store.insert(table, [row])
    except RecordStoreError as exc:
        logger.error("Error adding %s: %s", description, exc)
        return None
    return inserted[0] if inserted else None


def actor_matches_session(store: RecordStore, actor_id: str) -> bool:
    """True when *actor_id* is the user of the store's authenticated session."""
    session = store.get_session()
    if session is None:
        logger.error("User not authenticated")
        return False
    if session.user_id != actor_id:
        logger.error("Actor %s does not match the authenticated user", actor_id)
        return False
    return True
