"""
Role dashboards – list filters, summary statistics and live views.

Filters and stats are pure functions over lists fetched wholesale from the
record store. A DashboardView holds one user's cached list together with the
poller that watches its pending entries; the ViewRegistry owns all open views
and tears them down on sign-out or app exit.
"""

import logging
import re
import threading
from collections import Counter
from datetime import date
from typing import Callable, Iterable, Optional

from medchain.models.models import Drug, Prescription, Shipment, ShipmentStatus, User
from medchain.services.verification_poller import DEFAULT_INTERVAL_SECONDS, PendingVerificationPoller

logger = logging.getLogger("medchain.dashboard")

ALL = "all"
EXPIRED = "expired"
EXPIRING_SOON = "expiring_soon"
VALID = "valid"
UNKNOWN = "unknown"
EXPIRING_SOON_MONTHS = 3
EXPIRY_BUCKETS = (EXPIRED, EXPIRING_SOON, VALID, UNKNOWN)


# ═══════════════════════════════════════════
# FILTERS
# ═══════════════════════════════════════════

def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle in (haystack or "").lower()


def search_drugs(drugs: list[Drug], query: str) -> list[Drug]:
    """Case-insensitive match on name, manufacturer or batch number."""
    q = (query or "").strip().lower()
    if not q:
        return list(drugs)
    return [
        d for d in drugs
        if _contains(d.name, q) or _contains(d.manufacturer, q) or _contains(d.batch_number, q)
    ]


def parse_iso_date(raw) -> Optional[date]:
    """The date part of an ISO string, or None when it is missing or malformed."""
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def expiry_status(expiry_date: Optional[str], today: Optional[date] = None) -> str:
    """Bucket an expiry date by whole 30-day months remaining."""
    expiry = parse_iso_date(expiry_date)
    if expiry is None:
        return UNKNOWN
    today = today or date.today()
    months_left = (expiry - today).days // 30
    if months_left < 0:
        return EXPIRED
    if months_left < EXPIRING_SOON_MONTHS:
        return EXPIRING_SOON
    return VALID


def filter_by_expiry(drugs: list[Drug], status: str, today: Optional[date] = None) -> list[Drug]:
    if not status or status == ALL:
        return list(drugs)
    return [d for d in drugs if expiry_status(d.expiry_date, today) == status]


def filter_shipments_by_status(shipments: list[Shipment], status: Optional[str]) -> list[Shipment]:
    if not status or status == ALL:
        return list(shipments)
    wanted = ShipmentStatus(status)
    return [s for s in shipments if s.status is wanted]


def filter_by_date_range(items: list, attribute: str,
                         start: Optional[date] = None, end: Optional[date] = None) -> list:
    """Keep items whose ISO date *attribute* falls within [start, end]."""
    result = []
    for item in items:
        value = parse_iso_date(getattr(item, attribute, None))
        if value is None:
            continue
        if start and value < start:
            continue
        if end and value > end:
            continue
        result.append(item)
    return result


def search_prescriptions(prescriptions: list[Prescription], query: str) -> list[Prescription]:
    q = (query or "").strip().lower()
    if not q:
        return list(prescriptions)
    return [
        p for p in prescriptions
        if _contains(p.prescription_id, q) or _contains(p.patient_id, q)
        or _contains(p.doctor_id, q) or _contains(p.notes, q)
    ]


def search_users(users: list[User], query: str) -> list[User]:
    q = (query or "").strip().lower()
    if not q:
        return list(users)
    return [u for u in users if _contains(u.name, q) or _contains(u.email, q)]


def eligible_drugs_for_shipment(drugs: list[Drug], shipments: list[Shipment]) -> list[Drug]:
    """Drugs not already part of an undelivered shipment."""
    busy = {
        drug_id
        for s in shipments if s.status is not ShipmentStatus.DELIVERED
        for drug_id in s.drug_ids
    }
    return [d for d in drugs if d.drug_id not in busy]


def pharmacist_inventory(drugs: list[Drug], shipments: list[Shipment], pharmacist_id: str) -> list[Drug]:
    """Drugs from shipments delivered to the pharmacist."""
    received = {
        drug_id
        for s in shipments
        if s.receiver == pharmacist_id and s.status is ShipmentStatus.DELIVERED
        for drug_id in s.drug_ids
    }
    return [d for d in drugs if d.drug_id in received]


# ═══════════════════════════════════════════
# STATS
# ═══════════════════════════════════════════

def _verification_counts(entities: Iterable) -> dict:
    verified = pending = 0
    for e in entities:
        if e.verification.is_verified:
            verified += 1
        elif e.verification.is_pending:
            pending += 1
    return {"verified": verified, "pending_verification": pending}


def _status_counts(shipments: list[Shipment]) -> dict:
    counts = Counter(s.status for s in shipments)
    return {status.value: counts.get(status, 0) for status in ShipmentStatus}


def manufacturer_stats(drugs: list[Drug], shipments: list[Shipment]) -> dict:
    drug_ids = {d.drug_id for d in drugs}
    relevant = [s for s in shipments if drug_ids.intersection(s.drug_ids)]
    shipped_drugs = {drug_id for s in relevant for drug_id in s.drug_ids}
    stats = {
        "total_batches": len(drugs),
        "transferring_batches": len(shipped_drugs),
        "transferred_batches": sum(1 for s in relevant if s.status is ShipmentStatus.DELIVERED),
        "shipments": _status_counts(relevant),
    }
    stats.update(_verification_counts(drugs))
    return stats


def distributor_stats(shipments: list[Shipment]) -> dict:
    stats = {"total_shipments": len(shipments)}
    stats.update(_status_counts(shipments))
    stats.update(_verification_counts(shipments))
    return stats


def pharmacist_stats(prescriptions: list[Prescription]) -> dict:
    dispensed = sum(1 for p in prescriptions if p.dispensed)
    ready = sum(1 for p in prescriptions if not p.dispensed and p.verification.is_verified)
    stats = {
        "total_prescriptions": len(prescriptions),
        "dispensed": dispensed,
        "awaiting_dispense": len(prescriptions) - dispensed,
        "ready_to_dispense": ready,
    }
    stats.update(_verification_counts(prescriptions))
    return stats


def batch_quantity(batch_number: Optional[str]) -> int:
    """Units in a batch, read from the first run of digits in its number."""
    match = re.search(r"\d+", batch_number or "")
    return int(match.group()) if match else 0


def inventory_stats(drugs: list[Drug], today: Optional[date] = None) -> dict:
    """Pharmacy stock summary: quantities per expiry bucket and blockchain state."""
    batches = Counter()
    quantities = Counter()
    for d in drugs:
        bucket = expiry_status(d.expiry_date, today)
        batches[bucket] += 1
        quantities[bucket] += batch_quantity(d.batch_number)
    stats = {
        "total_batches": len(drugs),
        "total_quantity": sum(quantities.values()),
        "batches_by_expiry": {bucket: batches[bucket] for bucket in EXPIRY_BUCKETS},
        "quantity_by_expiry": {bucket: quantities[bucket] for bucket in EXPIRY_BUCKETS},
    }
    stats.update(_verification_counts(drugs))
    stats["not_on_blockchain"] = len(drugs) - stats["verified"] - stats["pending_verification"]
    return stats


def doctor_stats(prescriptions: list[Prescription], today: Optional[date] = None) -> dict:
    today = today or date.today()
    active = sum(
        1 for p in prescriptions
        if not p.dispensed and (parse_iso_date(p.expiry_date) or date.min) >= today
    )
    stats = {
        "total_prescriptions": len(prescriptions),
        "active": active,
        "dispensed": sum(1 for p in prescriptions if p.dispensed),
        "patients": len({p.patient_id for p in prescriptions}),
    }
    stats.update(_verification_counts(prescriptions))
    return stats


# ═══════════════════════════════════════════
# LIVE VIEWS
# ═══════════════════════════════════════════

class DashboardView:
    """One user's cached entity list plus the poller watching its pending rows."""

    def __init__(
        self,
        kind: str,
        loader: Callable[[], list],
        fetch_one: Callable[[str], Optional[object]],
        interval: float = DEFAULT_INTERVAL_SECONDS,
        scheduler=None,
        max_workers: int = 4,
    ):
        self.kind = kind
        self._loader = loader
        self._notifications: list[dict] = []
        self._notifications_lock = threading.Lock()
        self.poller = PendingVerificationPoller(
            fetch=fetch_one,
            interval=interval,
            on_resolved=self._on_resolved,
            scheduler=scheduler,
            max_workers=max_workers,
            name=kind,
        )

    def rebind(self, loader: Callable[[], list], fetch_one: Callable[[str], Optional[object]]) -> None:
        """Point the view at the store of the session now using it."""
        self._loader = loader
        self.poller.rebind(fetch_one)

    def load(self) -> list:
        """Re-fetch the whole list; the previous cache is discarded."""
        entities = self._loader()
        self.poller.load(entities)
        return entities

    def track(self, entity) -> None:
        self.poller.track(entity)

    @property
    def entities(self) -> list:
        return self.poller.entities

    def _on_resolved(self, entity) -> None:
        with self._notifications_lock:
            self._notifications.append({
                "title": "Blockchain verification complete",
                "description": f"{entity.entity_id} has been verified on the blockchain.",
                "kind": self.kind,
                "entity_id": entity.entity_id,
                "blockchain_tx_id": entity.verification.to_tx_id(),
            })

    def drain_notifications(self) -> list[dict]:
        with self._notifications_lock:
            drained, self._notifications = self._notifications, []
        return drained

    def close(self) -> None:
        self.poller.stop()


class ViewRegistry:
    """Open dashboard views keyed by (user id, view kind)."""

    def __init__(self, scheduler=None, interval: float = DEFAULT_INTERVAL_SECONDS, max_workers: int = 4):
        self._scheduler = scheduler
        self._interval = interval
        self._max_workers = max_workers
        self._views: dict[tuple[str, str], DashboardView] = {}
        self._lock = threading.Lock()

    def open(self, user_id: str, kind: str, loader, fetch_one) -> DashboardView:
        """
        Return the user's view of *kind*, creating it on first use.
        An existing view is rebound to *loader* and *fetch_one* so loads and
        polling use the caller's current session.
        """
        with self._lock:
            view = self._views.get((user_id, kind))
            if view is not None:
                view.rebind(loader, fetch_one)
            else:
                self._ensure_scheduler_started()
                view = DashboardView(
                    kind, loader, fetch_one,
                    interval=self._interval,
                    scheduler=self._scheduler,
                    max_workers=self._max_workers,
                )
                self._views[(user_id, kind)] = view
            return view

    def get(self, user_id: str, kind: str) -> Optional[DashboardView]:
        with self._lock:
            return self._views.get((user_id, kind))

    def views_for(self, user_id: str) -> list[DashboardView]:
        with self._lock:
            return [v for (uid, _), v in self._views.items() if uid == user_id]

    def close_user(self, user_id: str) -> int:
        """Tear down every view the user holds. Returns how many were closed."""
        with self._lock:
            keys = [key for key in self._views if key[0] == user_id]
            views = [self._views.pop(key) for key in keys]
        for view in views:
            view.close()
        if views:
            logger.info("Closed %d dashboard view(s) for %s", len(views), user_id)
        return len(views)

    def close_all(self) -> None:
        with self._lock:
            views, self._views = list(self._views.values()), {}
        for view in views:
            view.close()
        if self._scheduler is not None and getattr(self._scheduler, "running", False):
            self._scheduler.shutdown(wait=False)
            logger.info("Verification scheduler shut down.")

    def _ensure_scheduler_started(self) -> None:
        if self._scheduler is not None and not getattr(self._scheduler, "running", True):
            self._scheduler.start()
