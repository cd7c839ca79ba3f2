"""
Data access, identifier, session token and QR tests.
Runs against the in-memory record store from conftest.
"""

import time
from dataclasses import replace
from datetime import date

import jwt as pyjwt
import pytest

from medchain.models.models import (
    DrugStatus,
    Prescription,
    Role,
    ShipmentStatus,
    VerificationState,
    VerificationStatus,
)
from medchain.services import drug_service, prescription_service, shipment_service, user_service
from medchain.services.auth_service import SessionContext, decode_token, issue_token
from medchain.services.id_generator import TimestampIdGenerator, to_base36
from medchain.services.prescription_service import DispenseRefusedError, add_months
from medchain.services.qr_service import generate_qr_data_url, prescription_qr_payload
from medchain.services.shipment_service import InvalidStatusTransitionError

SECRET = "unit-test-secret-long-enough-for-hs256-signing"


# ════════════════════════════════════════════
# MODELS
# ════════════════════════════════════════════

class TestVerificationStatus:
    @pytest.mark.parametrize("tx_id,state", [
        (None, VerificationState.UNVERIFIED),
        ("", VerificationState.UNVERIFIED),
        ("pending", VerificationState.PENDING),
        ("0xabc", VerificationState.VERIFIED),
    ])
    def test_decoded_from_column(self, tx_id, state):
        assert VerificationStatus.from_tx_id(tx_id).state is state

    def test_verified_needs_real_tx_id(self):
        with pytest.raises(ValueError):
            VerificationStatus.verified("pending")

    def test_unverified_is_not_pending(self):
        status = VerificationStatus.unverified()
        assert not status.is_pending
        assert not status.is_verified
        assert status.to_tx_id() is None


class TestShipmentStatus:
    def test_forward_only(self):
        assert ShipmentStatus.PENDING.can_advance_to(ShipmentStatus.DELIVERED)
        assert not ShipmentStatus.DELIVERED.can_advance_to(ShipmentStatus.IN_TRANSIT)

    def test_same_status_is_not_a_move(self):
        for status in ShipmentStatus:
            assert not status.can_advance_to(status)

    def test_next(self):
        assert ShipmentStatus.PENDING.next() is ShipmentStatus.IN_TRANSIT
        assert ShipmentStatus.DELIVERED.next() is None


# ════════════════════════════════════════════
# IDENTIFIERS
# ════════════════════════════════════════════

class TestIdGenerator:
    def test_shape(self):
        ids = TimestampIdGenerator(clock=lambda: 1700000000.5)
        prefix, millis, suffix = ids.new_id("drug").split("_")
        assert prefix == "drug"
        assert millis == "1700000000500"
        assert suffix.isalnum() and suffix == suffix.lower()

    def test_unique_within_same_millisecond(self):
        ids = TimestampIdGenerator(clock=lambda: 1700000000.0)
        generated = {ids.new_id("ship") for _ in range(500)}
        assert len(generated) == 500

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"


# ════════════════════════════════════════════
# DRUGS
# ════════════════════════════════════════════

class TestDrugService:
    def _add(self, store, manufacturer="mfr-1"):
        return drug_service.add_drug(
            store, name="Paracetamol", manufacturer=manufacturer,
            manufacture_date="2025-01-01", expiry_date="2027-01-01", batch_number="P-9",
        )

    def test_new_drug_is_pending_with_manufactured_log(self, as_user):
        store = as_user(Role.MANUFACTURER)
        drug = self._add(store)
        assert drug.verification.is_pending
        assert drug.drug_id.startswith("drug_")
        assert drug_service.current_drug_status(store, drug.drug_id) is DrugStatus.MANUFACTURED

    def test_log_entry_skipped_for_other_actor(self, store, as_user):
        """The drug is stored but the handling log refuses a foreign actor."""
        drug = self._add(as_user(Role.MANUFACTURER), manufacturer="mfr-2")
        assert drug is not None
        assert store.rows("drug_status_updates") == []

    def test_status_update_requires_session(self, store):
        assert drug_service.add_drug_status_update(
            store, "drug-a", DrugStatus.IN_TRANSIT, "Dock 3", "mfr-1",
        ) is None

    def test_read_failure_degrades_to_empty(self, store):
        store.fail_on("drugs")
        assert drug_service.fetch_drugs(store) == []
        assert drug_service.fetch_drug(store, "drug-a") is None

    def test_write_failure_returns_none(self, store, as_user):
        store.fail_on("drugs")
        assert self._add(as_user(Role.MANUFACTURER)) is None

    def test_newest_first(self, store):
        for drug_id, ts in [("old", "2025-01-01T00:00:00"), ("new", "2025-06-01T00:00:00")]:
            store.seed("drugs", drug_id=drug_id, manufacturer="mfr-1", blockchain_tx_id="0x1", timestamp=ts)
        assert [d.drug_id for d in drug_service.fetch_drugs(store)] == ["new", "old"]


# ════════════════════════════════════════════
# SHIPMENTS
# ════════════════════════════════════════════

class TestShipmentService:
    def test_create_logs_initial_status(self, store, as_user):
        shipment = shipment_service.add_shipment(
            as_user(Role.DISTRIBUTOR), ["drug-a"], sender="dist-1", receiver="pharm-1",
            ship_date="2025-04-01",
        )
        assert shipment.status is ShipmentStatus.PENDING
        assert shipment.verification.is_pending
        log = store.rows("shipment_status_updates")
        assert [(u["status"], u["location"]) for u in log] == [("pending", "Distribution Center")]

    def test_update_moves_forward(self, store, as_user):
        distributor = as_user(Role.DISTRIBUTOR)
        shipment = shipment_service.add_shipment(
            distributor, ["drug-a"], sender="dist-1", receiver="pharm-1", ship_date="2025-04-01",
        )
        assert shipment_service.update_shipment_status(
            distributor, shipment.shipment_id, ShipmentStatus.DELIVERED, "Pharmacy", "dist-1",
        ) is True
        assert shipment_service.fetch_shipment(store, shipment.shipment_id).status is ShipmentStatus.DELIVERED
        assert len(shipment_service.fetch_shipment_status_updates(store, shipment.shipment_id)) == 2

    def test_update_backwards_raises(self, store, as_user):
        store.seed("shipments", shipment_id="ship-a", status="delivered", drug_ids=[],
                   sender="dist-1", receiver="pharm-1", blockchain_tx_id="0x1", timestamp="t")
        with pytest.raises(InvalidStatusTransitionError):
            shipment_service.update_shipment_status(
                as_user(Role.DISTRIBUTOR), "ship-a", ShipmentStatus.IN_TRANSIT, "Hub", "dist-1",
            )

    def test_update_to_current_status_raises(self, store, as_user):
        store.seed("shipments", shipment_id="ship-a", status="in_transit", drug_ids=[],
                   sender="dist-1", receiver="pharm-1", blockchain_tx_id="0x1", timestamp="t")
        with pytest.raises(InvalidStatusTransitionError):
            shipment_service.update_shipment_status(
                as_user(Role.DISTRIBUTOR), "ship-a", ShipmentStatus.IN_TRANSIT, "Hub", "dist-1",
            )
        assert store.rows("shipment_status_updates") == []

    def test_update_by_other_actor_refused(self, store, as_user):
        store.seed("shipments", shipment_id="ship-a", status="pending", drug_ids=[],
                   sender="dist-1", receiver="pharm-1", blockchain_tx_id="0x1", timestamp="t")
        assert shipment_service.update_shipment_status(
            as_user(Role.DISTRIBUTOR), "ship-a", ShipmentStatus.IN_TRANSIT, "Hub", "dist-2",
        ) is False
        assert store.rows("shipments")[0]["status"] == "pending"

    def test_update_missing_shipment(self, as_user):
        assert shipment_service.update_shipment_status(
            as_user(Role.DISTRIBUTOR), "ship-404", ShipmentStatus.IN_TRANSIT, "Hub", "dist-1",
        ) is False


# ════════════════════════════════════════════
# PRESCRIPTIONS
# ════════════════════════════════════════════

class TestPrescriptionService:
    @pytest.mark.parametrize("start,expected", [
        (date(2024, 8, 31), date(2025, 2, 28)),
        (date(2023, 8, 31), date(2024, 2, 29)),
        (date(2025, 7, 15), date(2026, 1, 15)),
    ])
    def test_six_month_default(self, start, expected):
        assert add_months(start, 6) == expected

    def test_new_prescription(self, as_user):
        rx = prescription_service.add_prescription(
            as_user(Role.DOCTOR), patient_id="patient-7", doctor_id="doc-1",
            drug_ids=["drug-a"], issue_date="2025-03-01",
        )
        assert rx.expiry_date == "2025-09-01"
        assert rx.dispensed is False
        assert rx.verification.is_pending

    def _seed(self, store, tx_id):
        store.seed("prescriptions", prescription_id="rx-1", patient_id="p", doctor_id="doc-1",
                   drug_ids=["drug-a", "drug-b"], issue_date="2025-03-01", expiry_date="2025-09-01",
                   dispensed=False, blockchain_tx_id=tx_id, timestamp="t")
        return prescription_service.fetch_prescription(store, "rx-1")

    @pytest.mark.parametrize("tx_id", ["pending", None])
    def test_dispense_refused_until_verified(self, store, as_user, tx_id):
        rx = self._seed(store, tx_id)
        with pytest.raises(DispenseRefusedError):
            prescription_service.dispense_prescription(as_user(Role.PHARMACIST), rx, "pharm-1")
        assert not [c for c in store.calls if c[0] == "update"]

    def test_dispense_patches_instance(self, store, as_user):
        rx = self._seed(store, "0xfeed")
        assert prescription_service.dispense_prescription(as_user(Role.PHARMACIST), rx, "pharm-1") is True
        assert rx.dispensed is True
        assert rx.dispensed_by == "pharm-1"
        assert rx.dispensed_at is not None
        assert sorted(u["drug_id"] for u in store.rows("drug_status_updates")) == ["drug-a", "drug-b"]

    def test_dispense_other_actor(self, store, as_user):
        rx = self._seed(store, "0xfeed")
        assert prescription_service.dispense_prescription(as_user(Role.PHARMACIST), rx, "pharm-2") is False
        assert rx.dispensed is False

    def test_already_dispensed(self):
        rx = Prescription(
            prescription_id="rx-1", patient_id="p", doctor_id="doc-1", drug_ids=[],
            issue_date="2025-03-01", expiry_date="2025-09-01", dispensed=True,
            verification=VerificationStatus.verified("0x1"),
        )
        with pytest.raises(DispenseRefusedError):
            prescription_service.check_dispensable(rx)


# ════════════════════════════════════════════
# USERS
# ════════════════════════════════════════════

class TestUserService:
    def test_users_by_role_only_active(self, store):
        store.seed("users", id="dist-2", name="Sleepy Logistics", email="x@sleepy.com",
                   role="distributor", active=False)
        assert [u.id for u in user_service.fetch_users_by_role(store, Role.DISTRIBUTOR)] == ["dist-1"]

    def test_manufacturer_lookup(self, store):
        assert user_service.fetch_manufacturer_by_id(store, "mfr-1").name == "Acme Pharma"
        assert user_service.fetch_manufacturer_by_id(store, "dist-1") is None


# ════════════════════════════════════════════
# SESSION TOKENS & QR
# ════════════════════════════════════════════

class TestSessionTokens:
    SESSION = SessionContext(user_id="doc-1", email="rao@cityclinic.com", name="Dr. Rao",
                             role=Role.DOCTOR, access_token="access-doc-1")

    def test_round_trip(self):
        decoded = decode_token(issue_token(self.SESSION, SECRET), SECRET)
        assert decoded == self.SESSION
        assert decoded.dashboard_path == "/dashboard/doctor"

    def test_expired(self):
        token = issue_token(self.SESSION, SECRET, ttl_hours=-1)
        with pytest.raises(pyjwt.ExpiredSignatureError):
            decode_token(token, SECRET)

    def test_wrong_secret(self):
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_token(issue_token(self.SESSION, SECRET), SECRET + "-other")

    def test_capped_at_backend_expiry(self):
        expires_at = int(time.time()) + 600
        session = replace(self.SESSION, expires_at=expires_at)
        token = issue_token(session, SECRET, ttl_hours=12)
        payload = pyjwt.decode(token, SECRET, algorithms=["HS256"])
        assert payload["exp"] == expires_at
        assert decode_token(token, SECRET).expires_at == expires_at

    def test_ttl_applies_when_backend_outlives_it(self):
        session = replace(self.SESSION, expires_at=int(time.time()) + 48 * 3600)
        payload = pyjwt.decode(issue_token(session, SECRET, ttl_hours=1), SECRET, algorithms=["HS256"])
        assert payload["exp"] <= int(time.time()) + 3600


class TestQRCodes:
    def test_prescription_qr(self):
        rx = Prescription(
            prescription_id="rx-1", patient_id="p", doctor_id="doc-1", drug_ids=["drug-a"],
            issue_date="2025-03-01", expiry_date="2025-09-01",
            verification=VerificationStatus.verified("0xfeed"),
        )
        payload = prescription_qr_payload(rx)
        assert payload["blockchain_tx_id"] == "0xfeed"
        assert generate_qr_data_url(payload).startswith("data:image/png;base64,")
