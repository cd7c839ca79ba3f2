"""
Domain models – mirror the rows of the hosted record store.
The client never owns these records; instances are transient copies that are
rebuilt from rows on every load.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

PENDING_TX_ID = "pending"


class Role(str, Enum):
    MANUFACTURER = "manufacturer"
    DISTRIBUTOR = "distributor"
    PHARMACIST = "pharmacist"
    DOCTOR = "doctor"

    @property
    def dashboard_path(self) -> str:
        return f"/dashboard/{self.value}"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        """Return the role for *value* or None when it is not a known role."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class DrugStatus(str, Enum):
    MANUFACTURED = "manufactured"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    DISPENSED = "dispensed"


class ShipmentStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"

    @property
    def rank(self) -> int:
        return _SHIPMENT_ORDER.index(self)

    def can_advance_to(self, target: "ShipmentStatus") -> bool:
        """Shipments only move forward: pending -> in_transit -> delivered."""
        return target.rank > self.rank

    def next(self) -> Optional["ShipmentStatus"]:
        if self.rank + 1 < len(_SHIPMENT_ORDER):
            return _SHIPMENT_ORDER[self.rank + 1]
        return None


_SHIPMENT_ORDER = [ShipmentStatus.PENDING, ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED]


class VerificationState(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"


_VERIFICATION_LABELS = {
    VerificationState.UNVERIFIED: "Not on blockchain",
    VerificationState.PENDING: "Pending blockchain confirmation",
    VerificationState.VERIFIED: "Verified on blockchain",
}


@dataclass(frozen=True)
class VerificationStatus:
    """Tagged verification status decoded from the ``blockchain_tx_id`` column.

    ``None`` or ``""`` means the record was never submitted, the sentinel
    ``"pending"`` means the write was accepted but not yet confirmed, and any
    other value is the confirmed transaction id.
    """
    state: VerificationState
    tx_id: Optional[str] = None

    @classmethod
    def unverified(cls) -> "VerificationStatus":
        return cls(VerificationState.UNVERIFIED)

    @classmethod
    def pending(cls) -> "VerificationStatus":
        return cls(VerificationState.PENDING)

    @classmethod
    def verified(cls, tx_id: str) -> "VerificationStatus":
        if not tx_id or tx_id == PENDING_TX_ID:
            raise ValueError(f"Not a confirmed transaction id: {tx_id!r}")
        return cls(VerificationState.VERIFIED, tx_id)

    @classmethod
    def from_tx_id(cls, value: Optional[str]) -> "VerificationStatus":
        if value is None or value == "":
            return cls.unverified()
        if value == PENDING_TX_ID:
            return cls.pending()
        return cls.verified(value)

    def to_tx_id(self) -> Optional[str]:
        if self.state is VerificationState.PENDING:
            return PENDING_TX_ID
        if self.state is VerificationState.VERIFIED:
            return self.tx_id
        return None

    @property
    def is_pending(self) -> bool:
        return self.state is VerificationState.PENDING

    @property
    def is_verified(self) -> bool:
        return self.state is VerificationState.VERIFIED

    @property
    def label(self) -> str:
        return _VERIFICATION_LABELS[self.state]

    def to_dict(self):
        return {"state": self.state.value, "tx_id": self.tx_id, "label": self.label}


def _list(value) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


@dataclass
class Drug:
    drug_id: str
    name: str
    manufacturer: str
    manufacture_date: str
    expiry_date: str
    batch_number: str
    verification: VerificationStatus = field(default_factory=VerificationStatus.unverified)
    timestamp: Optional[str] = None

    @property
    def entity_id(self) -> str:
        return self.drug_id

    @classmethod
    def from_row(cls, row: dict) -> "Drug":
        return cls(
            drug_id=row["drug_id"],
            name=row.get("name", ""),
            manufacturer=row.get("manufacturer", ""),
            manufacture_date=row.get("manufacture_date", ""),
            expiry_date=row.get("expiry_date", ""),
            batch_number=row.get("batch_number", ""),
            verification=VerificationStatus.from_tx_id(row.get("blockchain_tx_id")),
            timestamp=row.get("timestamp"),
        )

    def to_row(self) -> dict:
        return {
            "drug_id": self.drug_id,
            "name": self.name,
            "manufacturer": self.manufacturer,
            "manufacture_date": self.manufacture_date,
            "expiry_date": self.expiry_date,
            "batch_number": self.batch_number,
            "blockchain_tx_id": self.verification.to_tx_id(),
            "timestamp": self.timestamp,
        }

    def to_dict(self):
        data = self.to_row()
        data["verification"] = self.verification.to_dict()
        return data


@dataclass
class DrugStatusUpdate:
    drug_id: str
    status: DrugStatus
    location: str
    updated_by: str
    verification: VerificationStatus = field(default_factory=VerificationStatus.pending)
    timestamp: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "DrugStatusUpdate":
        return cls(
            id=row.get("id"),
            drug_id=row["drug_id"],
            status=DrugStatus(row["status"]),
            location=row.get("location", ""),
            updated_by=row.get("updated_by", ""),
            verification=VerificationStatus.from_tx_id(row.get("blockchain_tx_id")),
            timestamp=row.get("timestamp"),
        )

    def to_row(self) -> dict:
        row = {
            "drug_id": self.drug_id,
            "status": self.status.value,
            "location": self.location,
            "updated_by": self.updated_by,
            "blockchain_tx_id": self.verification.to_tx_id(),
            "timestamp": self.timestamp,
        }
        if self.id is not None:
            row["id"] = self.id
        return row

    def to_dict(self):
        data = self.to_row()
        data["verification"] = self.verification.to_dict()
        return data


@dataclass
class Shipment:
    shipment_id: str
    drug_ids: list[str]
    sender: str
    receiver: str
    status: ShipmentStatus
    ship_date: str
    verification: VerificationStatus = field(default_factory=VerificationStatus.unverified)
    timestamp: Optional[str] = None

    @property
    def entity_id(self) -> str:
        return self.shipment_id

    @classmethod
    def from_row(cls, row: dict) -> "Shipment":
        return cls(
            shipment_id=row["shipment_id"],
            drug_ids=_list(row.get("drug_ids")),
            sender=row.get("sender", ""),
            receiver=row.get("receiver", ""),
            status=ShipmentStatus(row.get("status") or ShipmentStatus.PENDING.value),
            ship_date=row.get("ship_date", ""),
            verification=VerificationStatus.from_tx_id(row.get("blockchain_tx_id")),
            timestamp=row.get("timestamp"),
        )

    def to_row(self) -> dict:
        return {
            "shipment_id": self.shipment_id,
            "drug_ids": list(self.drug_ids),
            "sender": self.sender,
            "receiver": self.receiver,
            "status": self.status.value,
            "ship_date": self.ship_date,
            "blockchain_tx_id": self.verification.to_tx_id(),
            "timestamp": self.timestamp,
        }

    def to_dict(self):
        data = self.to_row()
        data["verification"] = self.verification.to_dict()
        return data


@dataclass
class ShipmentStatusUpdate:
    shipment_id: str
    status: ShipmentStatus
    location: str
    updated_by: str
    verification: VerificationStatus = field(default_factory=VerificationStatus.pending)
    timestamp: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "ShipmentStatusUpdate":
        return cls(
            id=row.get("id"),
            shipment_id=row["shipment_id"],
            status=ShipmentStatus(row["status"]),
            location=row.get("location", ""),
            updated_by=row.get("updated_by", ""),
            verification=VerificationStatus.from_tx_id(row.get("blockchain_tx_id")),
            timestamp=row.get("timestamp"),
        )

    def to_row(self) -> dict:
        row = {
            "shipment_id": self.shipment_id,
            "status": self.status.value,
            "location": self.location,
            "updated_by": self.updated_by,
            "blockchain_tx_id": self.verification.to_tx_id(),
            "timestamp": self.timestamp,
        }
        if self.id is not None:
            row["id"] = self.id
        return row

    def to_dict(self):
        data = self.to_row()
        data["verification"] = self.verification.to_dict()
        return data


@dataclass
class Prescription:
    prescription_id: str
    patient_id: str
    doctor_id: str
    drug_ids: list[str]
    issue_date: str
    expiry_date: str
    notes: Optional[str] = None
    dispensed: bool = False
    dispensed_by: Optional[str] = None
    dispensed_at: Optional[str] = None
    verification: VerificationStatus = field(default_factory=VerificationStatus.unverified)
    timestamp: Optional[str] = None

    @property
    def entity_id(self) -> str:
        return self.prescription_id

    @classmethod
    def from_row(cls, row: dict) -> "Prescription":
        return cls(
            prescription_id=row["prescription_id"],
            patient_id=row.get("patient_id", ""),
            doctor_id=row.get("doctor_id", ""),
            drug_ids=_list(row.get("drug_ids")),
            issue_date=row.get("issue_date", ""),
            expiry_date=row.get("expiry_date", ""),
            notes=row.get("notes"),
            dispensed=bool(row.get("dispensed", False)),
            dispensed_by=row.get("dispensed_by"),
            dispensed_at=row.get("dispensed_at"),
            verification=VerificationStatus.from_tx_id(row.get("blockchain_tx_id")),
            timestamp=row.get("timestamp"),
        )

    def to_row(self) -> dict:
        return {
            "prescription_id": self.prescription_id,
            "patient_id": self.patient_id,
            "doctor_id": self.doctor_id,
            "drug_ids": list(self.drug_ids),
            "issue_date": self.issue_date,
            "expiry_date": self.expiry_date,
            "notes": self.notes,
            "dispensed": self.dispensed,
            "dispensed_by": self.dispensed_by,
            "dispensed_at": self.dispensed_at,
            "blockchain_tx_id": self.verification.to_tx_id(),
            "timestamp": self.timestamp,
        }

    def to_dict(self):
        data = self.to_row()
        data["verification"] = self.verification.to_dict()
        return data


@dataclass
class User:
    id: str
    name: str
    email: str
    role: Optional[Role]
    active: bool = True
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "User":
        return cls(
            id=row["id"],
            name=row.get("name", ""),
            email=row.get("email", ""),
            role=Role.parse(row.get("role")),
            active=bool(row.get("active", True)),
            created_at=row.get("created_at"),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value if self.role else None,
            "active": self.active,
            "created_at": self.created_at,
        }
