"""
Form schemas and the two-step sign-up wizard.

Validation errors are reported per field with the same messages the
dashboard forms display inline.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from medchain.models.models import Role, ShipmentStatus

# Field-level messages shown next to the input when validation fails.
FIELD_MESSAGES = {
    "name": "Name must be at least 2 characters",
    "email": "Invalid email address",
    "phone_number": "Invalid phone number",
    "password": "Password must be at least 8 characters",
    "business_name": "Business name is required",
    "govt_credential": "Government credential is required",
    "batch_number": "Batch number is required",
    "manufacture_date": "Manufacture date must be a valid date",
    "expiry_date": "Expiry date must be a valid date after the manufacture date",
    "drug_ids": "Select at least one drug",
    "receiver": "Receiver is required",
    "ship_date": "Ship date must be a valid date",
    "patient_id": "Patient is required",
    "issue_date": "Issue date must be a valid date",
    "role": "Please select your role",
}

ROLE_REQUIRED_MESSAGE = "Please select a role"

BUSINESS_NAME_LABELS = {
    Role.MANUFACTURER: "Company Name",
    Role.DISTRIBUTOR: "Business Name",
    Role.PHARMACIST: "Pharmacy Name",
    Role.DOCTOR: "Hospital/Clinic Name",
}


class FormValidationError(ValueError):
    """Carries ``{field: message}`` for inline display."""

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


def validate_form(schema: type[BaseModel], data: Optional[dict]) -> BaseModel:
    """Parse *data* with *schema* or raise FormValidationError."""
    try:
        return schema.model_validate(data or {})
    except ValidationError as exc:
        errors: dict[str, str] = {}
        for error in exc.errors():
            name = str(error["loc"][0]) if error["loc"] else "__root__"
            errors.setdefault(name, FIELD_MESSAGES.get(name, error["msg"]))
        raise FormValidationError(errors) from exc


def business_name_label(role: Role) -> str:
    return BUSINESS_NAME_LABELS[Role(role)]


def password_strength(password: str) -> int:
    """Advisory 0–100 score: 25 points for each satisfied check."""
    checks = [
        len(password) >= 8,
        any(c.isdigit() for c in password),
        any(c.islower() for c in password),
        any(c.isupper() or not c.isalnum() for c in password),
    ]
    return 25 * sum(checks)


# ─── Schemas ───


class BasicInfo(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    phone_number: str = Field(min_length=5)
    password: str = Field(min_length=8)


class AdditionalInfo(BaseModel):
    business_name: str = Field(min_length=2)
    govt_credential: str = Field(min_length=2)


class SignInForm(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)
    role: Role


class DrugForm(BaseModel):
    name: str = Field(min_length=2)
    batch_number: str = Field(min_length=1)
    manufacture_date: date
    expiry_date: date

    @field_validator("expiry_date")
    @classmethod
    def _expiry_after_manufacture(cls, value, info):
        made = info.data.get("manufacture_date")
        if made is not None and value <= made:
            raise ValueError("expiry must follow manufacture")
        return value


class ShipmentForm(BaseModel):
    drug_ids: list[str] = Field(min_length=1)
    receiver: str = Field(min_length=1)
    ship_date: date = Field(default_factory=date.today)
    status: ShipmentStatus = ShipmentStatus.PENDING


class PrescriptionForm(BaseModel):
    patient_id: str = Field(min_length=1)
    drug_ids: list[str] = Field(min_length=1)
    issue_date: date = Field(default_factory=date.today)
    expiry_date: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("expiry_date")
    @classmethod
    def _expiry_after_issue(cls, value, info):
        issued = info.data.get("issue_date")
        if value is not None and issued is not None and value <= issued:
            raise ValueError("expiry must follow issue")
        return value


# ─── Sign-up wizard ───


@dataclass
class SignUpPayload:
    """Both wizard steps combined, ready for the auth sign-up call."""
    role: Role
    name: str
    email: str
    phone_number: str
    password: str
    business_name: str
    govt_credential: str

    def metadata(self) -> dict:
        return {
            "role": self.role.value,
            "name": self.name,
            "phone_number": self.phone_number,
            "business_name": self.business_name,
            "govt_credential": self.govt_credential,
        }


@dataclass
class SignUpWizard:
    """
    Two-step sign-up state.

    Step 1 collects identity fields plus a role; it advances only when the
    fields validate and a role is selected. Step 2 collects the role-labelled
    business name and a credential. Values entered in either step survive
    moving back and forth.
    """
    step: int = 1
    selected_role: Optional[Role] = None
    basic_values: dict = field(default_factory=dict)
    additional_values: dict = field(default_factory=dict)
    errors: dict = field(default_factory=dict)
    submitted: bool = False

    @property
    def progress(self) -> int:
        return 50 if self.step == 1 else 100

    @property
    def business_name_label(self) -> Optional[str]:
        return business_name_label(self.selected_role) if self.selected_role else None

    def select_role(self, role) -> None:
        parsed = Role.parse(role)
        if parsed is None:
            raise FormValidationError({"role": ROLE_REQUIRED_MESSAGE})
        self.selected_role = parsed
        self.errors.pop("role", None)

    def submit_basic_info(self, values: dict) -> bool:
        """Validate step 1 and advance. Returns True when the wizard moved on."""
        self.submitted = True
        self.basic_values = dict(values)
        self.errors = {}
        try:
            validate_form(BasicInfo, values)
        except FormValidationError as exc:
            self.errors.update(exc.errors)
        if self.selected_role is None:
            self.errors["role"] = ROLE_REQUIRED_MESSAGE
        if self.errors:
            return False
        self.step = 2
        return True

    def back(self) -> None:
        self.step = 1
        self.errors = {}

    def submit_additional_info(self, values: dict) -> SignUpPayload:
        """Validate step 2 and return the combined payload."""
        if self.step != 2 or self.selected_role is None:
            raise FormValidationError({"step": "Complete the basic information first"})
        self.additional_values = dict(values)
        try:
            additional = validate_form(AdditionalInfo, values)
        except FormValidationError as exc:
            self.errors = dict(exc.errors)
            raise
        basic = validate_form(BasicInfo, self.basic_values)
        self.errors = {}
        return SignUpPayload(
            role=self.selected_role,
            name=basic.name,
            email=str(basic.email),
            phone_number=basic.phone_number,
            password=basic.password,
            business_name=additional.business_name,
            govt_credential=additional.govt_credential,
        )

    def reset(self) -> None:
        self.step = 1
        self.selected_role = None
        self.basic_values = {}
        self.additional_values = {}
        self.errors = {}
        self.submitted = False

    def to_dict(self):
        """Public wizard state; the password never leaves the wizard."""
        basic = {k: v for k, v in self.basic_values.items() if k != "password"}
        return {
            "step": self.step,
            "progress": self.progress,
            "role": self.selected_role.value if self.selected_role else None,
            "business_name_label": self.business_name_label,
            "basic_info": basic,
            "additional_info": dict(self.additional_values),
            "errors": dict(self.errors),
        }
