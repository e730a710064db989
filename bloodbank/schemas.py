"""
Document schemas for the blood bank collections.

Each model describes the shape of one collection's documents (collection
names live in database.py). Services accept either a model instance or a
plain dict; dicts are validated with `coerce` before anything is written.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from .errors import ValidationFailure

BLOOD_TYPES = ["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]
BLOOD_TYPE_PATTERN = "^(A|B|AB|O)[+-]$"

Role = Literal["user", "admin", "hospital"]
RequestStatus = Literal["pending", "approved", "rejected", "fulfilled", "cancelled"]
Urgency = Literal["normal", "urgent", "critical"]
DonationStatus = Literal["collected", "processed", "available", "used"]
HistoryStatus = Literal["completed", "scheduled", "cancelled"]
EventStatus = Literal["upcoming", "active", "completed", "cancelled"]
AlertType = Literal["collection", "status_update", "usage"]
AlertStatus = Literal["unread", "read"]

M = TypeVar("M", bound=BaseModel)


def coerce(model: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    """Validate a dict into `model`, raising ValidationFailure on bad input."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(str(e)) from e


def partial(model: Type[BaseModel], data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Validate a partial update and return only the fields actually given."""
    return coerce(model, data).model_dump(exclude_unset=True)


# Accounts and roles
class UserAccount(BaseModel):
    """
    Users collection, keyed by the identity subject id.
    Collection: "users"
    """
    name: str = Field("New User", description="Display name")
    email: Optional[str] = None
    phone: str = ""
    address: str = ""
    blood_type: str = ""
    date_of_birth: str = ""
    gender: Literal["male", "female", "other"] = "other"
    profile_picture: Optional[str] = None


class UserAccountUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    blood_type: Optional[str] = Field(None, pattern=BLOOD_TYPE_PATTERN)
    date_of_birth: Optional[str] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    profile_picture: Optional[str] = None


class RoleAssignment(BaseModel):
    """
    Role flag kept apart from the identity record.
    Collection: "userRoles" (document id = subject id)
    """
    role: Role = "user"


class Identity(BaseModel):
    subject_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    photo_url: Optional[str] = None


class AppUser(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    photo_url: Optional[str] = None
    role: Role = "user"


# Donors
class MedicalHistory(BaseModel):
    has_disease: bool = False
    has_tattoo: bool = False
    has_recent_surgery: bool = False
    has_allergies: bool = False
    is_medicated: bool = False
    additional_info: str = ""


class DonorDetails(BaseModel):
    name: str
    email: EmailStr
    phone: str
    blood_type: str = Field(..., pattern=BLOOD_TYPE_PATTERN)
    age: int = Field(..., ge=0)
    gender: str
    weight: float = Field(..., gt=0)
    address: str
    medical_history: MedicalHistory = Field(default_factory=MedicalHistory)


class Donor(DonorDetails):
    """
    Donor profile, one per user.
    Collection: "donors"
    """
    user_id: str = Field(..., description="Owning user (subject id)")
    last_donation: Optional[datetime] = Field(None, description="Date of the most recent recorded donation")


class DonorUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    blood_type: Optional[str] = Field(None, pattern=BLOOD_TYPE_PATTERN)
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[str] = None
    weight: Optional[float] = Field(None, gt=0)
    address: Optional[str] = None
    medical_history: Optional[MedicalHistory] = None


class DonationHistoryDetails(BaseModel):
    date: datetime
    location: str
    blood_type: str = Field(..., pattern=BLOOD_TYPE_PATTERN)
    status: HistoryStatus = "completed"
    notes: Optional[str] = None


class DonationHistoryEntry(DonationHistoryDetails):
    """
    Append-only donation history seen from the donor's side.
    Collection: "donations"
    """
    donor_id: str
    user_id: str


# Hospitals
class HospitalDetails(BaseModel):
    name: str
    email: EmailStr
    phone: str
    address: str
    city: str
    state: str
    zip_code: str
    license_number: str
    contact_person: str


class Hospital(HospitalDetails):
    """
    Hospital profile. Verification is flipped out-of-band by an admin.
    Collection: "hospitals"
    """
    user_id: str
    is_verified: bool = False
    registration_date: Optional[datetime] = None


class HospitalUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    license_number: Optional[str] = None
    contact_person: Optional[str] = None


class InventoryLineUpdate(BaseModel):
    available_units: int = Field(..., ge=0)


# Donation events
class DonationEventDetails(BaseModel):
    title: str
    description: str = ""
    event_date: datetime
    start_time: str
    end_time: str
    location: str
    target_donors: int = Field(..., ge=0)
    status: EventStatus = "upcoming"


class DonationEvent(DonationEventDetails):
    """
    Collection: "donationEvents"
    """
    hospital_id: str
    current_registered: int = Field(0, ge=0)


class DonationEventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    event_date: Optional[datetime] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None
    target_donors: Optional[int] = Field(None, ge=0)
    current_registered: Optional[int] = Field(None, ge=0)
    status: Optional[EventStatus] = None


# Donation records and alerts
class DonationRecordDetails(BaseModel):
    donor_id: str
    donation_date: datetime
    blood_type: str = Field(..., pattern=BLOOD_TYPE_PATTERN)
    quantity: int = Field(..., ge=1, description="Units collected")
    status: DonationStatus = "collected"
    event_id: Optional[str] = None
    recipient_id: Optional[str] = None
    notes: Optional[str] = None


class DonationRecord(DonationRecordDetails):
    """
    A collection made by a hospital. Creating one updates the donor's
    last_donation and alerts the donor.
    Collection: "donationRecords"
    """
    hospital_id: str
    user_id: str


class DonationStatusPayload(BaseModel):
    status: DonationStatus
    notes: Optional[str] = None


class DonationAlert(BaseModel):
    """
    Notification addressed to a user.
    Collection: "donationAlerts"
    """
    user_id: str
    donor_id: Optional[str] = None
    hospital_id: Optional[str] = None
    record_id: str = Field(..., description="Donation record or blood request the alert is about")
    message: str
    type: AlertType
    status: AlertStatus = "unread"


# Blood requests
class BloodRequestDetails(BaseModel):
    patient_name: str
    patient_age: Optional[int] = Field(None, ge=0)
    blood_type: str = Field(..., pattern=BLOOD_TYPE_PATTERN)
    units_needed: int = Field(..., ge=1)
    hospital_id: Optional[str] = None
    hospital_name: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    contact_email: Optional[EmailStr] = None
    urgency: Urgency = "normal"
    reason: str = ""
    required_date: Optional[datetime] = None
    status: RequestStatus = "pending"

    @field_validator("urgency", mode="before")
    @classmethod
    def _emergency_is_critical(cls, v):
        if isinstance(v, str) and v.lower() == "emergency":
            return "critical"
        return v


class BloodRequest(BloodRequestDetails):
    """
    Collection: "bloodRequests"
    """
    user_id: Optional[str] = None
    response_notes: Optional[str] = None


class BloodRequestUpdate(BaseModel):
    patient_name: Optional[str] = None
    patient_age: Optional[int] = Field(None, ge=0)
    blood_type: Optional[str] = Field(None, pattern=BLOOD_TYPE_PATTERN)
    units_needed: Optional[int] = Field(None, ge=1)
    hospital_id: Optional[str] = None
    hospital_name: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    urgency: Optional[Urgency] = None
    reason: Optional[str] = None
    required_date: Optional[datetime] = None

    @field_validator("urgency", mode="before")
    @classmethod
    def _emergency_is_critical(cls, v):
        if isinstance(v, str) and v.lower() == "emergency":
            return "critical"
        return v


class RequestStatusPayload(BaseModel):
    status: RequestStatus
    notes: Optional[str] = None


# Read models
class BloodAvailability(BaseModel):
    blood_type: str
    available: int = 0
    requested: int = 0
    net: int = 0
    last_updated: datetime


# Auth payloads
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=8)


class HospitalRegisterPayload(RegisterPayload):
    hospital: HospitalDetails


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


class FederatedLoginPayload(BaseModel):
    provider: str
    id_token: str


class RoleUpdatePayload(BaseModel):
    role: Role


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: AppUser
