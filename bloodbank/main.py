import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

from .accounts import IdentityBridge
from .alerts import AlertInbox
from .blood_requests import RequestQueue
from .config import Settings
from .database import connect, ensure_indexes
from .donations import DonationRecordLog
from .donors import DonorRegistry
from .effects import EffectRunner, SendAlert
from .errors import AuthError, BloodBankError, NotFoundError, PermissionDenied, ValidationFailure
from .events import DonationEventCatalog
from .hospitals import HospitalInventoryLedger, HospitalRegistry
from .identity import IdentityProvider, PasswordIdentityProvider
from .inventory import InventoryService
from .schemas import (
    AppUser,
    BloodRequest,
    BloodRequestDetails,
    BloodRequestUpdate,
    DonationAlert,
    DonationEvent,
    DonationEventDetails,
    DonationEventUpdate,
    DonationHistoryDetails,
    DonationHistoryEntry,
    DonationRecord,
    DonationRecordDetails,
    DonationStatusPayload,
    Donor,
    DonorDetails,
    DonorUpdate,
    FederatedLoginPayload,
    HospitalRegisterPayload,
    HospitalUpdate,
    InventoryLineUpdate,
    LoginPayload,
    RegisterPayload,
    RequestStatusPayload,
    RoleUpdatePayload,
    Token,
    UserAccountUpdate,
)

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

# ------------------------------------
# Services
# ------------------------------------
class Services:
    """Every service object, built around one database handle."""

    def __init__(self, db: Database, settings: Settings, provider: Optional[IdentityProvider] = None):
        self.db = db
        self.effects = EffectRunner(db)
        self.donors = DonorRegistry(db, self.effects)
        self.hospitals = HospitalRegistry(db)
        self.inventory_ledger = HospitalInventoryLedger(db)
        self.events = DonationEventCatalog(db)
        self.donations = DonationRecordLog(db, self.effects)
        self.requests = RequestQueue(db)
        self.inventory = InventoryService(db, self.donors, self.requests)
        self.alerts = AlertInbox(db)
        self.provider = provider or PasswordIdentityProvider(db, settings)
        self.accounts = IdentityBridge(db, self.provider, self.hospitals)


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not available")
    return services


def get_current_user(token: str = Depends(oauth2_scheme), services: Services = Depends(get_services)) -> AppUser:
    try:
        return services.accounts.current_user(token)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_role(user: AppUser, roles: List[str]):
    if user.role not in roles:
        raise HTTPException(status_code=403, detail="Insufficient permissions")


def require_self_or_admin(user: AppUser, owner_id: Optional[str]):
    if user.role != "admin" and owner_id != user.id:
        raise HTTPException(status_code=403, detail="Not allowed")


def hospital_for(services: Services, hospital_id: str, user: AppUser) -> Dict[str, Any]:
    """Load a hospital the caller manages (its owner, or an admin)."""
    hospital = services.hospitals.get_by_id(hospital_id)
    if not hospital:
        raise HTTPException(status_code=404, detail="Hospital not found")
    require_self_or_admin(user, hospital.get("user_id"))
    return hospital


router = APIRouter()

# ------------------------------------
# Health & Test
# ------------------------------------
@router.get("/")
def read_root():
    return {"message": "Blood bank coordination API running"}


@router.get("/test")
def test_database(request: Request):
    db = request.app.state.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if request.app.state.settings.database_url else "❌ Not Set"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
            try:
                response["collections"] = db.list_collection_names()
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response

# ------------------------------------
# Auth & Roles
# ------------------------------------
@router.post("/auth/register", response_model=Token)
def register(payload: RegisterPayload, services: Services = Depends(get_services)):
    return services.accounts.register(payload.name, payload.email, payload.password)


@router.post("/auth/register/hospital", response_model=Token)
def register_hospital(payload: HospitalRegisterPayload, services: Services = Depends(get_services)):
    return services.accounts.register_as_hospital(payload.name, payload.email, payload.password, payload.hospital)


@router.post("/auth/login", response_model=Token)
def login(payload: LoginPayload, services: Services = Depends(get_services)):
    return services.accounts.login(payload.email, payload.password)


@router.post("/auth/federated", response_model=Token)
def login_federated(payload: FederatedLoginPayload, services: Services = Depends(get_services)):
    return services.accounts.login_with_federated(payload.provider, payload.id_token)


@router.post("/auth/logout")
def logout(token: str = Depends(oauth2_scheme), services: Services = Depends(get_services)):
    services.accounts.logout(token)
    return {"signed_out": True}


@router.get("/me", response_model=AppUser)
def me(current_user: AppUser = Depends(get_current_user)):
    return current_user


@router.put("/users/{user_id}/role")
def update_user_role(user_id: str, payload: RoleUpdatePayload, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    services.accounts.update_user_role(current_user, user_id, payload.role)
    return {"updated": True}


@router.get("/users/{user_id}/profile")
def get_user_profile(user_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    require_self_or_admin(current_user, user_id)
    return services.accounts.get_user_profile(user_id)


@router.put("/users/{user_id}/profile")
def update_user_profile(user_id: str, payload: UserAccountUpdate, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    require_self_or_admin(current_user, user_id)
    services.accounts.get_user_profile(user_id)
    services.accounts.update_user_profile(user_id, payload)
    return {"updated": True}

# ------------------------------------
# Donors
# ------------------------------------
@router.post("/donors")
def register_donor(donor: DonorDetails, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    if services.donors.get_by_user_id(current_user.id):
        raise HTTPException(status_code=409, detail="Donor profile already exists")
    donor_id = services.donors.register(Donor(**donor.model_dump(), user_id=current_user.id))
    return {"_id": donor_id}


@router.get("/donors")
def list_donors(blood_type: Optional[str] = None, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    require_role(current_user, ["hospital", "admin"])
    if blood_type:
        return services.donors.get_by_blood_type(blood_type)
    return services.donors.get_all()


@router.get("/donors/me")
def my_donor_profile(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    donor = services.donors.get_by_user_id(current_user.id)
    if not donor:
        raise HTTPException(status_code=404, detail="Donor not found")
    return donor


def donor_for(services: Services, donor_id: str, user: AppUser, allow_hospital: bool = False) -> Dict[str, Any]:
    donor = services.donors.get_by_id(donor_id)
    if not donor:
        raise HTTPException(status_code=404, detail="Donor not found")
    if not (allow_hospital and user.role == "hospital"):
        require_self_or_admin(user, donor.get("user_id"))
    return donor


@router.get("/donors/{donor_id}")
def get_donor(donor_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return donor_for(services, donor_id, current_user, allow_hospital=True)


@router.put("/donors/{donor_id}")
def update_donor(donor_id: str, payload: DonorUpdate, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    donor_for(services, donor_id, current_user)
    services.donors.update(donor_id, payload)
    return {"updated": True}


@router.delete("/donors/{donor_id}")
def delete_donor(donor_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    donor_for(services, donor_id, current_user)
    services.donors.delete(donor_id)
    return {"deleted": True}


@router.get("/donors/{donor_id}/donations")
def donor_donations(donor_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    donor_for(services, donor_id, current_user, allow_hospital=True)
    return services.donations.get_by_donor(donor_id)


@router.get("/donations/history")
def my_donation_history(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.donors.get_history(current_user.id)


@router.post("/donations/history")
def add_donation_history(payload: DonationHistoryDetails, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    donor = services.donors.get_by_user_id(current_user.id)
    if not donor:
        raise HTTPException(status_code=404, detail="Donor not found")
    entry = DonationHistoryEntry(donor_id=donor["_id"], user_id=current_user.id, **payload.model_dump())
    return {"_id": services.donors.record_history(entry)}

# ------------------------------------
# Hospitals & Inventory
# ------------------------------------
@router.get("/hospitals")
def list_hospitals(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.hospitals.get_all()


@router.get("/hospitals/me")
def my_hospital(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital = services.hospitals.get_by_user_id(current_user.id)
    if not hospital:
        raise HTTPException(status_code=404, detail="Hospital not found")
    return hospital


@router.get("/hospitals/{hospital_id}")
def get_hospital(hospital_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital = services.hospitals.get_by_id(hospital_id)
    if not hospital:
        raise HTTPException(status_code=404, detail="Hospital not found")
    return hospital


@router.put("/hospitals/{hospital_id}")
def update_hospital(hospital_id: str, payload: HospitalUpdate, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    services.hospitals.update_profile(hospital_id, payload)
    return {"updated": True}


@router.get("/hospitals/{hospital_id}/inventory")
def get_hospital_inventory(hospital_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    lines = services.inventory_ledger.get_inventory(hospital_id)
    return lines or services.inventory_ledger.default_lines(hospital_id)


@router.put("/hospitals/{hospital_id}/inventory/{blood_type}")
def set_inventory_units(hospital_id: str, blood_type: str, payload: InventoryLineUpdate, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    return services.inventory_ledger.set_units(hospital_id, blood_type, payload.available_units)


@router.delete("/inventory/{item_id}")
def delete_inventory_item(item_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    item = services.inventory_ledger.get_item(item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Inventory item not found")
    hospital_for(services, item["hospital_id"], current_user)
    services.inventory_ledger.delete_item(item_id)
    return {"deleted": True}

# ------------------------------------
# Donation Events
# ------------------------------------
@router.post("/hospitals/{hospital_id}/events")
def create_event(hospital_id: str, payload: DonationEventDetails, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    event_id = services.events.create_event(DonationEvent(**payload.model_dump(), hospital_id=hospital_id))
    return {"_id": event_id}


@router.get("/hospitals/{hospital_id}/events")
def hospital_events(hospital_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.events.get_hospital_events(hospital_id)


@router.get("/hospitals/{hospital_id}/events/past")
def hospital_past_events(hospital_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.events.get_past_events(hospital_id)


@router.get("/events/upcoming")
def upcoming_events(services: Services = Depends(get_services)):
    return services.events.get_upcoming_events()


@router.put("/events/{event_id}")
def update_event(event_id: str, payload: DonationEventUpdate, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    event = services.events.get_by_id(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    hospital_for(services, event["hospital_id"], current_user)
    services.events.update_event(event_id, payload)
    return {"updated": True}

# ------------------------------------
# Donation Records
# ------------------------------------
@router.post("/hospitals/{hospital_id}/donations")
def record_donation(hospital_id: str, payload: DonationRecordDetails, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    donor = services.donors.get_by_id(payload.donor_id)
    if not donor:
        raise HTTPException(status_code=404, detail="Donor not found")
    # the alert always goes to the donor on file
    record = DonationRecord(**payload.model_dump(), user_id=donor["user_id"], hospital_id=hospital_id)
    return {"_id": services.donations.record_donation(record)}


@router.get("/hospitals/{hospital_id}/donations")
def hospital_donations(hospital_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    return services.donations.get_by_hospital(hospital_id)


@router.put("/donations/{record_id}/status")
def update_donation_status(record_id: str, payload: DonationStatusPayload, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    record = services.donations.get_by_id(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Donation record not found")
    hospital_for(services, record["hospital_id"], current_user)
    services.donations.update_donation_status(record_id, payload.status, payload.notes)
    return {"updated": True}

# ------------------------------------
# Blood Requests
# ------------------------------------
def request_for(services: Services, request_id: str, user: AppUser) -> Dict[str, Any]:
    req = services.requests.get_by_id(request_id)
    if not req:
        raise HTTPException(status_code=404, detail="Request not found")
    require_self_or_admin(user, req.get("user_id"))
    return req


@router.post("/requests")
def create_request(payload: BloodRequestDetails, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    request_id = services.requests.create(BloodRequest(**payload.model_dump(), user_id=current_user.id))
    return {"_id": request_id, "status": "pending"}


@router.get("/requests")
def list_requests(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    if current_user.role == "admin":
        return services.requests.get_all_requests()
    return services.requests.get_requests_by_user_id(current_user.id)


@router.get("/requests/{request_id}")
def get_request(request_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return request_for(services, request_id, current_user)


@router.put("/requests/{request_id}")
def update_request(request_id: str, payload: BloodRequestUpdate, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    request_for(services, request_id, current_user)
    services.requests.update(request_id, payload)
    return {"updated": True}


@router.delete("/requests/{request_id}")
def delete_request(request_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    request_for(services, request_id, current_user)
    services.requests.delete(request_id)
    return {"deleted": True}


@router.get("/hospitals/{hospital_id}/requests")
def hospital_requests(hospital_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    hospital_for(services, hospital_id, current_user)
    return services.requests.get_requests_for_hospital(hospital_id)


@router.put("/hospitals/{hospital_id}/requests/{request_id}/respond")
def respond_to_request(hospital_id: str, request_id: str, payload: RequestStatusPayload, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    """Hospital dashboard response: update the status, then alert the requester."""
    hospital_for(services, hospital_id, current_user)
    req = services.requests.get_by_id(request_id)
    if not req or req.get("hospital_id") != hospital_id:
        raise HTTPException(status_code=404, detail="Request not found")
    services.requests.update_status(request_id, payload.status, payload.notes)

    if req.get("user_id"):
        alert = DonationAlert(
            user_id=req["user_id"],
            hospital_id=hospital_id,
            record_id=request_id,
            message=f"Your blood request has been {payload.status}",
            type="status_update",
        )
        services.effects.apply([SendAlert(alert=alert)])
    return {"updated": True, "status": payload.status}

# ------------------------------------
# Alerts
# ------------------------------------
@router.get("/alerts")
def my_alerts(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return services.alerts.list_for_user(current_user.id)


@router.get("/alerts/unread-count")
def my_unread_count(current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    return {"unread": services.alerts.unread_count(current_user.id)}


@router.put("/alerts/{alert_id}/read")
def mark_alert_read(alert_id: str, current_user: AppUser = Depends(get_current_user), services: Services = Depends(get_services)):
    services.alerts.mark_read(alert_id, current_user)
    return {"updated": True}

# ------------------------------------
# Blood availability & compatibility
# ------------------------------------
@router.get("/blood/availability")
def blood_availability(services: Services = Depends(get_services)):
    return services.inventory.get_blood_availability()


@router.get("/blood/compatibility")
def compatibility_chart():
    return InventoryService.get_compatibility_chart()


@router.get("/blood/compatibility/{blood_type}")
def compatible_donor_types(blood_type: str):
    return {"recipient": blood_type, "donors": InventoryService.compatible_donor_types(blood_type)}


@router.get("/blood/types")
def blood_types():
    return InventoryService.get_blood_type_display()

# ------------------------------------
# App
# ------------------------------------
ERROR_STATUS = {
    NotFoundError: 404,
    ValidationFailure: 422,
    PermissionDenied: 403,
    AuthError: 401,
}


def handle_domain_error(request: Request, exc: BloodBankError):
    code = next((c for cls, c in ERROR_STATUS.items() if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None,
               provider: Optional[IdentityProvider] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    db = database if database is not None else connect(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if db is not None:
            ensure_indexes(db)
        yield

    app = FastAPI(title="Blood Bank Coordination API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.db = db
    app.state.services = Services(db, settings, provider) if db is not None else None
    app.add_exception_handler(BloodBankError, handle_domain_error)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
