"""
Maps identities from the provider onto application users.

Roles live in "userRoles", keyed by the subject id, because the identity
record itself belongs to the provider. A signed-in identity with no role
record is treated as "user" but no record is written for it; only the
registration flows (and admins) write role records.
"""
import logging
from typing import Any, Dict, Optional, Union

from pymongo.database import Database

from .database import USER_ROLES, USERS, create_document, get_document, update_document, utcnow
from .errors import PermissionDenied, log_failures
from .hospitals import HospitalRegistry
from .identity import IdentityProvider
from .schemas import (
    AppUser,
    Hospital,
    HospitalDetails,
    HospitalRegisterPayload,
    Identity,
    RegisterPayload,
    RoleAssignment,
    Token,
    UserAccount,
    UserAccountUpdate,
    coerce,
    partial,
)

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"


class IdentityBridge:
    def __init__(self, db: Database, provider: IdentityProvider, hospitals: Optional[HospitalRegistry] = None):
        self.db = db
        self.provider = provider
        self.hospitals = hospitals or HospitalRegistry(db)
        provider.subscribe(self.on_auth_state_changed)

    def on_auth_state_changed(self, identity: Optional[Identity]) -> Optional[AppUser]:
        if identity is None:
            logger.info("signed out")
            return None
        return self.resolve(identity)

    @log_failures("Error resolving user")
    def resolve(self, identity: Identity) -> AppUser:
        account = self._ensure_account(identity)
        role_doc = get_document(self.db, USER_ROLES, identity.subject_id)
        role = role_doc["role"] if role_doc else DEFAULT_ROLE
        return AppUser(
            id=identity.subject_id,
            name=identity.display_name or account.get("name") or "User",
            email=identity.email,
            photo_url=identity.photo_url,
            role=role,
        )

    def _ensure_account(self, identity: Identity, name: Optional[str] = None) -> Dict[str, Any]:
        account = get_document(self.db, USERS, identity.subject_id)
        if account is None:
            doc = UserAccount(name=name or identity.display_name or "User", email=identity.email).model_dump()
            create_document(self.db, USERS, doc, doc_id=identity.subject_id)
            logger.info("created account for %s", identity.subject_id)
            account = get_document(self.db, USERS, identity.subject_id)
        return account

    def _set_role(self, user_id: str, role: str) -> None:
        assignment = coerce(RoleAssignment, {"role": role})
        self.db[USER_ROLES].replace_one(
            {"_id": user_id},
            {"role": assignment.role, "updated_at": utcnow()},
            upsert=True,
        )

    def _session(self, identity: Identity) -> Token:
        return Token(access_token=self.provider.issue_token(identity), user=self.resolve(identity))

    @log_failures("Error registering user")
    def register(self, name: str, email: str, password: str) -> Token:
        payload = coerce(RegisterPayload, {"name": name, "email": email, "password": password})
        identity = self.provider.sign_up(payload.email, payload.password, payload.name)
        self._ensure_account(identity, payload.name)
        self._set_role(identity.subject_id, "user")
        return self._session(identity)

    @log_failures("Error registering hospital")
    def register_as_hospital(self, name: str, email: str, password: str,
                             hospital: Union[HospitalDetails, Dict[str, Any]]) -> Token:
        payload = coerce(HospitalRegisterPayload, {
            "name": name,
            "email": email,
            "password": password,
            "hospital": hospital.model_dump() if isinstance(hospital, HospitalDetails) else hospital,
        })
        identity = self.provider.sign_up(payload.email, payload.password, payload.name)
        self._ensure_account(identity, payload.name)
        self._set_role(identity.subject_id, "hospital")
        self.hospitals.register(Hospital(**payload.hospital.model_dump(), user_id=identity.subject_id))
        return self._session(identity)

    def login(self, email: str, password: str) -> Token:
        return self._session(self.provider.sign_in(email, password))

    def login_with_federated(self, provider: str, id_token: str) -> Token:
        return self._session(self.provider.sign_in_with_federated(provider, id_token))

    def logout(self, token: str) -> None:
        identity = self.provider.verify_token(token)
        self.provider.sign_out(identity.subject_id)

    def current_user(self, token: str) -> AppUser:
        return self.resolve(self.provider.verify_token(token))

    @log_failures("Error updating user role")
    def update_user_role(self, actor: AppUser, user_id: str, role: str) -> None:
        if actor.role != "admin":
            logger.warning("user %s tried to set role of %s", actor.id, user_id)
            raise PermissionDenied("Only admins can change roles")
        self._set_role(user_id, role)
        logger.info("role of %s set to %s by %s", user_id, role, actor.id)

    @log_failures("Error fetching user profile")
    def get_user_profile(self, user_id: str) -> Dict[str, Any]:
        profile = get_document(self.db, USERS, user_id)
        if profile is None:
            create_document(self.db, USERS, UserAccount(), doc_id=user_id)
            profile = get_document(self.db, USERS, user_id)
        return profile

    @log_failures("Error updating user profile")
    def update_user_profile(self, user_id: str, fields: Union[UserAccountUpdate, Dict[str, Any]]) -> bool:
        return update_document(self.db, USERS, user_id, partial(UserAccountUpdate, fields))
