"""
Identity provider boundary.

The rest of the code only sees `Identity` objects and `AuthError` messages.
`PasswordIdentityProvider` is the bundled implementation: bcrypt password
hashes in the "identities" collection and HS256 session tokens whose `sub`
is the subject id. Federated sign-in accepts an ID token signed with the
configured federated secret.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from .config import Settings
from .database import IDENTITIES, create_document, find_one, get_document
from .errors import AuthError
from .schemas import Identity

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

Listener = Callable[[Optional[Identity]], object]


class IdentityProvider(ABC):
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` with the new Identity on sign-in, None on sign-out."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            listener(identity)

    @abstractmethod
    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity: ...

    @abstractmethod
    def sign_in(self, email: str, password: str) -> Identity: ...

    @abstractmethod
    def sign_in_with_federated(self, provider: str, id_token: str) -> Identity: ...

    @abstractmethod
    def sign_out(self, subject_id: str) -> None: ...

    @abstractmethod
    def issue_token(self, identity: Identity) -> str: ...

    @abstractmethod
    def verify_token(self, token: str) -> Identity: ...


class PasswordIdentityProvider(IdentityProvider):
    def __init__(self, db: Database, settings: Settings):
        super().__init__()
        self.db = db
        self.settings = settings
        self.pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    @staticmethod
    def _to_identity(doc) -> Identity:
        return Identity(
            subject_id=doc["_id"],
            display_name=doc.get("display_name"),
            email=doc.get("email"),
            photo_url=doc.get("photo_url"),
        )

    def sign_up(self, email: str, password: str, display_name: Optional[str] = None) -> Identity:
        if find_one(self.db, IDENTITIES, {"email": email}):
            raise AuthError("Email already registered")
        subject_id = uuid.uuid4().hex
        create_document(self.db, IDENTITIES, {
            "email": email,
            "password_hash": self.pwd_context.hash(password),
            "display_name": display_name,
            "photo_url": None,
            "provider": "password",
            "session_version": 0,
        }, doc_id=subject_id)
        identity = Identity(subject_id=subject_id, display_name=display_name, email=email)
        logger.info("signed up %s", subject_id)
        self._notify(identity)
        return identity

    def sign_in(self, email: str, password: str) -> Identity:
        doc = find_one(self.db, IDENTITIES, {"email": email, "provider": "password"})
        if not doc or not self.pwd_context.verify(password, doc.get("password_hash", "")):
            raise AuthError("Incorrect email or password")
        identity = self._to_identity(doc)
        self._notify(identity)
        return identity

    def sign_in_with_federated(self, provider: str, id_token: str) -> Identity:
        if provider not in self.settings.federated_providers:
            raise AuthError(f"Sign-in with {provider} is not enabled")
        try:
            claims = jwt.decode(id_token, self.settings.federated_secret, algorithms=[ALGORITHM])
        except JWTError:
            raise AuthError("Invalid federated token")
        sub = claims.get("sub")
        if not sub:
            raise AuthError("Invalid federated token")

        subject_id = f"{provider}:{sub}"
        fields = {
            "email": claims.get("email"),
            "display_name": claims.get("name"),
            "photo_url": claims.get("picture"),
            "provider": provider,
        }
        self.db[IDENTITIES].update_one(
            {"_id": subject_id},
            {"$set": fields, "$setOnInsert": {"session_version": 0}},
            upsert=True,
        )
        identity = Identity(subject_id=subject_id, display_name=fields["display_name"],
                            email=fields["email"], photo_url=fields["photo_url"])
        self._notify(identity)
        return identity

    def sign_out(self, subject_id: str) -> None:
        # bumping the version invalidates every token issued so far
        self.db[IDENTITIES].update_one({"_id": subject_id}, {"$inc": {"session_version": 1}})
        self._notify(None)

    def issue_token(self, identity: Identity) -> str:
        doc = get_document(self.db, IDENTITIES, identity.subject_id) or {}
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.settings.access_token_expire_minutes)
        to_encode = {"sub": identity.subject_id, "ver": doc.get("session_version", 0), "exp": expire}
        return jwt.encode(to_encode, self.settings.jwt_secret, algorithm=ALGORITHM)

    def verify_token(self, token: str) -> Identity:
        try:
            payload = jwt.decode(token, self.settings.jwt_secret, algorithms=[ALGORITHM])
        except JWTError:
            raise AuthError("Could not validate credentials")
        subject_id = payload.get("sub")
        doc = get_document(self.db, IDENTITIES, subject_id) if subject_id else None
        if doc is None or payload.get("ver") != doc.get("session_version", 0):
            raise AuthError("Could not validate credentials")
        return self._to_identity(doc)
