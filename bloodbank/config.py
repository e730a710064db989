import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class Settings:
    """Runtime configuration, read from the environment (and `.env`)."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        database_name: Optional[str] = None,
        jwt_secret: str = "dev-secret-key-change",
        access_token_expire_minutes: int = 60 * 12,
        federated_secret: Optional[str] = None,
        federated_providers: Optional[List[str]] = None,
        cors_origins: Optional[List[str]] = None,
        log_level: str = "INFO",
        port: int = 8000,
    ):
        self.database_url = database_url
        self.database_name = database_name
        self.jwt_secret = jwt_secret
        self.access_token_expire_minutes = access_token_expire_minutes
        self.federated_secret = federated_secret or jwt_secret
        self.federated_providers = federated_providers or ["google"]
        self.cors_origins = cors_origins or ["*"]
        self.log_level = log_level
        self.port = port

    @classmethod
    def from_env(cls) -> "Settings":
        jwt_secret = os.getenv("JWT_SECRET", "dev-secret-key-change")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            jwt_secret=jwt_secret,
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 12)),
            federated_secret=os.getenv("FEDERATED_SECRET", jwt_secret),
            federated_providers=_split(os.getenv("FEDERATED_PROVIDERS", "google")),
            cors_origins=_split(os.getenv("CORS_ORIGINS", "*")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            port=int(os.getenv("PORT", 8000)),
        )
