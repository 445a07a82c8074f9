from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly (e.g., boto3 credential chain).
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./launchpad.db"
    DB_POOL_SIZE: int = 20
    DB_POOL_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30

    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Identity provider (RS256 ID tokens, e.g. Firebase). The verified `sub` claim is the owner id.
    IDENTITY_JWKS_URL: str = (
        "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
    )
    IDENTITY_ISSUER: str | None = None
    IDENTITY_AUDIENCE: str | None = None
    IDENTITY_TIMEOUT_SECONDS: float = 10.0

    STORAGE_BUCKET: str = "sites"
    STORAGE_ENDPOINT: str | None = None
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY: str | None = None
    STORAGE_SECRET_KEY: str | None = None
    STORAGE_USE_SSL: bool = True
    STORAGE_FORCE_PATH_STYLE: bool = True
    # Host that serves bucket objects publicly as <base>/<bucket>/<key>. Falls back to PUBLIC_BASE_URL.
    STORAGE_PUBLIC_BASE_URL: str | None = None
    STORAGE_CONNECT_TIMEOUT_SECONDS: float = 5.0
    STORAGE_READ_TIMEOUT_SECONDS: float = 30.0
    STORAGE_UPLOAD_ATTEMPTS: int = 3
    STORAGE_RETRY_DELAY_SECONDS: float = 1.0

    UPLOAD_MAX_FILE_BYTES: int = 10 * 1024 * 1024
    UPLOAD_MAX_ARCHIVE_BYTES: int = 50 * 1024 * 1024
    UPLOAD_MAX_FILES: int = 500
    UPLOAD_EXCESS_FILES_POLICY: Literal["reject", "truncate"] = "reject"
    UPLOAD_TEMP_DIR: str | None = None

    PUBLIC_BASE_URL: str = "http://localhost:8000"

    @field_validator("STORAGE_UPLOAD_ATTEMPTS", "UPLOAD_MAX_FILES")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("PUBLIC_BASE_URL", "STORAGE_PUBLIC_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().rstrip("/")

    @property
    def public_storage_base_url(self) -> str:
        return self.STORAGE_PUBLIC_BASE_URL or self.PUBLIC_BASE_URL

    @property
    def upload_temp_dir(self) -> str | None:
        if not self.UPLOAD_TEMP_DIR:
            return None
        path = Path(self.UPLOAD_TEMP_DIR)
        path.mkdir(parents=True, exist_ok=True)
        return str(path)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
