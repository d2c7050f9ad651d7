from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "postgresql://postgres:root@db:5432/signflow-db"

    # Auth de propietarios
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    BOOTSTRAP_ADMIN_EMAIL: Optional[str] = None
    BOOTSTRAP_ADMIN_PASSWORD: Optional[str] = None

    # Almacenamiento de archivos
    STORAGE_ROOT: str = "uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # OTP y sesiones de firmante
    OTP_LENGTH: int = Field(default=6, ge=4, le=10)
    OTP_TTL_MINUTES: int = 10
    SIGNER_SESSION_TTL_MINUTES: int = 24 * 60
    CREDENTIAL_SWEEP_MINUTES: int = 15

    # Geometría de página para validar campos (Letter)
    PAGE_WIDTH: float = 612.0
    PAGE_HEIGHT: float = 792.0

    COMPLIANCE_JURISDICTION: str = "IN"

    FRONTEND_URL: str = "http://localhost:3000"
    API_URL: str = "http://localhost:8000"
    NOTIFICATION_RETRY_ATTEMPTS: int = 3

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("COMPLIANCE_JURISDICTION")
    @classmethod
    def upper_jurisdiction(cls, v: str) -> str:
        return v.upper()

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


settings = Settings()
