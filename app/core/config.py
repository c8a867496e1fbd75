from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """App settings loaded from environment variables (.env/.env.docker)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Form Delegation Portal"
    ENV: str = "dev"

    # SECURITY
    SECRET_KEY: str = "CHANGE_ME"
    COOKIE_SECURE: bool = False   # set True behind HTTPS
    COOKIE_SAMESITE: str = "lax"
    SESSION_MAX_AGE_SECONDS: int = 60 * 60 * 12  # 12h

    # CORS
    CORS_ALLOW_ORIGINS: str = "*"  # "*" or "https://a.com,https://b.com"
    CORS_ALLOW_CREDENTIALS: bool = False

    # DATABASE / CACHE
    DATABASE_DSN: str = "sqlite:///./form_portal.db"
    REDIS_URL: str = ""  # empty: no Redis, process-local locks and no badge cache

    # WORKFLOW
    # Designations that carry approval authority, comma separated.
    APPROVAL_AUTHORITY_DESIGNATIONS: str = "Director,Head of Division,Section Officer"
    # Delegation restricted to users of the delegator's own lab.
    DELEGATION_SAME_LAB_ONLY: bool = True
    # Payload key that must be true before a submission can be approved.
    APPROVAL_DECLARATION_FIELD: str = "declaration_checkbox"
    CHAIN_LOCK_TIMEOUT_SECONDS: int = 10

    # DEV BOOTSTRAP
    AUTO_CREATE_ADMIN: bool = True
    DEFAULT_ADMIN_EMAIL: str = "admin@example.org"
    DEFAULT_ADMIN_PASSWORD: str = "admin123"
    DEFAULT_ADMIN_FULL_NAME: str = "Dev Admin"
    AUTO_SEED_SAMPLE: bool = False
    SAMPLE_SEED_PASSWORD: str = "123"

    def cors_origins(self) -> list[str]:
        s = (self.CORS_ALLOW_ORIGINS or "").strip()
        if not s or s == "*":
            return ["*"]
        return [x.strip() for x in s.split(",") if x.strip()]

    def approval_designations(self) -> list[str]:
        return [x.strip() for x in (self.APPROVAL_AUTHORITY_DESIGNATIONS or "").split(",") if x.strip()]


settings = Settings()
