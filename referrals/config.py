"""Service configuration, read from the environment and `.env`."""

import sys

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "referral-ledger"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"
    allowed_origins: str = "*"

    # Bearer tokens
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str | None = None

    # Comma separated uids that are always treated as administrators
    admin_uids: str = ""

    # Reward fallbacks used while no admin settings are stored
    default_referrer_coins: int = 50
    default_referred_coins: int = 20

    # Admin listing
    default_list_limit: int = 100
    max_list_limit: int = 200

    # Storage
    storage_lock_timeout_seconds: float = 5.0
    commit_max_attempts: int = 20

    @property
    def admin_uid_list(self) -> list[str]:
        return [uid.strip() for uid in self.admin_uids.split(",") if uid.strip()]


settings = Settings()

if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).",
            file=sys.stderr,
        )
        sys.exit(1)
