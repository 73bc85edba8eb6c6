import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    # Wiki encryption (AES-256-GCM, 64 hex chars)
    MESSAGE_ENCRYPTION_KEY: Optional[str] = None

    # Auth
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_ALGORITHMS: str = "HS256"  # comma-separated
    AUTH_JWT_AUDIENCE: Optional[str] = None
    ALLOW_HEADER_AUTH: bool = True  # X-User-Id fallback, ignored in prod

    # Subscription rules
    TRIAL_PERIOD_DAYS: int = 20
    SUPPORT_GRANT_STORAGE_GB: int = 100
    DEFAULT_STORAGE_GB: int = 10

    # App URLs
    API_BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def jwt_algorithms(self) -> List[str]:
        return [a.strip() for a in self.AUTH_JWT_ALGORITHMS.split(",") if a.strip()]

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def header_auth_enabled(self) -> bool:
        return self.ALLOW_HEADER_AUTH and self.ENVIRONMENT.lower() != "prod"


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("family_helper")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "MESSAGE_ENCRYPTION_KEY",
        "AUTH_JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return not missing
