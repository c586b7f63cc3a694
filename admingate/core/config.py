# admingate/core/config.py
import logging
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for the admin gate"""
    APP_NAME: str = "AdminGate"
    DEBUG: bool = False

    # Upstream login service authenticates with this key
    ADMINGATE_API_KEY: Optional[str] = Field(default=None)

    # Session settings
    SESSION_MAX_AGE_MINUTES: int = 30
    SESSION_RENEW_THRESHOLD_MINUTES: int = 5
    SESSION_SLIDING_EXPIRY: bool = True

    # CSRF settings
    CSRF_TOKEN_BYTES: int = 32
    CSRF_TOKEN_TTL_HOURS: int = 24

    # Gate settings
    LOGIN_PATH: str = "/login"
    GATE_VERIFY_DEVICE: bool = True
    GATE_DESTROY_ON_DENIAL: bool = True
    GATE_TRANSIENT_RETRIES: int = 1
    GATE_RETRY_BACKOFF_SECONDS: float = 0.05

    # Client storage keys (cookie names)
    SESSION_ID_KEY: str = "session_id"
    USER_ID_KEY: str = "user_id"
    DEVICE_FINGERPRINT_KEY: str = "device_fingerprint"
    CSRF_TOKEN_KEY: str = "csrf_token"
    COOKIE_SECURE: bool = True

    # Storage settings
    REDIS_URL: Optional[str] = Field(default=None)
    REDIS_KEY_PREFIX: str = "admingate"
    MAINTENANCE_INTERVAL_SECONDS: int = 300

    # CORS
    ALLOWED_ORIGINS: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }

    @property
    def storage_keys(self) -> List[str]:
        """All four client-held identifier keys"""
        return [
            self.SESSION_ID_KEY,
            self.USER_ID_KEY,
            self.DEVICE_FINGERPRINT_KEY,
            self.CSRF_TOKEN_KEY,
        ]


# Settings singleton
settings = Settings()


def validate_required_settings(current: Optional[Settings] = None) -> bool:
    """Check that all required settings are present"""
    current = current or settings
    missing = []

    if not current.ADMINGATE_API_KEY:
        missing.append("ADMINGATE_API_KEY")

    if current.CSRF_TOKEN_BYTES < 16:
        logger = logging.getLogger(__name__)
        logger.warning("CSRF_TOKEN_BYTES below 16 is not allowed, falling back to 16")
        current.CSRF_TOKEN_BYTES = 16

    if missing:
        logger = logging.getLogger(__name__)
        logger.warning(f"Missing environment variables: {', '.join(missing)}")
        logger.warning("The session bootstrap endpoint will use a temporary key.")
        return False

    return True
