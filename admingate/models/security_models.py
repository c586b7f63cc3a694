# admingate/models/security_models.py

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
import secrets
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """
    One authenticated browser context, bound to the device fingerprint
    captured at login.
    """
    session_id: str = Field(default_factory=lambda: secrets.token_hex(32))
    user_id: str
    device_fingerprint: str
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=lambda: utcnow() + timedelta(minutes=30))
    last_activity: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the session has expired"""
        return (now or utcnow()) > self.expires_at

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        return self.expires_at - (now or utcnow())


class CsrfToken(BaseModel):
    """The single live anti-forgery token of a user"""
    user_id: str
    value: str
    issued_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=lambda: utcnow() + timedelta(hours=24))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def matches(self, presented: str) -> bool:
        """Constant-time comparison against a presented token"""
        return secrets.compare_digest(self.value.encode(), presented.encode())


class ClientCredentials(BaseModel):
    """
    The four identifiers cached in client storage. Untrusted: every gate
    evaluation re-verifies them against the registries.
    """
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    device_fingerprint: Optional[str] = None
    csrf_token: Optional[str] = None

    def missing_fields(self) -> list:
        return [name for name, value in self.model_dump().items() if not value]


class GateState(str, Enum):
    CHECKING = "checking"
    GRANTED = "granted"
    DENIED = "denied"


class DenialReason(str, Enum):
    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_SESSION = "invalid_session"
    INVALID_CSRF = "invalid_csrf"
    TRANSIENT_LOOKUP_FAILURE = "transient_lookup_failure"
    UNEXPECTED_ERROR = "unexpected_error"


class GateDecision(BaseModel):
    """Outcome of one gate evaluation, handed to the route renderer"""
    state: GateState
    requested_location: str = "/"
    reason: Optional[DenialReason] = None
    redirect_to: Optional[str] = None
    user_id: Optional[str] = None
    csrf_token: Optional[str] = None
    retryable: bool = False

    @property
    def granted(self) -> bool:
        return self.state == GateState.GRANTED


class SessionBootstrapRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=256)


class SessionBootstrapResponse(BaseModel):
    session_id: str
    user_id: str
    csrf_token: str
    expires_at: datetime
