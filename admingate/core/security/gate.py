"""
Navigation gate run on every protected route entry.

    Checking -> Granted | Denied

1. read the four client-held identifiers
2. resolve the session (device-bound)
3. validate the presented CSRF token
4. rotate the token and persist the replacement to client storage

The CSRF authority is never consulted before the session is confirmed.
Every denial purges the client-held identifiers and carries the requested
location for redirect-back after login. Any unexpected failure denies.
"""

from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlencode
import asyncio
import logging
import secrets

from admingate.core.config import Settings, settings as default_settings
from admingate.core.exceptions import (
    GateSecurityError,
    GateServiceError,
    InvalidCsrfError,
    InvalidSessionError,
    MissingCredentialsError,
    TransientLookupError,
)
from admingate.core.security.client_storage import ClientStorage
from admingate.core.security.csrf_authority import CsrfAuthority
from admingate.core.security.session_registry import SessionRegistry
from admingate.models.security_models import (
    ClientCredentials,
    DenialReason,
    GateDecision,
    GateState,
    Session,
)

logger = logging.getLogger(__name__)

_REASONS = {
    MissingCredentialsError: DenialReason.MISSING_CREDENTIALS,
    InvalidSessionError: DenialReason.INVALID_SESSION,
    InvalidCsrfError: DenialReason.INVALID_CSRF,
}


def safe_location(location: Optional[str]) -> str:
    """Only same-origin absolute paths may be carried to the login page"""
    if not location or not location.startswith("/") or location.startswith("//") or "\\" in location:
        return "/"
    return location


class NavigationGate:
    """
    Validates session and CSRF token, then rotates the token.

    Collaborators are passed in explicitly; one gate instance serves the
    whole process.
    """

    def __init__(
        self,
        session_registry: SessionRegistry,
        csrf_authority: CsrfAuthority,
        settings: Optional[Settings] = None
    ):
        self.sessions = session_registry
        self.csrf = csrf_authority
        self.settings = settings or default_settings
        self._outcomes: Counter = Counter()

    def read_credentials(self, storage: ClientStorage) -> ClientCredentials:
        s = self.settings
        return ClientCredentials(
            session_id=storage.get(s.SESSION_ID_KEY),
            user_id=storage.get(s.USER_ID_KEY),
            device_fingerprint=storage.get(s.DEVICE_FINGERPRINT_KEY),
            csrf_token=storage.get(s.CSRF_TOKEN_KEY),
        )

    async def check(self, storage: ClientStorage, requested_location: str = "/") -> GateDecision:
        """Run one gate evaluation for a protected navigation"""
        location = safe_location(requested_location)
        verified: Optional[Session] = None

        try:
            credentials = self.read_credentials(storage)
            missing = credentials.missing_fields()
            if missing:
                raise MissingCredentialsError("Missing client-held identifiers", missing_keys=missing)

            verified = await self._verify_session(storage, credentials)
            token = await self._verify_and_rotate(verified, credentials.csrf_token)
            storage.set(self.settings.CSRF_TOKEN_KEY, token)

        except asyncio.CancelledError:
            # Abandoned navigation: nothing is purged
            raise
        except GateSecurityError as e:
            return await self._deny(storage, location, _REASONS.get(type(e), DenialReason.INVALID_SESSION), e)
        except (TransientLookupError, GateServiceError) as e:
            return await self._deny(storage, location, DenialReason.TRANSIENT_LOOKUP_FAILURE, e)
        except Exception as e:
            logger.error(f"Unexpected error in gate for {location}", exc_info=True)
            return await self._deny(storage, location, DenialReason.UNEXPECTED_ERROR, e)

        self._outcomes[GateState.GRANTED.value] += 1
        logger.info(f"✅ Gate granted {location} to user {verified.user_id} "
                    f"(session {verified.session_id[:8]}...)")
        return GateDecision(
            state=GateState.GRANTED,
            requested_location=location,
            user_id=verified.user_id,
            csrf_token=token,
        )

    async def _verify_session(self, storage: ClientStorage, credentials: ClientCredentials) -> Session:
        session = await self._with_retry(
            "resolve", self.sessions.resolve, credentials.session_id, credentials.device_fingerprint
        )
        if session is None:
            raise InvalidSessionError("Session not found")

        if not secrets.compare_digest(session.user_id.encode(), credentials.user_id.encode()):
            raise InvalidSessionError("Session belongs to another user")

        if self.settings.GATE_VERIFY_DEVICE:
            live = storage.compute_fingerprint()
            if live is not None and not secrets.compare_digest(live.encode(), credentials.device_fingerprint.encode()):
                raise InvalidSessionError(
                    "Stored fingerprint does not match this device",
                    user_id=session.user_id,
                    details={"session_id": session.session_id, "foreign_device": True}
                )

        return session

    async def _verify_and_rotate(self, session: Session, presented: str) -> str:
        user_id = session.user_id
        if not await self._with_retry("validate", self.csrf.validate, user_id, presented):
            raise InvalidCsrfError("CSRF token rejected", user_id=user_id)

        if self.settings.SESSION_SLIDING_EXPIRY:
            if await self.sessions.renew(session.session_id) is None:
                raise InvalidSessionError("Session vanished during check")

        # Compare-and-swap: a concurrent pass that rotated first wins
        token = await self._with_retry("rotate", self.csrf.rotate, user_id, presented)
        if token is None:
            raise InvalidCsrfError("CSRF token superseded mid-flight", user_id=user_id,
                                   details={"superseded": True})
        return token

    async def _with_retry(self, operation: str, func: Callable[..., Awaitable[Any]], *args) -> Any:
        retries = max(0, self.settings.GATE_TRANSIENT_RETRIES)
        for attempt in range(retries + 1):
            try:
                return await func(*args)
            except TransientLookupError as e:
                if attempt >= retries:
                    raise
                logger.warning(f"⚠️ Transient failure in {operation} (attempt {attempt + 1}): {e.message}")
                await asyncio.sleep(self.settings.GATE_RETRY_BACKOFF_SECONDS)

    async def _deny(
        self,
        storage: ClientStorage,
        location: str,
        reason: DenialReason,
        error: Exception
    ) -> GateDecision:
        self._outcomes[reason.value] += 1
        storage.remove_all(self.settings.storage_keys)

        if reason == DenialReason.TRANSIENT_LOOKUP_FAILURE:
            logger.warning(f"⚠️ Gate denied {location} [{reason.value}]: {error}")
        else:
            logger.warning(f"🚫 Gate denied {location} [{reason.value}]")
            logger.debug(f"Denial detail: {error}")

        # Cookies replayed from another device: the session is compromised.
        # A rejected CSRF token leaves the session to the tab holding the current one.
        details = getattr(error, "details", {})
        if details.get("foreign_device"):
            await self._destroy_session(details["session_id"])

        return GateDecision(
            state=GateState.DENIED,
            requested_location=location,
            reason=reason,
            redirect_to=self.login_redirect(location),
            retryable=reason == DenialReason.TRANSIENT_LOOKUP_FAILURE,
        )

    async def _destroy_session(self, session_id: str) -> None:
        if not self.settings.GATE_DESTROY_ON_DENIAL:
            return
        try:
            await self.sessions.destroy(session_id)
            logger.warning(f"🗑️ Destroyed session {session_id[:8]}... presented from another device")
        except Exception:
            logger.error(f"Failed to destroy session {session_id[:8]}... after denial", exc_info=True)

    def login_redirect(self, location: str) -> str:
        return f"{self.settings.LOGIN_PATH}?{urlencode({'next': location})}"

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "outcomes": dict(self._outcomes),
            "sessions": self.sessions.get_metrics(),
            "csrf": self.csrf.get_metrics(),
        }
