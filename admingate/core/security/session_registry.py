"""
Session registry: maps session ids to device-bound sessions.

A lookup succeeds only for an existing, unexpired session whose stored
device fingerprint equals the one supplied. Every other outcome is the
same ``None`` so callers cannot tell which factor failed.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Set, Any
from datetime import datetime, timedelta, timezone
import asyncio
import logging
import secrets

from admingate.core.exceptions import RedisServiceError, transient_error
from admingate.models.security_models import Session
from admingate.services.redis_service import RedisService

logger = logging.getLogger(__name__)

# KEYS[1] = session key; ARGV = session JSON, ttl seconds
_RENEW_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
redis.call('SET', KEYS[1], ARGV[1], 'EX', ARGV[2])
return 1
"""


def _fingerprint_matches(stored: str, supplied: str) -> bool:
    return secrets.compare_digest(stored.encode(), supplied.encode())


class SessionRegistry(ABC):
    """
    Interface shared by all session registry backends.

    ``resolve`` is read-only. ``create`` is reserved for the login
    collaborator; ``destroy``/``destroy_user_sessions`` for logout and
    gate denial.
    """

    def __init__(
        self,
        max_age: timedelta = timedelta(minutes=30),
        renew_threshold: timedelta = timedelta(minutes=5)
    ):
        self.max_age = max_age
        self.renew_threshold = renew_threshold
        self._creation_count = 0
        self._resolve_failures = 0

    @abstractmethod
    async def resolve(self, session_id: str, device_fingerprint: str) -> Optional[Session]:
        """Return the session if it exists, is unexpired and matches the fingerprint"""

    @abstractmethod
    async def create(self, user_id: str, device_fingerprint: str) -> Session:
        """Create and store a new session"""

    @abstractmethod
    async def destroy(self, session_id: str) -> None:
        """Remove a session, no-op if unknown"""

    @abstractmethod
    async def destroy_user_sessions(self, user_id: str) -> int:
        """Remove every session of a user, returns the number removed"""

    @abstractmethod
    async def renew(self, session_id: str) -> Optional[Session]:
        """Push out expiry when the session is close to expiring"""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Drop expired sessions, returns the number removed"""

    def _new_session(self, user_id: str, device_fingerprint: str) -> Session:
        if not user_id or not device_fingerprint:
            raise ValueError("user_id and device_fingerprint are required")
        now = datetime.now(timezone.utc)
        return Session(
            user_id=user_id,
            device_fingerprint=device_fingerprint,
            created_at=now,
            last_activity=now,
            expires_at=now + self.max_age
        )

    def _check(self, session: Optional[Session], device_fingerprint: str) -> Optional[Session]:
        """Apply expiry and device binding to a looked-up session"""
        if session is None:
            self._resolve_failures += 1
            return None
        if session.is_expired():
            logger.info(f"⏰ Session {session.session_id[:8]}... expired")
            self._resolve_failures += 1
            return None
        if not _fingerprint_matches(session.device_fingerprint, device_fingerprint):
            logger.warning(f"🔒 Fingerprint mismatch for session {session.session_id[:8]}...")
            self._resolve_failures += 1
            return None
        return session

    def _needs_renewal(self, session: Session) -> bool:
        return session.remaining() < self.renew_threshold

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "backend": self.__class__.__name__,
            "total_created": self._creation_count,
            "resolve_failures": self._resolve_failures,
        }


class InMemorySessionRegistry(SessionRegistry):
    """
    Process-local registry.

    Mutations run under one asyncio lock; lookups never await, so a
    resolve always sees a complete session record.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._sessions: Dict[str, Session] = {}
        self._user_index: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def resolve(self, session_id: str, device_fingerprint: str) -> Optional[Session]:
        if not session_id or not device_fingerprint:
            return None
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug(f"Session {session_id[:8]}... not found")
        result = self._check(session, device_fingerprint)
        return result.model_copy() if result else None

    async def create(self, user_id: str, device_fingerprint: str) -> Session:
        session = self._new_session(user_id, device_fingerprint)
        async with self._lock:
            self._sessions[session.session_id] = session
            self._user_index.setdefault(user_id, set()).add(session.session_id)
            self._creation_count += 1

        logger.info(f"🔐 Created session {session.session_id[:8]}... for user {user_id}")
        return session.model_copy()

    async def destroy(self, session_id: str) -> None:
        async with self._lock:
            self._remove(session_id)

    def _remove(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        user_sessions = self._user_index.get(session.user_id)
        if user_sessions is not None:
            user_sessions.discard(session_id)
            if not user_sessions:
                del self._user_index[session.user_id]
        logger.debug(f"🗑️ Deleted session {session_id[:8]}...")
        return True

    async def destroy_user_sessions(self, user_id: str) -> int:
        async with self._lock:
            session_ids = list(self._user_index.get(user_id, ()))
            removed = sum(1 for sid in session_ids if self._remove(sid))
        if removed:
            logger.info(f"🗑️ Destroyed {removed} session(s) of user {user_id}")
        return removed

    async def renew(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.is_expired():
                return None
            now = datetime.now(timezone.utc)
            session.last_activity = now
            if self._needs_renewal(session):
                session.expires_at = now + self.max_age
                logger.debug(f"♻️ Renewed session {session_id[:8]}...")
            return session.model_copy()

    async def cleanup_expired(self) -> int:
        async with self._lock:
            expired_ids = [sid for sid, s in self._sessions.items() if s.is_expired()]
            for sid in expired_ids:
                self._remove(sid)

        if expired_ids:
            logger.info(f"🧹 Cleaned up {len(expired_ids)} expired sessions")
        return len(expired_ids)

    def get_metrics(self) -> Dict[str, Any]:
        metrics = super().get_metrics()
        metrics["active_sessions"] = len(self._sessions)
        return metrics


class RedisSessionRegistry(SessionRegistry):
    """
    Registry shared across processes through Redis.

    Sessions live under ``<prefix>:session:<id>`` as JSON with a TTL equal
    to their remaining lifetime. ``<prefix>:user_sessions:<uid>`` indexes
    the ids of a user for logout.
    """

    def __init__(self, redis_service: RedisService, *args, prefix: str = "admingate", **kwargs):
        super().__init__(*args, **kwargs)
        self.redis = redis_service
        self.prefix = prefix

    def _session_key(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self.prefix}:user_sessions:{user_id}"

    async def _store(self, session: Session) -> None:
        ttl = max(1, int(session.remaining().total_seconds()))
        await self.redis.set(self._session_key(session.session_id), session.model_dump_json(), ttl=ttl)

    async def _load(self, session_id: str) -> Optional[Session]:
        raw = await self.redis.get(self._session_key(session_id), deserialize_json=False)
        if raw is None:
            return None
        return Session.model_validate_json(raw)

    async def resolve(self, session_id: str, device_fingerprint: str) -> Optional[Session]:
        if not session_id or not device_fingerprint:
            return None
        try:
            session = await self._load(session_id)
        except RedisServiceError as e:
            raise transient_error(f"Session lookup failed: {e.message}", "SessionRegistry", "resolve")
        return self._check(session, device_fingerprint)

    async def create(self, user_id: str, device_fingerprint: str) -> Session:
        session = self._new_session(user_id, device_fingerprint)
        await self._store(session)
        await self.redis.sadd(self._user_key(user_id), session.session_id)
        self._creation_count += 1
        logger.info(f"🔐 Created session {session.session_id[:8]}... for user {user_id}")
        return session

    async def destroy(self, session_id: str) -> None:
        session = await self._load(session_id)
        await self.redis.delete(self._session_key(session_id))
        if session is not None:
            await self.redis.srem(self._user_key(session.user_id), session_id)
        logger.debug(f"🗑️ Deleted session {session_id[:8]}...")

    async def destroy_user_sessions(self, user_id: str) -> int:
        session_ids = await self.redis.smembers(self._user_key(user_id))
        removed = 0
        if session_ids:
            removed = await self.redis.delete(*[self._session_key(sid) for sid in session_ids])
        await self.redis.delete(self._user_key(user_id))
        if removed:
            logger.info(f"🗑️ Destroyed {removed} session(s) of user {user_id}")
        return removed

    async def renew(self, session_id: str) -> Optional[Session]:
        session = await self._load(session_id)
        if session is None or session.is_expired():
            return None
        now = datetime.now(timezone.utc)
        session.last_activity = now
        if self._needs_renewal(session):
            session.expires_at = now + self.max_age
            logger.debug(f"♻️ Renewed session {session_id[:8]}...")

        # Rewrite only if the key survived; a concurrent destroy wins
        ttl = max(1, int(session.remaining().total_seconds()))
        written = await self.redis.eval(
            _RENEW_SCRIPT, [self._session_key(session_id)], [session.model_dump_json(), ttl]
        )
        if not written:
            return None
        return session

    async def cleanup_expired(self) -> int:
        """Expired sessions vanish through their TTL; prune dangling index entries."""
        pruned = 0
        for user_key in await self.redis.scan_keys(f"{self.prefix}:user_sessions:*"):
            for sid in await self.redis.smembers(user_key):
                if not await self.redis.exists(self._session_key(sid)):
                    pruned += await self.redis.srem(user_key, sid)
        if pruned:
            logger.info(f"🧹 Pruned {pruned} expired session index entries")
        return pruned
