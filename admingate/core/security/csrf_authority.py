"""
CSRF token authority: one live anti-forgery token per user.

Issuing a token supersedes the previous one immediately. ``rotate`` is a
compare-and-swap so that of two requests presenting the same token, only
one can replace it.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Any
import asyncio
import hashlib
import logging
import secrets

from admingate.core.exceptions import RedisServiceError, transient_error
from admingate.models.security_models import CsrfToken
from admingate.services.redis_service import RedisService

logger = logging.getLogger(__name__)

# 16 bytes = 128 bits of entropy
MIN_TOKEN_BYTES = 16


class CsrfAuthority(ABC):
    """Interface shared by all CSRF authority backends"""

    def __init__(self, token_bytes: int = 32, ttl: timedelta = timedelta(hours=24)):
        self.token_bytes = max(token_bytes, MIN_TOKEN_BYTES)
        self.ttl = ttl
        self._issued_count = 0
        self._validation_failures = 0
        self._rotation_conflicts = 0

    def _generate(self) -> str:
        return secrets.token_urlsafe(self.token_bytes)

    @abstractmethod
    async def validate(self, user_id: str, presented_token: str) -> bool:
        """True only if the user's live token equals the presented one"""

    @abstractmethod
    async def issue(self, user_id: str) -> str:
        """Mint a new token, superseding any prior one"""

    @abstractmethod
    async def rotate(self, user_id: str, presented_token: str) -> Optional[str]:
        """Replace the live token only if it still equals the presented one"""

    @abstractmethod
    async def revoke(self, user_id: str) -> None:
        """Remove the user's live token"""

    @abstractmethod
    async def clear_expired(self) -> int:
        """Drop expired tokens, returns the number removed"""

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "backend": self.__class__.__name__,
            "total_issued": self._issued_count,
            "validation_failures": self._validation_failures,
            "rotation_conflicts": self._rotation_conflicts,
        }


class InMemoryCsrfAuthority(CsrfAuthority):
    """
    Process-local authority. Issue and rotate for a user serialize on a
    per-user asyncio lock.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._tokens: Dict[str, CsrfToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def _live_token(self, user_id: str) -> Optional[CsrfToken]:
        token = self._tokens.get(user_id)
        if token is None:
            return None
        if token.is_expired():
            del self._tokens[user_id]
            return None
        return token

    def _store_new(self, user_id: str) -> str:
        now = datetime.now(timezone.utc)
        token = CsrfToken(
            user_id=user_id,
            value=self._generate(),
            issued_at=now,
            expires_at=now + self.ttl
        )
        self._tokens[user_id] = token
        self._issued_count += 1
        return token.value

    async def validate(self, user_id: str, presented_token: str) -> bool:
        if not user_id or not presented_token:
            return False
        token = self._live_token(user_id)
        if token is None or not token.matches(presented_token):
            self._validation_failures += 1
            return False
        return True

    async def issue(self, user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id is required")
        async with self._lock_for(user_id):
            value = self._store_new(user_id)
        logger.debug(f"🎟️ Issued CSRF token for user {user_id}")
        return value

    async def rotate(self, user_id: str, presented_token: str) -> Optional[str]:
        if not user_id or not presented_token:
            return None
        async with self._lock_for(user_id):
            token = self._live_token(user_id)
            if token is None or not token.matches(presented_token):
                self._rotation_conflicts += 1
                logger.info(f"🔁 CSRF token of user {user_id} was superseded before rotation")
                return None
            value = self._store_new(user_id)
        logger.debug(f"🔁 Rotated CSRF token for user {user_id}")
        return value

    async def revoke(self, user_id: str) -> None:
        async with self._lock_for(user_id):
            self._tokens.pop(user_id, None)
        self._locks.pop(user_id, None)

    async def clear_expired(self) -> int:
        expired = [uid for uid, token in self._tokens.items() if token.is_expired()]
        for uid in expired:
            self._tokens.pop(uid, None)
            self._locks.pop(uid, None)
        if expired:
            logger.info(f"🧹 Cleared {len(expired)} expired CSRF tokens")
        return len(expired)

    def get_metrics(self) -> Dict[str, Any]:
        metrics = super().get_metrics()
        metrics["live_tokens"] = len(self._tokens)
        return metrics


# KEYS[1] = token hash; ARGV = digest, issued_at, expires_at, ttl seconds
_ISSUE_SCRIPT = """
redis.call('DEL', KEYS[1])
redis.call('HSET', KEYS[1], 'digest', ARGV[1], 'issued_at', ARGV[2], 'expires_at', ARGV[3])
redis.call('EXPIRE', KEYS[1], ARGV[4])
return 1
"""

# KEYS[1] = token hash; ARGV = presented digest, new digest, issued_at, expires_at, ttl seconds
_ROTATE_SCRIPT = """
if redis.call('HGET', KEYS[1], 'digest') ~= ARGV[1] then
    return 0
end
redis.call('HSET', KEYS[1], 'digest', ARGV[2], 'issued_at', ARGV[3], 'expires_at', ARGV[4])
redis.call('EXPIRE', KEYS[1], ARGV[5])
return 1
"""


def token_digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class RedisCsrfAuthority(CsrfAuthority):
    """
    Authority shared across processes through Redis.

    Only the SHA-256 digest of a token is stored. Issue and rotate run as
    Lua scripts so the swap is atomic per user on the server.
    """

    def __init__(self, redis_service: RedisService, *args, prefix: str = "admingate", **kwargs):
        super().__init__(*args, **kwargs)
        self.redis = redis_service
        self.prefix = prefix

    def _key(self, user_id: str) -> str:
        return f"{self.prefix}:csrf:{user_id}"

    def _timestamps(self):
        now = datetime.now(timezone.utc)
        return now.isoformat(), (now + self.ttl).isoformat(), int(self.ttl.total_seconds())

    async def validate(self, user_id: str, presented_token: str) -> bool:
        if not user_id or not presented_token:
            return False
        try:
            stored = await self.redis.hgetall(self._key(user_id))
        except RedisServiceError as e:
            raise transient_error(f"CSRF lookup failed: {e.message}", "CsrfAuthority", "validate")

        digest = stored.get("digest")
        if not digest or datetime.fromisoformat(stored["expires_at"]) < datetime.now(timezone.utc):
            self._validation_failures += 1
            return False
        if not secrets.compare_digest(digest, token_digest(presented_token)):
            self._validation_failures += 1
            return False
        return True

    async def issue(self, user_id: str) -> str:
        if not user_id:
            raise ValueError("user_id is required")
        value = self._generate()
        issued_at, expires_at, ttl = self._timestamps()
        await self.redis.eval(_ISSUE_SCRIPT, [self._key(user_id)], [token_digest(value), issued_at, expires_at, ttl])
        self._issued_count += 1
        logger.debug(f"🎟️ Issued CSRF token for user {user_id}")
        return value

    async def rotate(self, user_id: str, presented_token: str) -> Optional[str]:
        if not user_id or not presented_token:
            return None
        value = self._generate()
        issued_at, expires_at, ttl = self._timestamps()
        try:
            swapped = await self.redis.eval(
                _ROTATE_SCRIPT,
                [self._key(user_id)],
                [token_digest(presented_token), token_digest(value), issued_at, expires_at, ttl]
            )
        except RedisServiceError as e:
            raise transient_error(f"CSRF rotation failed: {e.message}", "CsrfAuthority", "rotate")

        if not swapped:
            self._rotation_conflicts += 1
            logger.info(f"🔁 CSRF token of user {user_id} was superseded before rotation")
            return None
        self._issued_count += 1
        return value

    async def revoke(self, user_id: str) -> None:
        await self.redis.delete(self._key(user_id))

    async def clear_expired(self) -> int:
        # Redis expires token hashes on its own
        return 0
