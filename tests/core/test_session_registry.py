# tests/core/test_session_registry.py
"""
Unit tests for the in-memory session registry.
"""

import pytest
from datetime import datetime, timedelta, timezone

from admingate.core.security import InMemorySessionRegistry


class TestResolve:
    """Device-bound lookup"""

    async def test_resolve_with_creating_fingerprint(self, session_registry):
        session = await session_registry.create("u1", "fp-A")

        resolved = await session_registry.resolve(session.session_id, "fp-A")

        assert resolved is not None
        assert resolved.session_id == session.session_id
        assert resolved.user_id == "u1"

    async def test_resolve_with_other_fingerprint_fails(self, session_registry):
        session = await session_registry.create("u1", "fp-A")

        assert await session_registry.resolve(session.session_id, "fp-B") is None

    async def test_unknown_expired_and_mismatch_look_the_same(self, session_registry):
        session = await session_registry.create("u1", "fp-A")
        session_registry._sessions[session.session_id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        other = await session_registry.create("u2", "fp-C")

        results = [
            await session_registry.resolve("does-not-exist", "fp-A"),
            await session_registry.resolve(session.session_id, "fp-A"),
            await session_registry.resolve(other.session_id, "fp-A"),
        ]

        assert results == [None, None, None]

    @pytest.mark.parametrize("session_id,fingerprint", [("", "fp-A"), ("abc", ""), (None, "fp-A")])
    async def test_empty_arguments_are_not_found(self, session_registry, session_id, fingerprint):
        await session_registry.create("u1", "fp-A")
        assert await session_registry.resolve(session_id, fingerprint) is None

    async def test_resolve_is_read_only(self, session_registry):
        session = await session_registry.create("u1", "fp-A")
        before = session_registry._sessions[session.session_id].model_copy()

        await session_registry.resolve(session.session_id, "fp-A")
        await session_registry.resolve(session.session_id, "fp-B")

        after = session_registry._sessions[session.session_id]
        assert after == before

    async def test_returned_session_is_a_copy(self, session_registry):
        session = await session_registry.create("u1", "fp-A")

        resolved = await session_registry.resolve(session.session_id, "fp-A")
        resolved.device_fingerprint = "fp-B"

        assert await session_registry.resolve(session.session_id, "fp-A") is not None


class TestLifecycle:
    """Create, destroy, renew and cleanup"""

    async def test_create_requires_user_and_fingerprint(self, session_registry):
        with pytest.raises(ValueError):
            await session_registry.create("", "fp-A")
        with pytest.raises(ValueError):
            await session_registry.create("u1", "")

    async def test_session_ids_are_unique_and_long(self, session_registry):
        ids = {(await session_registry.create("u1", "fp-A")).session_id for _ in range(20)}
        assert len(ids) == 20
        assert all(len(sid) == 64 for sid in ids)

    async def test_destroy(self, session_registry):
        session = await session_registry.create("u1", "fp-A")

        await session_registry.destroy(session.session_id)
        await session_registry.destroy(session.session_id)  # idempotent

        assert await session_registry.resolve(session.session_id, "fp-A") is None

    async def test_destroy_user_sessions(self, session_registry):
        s1 = await session_registry.create("u1", "fp-A")
        s2 = await session_registry.create("u1", "fp-B")
        keep = await session_registry.create("u2", "fp-A")

        removed = await session_registry.destroy_user_sessions("u1")

        assert removed == 2
        assert await session_registry.resolve(s1.session_id, "fp-A") is None
        assert await session_registry.resolve(s2.session_id, "fp-B") is None
        assert await session_registry.resolve(keep.session_id, "fp-A") is not None

    async def test_renew_extends_session_close_to_expiry(self, session_registry):
        session = await session_registry.create("u1", "fp-A")
        almost = datetime.now(timezone.utc) + timedelta(minutes=2)
        session_registry._sessions[session.session_id].expires_at = almost

        renewed = await session_registry.renew(session.session_id)

        assert renewed.expires_at > almost + timedelta(minutes=20)

    async def test_renew_leaves_fresh_session_expiry(self, session_registry):
        session = await session_registry.create("u1", "fp-A")

        renewed = await session_registry.renew(session.session_id)

        assert renewed.expires_at == session.expires_at
        assert renewed.last_activity >= session.last_activity

    async def test_renew_unknown_or_expired(self, session_registry):
        session = await session_registry.create("u1", "fp-A")
        session_registry._sessions[session.session_id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

        assert await session_registry.renew(session.session_id) is None
        assert await session_registry.renew("unknown") is None

    async def test_cleanup_expired(self, session_registry):
        old = await session_registry.create("u1", "fp-A")
        fresh = await session_registry.create("u2", "fp-A")
        session_registry._sessions[old.session_id].expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)

        removed = await session_registry.cleanup_expired()

        assert removed == 1
        assert old.session_id not in session_registry._sessions
        assert fresh.session_id in session_registry._sessions
        assert "u1" not in session_registry._user_index

    async def test_metrics(self, session_registry):
        session = await session_registry.create("u1", "fp-A")
        await session_registry.resolve(session.session_id, "fp-B")

        metrics = session_registry.get_metrics()

        assert metrics["backend"] == "InMemorySessionRegistry"
        assert metrics["active_sessions"] == 1
        assert metrics["total_created"] == 1
        assert metrics["resolve_failures"] == 1

    async def test_custom_max_age(self):
        registry = InMemorySessionRegistry(max_age=timedelta(minutes=1))
        session = await registry.create("u1", "fp-A")
        assert session.expires_at - session.created_at == timedelta(minutes=1)
