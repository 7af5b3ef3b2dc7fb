from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.database import to_timestamp
from app.models.auth import AuthSession
from app.services.errors import StorageUnavailable
from app.services.session_store import SessionStore


def _create_session(store, user, clock, refresh_hash, days=14):
    return store.create_session(
        user_id=user.id,
        refresh_token_hash=refresh_hash,
        expires_at=clock() + timedelta(days=days),
        now=clock(),
        device_label="Firefox on Linux",
    )


def test_create_session_persists_hash_and_timestamps(store, user, clock):
    session = _create_session(store, user, clock, "a" * 64)

    assert session.refresh_token_hash == "a" * 64
    assert session.last_used_at == to_timestamp(clock())
    assert session.created_at == to_timestamp(clock())
    assert session.revoked_at is None
    assert session.is_active(clock())


def test_rotate_replaces_hash_only_when_current_hash_matches(store, user, clock):
    session = _create_session(store, user, clock, "a" * 64)
    later = clock.advance(hours=1)

    assert store.rotate_refresh_hash(session.id, "a" * 64, "b" * 64, later + timedelta(days=14), later)
    # The superseded hash no longer matches anything
    assert not store.rotate_refresh_hash(session.id, "a" * 64, "c" * 64, later + timedelta(days=14), later)

    assert store.find_session_by_refresh_hash("a" * 64) is None
    rotated = store.find_session_by_refresh_hash("b" * 64)
    assert rotated.id == session.id
    assert rotated.last_used_at == to_timestamp(later)
    assert rotated.expires_at == to_timestamp(later + timedelta(days=14))


def test_rotate_refuses_revoked_session(store, user, clock):
    session = _create_session(store, user, clock, "a" * 64)
    store.revoke_session(session.id, clock())

    assert not store.rotate_refresh_hash(session.id, "a" * 64, "b" * 64, clock() + timedelta(days=14), clock())
    assert store.find_session_by_refresh_hash("b" * 64) is None


def test_revoke_session_is_idempotent(store, user, clock):
    session = _create_session(store, user, clock, "a" * 64)
    first_revocation = clock()

    assert store.revoke_session(session.id, first_revocation) is True
    clock.advance(minutes=5)
    assert store.revoke_session(session.id, clock()) is False

    assert store.get_session(session.id).revoked_at == to_timestamp(first_revocation)
    assert store.revoke_session("missing-session", clock()) is False


def test_revoke_user_sessions_spares_excepted_session(store, user, clock):
    other_user = store.create_user(name="Vendor", email="vendor@example.com", password_hash="hashed", role="vendor")
    kept = _create_session(store, user, clock, "a" * 64)
    _create_session(store, user, clock, "b" * 64)
    _create_session(store, user, clock, "c" * 64)
    foreign = _create_session(store, other_user, clock, "d" * 64)

    assert store.revoke_user_sessions(user.id, clock(), except_session_id=kept.id) == 2

    active = store.list_active_sessions(user.id, clock())
    assert [s.id for s in active] == [kept.id]
    assert store.get_session(foreign.id).revoked_at is None
    # Running it again converges without touching anything
    assert store.revoke_user_sessions(user.id, clock(), except_session_id=kept.id) == 0


def test_revoke_user_sessions_without_exception_revokes_everything(store, user, clock):
    _create_session(store, user, clock, "a" * 64)
    _create_session(store, user, clock, "b" * 64)

    assert store.revoke_user_sessions(user.id, clock()) == 2
    assert store.list_active_sessions(user.id, clock()) == []


def test_bump_token_version_only_increases(store, user):
    assert user.token_version == 0
    assert store.bump_token_version(user.id) == 1
    assert store.bump_token_version(user.id) == 2
    assert store.get_user(user.id).token_version == 2
    assert store.bump_token_version("no-such-user") is None


def test_list_active_sessions_skips_revoked_and_expired(store, user, clock):
    revoked = _create_session(store, user, clock, "a" * 64)
    store.revoke_session(revoked.id, clock())
    _create_session(store, user, clock, "b" * 64, days=1)
    older = _create_session(store, user, clock, "c" * 64)
    clock.advance(hours=2)
    newer = _create_session(store, user, clock, "d" * 64)

    clock.advance(days=2)
    active = store.list_active_sessions(user.id, clock())

    assert [s.id for s in active] == [newer.id, older.id]


def test_prune_sessions_deletes_only_long_ended_sessions(store, user, clock, db):
    old_revoked = _create_session(store, user, clock, "a" * 64)
    store.revoke_session(old_revoked.id, clock())
    _create_session(store, user, clock, "b" * 64, days=1)
    clock.advance(days=40)
    recent_revoked = _create_session(store, user, clock, "c" * 64)
    store.revoke_session(recent_revoked.id, clock())
    active = _create_session(store, user, clock, "d" * 64)

    deleted = store.prune_sessions(clock() - timedelta(days=30))

    assert deleted == 2
    remaining = {s.id for s in db.query(AuthSession).all()}
    assert remaining == {recent_revoked.id, active.id}


def test_transient_database_errors_become_storage_unavailable():
    db = MagicMock()
    db.query.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
    store = SessionStore(db)

    with pytest.raises(StorageUnavailable) as exc_info:
        store.find_session_by_refresh_hash("a" * 64)

    assert exc_info.value.operation == "find_session_by_refresh_hash"
    db.rollback.assert_called_once()


def test_non_transient_errors_propagate_unchanged():
    db = MagicMock()
    db.query.side_effect = ValueError("boom")
    store = SessionStore(db)

    with pytest.raises(ValueError):
        store.get_user("user-id")
    db.rollback.assert_called_once()


def test_create_user_rejects_unknown_role(store):
    with pytest.raises(ValueError, match="Unknown role"):
        store.create_user(name="Root", email="root@example.com", password_hash="hashed", role="root")

    assert store.get_user_by_email("root@example.com") is None
