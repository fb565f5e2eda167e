"""Unit tests for auth/sessions.py.

Covers:
- Session/RefreshToken invariants enforced on insert
- Live lookups by access and refresh token
- Revocation: single session, all sessions, all-but-current
- Atomic rotation: revoke-and-reopen commits or rolls back as one
- Purging sessions whose refresh token has expired
- Timestamps: naive datetimes are stored as UTC
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.db import to_db_time
from auth.models import RequestMetadata, RoleType
from auth.sessions import SessionStore
from auth.tokens import TokenIssuer

META = RequestMetadata(ip="198.51.100.1", device="phone")


def _open(services, user_id="u-1", role=RoleType.member):
    pair = services.issuer.issue_pair(user_id, role)
    session, refresh = services.sessions.open_session(user_id, role, META, pair)
    return pair, session, refresh


class TestInvariants:
    def test_session_must_expire_after_creation(self, services) -> None:
        past = datetime.now(timezone.utc) - timedelta(seconds=1)
        with pytest.raises(ValueError):
            services.sessions.create_session("u-1", RoleType.member, META, "tok", past)

    def test_refresh_must_outlive_session(self, services) -> None:
        expires = datetime.now(timezone.utc) + timedelta(minutes=30)
        session = services.sessions.create_session("u-1", RoleType.member, META, "tok", expires)
        with pytest.raises(ValueError):
            services.sessions.create_refresh_token(session.id, "rtok", expires)

    def test_refresh_for_unknown_session_is_rejected(self, services) -> None:
        with pytest.raises(ValueError):
            services.sessions.create_refresh_token("nope", "rtok", datetime.now(timezone.utc) + timedelta(days=1))

    def test_separate_create_calls(self, services) -> None:
        now = datetime.now(timezone.utc)
        session = services.sessions.create_session("u-1", RoleType.member, META, "tok", now + timedelta(minutes=30))
        refresh = services.sessions.create_refresh_token(session.id, "rtok", now + timedelta(days=7))
        assert refresh.session_id == session.id
        assert services.sessions.find_active_session_by_refresh_token("rtok").id == session.id


class TestLookups:
    def test_find_by_tokens(self, services) -> None:
        pair, session, _ = _open(services)
        assert services.sessions.find_active_session_by_access_token(pair.access.token).id == session.id
        assert services.sessions.find_active_session_by_refresh_token(pair.refresh.token).id == session.id

    def test_unknown_tokens(self, services) -> None:
        _open(services)
        assert services.sessions.find_active_session_by_access_token("unknown") is None
        assert services.sessions.find_active_session_by_refresh_token("unknown") is None

    def test_list_active_newest_first(self, settings, engine, services) -> None:
        clock = [datetime.now(timezone.utc)]
        store = SessionStore(engine, settings, now=lambda: clock[0])
        ids = []
        for _ in range(3):
            pair = services.issuer.issue_pair("u-1", RoleType.member)
            ids.append(store.open_session("u-1", RoleType.member, META, pair)[0].id)
            clock[0] += timedelta(seconds=1)
        assert [s.id for s in store.list_active_sessions("u-1")] == list(reversed(ids))

    def test_expired_refresh_token_is_not_found(self, settings, engine, services) -> None:
        pair, session, _ = _open(services)
        later = SessionStore(engine, settings, now=lambda: datetime.now(timezone.utc) + timedelta(days=8))
        assert later.find_active_session_by_refresh_token(pair.refresh.token) is None
        assert later.list_active_sessions("u-1") == []


class TestRevocation:
    def test_revoke_single(self, services) -> None:
        pair, session, _ = _open(services)
        assert services.sessions.revoke(session.id) is True
        assert services.sessions.find_active_session_by_refresh_token(pair.refresh.token) is None
        assert services.sessions.find_active_session_by_access_token(pair.access.token) is None
        stored = services.sessions.get_session(session.id)
        assert stored.is_active is False
        assert stored.revoked_at is not None
        token = services.sessions.get_refresh_token(session.id)
        assert token.is_revoked is True

    def test_revoke_twice_reports_false(self, services) -> None:
        _, session, _ = _open(services)
        assert services.sessions.revoke(session.id) is True
        assert services.sessions.revoke(session.id) is False

    def test_revoke_all_keeps_other_users(self, services) -> None:
        _open(services, "u-1")
        _open(services, "u-1")
        _, other, _ = _open(services, "u-2")
        assert services.sessions.revoke_all_for_user("u-1") == 2
        assert services.sessions.list_active_sessions("u-1") == []
        assert [s.id for s in services.sessions.list_active_sessions("u-2")] == [other.id]

    def test_revoke_all_except_current(self, services) -> None:
        _, keep, _ = _open(services, "u-1")
        _open(services, "u-1")
        assert services.sessions.revoke_all_for_user("u-1", except_session_id=keep.id) == 1
        assert [s.id for s in services.sessions.list_active_sessions("u-1")] == [keep.id]

    def test_revoke_all_with_nothing_live(self, services) -> None:
        assert services.sessions.revoke_all_for_user("nobody") == 0


class TestPurge:
    def test_purges_only_expired(self, services) -> None:
        _, live, _ = _open(services)
        assert services.sessions.purge_expired() == 0
        assert services.sessions.purge_expired(before=datetime.now(timezone.utc) + timedelta(days=8)) == 1
        assert services.sessions.get_session(live.id) is None
        assert services.sessions.get_refresh_token(live.id) is None


class TestRotate:
    def test_rotate_replaces_session(self, services) -> None:
        _, old, _ = _open(services)
        pair = services.issuer.issue_pair("u-1", RoleType.member)
        session, refresh = services.sessions.rotate(old.id, "u-1", RoleType.member, META, pair)
        assert refresh.session_id == session.id
        assert services.sessions.get_session(old.id).revoked_at is not None
        assert services.sessions.get_refresh_token(old.id).is_revoked is True
        assert [s.id for s in services.sessions.list_active_sessions("u-1")] == [session.id]
        assert services.sessions.find_active_session_by_refresh_token(pair.refresh.token).id == session.id

    def test_rotate_from_revoked_session_writes_nothing(self, services) -> None:
        _, old, _ = _open(services)
        services.sessions.revoke(old.id)
        pair = services.issuer.issue_pair("u-1", RoleType.member)
        assert services.sessions.rotate(old.id, "u-1", RoleType.member, META, pair) is None
        assert services.sessions.list_active_sessions("u-1") == []
        assert services.sessions.find_active_session_by_access_token(pair.access.token) is None

    def test_invalid_successor_rolls_back_revocation(self, services, settings) -> None:
        _, old, _ = _open(services)
        month_ago = datetime.now(timezone.utc) - timedelta(days=30)
        expired = TokenIssuer(settings, now=lambda: month_ago).issue_pair("u-1", RoleType.member)
        with pytest.raises(ValueError):
            services.sessions.rotate(old.id, "u-1", RoleType.member, META, expired)
        assert services.sessions.get_session(old.id).revoked_at is None
        assert services.sessions.get_refresh_token(old.id).is_revoked is False


class TestTimestamps:
    def test_naive_datetime_is_taken_as_utc(self) -> None:
        aware = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert to_db_time(aware.replace(tzinfo=None)) == to_db_time(aware)

    def test_offset_datetime_is_converted(self) -> None:
        plus_two = datetime(2024, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_db_time(plus_two) == to_db_time(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))

    def test_purge_accepts_naive_cutoff(self, services) -> None:
        _open(services)
        cutoff = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=8)
        assert services.sessions.purge_expired(before=cutoff) == 1
