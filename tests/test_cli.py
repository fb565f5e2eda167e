"""Tests for the operator CLI in main.py.

Commands run against the in-memory services fixture, so nothing touches the
configured database.
"""

import pytest

from auth.models import AccountStatus, AuthorizedPrincipal, FailureReason, RoleType
from conftest import PASSWORD
from main import build_parser, main


def _run(services, *argv: str) -> int:
    return main(list(argv), services=services)


def test_create_user_and_login(services, capsys) -> None:
    assert _run(services, "create-user", "cli@example.com", "--password", PASSWORD, "--verified") == 0
    assert "Created cli@example.com" in capsys.readouterr().out
    assert isinstance(services.verifier.login("cli@example.com", PASSWORD), AuthorizedPrincipal)


def test_create_user_rejects_duplicates_and_short_passwords(services, capsys) -> None:
    assert _run(services, "create-user", "dup@example.com", "--password", PASSWORD) == 0
    assert _run(services, "create-user", "dup@example.com", "--password", PASSWORD) == 1
    assert _run(services, "create-user", "short@example.com", "--password", "abc") == 1
    out = capsys.readouterr().out
    assert "already exists" in out
    assert "at least 8" in out


def test_unverified_user_can_be_verified(services) -> None:
    _run(services, "create-user", "later@example.com", "--password", PASSWORD)
    assert services.verifier.login("later@example.com", PASSWORD).kind.value == "email_not_verified"
    assert _run(services, "verify-email", "later@example.com") == 0
    assert isinstance(services.verifier.login("later@example.com", PASSWORD), AuthorizedPrincipal)


def test_grant_and_revoke_role(services, make_user) -> None:
    user = make_user("roles@example.com")
    assert _run(services, "grant-role", "roles@example.com", "moderator") == 0
    assert services.accounts.get_role_assignment(user.id, RoleType.moderator) is not None
    assert _run(services, "revoke-role", "roles@example.com", "moderator") == 0
    assert services.accounts.get_role_assignment(user.id, RoleType.moderator) is None
    assert _run(services, "revoke-role", "roles@example.com", "moderator") == 1


def test_set_status_revokes_sessions(services, make_user) -> None:
    user = make_user("status@example.com")
    services.verifier.login("status@example.com", PASSWORD)
    assert _run(services, "set-status", "status@example.com", "suspended") == 0
    assert services.accounts.get_user(user.id).account_status == AccountStatus.suspended
    assert services.sessions.list_active_sessions(user.id) == []


def test_delete_user(services, make_user) -> None:
    user = make_user("gone@example.com")
    services.verifier.login("gone@example.com", PASSWORD)
    assert _run(services, "delete-user", "gone@example.com") == 0
    assert services.accounts.get_user(user.id) is None
    assert services.accounts.get_user(user.id, include_deleted=True) is not None
    assert services.sessions.list_active_sessions(user.id) == []


def test_revoke_sessions(services, make_user, capsys) -> None:
    make_user("signout@example.com")
    services.verifier.login("signout@example.com", PASSWORD)
    services.verifier.login("signout@example.com", PASSWORD)
    assert _run(services, "revoke-sessions", "signout@example.com") == 0
    assert "Revoked 2 session(s)" in capsys.readouterr().out


def test_unknown_user(services, capsys) -> None:
    assert _run(services, "revoke-sessions", "nobody@example.com") == 1
    assert "No user with email" in capsys.readouterr().out


def test_login_history(services, make_user, capsys) -> None:
    make_user("hist@example.com")
    services.verifier.login("hist@example.com", "wrong-password")
    assert _run(services, "login-history", "--email", "hist@example.com", "--failures") == 0
    assert FailureReason.incorrect_password.value in capsys.readouterr().out


def test_purge_sessions(services, capsys) -> None:
    assert _run(services, "purge-sessions") == 0
    assert "Purged 0 expired session(s)" in capsys.readouterr().out


def test_parser_rejects_unknown_role() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["grant-role", "x@example.com", "superuser"])
