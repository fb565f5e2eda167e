"""Unit tests for auth/tokens.py.

Covers:
- Pair issuance: both expiries share one instant, access before refresh
- decode(): valid, expired, tampered, foreign issuer, foreign key, garbage
- Token hashing is keyed and deterministic
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from auth.errors import AuthFailure, ErrorKind
from auth.models import RoleType, TokenClaims
from auth.tokens import ACCESS, ALGORITHM, REFRESH, TokenIssuer, hash_token
from conftest import TEST_SECRET, make_settings

FIXED_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestIssue:
    def test_pair_expiries_follow_configured_lifetimes(self, settings) -> None:
        issuer = TokenIssuer(settings, now=lambda: FIXED_NOW)
        pair = issuer.issue_pair("u-1", RoleType.member)
        assert pair.access.expires_at == FIXED_NOW + timedelta(minutes=30)
        assert pair.refresh.expires_at == FIXED_NOW + timedelta(days=7)
        assert pair.access.expires_at < pair.refresh.expires_at

    def test_tokens_are_unique_within_one_second(self, settings) -> None:
        issuer = TokenIssuer(settings, now=lambda: FIXED_NOW)
        first = issuer.issue_pair("u-1", RoleType.member)
        second = issuer.issue_pair("u-1", RoleType.member)
        assert first.access.token != second.access.token
        assert first.refresh.token != second.refresh.token
        assert first.access.jti != first.refresh.jti

    def test_payload_carries_subject_role_and_type(self, settings) -> None:
        issuer = TokenIssuer(settings)
        access = issuer.issue_access_token("u-1", RoleType.moderator)
        payload = jwt.get_unverified_claims(access.token)
        assert payload["id"] == "u-1"
        assert payload["type"] == "moderator"
        assert payload["token_type"] == ACCESS
        assert payload["iss"] == "tokenward"


class TestDecode:
    def test_roundtrip(self, settings) -> None:
        issuer = TokenIssuer(settings)
        refresh = issuer.issue_refresh_token("u-2", RoleType.visitor)
        claims = issuer.decode(refresh.token)
        assert isinstance(claims, TokenClaims)
        assert claims.user_id == "u-2"
        assert claims.role == RoleType.visitor
        assert claims.token_type == REFRESH
        assert claims.jti == refresh.jti

    def test_refresh_token_issued_eight_days_ago_is_expired(self, settings) -> None:
        past = TokenIssuer(settings, now=lambda: datetime.now(timezone.utc) - timedelta(days=8))
        stale = past.issue_refresh_token("u-1", RoleType.member)
        result = TokenIssuer(settings).decode(stale.token)
        assert isinstance(result, AuthFailure)
        assert result.kind == ErrorKind.TOKEN_EXPIRED

    def test_tampered_token_is_invalid(self, settings) -> None:
        issuer = TokenIssuer(settings)
        head, _body, sig = issuer.issue_access_token("u-1", RoleType.member).token.split(".")
        _head, forged_body, _sig = issuer.issue_access_token("u-2", RoleType.administrator).token.split(".")
        tampered = ".".join([head, forged_body, sig])
        assert issuer.decode(tampered).kind == ErrorKind.TOKEN_INVALID

    def test_token_signed_with_other_key_is_invalid(self, settings) -> None:
        other = TokenIssuer(make_settings(secret_key="another-secret-key-of-sufficient-length-xyz"))
        token = other.issue_access_token("u-1", RoleType.member).token
        assert TokenIssuer(settings).decode(token).kind == ErrorKind.TOKEN_INVALID

    def test_token_from_other_issuer_is_invalid(self, settings) -> None:
        other = TokenIssuer(make_settings(token_issuer="someone-else"))
        token = other.issue_access_token("u-1", RoleType.member).token
        assert TokenIssuer(settings).decode(token).kind == ErrorKind.TOKEN_INVALID

    def test_unknown_role_is_invalid(self, settings) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"id": "u-1", "type": "superuser", "token_type": ACCESS, "iss": "tokenward", "exp": exp},
            TEST_SECRET,
            algorithm=ALGORITHM,
        )
        assert TokenIssuer(settings).decode(token).kind == ErrorKind.TOKEN_INVALID

    def test_missing_subject_is_invalid(self, settings) -> None:
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)
        token = jwt.encode(
            {"type": "member", "token_type": ACCESS, "iss": "tokenward", "exp": exp},
            TEST_SECRET,
            algorithm=ALGORITHM,
        )
        assert TokenIssuer(settings).decode(token).kind == ErrorKind.TOKEN_INVALID

    def test_garbage_and_empty_are_invalid(self, settings) -> None:
        issuer = TokenIssuer(settings)
        assert issuer.decode("not-a-jwt").kind == ErrorKind.TOKEN_INVALID
        assert issuer.decode("").kind == ErrorKind.TOKEN_INVALID


def test_hash_token_is_keyed_and_deterministic() -> None:
    assert hash_token("k1", "tok") == hash_token("k1", "tok")
    assert hash_token("k1", "tok") != hash_token("k2", "tok")
    assert len(hash_token("k1", "tok")) == 64
