"""Unit tests for core/config.py.

Covers:
- Duration parsing for token lifetimes
- SECRET_KEY policy: required in production, generated in debug, minimum length
- Access lifetime must be shorter than refresh lifetime
- Settings are immutable after construction
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from conftest import TEST_SECRET, make_settings
from core.config import Settings, parse_duration


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("30m", timedelta(minutes=30)),
            ("7d", timedelta(days=7)),
            ("1h", timedelta(hours=1)),
            ("45s", timedelta(seconds=45)),
            (" 2h ", timedelta(hours=2)),
        ],
    )
    def test_valid(self, value: str, expected: timedelta) -> None:
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["", "30", "m", "1w", "-5m", "0m", "1.5h"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_duration(value)


class TestSecretKey:
    def test_missing_secret_in_production_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(_env_file=None, debug=False, secret_key="")

    def test_missing_secret_in_debug_is_generated(self) -> None:
        s = Settings(_env_file=None, debug=True, secret_key="")
        assert len(s.secret_key) >= 32

    def test_short_secret_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(_env_file=None, debug=True, secret_key="short")


class TestTokenLifetimes:
    def test_defaults(self) -> None:
        s = make_settings()
        assert s.access_token_lifetime == timedelta(minutes=30)
        assert s.refresh_token_lifetime == timedelta(days=7)
        assert s.refresh_rotation == "rotate"

    def test_access_not_shorter_than_refresh_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must be shorter"):
            make_settings(access_token_ttl="7d", refresh_token_ttl="7d")

    def test_malformed_ttl_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(access_token_ttl="half an hour")

    def test_unknown_rotation_mode_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_settings(refresh_rotation="sometimes")


def test_settings_are_frozen() -> None:
    s = make_settings()
    with pytest.raises(ValidationError):
        s.secret_key = TEST_SECRET + "x"


def test_env_vars_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET)
    monkeypatch.setenv("ACCESS_TOKEN_TTL", "5m")
    monkeypatch.setenv("REFRESH_ROTATION", "reuse")
    s = Settings(_env_file=None)
    assert s.access_token_lifetime == timedelta(minutes=5)
    assert s.refresh_rotation == "reuse"
