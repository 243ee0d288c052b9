from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW

from toolwear.config import Settings, parse_delimiter
from toolwear.domain import User
from toolwear.security import AuthenticationError, TokenIssuer, hash_password, verify_password


def make_user() -> User:
    return User(id="u1", name="Maria Souza", cpf="52998224725", password_hash="x")


def test_password_hash_verifies_only_the_original():
    hashed = hash_password("abc123!@")

    assert hashed != "abc123!@"
    assert verify_password("abc123!@", hashed)
    assert not verify_password("abc123!#", hashed)


def test_token_round_trip_carries_identity():
    issuer = TokenIssuer("secret", ttl_hours=8)
    token = issuer.issue(make_user())

    claims = issuer.decode(token)

    assert claims.user_id == "u1"
    assert claims.name == "Maria Souza"
    assert claims.cpf == "52998224725"


def test_expired_token_is_rejected():
    issuer = TokenIssuer("secret", ttl_hours=8)
    token = issuer.issue(make_user(), now=NOW - timedelta(days=30))

    with pytest.raises(AuthenticationError):
        issuer.decode(token)


def test_token_signed_with_another_secret_is_rejected():
    token = TokenIssuer("other").issue(make_user())

    with pytest.raises(AuthenticationError):
        TokenIssuer("secret").decode(token)
    with pytest.raises(AuthenticationError):
        TokenIssuer("secret").decode("not-a-token")


def test_settings_defaults_and_overrides():
    defaults = Settings.from_env({})

    assert defaults.database_path == "toolwear.sqlite3"
    assert defaults.in_memory is False
    assert defaults.token_ttl_hours == 8
    assert defaults.warning_threshold == 5000
    assert defaults.record_alert_threshold == 1000
    assert defaults.port == 3001

    custom = Settings.from_env(
        {
            "TOOLWEAR_IN_MEMORY": "1",
            "TOOLWEAR_WARNING_THRESHOLD": "200",
            "TOOLWEAR_CSV_DELIMITER": "semicolon",
            "TOOLWEAR_LOG_LEVEL": "debug",
            "PORT": "8080",
        }
    )

    assert custom.in_memory is True
    assert custom.warning_threshold == 200
    assert custom.csv_delimiter == ";"
    assert custom.log_level == "DEBUG"
    assert custom.port == 8080


def test_parse_delimiter():
    assert parse_delimiter(",") == ","
    assert parse_delimiter("tab") == "\t"
    assert parse_delimiter("\t") == "\t"
    assert parse_delimiter("") == ","
    with pytest.raises(ValueError):
        parse_delimiter("|")


def test_expiry_is_checked_against_the_issuing_clock():
    issuer = TokenIssuer("secret", ttl_hours=8)
    token = issuer.issue(make_user(), now=NOW)

    assert issuer.decode(token, now=NOW + timedelta(hours=1)).user_id == "u1"
    assert issuer.decode(token, now=NOW).expires_at == NOW + timedelta(hours=8)
    with pytest.raises(AuthenticationError):
        issuer.decode(token, now=NOW + timedelta(hours=8))
