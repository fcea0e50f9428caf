"""Tests for bearer token issuance and verification."""

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from adoptly.config import INSECURE_DEFAULT_JWT_SECRET
from adoptly.service.tokens import TokenService

SECRET = "k" * 64
OTHER_SECRET = "z" * 64


class MutableNow:
    def __init__(self):
        self.value = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.value


@pytest.fixture
def now():
    return MutableNow()


@pytest.fixture
def tokens(now):
    return TokenService(SECRET, now=now)


def _claims(token):
    payload = token.split(".")[1]
    return json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))


class TestIssue:
    def test_round_trip_returns_subject(self, tokens):
        token = tokens.generate_token("ana@example.com")
        assert tokens.validate_token(token) == "ana@example.com"

    def test_claims(self, tokens, now):
        claims = _claims(tokens.generate_token("ana@example.com"))
        assert claims["iss"] == "adoptly-api"
        assert claims["sub"] == "ana@example.com"
        assert claims["iat"] == int(now.value.timestamp())
        assert claims["exp"] - claims["iat"] == 2 * 60 * 60

    def test_expiration_expressed_in_configured_zone(self, tokens, now):
        expires = tokens.expiration_for(now.value)
        assert expires.utcoffset() == timedelta(hours=-3)
        assert expires.timestamp() == now.value.timestamp() + 7200


class TestReject:
    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b", "a.b.c", "...."])
    def test_malformed(self, tokens, token):
        assert tokens.validate_token(token) is None

    def test_expired(self, tokens, now):
        token = tokens.generate_token("ana@example.com")
        now.value += timedelta(hours=2)
        assert tokens.validate_token(token) is None
        assert tokens.is_expired(token)

    def test_valid_just_before_expiry(self, tokens, now):
        token = tokens.generate_token("ana@example.com")
        now.value += timedelta(hours=2) - timedelta(seconds=1)
        assert tokens.validate_token(token) == "ana@example.com"
        assert not tokens.is_expired(token)

    def test_tampered_signature(self, tokens):
        token = tokens.generate_token("ana@example.com")
        head, payload, sig = token.split(".")
        flipped = sig[:-1] + ("A" if sig[-1] != "A" else "B")
        assert tokens.validate_token(f"{head}.{payload}.{flipped}") is None

    @pytest.mark.parametrize("segment", [0, 1, 2])
    def test_every_single_character_mutation_rejected(self, tokens, segment):
        parts = tokens.generate_token("ana@example.com").split(".")
        original = parts[segment]
        for position, char in enumerate(original):
            replacement = "A" if char != "A" else "B"
            parts[segment] = original[:position] + replacement + original[position + 1:]
            assert tokens.validate_token(".".join(parts)) is None, (segment, position)

    def test_tampered_payload(self, tokens):
        token = tokens.generate_token("ana@example.com")
        head, _, sig = token.split(".")
        forged = base64.urlsafe_b64encode(
            json.dumps({"iss": "adoptly-api", "sub": "admin@example.com", "exp": 4102444800}).encode()
        ).decode().rstrip("=")
        assert tokens.validate_token(f"{head}.{forged}.{sig}") is None

    def test_other_secret(self, tokens, now):
        other = TokenService(OTHER_SECRET, now=now)
        assert other.validate_token(tokens.generate_token("ana@example.com")) is None

    def test_other_issuer(self, tokens, now):
        other = TokenService(SECRET, issuer="someone-else", now=now)
        assert other.validate_token(tokens.generate_token("ana@example.com")) is None

    def test_alg_none_rejected(self, tokens):
        token = tokens.generate_token("ana@example.com")
        _, payload, _ = token.split(".")
        header = base64.urlsafe_b64encode(b'{"alg":"none","typ":"JWT"}').decode().rstrip("=")
        assert tokens.validate_token(f"{header}.{payload}.") is None


class TestSecretValidation:
    @pytest.mark.parametrize("secret", [None, "", "short-secret", INSECURE_DEFAULT_JWT_SECRET])
    def test_weak_secrets_refused(self, secret):
        with pytest.raises(ValueError):
            TokenService(secret)


class TestExpiryReporting:
    def test_forged_expired_token_is_not_reported_expired(self, tokens, now):
        other = TokenService(OTHER_SECRET, now=now)
        token = other.generate_token("ana@example.com")
        now.value += timedelta(hours=3)
        assert not tokens.is_expired(token)

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
    def test_malformed_is_not_expired(self, tokens, token):
        assert not tokens.is_expired(token)
