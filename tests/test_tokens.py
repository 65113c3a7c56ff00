"""
tests/test_tokens.py -- Unit tests for TokenService issue / verify / invalidate.

The token service uses the real clock here because python-jose checks exp
against wall time; only the blacklist runs on FakeClock.
"""

from __future__ import annotations

import pytest
from jose import jwt

from auth.blacklist import InMemoryTokenBlacklist
from auth.models import InvalidationResult, TokenStatus
from auth.tokens import TokenService

TEST_SECRET = "x" * 48
CLAIMS = {"user_id": 7, "email": "ada@example.com", "name": "Ada", "roles": ["staff"]}


class TestIssueAndVerify:
    def test_round_trip_returns_claims(self, token_service) -> None:
        issued = token_service.issue(CLAIMS)
        result = token_service.verify(issued.token)
        assert result.is_valid
        assert result.status is TokenStatus.VALID
        for key, value in CLAIMS.items():
            assert result.claims[key] == value
        assert result.claims["sub"] == "7"
        assert result.claims["exp"] == issued.expires_at
        assert result.claims["iat"] == issued.issued_at

    def test_lifetime_defaults_to_service_setting(self, token_service) -> None:
        issued = token_service.issue(CLAIMS)
        assert issued.expires_in == 3600

    def test_lifetime_override(self, token_service) -> None:
        issued = token_service.issue(CLAIMS, expire_seconds=60)
        assert issued.expires_in == 60

    def test_tokens_issued_together_are_distinct(self, token_service) -> None:
        first = token_service.issue(CLAIMS)
        second = token_service.issue(CLAIMS)
        assert first.token != second.token

    def test_empty_secret_is_rejected(self, blacklist) -> None:
        with pytest.raises(ValueError):
            TokenService("", blacklist)


class TestRejections:
    """verify() reports why a token is bad instead of raising."""

    def test_expired_token(self, token_service) -> None:
        issued = token_service.issue(CLAIMS, expire_seconds=-10)
        assert token_service.verify(issued.token).status is TokenStatus.EXPIRED

    def test_foreign_signature(self, token_service, blacklist) -> None:
        other = TokenService("y" * 48, blacklist)
        issued = other.issue(CLAIMS)
        assert token_service.verify(issued.token).status is TokenStatus.BAD_SIGNATURE

    @pytest.mark.parametrize("value", ["", "not-a-jwt", "a.b.c"])
    def test_malformed_token(self, token_service, value) -> None:
        assert token_service.verify(value).status is TokenStatus.MALFORMED

    def test_oversized_token(self, token_service) -> None:
        assert token_service.verify("a" * 5000).status is TokenStatus.MALFORMED

    def test_token_without_exp_is_malformed(self, token_service) -> None:
        token = jwt.encode({"user_id": 7}, TEST_SECRET, algorithm="HS256")
        assert token_service.verify(token).status is TokenStatus.MALFORMED

    def test_rejected_verification_carries_no_claims(self, token_service) -> None:
        assert token_service.verify("not-a-jwt").claims == {}


class TestInvalidate:
    def test_invalidated_token_is_blacklisted(self, token_service) -> None:
        issued = token_service.issue(CLAIMS)
        assert token_service.invalidate(issued.token) is InvalidationResult.INVALIDATED
        assert token_service.verify(issued.token).status is TokenStatus.BLACKLISTED

    def test_second_invalidate_is_idempotent(self, token_service) -> None:
        issued = token_service.issue(CLAIMS)
        token_service.invalidate(issued.token)
        assert token_service.invalidate(issued.token) is InvalidationResult.ALREADY_INVALID
        assert token_service.verify(issued.token).status is TokenStatus.BLACKLISTED

    def test_other_tokens_unaffected(self, token_service) -> None:
        kept = token_service.issue(CLAIMS)
        dropped = token_service.issue(CLAIMS)
        token_service.invalidate(dropped.token)
        assert token_service.verify(kept.token).is_valid

    def test_entry_lives_until_token_expiry(self, token_service, blacklist, clock) -> None:
        issued = token_service.issue(CLAIMS, expire_seconds=600)
        token_service.invalidate(issued.token)
        clock.advance(300)
        assert blacklist.contains(issued.token)
        clock.advance(400)
        assert not blacklist.contains(issued.token)

    def test_unverifiable_token_uses_default_window(self, token_service, blacklist, clock) -> None:
        assert token_service.invalidate("garbage") is InvalidationResult.INVALIDATED
        assert blacklist.contains("garbage")
        clock.advance(token_service.default_blacklist_ttl + 5)
        assert not blacklist.contains("garbage")

    def test_empty_token_raises(self, token_service) -> None:
        with pytest.raises(ValueError):
            token_service.invalidate("")

    def test_blacklist_is_shared_between_services(self, clock) -> None:
        """Two services over one blacklist see each other's invalidations."""
        shared = InMemoryTokenBlacklist(clock=clock)
        first = TokenService(TEST_SECRET, shared)
        second = TokenService(TEST_SECRET, shared)
        issued = first.issue(CLAIMS)
        first.invalidate(issued.token)
        assert second.verify(issued.token).status is TokenStatus.BLACKLISTED
