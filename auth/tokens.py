"""
auth/tokens.py -- JWT issuance, verification and invalidation.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, name, a snapshot of role names, iat, exp and a random
       jti. The jti makes every issued token unique, so invalidating the old
       token during a refresh can never also kill the new one when both are
       minted within the same second.

  verify() never raises for bad input. It returns a TokenVerification whose
       status says why a token was rejected (malformed, expired, blacklisted,
       bad signature). The guard collapses all of those into one 401 for the
       client; the distinction only reaches the logs.

  Blacklist first: verify() asks the blacklist before doing any crypto, so a
       logged-out token is rejected cheaply and regardless of its signature.

  invalidate() is best effort and idempotent. It recovers the token's real
       expiry when the token still verifies; otherwise (garbage, expired,
       foreign signature) it blacklists the value for the default window so
       the entry is still bounded in time.

  SECRET_KEY: sourced from core.config.get_settings(), which refuses to start
       without one outside DEBUG [M7]. There is no hard-coded fallback.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Mapping

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

from auth.blacklist import TokenBlacklist
from auth.models import InvalidationResult, IssuedToken, TokenStatus, TokenVerification
from core.config import Settings

logger = logging.getLogger("keystone.auth.tokens")

_DAY_SECONDS = 24 * 60 * 60


class TokenService:
    """Issues, verifies and invalidates signed session tokens.

    Usage:
        service = TokenService(secret_key, InMemoryTokenBlacklist())
        issued = service.issue({"user_id": 1, "email": "a@b.c", "name": "A", "roles": ["staff"]})
        service.verify(issued.token).is_valid        # True
        service.invalidate(issued.token)             # InvalidationResult.INVALIDATED
        service.verify(issued.token).status          # TokenStatus.BLACKLISTED
    """

    def __init__(
        self,
        secret_key: str,
        blacklist: TokenBlacklist,
        expire_seconds: int = _DAY_SECONDS,
        default_blacklist_ttl: int = _DAY_SECONDS,
        algorithm: str = "HS256",
        max_token_length: int = 4096,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret_key:
            raise ValueError("TokenService requires a non-empty secret key.")
        self._secret_key = secret_key
        self._blacklist = blacklist
        self._algorithm = algorithm
        self._clock = clock
        self.expire_seconds = expire_seconds
        self.default_blacklist_ttl = default_blacklist_ttl
        self.max_token_length = max_token_length

    @classmethod
    def from_settings(cls, settings: Settings, blacklist: TokenBlacklist) -> TokenService:
        return cls(
            secret_key=settings.secret_key,
            blacklist=blacklist,
            expire_seconds=settings.token_expire_seconds,
            default_blacklist_ttl=settings.blacklist_default_ttl_seconds,
            algorithm=settings.jwt_algorithm,
            max_token_length=settings.max_token_length,
        )

    @property
    def blacklist(self) -> TokenBlacklist:
        return self._blacklist

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, claims: Mapping, expire_seconds: int | None = None) -> IssuedToken:
        """Sign claims into a token that expires expire_seconds from now.

        Args:
            claims:         Arbitrary JSON-serializable claims. Sessions pass
                            user_id, email, name and roles.
            expire_seconds: Lifetime override. None uses the service default
                            (24 hours).
        """
        issued_at = int(self._clock())
        expires_at = issued_at + (self.expire_seconds if expire_seconds is None else expire_seconds)
        payload = dict(claims)
        if "user_id" in payload:
            # jose requires sub to be a string when present.
            payload["sub"] = str(payload["user_id"])
        payload.update({"iat": issued_at, "exp": expires_at, "jti": secrets.token_hex(8)})
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        return IssuedToken(token=token, issued_at=issued_at, expires_at=expires_at)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str) -> TokenVerification:
        """Return the token's claims if it is valid, or the reason it is not."""
        if not token or len(token) > self.max_token_length:
            return self._reject(TokenStatus.MALFORMED)
        if self._blacklist.contains(token):
            return self._reject(TokenStatus.BLACKLISTED)
        try:
            jwt.get_unverified_claims(token)
        except JWTError:
            return self._reject(TokenStatus.MALFORMED)
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError:
            return self._reject(TokenStatus.EXPIRED)
        except JWTClaimsError:
            return self._reject(TokenStatus.MALFORMED)
        except JWTError:
            return self._reject(TokenStatus.BAD_SIGNATURE)
        if "exp" not in claims:
            return self._reject(TokenStatus.MALFORMED)
        return TokenVerification(status=TokenStatus.VALID, claims=claims)

    def _reject(self, status: TokenStatus) -> TokenVerification:
        logger.info("Token rejected: %s", status.value)
        return TokenVerification(status=status)

    # ------------------------------------------------------------------
    # Invalidate
    # ------------------------------------------------------------------

    def invalidate(self, token: str) -> InvalidationResult:
        """Blacklist token so every later verify() rejects it.

        Idempotent: a token that is already blacklisted returns
        ALREADY_INVALID, which callers treat as success.
        """
        if not token:
            raise ValueError("Cannot invalidate an empty token.")
        if self._blacklist.contains(token):
            return InvalidationResult.ALREADY_INVALID
        self._blacklist.add(token, self._recover_expiry(token))
        return InvalidationResult.INVALIDATED

    def _recover_expiry(self, token: str) -> float:
        """Return the token's own exp, or now + default TTL if it cannot be read."""
        fallback = self._clock() + self.default_blacklist_ttl
        if len(token) > self.max_token_length:
            return fallback
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            logger.info("Invalidating unverifiable token with default expiry window")
            return fallback
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)):
            return fallback
        return float(exp)
