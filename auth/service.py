"""
auth/service.py -- The auth core's external interface.

The HTTP layer talks to the core only through AuthService:

  login(email, password)           -> LoginResult | None
  issue_session(user)              -> IssuedToken (roles snapshot embedded)
  authenticate_request(header)     -> AuthContext, or AuthenticationError (401)
  authorize_request(ctx, req)      -> None, or AuthorizationError (403)
  logout(header)                   -> InvalidationResult
  refresh(ctx)                     -> Session (old token invalidated first)
  register / create_user / update_user -- account writes that must hash passwords

Every method here is synchronous and may block on bcrypt or the database.
FastAPI runs sync dependencies and endpoints in its threadpool, which keeps
that work off the event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.authorization import AuthorizationEngine, Decision, Requirement
from auth.models import AuthContext, InvalidationResult, IssuedToken, TokenStatus, User
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.role_store import RoleStore
from auth.store import UserStore
from auth.tokens import TokenService
from core.exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger("keystone.auth.service")

_INVALID_TOKEN_MESSAGE = "Invalid or expired token."


@dataclass(frozen=True)
class LoginResult:
    user: User
    roles: list[str]


@dataclass(frozen=True)
class Session:
    user: User
    roles: list[str]
    token: IssuedToken


def extract_bearer_token(header: str | None) -> str | None:
    """Return the token from an 'Authorization: Bearer <token>' value, or None.

    The scheme is matched case-insensitively. Anything else (missing header,
    other scheme, empty or multi-part token) is None.
    """
    if not header:
        return None
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


class AuthService:
    """Facade over the hasher, token service, repositories and authorization engine."""

    def __init__(
        self,
        user_store: UserStore,
        role_store: RoleStore,
        tokens: TokenService,
        authz: AuthorizationEngine,
        default_role: str | None = "staff",
    ) -> None:
        self.user_store = user_store
        self.role_store = role_store
        self.tokens = tokens
        self.authz = authz
        self.default_role = default_role

    # ------------------------------------------------------------------
    # Login and sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> LoginResult | None:
        """Check credentials with timing equalization.

        bcrypt runs whether or not the email exists (against DUMMY_HASH for
        unknown emails), so response time does not reveal registered
        addresses. Returns None for any failure; callers must answer with the
        same message for unknown email and wrong password.
        """
        user = self.user_store.get_by_email(email)
        if user is None:
            verify_password(password, DUMMY_HASH)
            return None
        if not verify_password(password, user.password_hash):
            return None
        return LoginResult(user=user, roles=self.role_names(user.id))

    def issue_session(self, user: User, roles: list[str] | None = None) -> IssuedToken:
        """Sign a session token for user. roles defaults to a fresh lookup."""
        if roles is None:
            roles = self.role_names(user.id)
        return self.tokens.issue({"user_id": user.id, "email": user.email, "name": user.name, "roles": roles})

    def refresh(self, ctx: AuthContext) -> Session:
        """Swap the current token for a new one with a fresh roles snapshot.

        The old token is invalidated before the new one is issued.
        """
        user = self.user_store.get_by_id(ctx.user_id)
        if user is None:
            raise AuthenticationError(_INVALID_TOKEN_MESSAGE, reason="unknown_user")
        self.tokens.invalidate(ctx.token)
        roles = self.role_names(user.id)
        return Session(user=user, roles=roles, token=self.issue_session(user, roles))

    def logout(self, header: str | None) -> InvalidationResult:
        """Invalidate the bearer token in header.

        A token that is already blacklisted or already expired is
        ALREADY_INVALID (idempotent success): no verify() can accept it again.
        A forged or malformed token is an AuthenticationError, so only holders
        of a token this service signed can add entries to the blacklist.
        """
        token = extract_bearer_token(header)
        if token is None:
            raise AuthenticationError(reason="missing")
        verification = self.tokens.verify(token)
        if verification.status in (TokenStatus.BLACKLISTED, TokenStatus.EXPIRED):
            return InvalidationResult.ALREADY_INVALID
        if not verification.is_valid:
            raise AuthenticationError(_INVALID_TOKEN_MESSAGE, reason=verification.status.value)
        result = self.tokens.invalidate(token)
        logger.info("User %s logged out", verification.claims.get("user_id"))
        return result

    # ------------------------------------------------------------------
    # Per-request gate
    # ------------------------------------------------------------------

    def authenticate_request(self, header: str | None) -> AuthContext:
        """Unauthenticated -> Authenticated, or AuthenticationError.

        Expired, blacklisted, forged and malformed tokens all produce the same
        public message; the reason travels on the exception for logging.
        """
        token = extract_bearer_token(header)
        if token is None:
            raise AuthenticationError(reason="missing")
        verification = self.tokens.verify(token)
        if not verification.is_valid:
            raise AuthenticationError(_INVALID_TOKEN_MESSAGE, reason=verification.status.value)
        try:
            return AuthContext.from_claims(token, verification.claims)
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError(_INVALID_TOKEN_MESSAGE, reason="bad_claims") from exc

    def authorize_request(self, ctx: AuthContext, requirement: Requirement | None) -> None:
        """Authenticated -> Authorized, or AuthorizationError."""
        if self.authz.authorize(ctx, requirement) is Decision.DENY:
            raise AuthorizationError()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_user(self, name: str, email: str, password: str, roles: list[str] | None = None) -> User:
        """Create an account with a hashed password and grant roles by name.

        roles=None grants the default role. Unknown role names are logged and
        skipped, so callers should validate names first (the API does).
        Raises ConflictError if the email is taken.
        """
        user_id = self.user_store.create_user(User(name=name, email=email, password_hash=hash_password(password)))
        if roles is None:
            roles = [self.default_role] if self.default_role else []
        for role_name in roles:
            role = self.role_store.get_role_by_name(role_name)
            if role is None:
                logger.warning("Role %r does not exist; not granted to user %d", role_name, user_id)
                continue
            self.role_store.assign_role_to_user(user_id, role.id)
        return self.user_store.get_by_id(user_id)

    def register(self, name: str, email: str, password: str) -> User:
        """Self-registration: always the default role, never caller-chosen roles."""
        return self.create_user(name, email, password)

    def update_user(
        self,
        user_id: int,
        name: str | None = None,
        email: str | None = None,
        password: str | None = None,
    ) -> User | None:
        """Apply profile/password changes. Returns the updated user, or None if not found."""
        fields: dict = {}
        if name is not None:
            fields["name"] = name
        if email is not None:
            fields["email"] = email
        if password is not None:
            fields["password_hash"] = hash_password(password)
        if fields and not self.user_store.update_user(user_id, **fields):
            return None
        return self.user_store.get_by_id(user_id)

    def role_names(self, user_id: int) -> list[str]:
        return [role.name for role in self.role_store.get_user_roles(user_id)]
