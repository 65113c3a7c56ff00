"""
core/exceptions.py -- Exception taxonomy shared by auth/ and api/.

Expected bad input (wrong password, malformed token) is NOT an exception in
the core: the hasher returns False and the token service returns a typed
TokenVerification. These classes exist for the boundary where a decision has
to become a rejection, plus the repository conflicts callers must handle.

Storage failures are deliberately absent: SQLAlchemyError propagates as-is so
an infrastructure error is never confused with "access denied".

api/main.py maps each class to an HTTP status and error code.
"""

from __future__ import annotations


class KeystoneError(Exception):
    """Base exception for Keystone."""

    def __init__(self, message: str = "An error occurred") -> None:
        self.message = message
        super().__init__(self.message)


class AuthenticationError(KeystoneError):
    """No valid session token on the request (401).

    reason carries the internal cause ("missing", "expired", "blacklisted",
    ...) for logging only. The public message stays generic.
    """

    def __init__(self, message: str = "Authentication required.", reason: str = "missing") -> None:
        self.reason = reason
        super().__init__(message)


class AuthorizationError(KeystoneError):
    """Authenticated, but the requirement was not met (403)."""

    def __init__(self, message: str = "Insufficient permissions.") -> None:
        super().__init__(message)


class ConflictError(KeystoneError):
    """A unique value (role name, permission key, email) is already taken."""


class NotFoundError(KeystoneError):
    """A referenced user, role or permission does not exist."""
