"""
auth/passwords.py -- One-way password hashing (bcrypt, direct usage).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Cost factor comes from Settings.bcrypt_rounds (>= 12 in production). Every
call is CPU-bound for a few hundred milliseconds: call these from sync code
that FastAPI runs in its threadpool, never directly inside an async handler.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are rejected by bcrypt 4.x. The API layer
    rejects longer passwords at validation time, before they reach here.
    """
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A missing, empty or malformed hash is a failed verification, not an
    error: bcrypt raises ValueError for those and we turn it into False.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Login verifies against this when the email is
# unknown, so response time does not reveal which emails are registered.
DUMMY_HASH: str = hash_password("keystone_timing_dummy")
