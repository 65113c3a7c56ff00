"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  update_user() only accepts whitelisted column names.

Errors:
  A duplicate email surfaces as ConflictError (from the UNIQUE constraint,
  so two concurrent registrations cannot both win). Any other
  SQLAlchemyError propagates unchanged -- callers must not read a storage
  failure as "user not found".

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.database import now_iso, users
from auth.models import User
from core.exceptions import ConflictError


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(create_db_engine("sqlite:///:memory:"))
        uid = store.create_user(User(name="Ada", email="ada@example.com", password_hash=hash_password("pw")))
        user = store.get_by_email("ada@example.com")
    """

    # Columns update_user() may touch. Anything else raises ValueError.
    _UPDATABLE_FIELDS: frozenset = frozenset({"name", "email", "password_hash"})

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(users)).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Emails are stored lowercased, so match is case-insensitive."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id."""
        with self.engine.connect() as conn:
            rows = conn.execute(users.select().order_by(users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ConflictError if the email is already registered.
        """
        stamp = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    users.insert().values(
                        name=user.name,
                        email=_normalize_email(user.email),
                        password_hash=user.password_hash,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc
        return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, password_hash. Callers hash passwords
        before passing them in.

        Returns True if a row was updated, False if user_id was not found.
        Raises ConflictError if the new email belongs to another user.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = _normalize_email(fields["email"])
        fields["updated_at"] = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("A user with that email already exists.") from exc
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Role assignments go with it (ON DELETE CASCADE).

        Returns True if deleted, False if not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
