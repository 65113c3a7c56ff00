"""
auth/database.py -- SQLAlchemy Core schema and engine factory for the auth tables.

Tables:
  users             -- accounts (email UNIQUE)
  roles             -- name UNIQUE
  permissions       -- key UNIQUE
  user_roles        -- PK(user_id, role_id), cascades from users and roles
  role_permissions  -- PK(role_id, permission_id), cascades from roles and permissions

Both stores (auth/store.py, auth/role_store.py) share one Engine built here
so foreign keys and cascades span every table.

SQLite notes:
  Foreign keys are OFF by default in SQLite and the PRAGMA is per-connection,
  so it is set in a connect listener alongside WAL mode. Without it the
  ON DELETE CASCADE clauses below would be silently ignored.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(50), nullable=False, unique=True),
    Column("category", String(50), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable foreign keys (for cascades) and WAL mode on every new connection."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build the shared Engine and create any missing tables.

    create_all() is idempotent -- safe to call on every startup.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
