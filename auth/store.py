"""
auth/store.py -- SQLAlchemy Core persistence layer for users and credentials.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The password hash is stored in its own column and only ever returned by
  get_password_hash(). _row_to_user never copies it onto the User object, so
  list_users() / get_by_id() results are safe to serialize.

  Email and username lookups are case-insensitive (lower() on both sides).
  Uniqueness is enforced on the lowercased values through functional indexes,
  so "Dr.Smith" and "dr.smith" cannot coexist even under concurrent inserts.

DB path: vetclinic_auth.db at the project root unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, text
from sqlalchemy.engine import Engine

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),
    Column("email", String(320), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", Text),  # ISO 8601 timestamp of last successful auth
)

Index("ux_users_username_lower", func.lower(_users.c.username), unique=True)
Index("ux_users_email_lower", func.lower(_users.c.email), unique=True)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records and their password hashes.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(username="admin", email="a@b.co", role=Role.admin), hashed)
        user = store.get_by_login("a@b.co")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by username, ignoring case. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(func.lower(_users.c.username) == username.strip().lower())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, ignoring case. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(func.lower(_users.c.email) == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_login(self, login: str) -> User | None:
        """Resolve a login identifier: email first, then username."""
        return self.get_by_email(login) or self.get_by_username(login)

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def get_password_hash(self, user_id: int) -> str | None:
        """Return the stored bcrypt hash, or None when the user does not exist.

        The only accessor for the hash. Callers must never put the value in a
        response, a log line or a token.
        """
        with self.engine.connect() as conn:
            return conn.execute(
                _users.select().with_only_columns(_users.c.hashed_password).where(_users.c.id == user_id)
            ).scalar()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User, hashed_password: str) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists (case-insensitive). register_user() pre-checks and turns the
        race-window IntegrityError into a ConflictError.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=hashed_password,
                    role=Role(user.role).value,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def set_password_hash(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # Role(...) raises ValueError for a row holding an unknown role. That is a
    # data-integrity failure, not something to paper over with a default.
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        role=Role(row.role),
        created_at=row.created_at,
        is_active=bool(row.is_active),
        last_login=row.last_login,
    )
