"""
auth/store.py -- Credential store contract and its SQLAlchemy Core implementation.

Pattern: Repository + Data Mapper.
CredentialStore is the narrow contract the auth core depends on.
SqlCredentialStore is the repository; _row_to_user / _row_to_refresh_token
are the mappers. Service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Refresh tokens are stored as HMAC hashes; the raw value never reaches a row.

Concurrency:
  atomic_rotate() is a single transaction: a conditional UPDATE that only
  matches a non-revoked row, followed by the INSERT of the successor. Two
  concurrent rotations of the same hash cannot both see rowcount == 1.

Timeouts:
  Every store wait is bounded at engine level (SQLite busy timeout, driver
  connect_timeout, pool_timeout). Any SQLAlchemy failure other than a unique
  constraint violation surfaces as StoreUnavailable.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import SingletonThreadPool

from auth.errors import DuplicateEmail, DuplicateUsername, StoreUnavailable, UnknownRole
from auth.models import RefreshTokenRecord, Role, User

logger = logging.getLogger("gatekeep.auth.store")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    """Everything the auth core needs from persistence -- and nothing more."""

    def find_user_by_username(self, username: str) -> User | None: ...

    def find_user_by_email(self, email: str) -> User | None: ...

    def find_user_by_id(self, user_id: int) -> User | None: ...

    def insert_user(self, user: User) -> User: ...

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None: ...

    def insert_refresh_token(self, record: RefreshTokenRecord) -> None: ...

    def atomic_rotate(self, old_hash: str, new_record: RefreshTokenRecord) -> bool: ...

    def revoke_refresh_token(self, token_hash: str) -> bool: ...

    def revoke_all_for_user(self, user_id: int) -> int: ...

    def resolve_roles(self, names: Iterable[str]) -> frozenset[Role]: ...

    def purge_expired_refresh_tokens(self, now: datetime) -> int: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(20), nullable=False, unique=True),
    Column("email", String(50), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role", String(30), primary_key=True),  # Role.value
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", Float, nullable=False),  # POSIX seconds, comparable in SQL
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("replaced_by", String(64)),  # hash of the successor after rotation
)


# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _is_sqlite_memory(db_url: str) -> bool:
    url = make_url(db_url)
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def _build_engine(db_url: str, timeout: float) -> Engine:
    if db_url.startswith("sqlite"):
        # timeout is SQLite's busy-wait on a locked database.
        options = {}
        if _is_sqlite_memory(db_url):
            # One connection per thread keeps a private :memory: DB alive.
            options["poolclass"] = SingletonThreadPool
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout}, **options)
        event.listen(engine, "connect", _set_sqlite_pragmas)
        return engine
    return create_engine(
        db_url,
        connect_args={"connect_timeout": max(1, int(timeout))},
        pool_timeout=timeout,
        pool_pre_ping=True,
    )


def _guarded(method):
    """Translate driver and pool failures into StoreUnavailable."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.warning("Credential store call %s failed", method.__name__, exc_info=True)
            raise StoreUnavailable() from exc

    return wrapper


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlCredentialStore:
    """SQLAlchemy Core implementation of CredentialStore.

    Usage:
        store = SqlCredentialStore("sqlite:///auth.db")
        user = store.insert_user(User(username="alice", email="a@x.com", hashed_password=digest))
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///:memory:", timeout: float = 5.0) -> None:
        self.engine: Engine = _build_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_guarded
    def find_user_by_username(self, username: str) -> User | None:
        """Exact, case-sensitive lookup. Returns None if not found."""
        return self._find_user(_users.c.username == username)

    @_guarded
    def find_user_by_email(self, email: str) -> User | None:
        return self._find_user(_users.c.email == email)

    @_guarded
    def find_user_by_id(self, user_id: int) -> User | None:
        return self._find_user(_users.c.id == user_id)

    def _find_user(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
            if row is None:
                return None
            role_rows = conn.execute(
                select(_user_roles.c.role).where(_user_roles.c.user_id == row.id)
            ).fetchall()
        return _row_to_user(row, [r.role for r in role_rows])

    @_guarded
    def insert_user(self, user: User) -> User:
        """Insert a user and its role assignments in one transaction.

        Raises DuplicateUsername / DuplicateEmail when either value is taken.
        The pre-checks give the precise error in the common case; the UNIQUE
        constraints still decide the race where two signups interleave [M1].
        """
        created_at = _now_iso()
        try:
            with self.engine.begin() as conn:
                if conn.execute(select(_users.c.id).where(_users.c.username == user.username)).first():
                    raise DuplicateUsername()
                if conn.execute(select(_users.c.id).where(_users.c.email == user.email)).first():
                    raise DuplicateEmail()
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        created_at=created_at,
                    )
                )
                user_id = result.inserted_primary_key[0]
                if user.roles:
                    conn.execute(
                        _user_roles.insert(),
                        [{"user_id": user_id, "role": role.value} for role in sorted(user.roles)],
                    )
        except IntegrityError as exc:
            if self.find_user_by_username(user.username) is not None:
                raise DuplicateUsername() from exc
            raise DuplicateEmail() from exc
        return User(
            id=user_id,
            username=user.username,
            email=user.email,
            hashed_password=user.hashed_password,
            roles=frozenset(user.roles),
            created_at=created_at,
        )

    def resolve_roles(self, names: Iterable[str]) -> frozenset[Role]:
        """Map requested role names onto Role members. Raises UnknownRole.

        Roles are reference data held in code, so this performs no I/O.
        """
        roles = set()
        for name in names:
            role = Role.from_name(name)
            if role is None:
                raise UnknownRole()
            roles.add(role)
        return frozenset(roles)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    @_guarded
    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    @_guarded
    def insert_refresh_token(self, record: RefreshTokenRecord) -> None:
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(record)))

    @_guarded
    def atomic_rotate(self, old_hash: str, new_record: RefreshTokenRecord) -> bool:
        """Revoke old_hash and insert new_record, only if old_hash was still active.

        Returns False (and writes nothing) when the row was already revoked or
        does not exist -- i.e. another caller won the rotation.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == old_hash) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1, replaced_by=new_record.token_hash)
            )
            if result.rowcount != 1:
                return False
            conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(new_record)))
        return True

    @_guarded
    def revoke_refresh_token(self, token_hash: str) -> bool:
        """Mark a single token revoked. Returns True if a row changed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    @_guarded
    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every active refresh token owned by user_id. Returns the count."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount

    @_guarded
    def purge_expired_refresh_tokens(self, now: datetime) -> int:
        """Delete rows whose expiry has passed. Housekeeping only; returns rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= now.timestamp()))
        return result.rowcount

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.warning("Credential store ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, role_values: list[str]) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        roles=frozenset(Role(v) for v in role_values),
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token_hash=row.token_hash,
        user_id=row.user_id,
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
        revoked=bool(row.revoked),
        created_at=datetime.fromisoformat(row.created_at),
        replaced_by=row.replaced_by,
    )


def _refresh_token_values(record: RefreshTokenRecord) -> dict:
    created_at = record.created_at or datetime.now(timezone.utc)
    return {
        "token_hash": record.token_hash,
        "user_id": record.user_id,
        "expires_at": record.expires_at.timestamp(),
        "revoked": 1 if record.revoked else 0,
        "created_at": created_at.isoformat(),
        "replaced_by": record.replaced_by,
    }
