"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore and RefreshTokenStore are the
repositories; _row_to_user / _row_to_token are the mappers. Route and
protocol code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are stored lower-cased, so the UNIQUE index on users.email is a
  case-insensitive uniqueness guarantee on every backend.

Concurrency:
  Every terminal transition of a refresh record is a compare-and-swap:
  UPDATE ... WHERE id = :id AND status = 'active'. The row count tells the
  caller whether it won. rotate() inserts the successor and swaps the
  predecessor inside one transaction, so a lost race rolls the insert back
  and a disconnect can never leave half a rotation behind.

  SQLite connections get WAL journaling and a busy timeout; other backends
  get a pool checkout timeout. Either way a stuck store fails with
  OperationalError after store_timeout_seconds instead of hanging.

Layer rule: no imports from api/ or resources/.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import RefreshTokenRecord, Role, TokenStatus, User
from core import clock

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-case
    Column("name", String(100)),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("user_id", String(32), ForeignKey("users.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("status", String(16), nullable=False, server_default=TokenStatus.ACTIVE.value),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("replaced_by_token_id", String(32)),
    Column("revoke_reason", String(32)),
    Index("ix_refresh_tokens_user_status", "user_id", "status"),
    Index("ix_refresh_tokens_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the request.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create the engine shared by every store on one database URL.

    Named shared-memory SQLite URIs (file:name?mode=memory&cache=shared&uri=true)
    are supported, which is what the test suite uses.
    """
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _set_sqlite_pragmas)
    else:
        engine = create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)
    return engine


def init_schema(engine: Engine) -> None:
    metadata.create_all(engine)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return uuid.uuid4().hex


def _now_iso() -> str:
    return clock.to_iso(clock.utcnow())


def normalize_email(email: str) -> str:
    return email.strip().lower()


class _LostRace(Exception):
    """Internal signal: the CAS in rotate() matched no row."""


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_store_engine("sqlite:///auth.db")
        users = UserStore(engine)
        user_id = users.create_user(User(email="a@example.com", password_hash=hash_password("pw")))
        user = users.get_by_email("a@example.com")
    """

    # Columns update_user() may touch. Checked before any SQL is built.
    _MUTABLE_FIELDS: set = {"name", "role", "email_verified", "password_hash"}

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        init_schema(engine)

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers (CredentialValidator.register) translate that into
        DuplicateEmail -- it is the signal that a concurrent registration won.
        """
        user_id = _new_id()
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    name=user.name,
                    password_hash=user.password_hash,
                    role=user.role.value,
                    email_verified=1 if user.email_verified else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    def get_by_id(self, user_id: str, include_deleted: bool = False) -> User | None:
        """Look up a user by primary key. Soft-deleted users are hidden unless asked for."""
        stmt = _users.select().where(_users.c.id == user_id)
        if not include_deleted:
            stmt = stmt.where(_users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str, include_deleted: bool = False) -> User | None:
        """Look up a user by email (case-insensitive)."""
        stmt = _users.select().where(_users.c.email == normalize_email(email))
        if not include_deleted:
            stmt = stmt.where(_users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self, page: int = 1, limit: int = 20, role: Role | None = None) -> tuple[list[User], int]:
        """Return one page of live users (newest first) and the total match count."""
        where = [_users.c.deleted_at.is_(None)]
        if role is not None:
            where.append(_users.c.role == role.value)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_users).where(*where)).scalar() or 0
            rows = conn.execute(
                _users.select()
                .where(*where)
                .order_by(_users.c.created_at.desc(), _users.c.id)
                .limit(limit)
                .offset((page - 1) * limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows], total

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on a live user and stamp updated_at.

        Accepted fields: name, role (Role), email_verified (bool), password_hash.
        Unknown fields raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "email_verified" in fields:
            fields["email_verified"] = 1 if fields["email_verified"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
                .values(updated_at=_now_iso(), **fields)
            )
        return result.rowcount > 0

    def soft_delete(self, user_id: str) -> bool:
        """Mark a user deleted. The row and its email reservation stay in place.

        Returns True if a live user was deleted, False if not found.
        Callers revoke the user's refresh tokens separately.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
            )
        return result.rowcount > 0

    def count_active_admins(self) -> int:
        """Return the number of live admin users.

        Used by the admin routes to refuse removing the last admin.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.ADMIN.value) & _users.c.deleted_at.is_(None))
            ).scalar()
        return result or 0

    def stats(self) -> dict:
        """Return user counts for the admin dashboard."""
        with self.engine.connect() as conn:
            by_role = conn.execute(
                select(_users.c.role, func.count())
                .where(_users.c.deleted_at.is_(None))
                .group_by(_users.c.role)
            ).fetchall()
            verified = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.email_verified == 1) & _users.c.deleted_at.is_(None))
            ).scalar()
            deleted = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.deleted_at.is_not(None))
            ).scalar()
        role_counts = {role.value: 0 for role in Role}
        for role, count in by_role:
            role_counts[role] = count
        return {
            "total_users": sum(role_counts.values()),
            "users_by_role": role_counts,
            "verified_users": verified or 0,
            "deleted_users": deleted or 0,
        }


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for RefreshTokenRecord entities.

    Only token hashes are stored. Status changes go through compare-and-swap
    methods (transition, rotate) or the per-user bulk revoke; there is no
    general-purpose update.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        init_schema(engine)

    def create(self, record: RefreshTokenRecord) -> str:
        """Insert an ACTIVE record and return its id."""
        record_id = _new_id()
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.insert().values(**_token_values(record, record_id)))
        return record_id

    def get_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """Look up a record of any status by token hash. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_token(row) if row is not None else None

    def get_by_id(self, record_id: str) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.id == record_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def list_for_user(self, user_id: str) -> list[RefreshTokenRecord]:
        """Return every record of a user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(_refresh_tokens.c.user_id == user_id)
                .order_by(_refresh_tokens.c.issued_at, _refresh_tokens.c.id)
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def transition(self, record_id: str, to_status: TokenStatus, reason: str) -> bool:
        """Move one record out of ACTIVE. Returns False if it was not ACTIVE."""
        if to_status is TokenStatus.ACTIVE:
            raise ValueError("A record cannot transition back to ACTIVE.")
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == record_id) & (_refresh_tokens.c.status == TokenStatus.ACTIVE.value))
                .values(status=to_status.value, revoked_at=_now_iso(), revoke_reason=reason)
            )
        return result.rowcount == 1

    def rotate(self, record_id: str, successor: RefreshTokenRecord) -> str | None:
        """Atomically replace an ACTIVE record with a new ACTIVE successor.

        Inserts the successor and swaps the predecessor ACTIVE -> ROTATED
        (pointing replaced_by_token_id at the successor) in one transaction.
        Returns the successor id, or None if the predecessor was no longer
        ACTIVE -- in that case nothing was written.
        """
        successor_id = _new_id()
        try:
            with self.engine.begin() as conn:
                conn.execute(_refresh_tokens.insert().values(**_token_values(successor, successor_id)))
                result = conn.execute(
                    _refresh_tokens.update()
                    .where(
                        (_refresh_tokens.c.id == record_id) & (_refresh_tokens.c.status == TokenStatus.ACTIVE.value)
                    )
                    .values(
                        status=TokenStatus.ROTATED.value,
                        revoked_at=_now_iso(),
                        replaced_by_token_id=successor_id,
                        revoke_reason="rotated",
                    )
                )
                if result.rowcount != 1:
                    raise _LostRace()
        except _LostRace:
            return None
        return successor_id

    def revoke_all_for_user(self, user_id: str, reason: str) -> int:
        """Revoke every ACTIVE record of a user in one statement. Returns the count."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.status == TokenStatus.ACTIVE.value)
                )
                .values(status=TokenStatus.REVOKED.value, revoked_at=_now_iso(), revoke_reason=reason)
            )
        return result.rowcount

    def count_active(self, user_id: str | None = None) -> int:
        """Count ACTIVE, unexpired records (for one user, or overall)."""
        stmt = (
            select(func.count())
            .select_from(_refresh_tokens)
            .where(
                (_refresh_tokens.c.status == TokenStatus.ACTIVE.value) & (_refresh_tokens.c.expires_at > _now_iso())
            )
        )
        if user_id is not None:
            stmt = stmt.where(_refresh_tokens.c.user_id == user_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def purge_expired(self, older_than: datetime) -> int:
        """Delete records whose expiry is before older_than. Returns rows removed.

        Bounded growth: every record eventually expires, so the table only
        holds tokens issued within refresh lifetime + retention.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(_refresh_tokens.c.expires_at < clock.to_iso(older_than))
            )
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _token_values(record: RefreshTokenRecord, record_id: str) -> dict:
    return {
        "id": record_id,
        "user_id": record.user_id,
        "token_hash": record.token_hash,
        "status": TokenStatus.ACTIVE.value,
        "issued_at": record.issued_at,
        "expires_at": record.expires_at,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=Role(row.role),
        email_verified=bool(row.email_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        status=TokenStatus(row.status),
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
        replaced_by_token_id=row.replaced_by_token_id,
        revoke_reason=row.revoke_reason,
    )
