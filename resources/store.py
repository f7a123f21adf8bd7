"""
resources/store.py -- SQLAlchemy Core persistence for owner-scoped resources.

Uses SQLAlchemy Core (not ORM) so the dataclass in resources/models.py stays
the authoritative domain representation.

Pattern: Repository + Data Mapper. ResourceStore is the repository;
_row_to_resource is the mapper. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Soft delete: deleted rows keep their data and disappear from every read.

Usage:
    store = ResourceStore(engine)
    resource_id = store.create(Resource(owner_id=user.id, title="Notes"))
    items, total = store.list_resources(page=1, limit=20, owner_id=user.id)
    store.update(resource_id, title="Renamed")
    store.soft_delete(resource_id)
"""

import uuid
from typing import Optional

from sqlalchemy import Column, Index, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core import clock
from resources.models import Resource

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_resources = Table(
    "resources",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("owner_id", String(32), nullable=False),
    Column("title", String(200), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
    Index("ix_resources_owner_id", "owner_id"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ResourceStore:
    # Columns update() may touch. Checked before any SQL is built.
    _MUTABLE_FIELDS: set = {"title", "description"}

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(engine)

    def create(self, resource: Resource) -> str:
        """Insert a new resource and return its id."""
        resource_id = uuid.uuid4().hex
        now = clock.to_iso(clock.utcnow())
        with self.engine.begin() as conn:
            conn.execute(
                _resources.insert().values(
                    id=resource_id,
                    owner_id=resource.owner_id,
                    title=resource.title,
                    description=resource.description,
                    created_at=now,
                    updated_at=now,
                )
            )
        return resource_id

    def get(self, resource_id: str) -> Optional[Resource]:
        """Return a live resource by id, or None if missing or soft-deleted."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _resources.select().where((_resources.c.id == resource_id) & _resources.c.deleted_at.is_(None))
            ).fetchone()
        return _row_to_resource(row) if row is not None else None

    def list_resources(
        self,
        page: int = 1,
        limit: int = 20,
        owner_id: Optional[str] = None,
        search: Optional[str] = None,
    ) -> tuple[list[Resource], int]:
        """Return one page of live resources (newest first) and the total match count.

        search is a case-insensitive substring match on title.
        """
        where = [_resources.c.deleted_at.is_(None)]
        if owner_id is not None:
            where.append(_resources.c.owner_id == owner_id)
        if search:
            where.append(func.lower(_resources.c.title).contains(search.lower(), autoescape=True))
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_resources).where(*where)).scalar() or 0
            rows = conn.execute(
                _resources.select()
                .where(*where)
                .order_by(_resources.c.created_at.desc(), _resources.c.id)
                .limit(limit)
                .offset((page - 1) * limit)
            ).fetchall()
        return [_row_to_resource(r) for r in rows], total

    def update(self, resource_id: str, **fields) -> bool:
        """Update title/description on a live resource. Returns False if not found."""
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown resource fields: {unknown!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                _resources.update()
                .where((_resources.c.id == resource_id) & _resources.c.deleted_at.is_(None))
                .values(updated_at=clock.to_iso(clock.utcnow()), **fields)
            )
        return result.rowcount > 0

    def soft_delete(self, resource_id: str) -> bool:
        now = clock.to_iso(clock.utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                _resources.update()
                .where((_resources.c.id == resource_id) & _resources.c.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
            )
        return result.rowcount > 0

    def count(self) -> int:
        """Number of live resources."""
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count()).select_from(_resources).where(_resources.c.deleted_at.is_(None))
                ).scalar()
                or 0
            )


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_resource(row) -> Resource:
    return Resource(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
