"""
plans/store.py -- SQLAlchemy-backed persistence layer for crops and crop cases.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in plans/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. PlanStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers. Route
handlers never touch SQL directly.

Visibility rule (enforced by the queries here, not by callers):
  a case is visible to a viewer if it is public or the viewer owns it.

Security: all queries use bound parameters. No f-strings in SQL. Free-text
filters go through ColumnOperators.contains(autoescape=True) so user-supplied
% and _ match literally.

Usage:
    store = PlanStore("sqlite:///cropcase.db")
    store.seed_crops(default_crops())
    case_id = store.create_case(CropCase(user_id=1, name="Kharif 2025", total_land=4.5))
    cases, total = store.list_user_cases(user_id=1, page=1, limit=10)
    store.close()
"""

import json
from collections.abc import Iterable
from typing import Optional

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    and_,
    distinct,
    exists,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine

from core.database import connect, make_engine, now_iso, transaction
from plans.models import CaseCrop, CommunityFilter, CommunityStats, Crop, CropCase

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_crops = Table(
    "crops",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("season", String(30), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("duration", Integer, nullable=False, server_default="0"),
)

_cases = Table(
    "cases",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),  # owner; users live in the auth DB schema
    Column("name", String(200), nullable=False),
    Column("description", Text),
    Column("total_land", Float, nullable=False),
    Column("location", String(255)),
    Column("is_public", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("start_date", String(10)),  # YYYY-MM-DD
    Column("end_date", String(10)),
    Column("budget", Float),
    Column("notes", Text),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("efficiency", Float),
    Column("estimated_profit", Float),
    Column("views", Integer, nullable=False, server_default="0"),
    Column("tags", Text),  # JSON array serialized as text
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_case_crops = Table(
    "case_crops",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("case_id", Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False),
    Column("crop_id", Integer, ForeignKey("crops.id"), nullable=False),
    Column("weight", Integer, nullable=False),
    Column("notes", Text),
    UniqueConstraint("case_id", "crop_id", name="uq_case_crop"),
)

_case_likes = Table(
    "case_likes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("case_id", Integer, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("case_id", "user_id", name="uq_case_like"),
)

# Columns a case owner may change. Anything else passed to update_case() is a
# programming error and raises ValueError.
_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "total_land",
        "location",
        "is_public",
        "start_date",
        "end_date",
        "budget",
        "notes",
        "status",
        "efficiency",
        "estimated_profit",
        "tags",
    }
)

# "popular" ranks by views, same as the community page has always done.
_SORT_COLUMNS = {
    "recent": _cases.c.created_at,
    "popular": _cases.c.views,
    "views": _cases.c.views,
    "alphabetical": _cases.c.name,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_columns(fields: dict) -> dict:
    """Convert domain values to their column representation."""
    values = dict(fields)
    if "is_public" in values:
        values["is_public"] = 1 if values["is_public"] else 0
    if "tags" in values:
        values["tags"] = json.dumps(values["tags"] or [])
    return values


def _case_values(case: CropCase) -> dict:
    return _to_columns({name: getattr(case, name) for name in _UPDATABLE_FIELDS})


def _insert_case_crops(conn: Connection, case_id: int, allocations: Iterable[CaseCrop]) -> int:
    rows = [{"case_id": case_id, "crop_id": a.crop_id, "weight": a.weight, "notes": a.notes} for a in allocations]
    if rows:
        conn.execute(_case_crops.insert(), rows)
    return len(rows)


def _touch(conn: Connection, case_id: int) -> None:
    conn.execute(_cases.update().where(_cases.c.id == case_id).values(updated_at=now_iso()))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PlanStore:
    """Repository for crops, cases, case crop allocations and likes."""

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Crop catalog
    # ------------------------------------------------------------------

    def list_crops(self, season: Optional[str] = None) -> list[Crop]:
        """Return catalog crops sorted by name, optionally filtered by season (case-insensitive)."""
        stmt = _crops.select().order_by(_crops.c.name)
        if season:
            stmt = stmt.where(func.lower(_crops.c.season) == season.lower())
        with connect(self.engine) as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_crop(r) for r in rows]

    def get_crop(self, crop_id: int) -> Optional[Crop]:
        with connect(self.engine) as conn:
            row = conn.execute(_crops.select().where(_crops.c.id == crop_id)).fetchone()
        return _row_to_crop(row) if row is not None else None

    def create_crop(self, crop: Crop) -> int:
        """Insert a catalog crop. Raises IntegrityError if the name already exists."""
        with transaction(self.engine) as conn:
            result = conn.execute(
                _crops.insert().values(
                    name=crop.name,
                    season=crop.season,
                    description=crop.description,
                    duration=crop.duration,
                )
            )
            return result.inserted_primary_key[0]

    def missing_crop_ids(self, crop_ids: Iterable[int]) -> set[int]:
        """Return the subset of crop_ids that do not exist in the catalog."""
        wanted = set(crop_ids)
        if not wanted:
            return set()
        with connect(self.engine) as conn:
            found = set(conn.execute(select(_crops.c.id).where(_crops.c.id.in_(wanted))).scalars())
        return wanted - found

    def seed_crops(self, crops: Iterable[Crop]) -> int:
        """Insert catalog entries whose name is not present yet. Returns number inserted."""
        with transaction(self.engine) as conn:
            existing = set(conn.execute(select(_crops.c.name)).scalars())
            rows = [
                {"name": c.name, "season": c.season, "description": c.description, "duration": c.duration}
                for c in crops
                if c.name not in existing
            ]
            if rows:
                conn.execute(_crops.insert(), rows)
        return len(rows)

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def create_case(self, case: CropCase) -> int:
        """Insert a case and its crop allocations in one transaction. Returns the new id."""
        now = now_iso()
        with transaction(self.engine) as conn:
            result = conn.execute(
                _cases.insert().values(
                    user_id=case.user_id,
                    views=0,
                    created_at=now,
                    updated_at=now,
                    **_case_values(case),
                )
            )
            case_id = result.inserted_primary_key[0]
            _insert_case_crops(conn, case_id, case.crops)
        return case_id

    def get_case(self, case_id: int) -> Optional[CropCase]:
        """Return a case with crops and like count, regardless of visibility."""
        with connect(self.engine) as conn:
            row = conn.execute(_cases.select().where(_cases.c.id == case_id)).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, [row])[0]

    def list_visible_cases(
        self, viewer_id: int, page: int, limit: int, owner_id: Optional[int] = None
    ) -> tuple[list[CropCase], int]:
        """Public cases plus the viewer's own, newest first. Optionally restricted to one owner."""
        where = or_(_cases.c.is_public == 1, _cases.c.user_id == viewer_id)
        if owner_id is not None:
            where = and_(where, _cases.c.user_id == owner_id)
        return self._page(where, [_cases.c.created_at.desc(), _cases.c.id.desc()], page, limit)

    def list_user_cases(self, user_id: int, page: int, limit: int) -> tuple[list[CropCase], int]:
        """All of a user's cases, public and private, newest first."""
        where = _cases.c.user_id == user_id
        return self._page(where, [_cases.c.created_at.desc(), _cases.c.id.desc()], page, limit)

    def community_cases(
        self, viewer_id: int, flt: CommunityFilter, page: int, limit: int
    ) -> tuple[list[CropCase], int, CommunityStats]:
        """Public cases owned by anyone but the viewer, filtered and sorted.

        Stats are computed over the unfiltered community (public, not the
        viewer's) so the headline numbers do not jump as filters change.
        """
        base = and_(_cases.c.is_public == 1, _cases.c.user_id != viewer_id)

        conditions = [base]
        if flt.q.strip():
            conditions.append(func.lower(_cases.c.name).contains(flt.q.strip().lower(), autoescape=True))
        if flt.min_land is not None:
            conditions.append(_cases.c.total_land >= flt.min_land)
        if flt.max_land is not None:
            conditions.append(_cases.c.total_land <= flt.max_land)
        if flt.tags:
            # tags is a JSON array; matching the quoted element avoids prefix hits.
            conditions.append(or_(*(_cases.c.tags.contains(json.dumps(t), autoescape=True) for t in flt.tags)))
        if flt.season:
            conditions.append(
                exists(
                    select(_case_crops.c.id)
                    .select_from(_case_crops.join(_crops, _crops.c.id == _case_crops.c.crop_id))
                    .where(_case_crops.c.case_id == _cases.c.id, func.lower(_crops.c.season) == flt.season.lower())
                )
            )

        sort_col = _SORT_COLUMNS.get(flt.sort_by, _cases.c.created_at)
        ordered = sort_col.asc() if flt.sort_order == "asc" else sort_col.desc()
        cases, total = self._page(and_(*conditions), [ordered, _cases.c.id.desc()], page, limit)

        with connect(self.engine) as conn:
            community_total = conn.execute(select(func.count()).select_from(_cases).where(base)).scalar() or 0
            farmers = conn.execute(select(func.count(distinct(_cases.c.user_id))).where(base)).scalar() or 0
            likes = (
                conn.execute(
                    select(func.count())
                    .select_from(_case_likes.join(_cases, _cases.c.id == _case_likes.c.case_id))
                    .where(base)
                ).scalar()
                or 0
            )
        average = round(likes / community_total, 2) if community_total else 0.0
        stats = CommunityStats(
            total_community_cases=community_total,
            total_farmers=farmers,
            total_likes=likes,
            average_likes_per_case=average,
        )
        return cases, total, stats

    def update_case(self, case_id: int, **fields) -> bool:
        """Update mutable case fields. Returns False if case_id was not found.

        Unknown keys raise ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown case fields: {sorted(unknown)!r}")
        with transaction(self.engine) as conn:
            result = conn.execute(
                _cases.update().where(_cases.c.id == case_id).values(updated_at=now_iso(), **_to_columns(fields))
            )
        return result.rowcount > 0

    def delete_case(self, case_id: int) -> bool:
        """Delete a case together with its crop allocations and likes."""
        with transaction(self.engine) as conn:
            conn.execute(_case_crops.delete().where(_case_crops.c.case_id == case_id))
            conn.execute(_case_likes.delete().where(_case_likes.c.case_id == case_id))
            result = conn.execute(_cases.delete().where(_cases.c.id == case_id))
        return result.rowcount > 0

    def increment_views(self, case_id: int) -> None:
        with transaction(self.engine) as conn:
            conn.execute(_cases.update().where(_cases.c.id == case_id).values(views=_cases.c.views + 1))

    # ------------------------------------------------------------------
    # Case crop allocations
    # ------------------------------------------------------------------

    def add_case_crops(self, case_id: int, allocations: Iterable[CaseCrop]) -> int:
        """Add allocations, skipping crops already in the case. Returns number added."""
        with transaction(self.engine) as conn:
            present = set(
                conn.execute(select(_case_crops.c.crop_id).where(_case_crops.c.case_id == case_id)).scalars()
            )
            added = _insert_case_crops(conn, case_id, [a for a in allocations if a.crop_id not in present])
            _touch(conn, case_id)
        return added

    def replace_case_crops(self, case_id: int, allocations: Iterable[CaseCrop]) -> int:
        """Replace the whole allocation atomically. Returns number of allocations stored."""
        with transaction(self.engine) as conn:
            conn.execute(_case_crops.delete().where(_case_crops.c.case_id == case_id))
            stored = _insert_case_crops(conn, case_id, allocations)
            _touch(conn, case_id)
        return stored

    # ------------------------------------------------------------------
    # Likes
    # ------------------------------------------------------------------

    def add_like(self, case_id: int, user_id: int) -> None:
        """Record a like. Raises IntegrityError if the user already liked the case."""
        with transaction(self.engine) as conn:
            conn.execute(_case_likes.insert().values(case_id=case_id, user_id=user_id, created_at=now_iso()))

    def remove_like(self, case_id: int, user_id: int) -> bool:
        with transaction(self.engine) as conn:
            result = conn.execute(
                _case_likes.delete().where((_case_likes.c.case_id == case_id) & (_case_likes.c.user_id == user_id))
            )
        return result.rowcount > 0

    def liked_case_ids(self, user_id: int, case_ids: Iterable[int]) -> set[int]:
        ids = set(case_ids)
        if not ids:
            return set()
        with connect(self.engine) as conn:
            rows = conn.execute(
                select(_case_likes.c.case_id).where(
                    (_case_likes.c.user_id == user_id) & (_case_likes.c.case_id.in_(ids))
                )
            ).scalars()
            return set(rows)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _page(self, where, order_by: list, page: int, limit: int) -> tuple[list[CropCase], int]:
        offset = (page - 1) * limit
        with connect(self.engine) as conn:
            total = conn.execute(select(func.count()).select_from(_cases).where(where)).scalar() or 0
            rows = conn.execute(_cases.select().where(where).order_by(*order_by).limit(limit).offset(offset)).fetchall()
            return self._hydrate(conn, rows), total

    def _hydrate(self, conn: Connection, rows) -> list[CropCase]:
        """Attach crop allocations and like counts to case rows with two batched queries."""
        ids = [r.id for r in rows]
        if not ids:
            return []
        crops_by_case: dict[int, list[CaseCrop]] = {i: [] for i in ids}
        alloc_rows = conn.execute(
            select(
                _case_crops,
                _crops.c.name.label("crop_name"),
                _crops.c.season.label("crop_season"),
                _crops.c.description.label("crop_description"),
                _crops.c.duration.label("crop_duration"),
            )
            .join(_crops, _crops.c.id == _case_crops.c.crop_id)
            .where(_case_crops.c.case_id.in_(ids))
            .order_by(_case_crops.c.id)
        ).fetchall()
        for a in alloc_rows:
            crops_by_case[a.case_id].append(_row_to_case_crop(a))

        like_counts = dict(
            conn.execute(
                select(_case_likes.c.case_id, func.count())
                .where(_case_likes.c.case_id.in_(ids))
                .group_by(_case_likes.c.case_id)
            ).all()
        )
        return [_row_to_case(r, crops_by_case[r.id], like_counts.get(r.id, 0)) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_crop(row) -> Crop:
    return Crop(
        id=row.id,
        name=row.name,
        season=row.season,
        description=row.description or "",
        duration=row.duration,
    )


def _row_to_case_crop(row) -> CaseCrop:
    return CaseCrop(
        id=row.id,
        case_id=row.case_id,
        crop_id=row.crop_id,
        weight=row.weight,
        notes=row.notes,
        crop=Crop(
            id=row.crop_id,
            name=row.crop_name,
            season=row.crop_season,
            description=row.crop_description or "",
            duration=row.crop_duration,
        ),
    )


def _row_to_case(row, crops: list[CaseCrop], like_count: int) -> CropCase:
    return CropCase(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        total_land=row.total_land,
        location=row.location,
        is_public=bool(row.is_public),
        start_date=row.start_date,
        end_date=row.end_date,
        budget=row.budget,
        notes=row.notes,
        status=row.status,
        efficiency=row.efficiency,
        estimated_profit=row.estimated_profit,
        views=row.views,
        tags=json.loads(row.tags) if row.tags else [],
        crops=crops,
        like_count=like_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
