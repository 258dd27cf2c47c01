from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Protocol
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import EntryNotFound
from .models import WatchlistEntry
from .schemas import MediaKind, WatchStatus

UPDATABLE_FIELDS = frozenset({"status", "rating", "notes", "date_added", "date_completed", "streaming_providers"})


@dataclass(frozen=True)
class WatchlistEntryRecord:
    id: str
    catalog_id: int
    media_kind: MediaKind
    title: str
    year: int | None = None
    poster_path: str | None = None
    status: WatchStatus = "not_watched"
    rating: float | None = None
    notes: str | None = None
    date_added: date | None = None
    date_completed: date | None = None
    streaming_providers: tuple[str, ...] = ()


@dataclass(frozen=True)
class NewWatchlistEntry:
    user_id: str
    catalog_id: int
    media_kind: MediaKind
    title: str
    year: int | None = None
    poster_path: str | None = None
    status: WatchStatus = "not_watched"
    rating: float | None = None
    notes: str | None = None
    date_added: date | None = None
    date_completed: date | None = None
    streaming_providers: tuple[str, ...] = ()


class WatchlistStore(Protocol):
    async def list_entries(self, user_id: str) -> list[WatchlistEntryRecord]:
        ...

    async def create(self, entry: NewWatchlistEntry) -> WatchlistEntryRecord:
        ...

    async def update(self, entry_id: str, fields: dict) -> WatchlistEntryRecord:
        """Apply a partial update; only keys in UPDATABLE_FIELDS are allowed."""
        ...

    async def delete(self, entry_id: str) -> None:
        ...


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise EntryNotFound(value)


def _record_from_row(row: WatchlistEntry) -> WatchlistEntryRecord:
    return WatchlistEntryRecord(
        id=str(row.id),
        catalog_id=int(row.catalog_id),
        media_kind=row.media_kind,
        title=row.title,
        year=row.year,
        poster_path=row.poster_path,
        status=row.status,
        rating=row.rating,
        notes=row.notes,
        date_added=row.date_added,
        date_completed=row.date_completed,
        streaming_providers=tuple(row.streaming_providers or ()),
    )


def check_update_fields(fields: dict) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update watchlist fields: {', '.join(sorted(unknown))}")


class SqlWatchlistStore:
    """Watchlist store over an async SQLAlchemy session. Every write commits on its own."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_entries(self, user_id: str) -> list[WatchlistEntryRecord]:
        rows = (
            await self.db.execute(
                select(WatchlistEntry)
                .where(WatchlistEntry.user_id == _to_uuid(user_id))
                .order_by(WatchlistEntry.created_at.asc())
            )
        ).scalars().all()
        return [_record_from_row(row) for row in rows]

    async def create(self, entry: NewWatchlistEntry) -> WatchlistEntryRecord:
        now = datetime.now(timezone.utc)
        row = WatchlistEntry(
            id=uuid.uuid4(),
            user_id=_to_uuid(entry.user_id),
            catalog_id=entry.catalog_id,
            media_kind=entry.media_kind,
            title=entry.title,
            year=entry.year,
            poster_path=entry.poster_path,
            status=entry.status,
            rating=entry.rating,
            notes=entry.notes,
            date_added=entry.date_added or now.date(),
            date_completed=entry.date_completed,
            streaming_providers=list(entry.streaming_providers),
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return _record_from_row(row)

    async def update(self, entry_id: str, fields: dict) -> WatchlistEntryRecord:
        check_update_fields(fields)
        row = await self.db.get(WatchlistEntry, _to_uuid(entry_id))
        if row is None:
            raise EntryNotFound(entry_id)
        for name, value in fields.items():
            if name == "streaming_providers":
                value = list(value or ())
            setattr(row, name, value)
        row.updated_at = datetime.now(timezone.utc)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return _record_from_row(row)

    async def delete(self, entry_id: str) -> None:
        row = await self.db.get(WatchlistEntry, _to_uuid(entry_id))
        if row is None:
            return
        await self.db.delete(row)
        await self.db.commit()
