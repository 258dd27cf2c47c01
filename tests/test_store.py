"""Tests for the SQLAlchemy-backed watchlist store (in-memory SQLite)."""

from datetime import date
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from watchlist_sync.errors import EntryNotFound
from watchlist_sync.models import AuditLog, Base, User
from watchlist_sync.routes_import import confirm_import
from watchlist_sync.schemas import CandidateMatch, ConfirmImportRequest, PreviewItem
from watchlist_sync.store import NewWatchlistEntry, SqlWatchlistStore


@pytest_asyncio.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest_asyncio.fixture
async def owner(db):
    user = User(id=uuid.uuid4(), email="viewer@example.com")
    db.add(user)
    await db.commit()
    return user


def _new_entry(owner, catalog_id=329865, title="Arrival", **fields):
    return NewWatchlistEntry(user_id=str(owner.id), catalog_id=catalog_id, media_kind="movie", title=title, **fields)


class TestSqlWatchlistStore:
    @pytest.mark.asyncio
    async def test_create_and_list(self, db, owner):
        store = SqlWatchlistStore(db)

        created = await store.create(
            _new_entry(owner, year=2016, status="completed", rating=8.0, streaming_providers=("Netflix",))
        )
        entries = await store.list_entries(str(owner.id))

        assert entries == [created]
        assert created.status == "completed"
        assert created.streaming_providers == ("Netflix",)
        assert isinstance(created.date_added, date)

    @pytest.mark.asyncio
    async def test_list_is_per_user(self, db, owner):
        other = User(id=uuid.uuid4(), email="other@example.com")
        db.add(other)
        await db.commit()
        store = SqlWatchlistStore(db)
        await store.create(_new_entry(owner))

        assert await store.list_entries(str(other.id)) == []

    @pytest.mark.asyncio
    async def test_partial_update(self, db, owner):
        store = SqlWatchlistStore(db)
        created = await store.create(_new_entry(owner, notes="First watch"))

        updated = await store.update(created.id, {"rating": 9.0, "streaming_providers": ["Max"]})

        assert updated.id == created.id
        assert updated.rating == 9.0
        assert updated.notes == "First watch"
        assert updated.streaming_providers == ("Max",)

    @pytest.mark.asyncio
    async def test_update_rejects_identity_fields(self, db, owner):
        store = SqlWatchlistStore(db)
        created = await store.create(_new_entry(owner))

        with pytest.raises(ValueError):
            await store.update(created.id, {"catalog_id": 1})

    @pytest.mark.asyncio
    async def test_update_unknown_entry(self, db, owner):
        store = SqlWatchlistStore(db)
        with pytest.raises(EntryNotFound):
            await store.update(str(uuid.uuid4()), {"rating": 5.0})
        with pytest.raises(EntryNotFound):
            await store.update("not-a-uuid", {"rating": 5.0})

    @pytest.mark.asyncio
    async def test_delete(self, db, owner):
        store = SqlWatchlistStore(db)
        created = await store.create(_new_entry(owner))

        await store.delete(created.id)
        await store.delete(created.id)

        assert await store.list_entries(str(owner.id)) == []


class StaleSnapshotStore(SqlWatchlistStore):
    """Sees an empty watchlist, like a commit racing another import."""

    async def list_entries(self, user_id: str):
        return []


def _selected(catalog_id, title, year):
    candidate = CandidateMatch(catalog_id=catalog_id, media_kind="movie", title=title, year=year, confidence=1.0)
    return PreviewItem(original_title=title, original_year=year, match_candidates=[candidate], selected_match_index=0)


class TestConfirmWithSqlStore:
    @pytest.mark.asyncio
    async def test_failed_write_keeps_result_and_audit_row(self, db, owner):
        owner_id = owner.id
        await SqlWatchlistStore(db).create(_new_entry(owner, year=2016))
        body = ConfirmImportRequest(
            preview_items=[_selected(329865, "Arrival", 2016), _selected(438631, "Dune", 2021)]
        )

        # Unwrapped past the rate limiter, which needs a real request.
        result = await confirm_import.__wrapped__(
            request=None, body=body, user=owner, db=db, store=StaleSnapshotStore(db)
        )

        assert (result.imported, result.failed) == (1, 1)
        assert result.errors[0].item_index == 0
        assert result.errors[0].code == "store_error"

        [audit] = (await db.execute(select(AuditLog))).scalars().all()
        assert audit.actor_user_id == owner_id
        assert audit.actor_email == "viewer@example.com"
        assert audit.details["failed"] == 1
        assert audit.details["imported"] == 1
        assert audit.details["error_codes"] == ["store_error"]

        entries = await SqlWatchlistStore(db).list_entries(str(owner_id))
        assert sorted(entry.catalog_id for entry in entries) == [329865, 438631]
