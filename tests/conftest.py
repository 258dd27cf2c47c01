import asyncio
import dataclasses
import os
import uuid

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest

from watchlist_sync.catalog import CatalogResult
from watchlist_sync.errors import EntryNotFound
from watchlist_sync.store import NewWatchlistEntry, WatchlistEntryRecord, check_update_fields

TEST_USER_ID = "11111111-1111-1111-1111-111111111111"


class FakeCatalog:
    """Catalog double keyed by case-folded query. Records calls and peak concurrency."""

    def __init__(self, results: dict | None = None, *, fail: tuple = (), delay: float = 0.0):
        self.results = {query.casefold(): hits for query, hits in (results or {}).items()}
        self.fail = {query.casefold() for query in fail}
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0

    async def search(self, query: str) -> list[CatalogResult]:
        self.calls.append(query)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if query.casefold() in self.fail:
                raise RuntimeError("catalog unavailable")
            return list(self.results.get(query.casefold(), []))
        finally:
            self.active -= 1


class InMemoryWatchlistStore:
    """Watchlist store double. ``fail_titles`` makes create/update raise for those titles."""

    def __init__(self, entries=None, *, fail_titles: tuple = (), unavailable: bool = False):
        self.entries: dict[str, WatchlistEntryRecord] = {}
        self.owners: dict[str, str] = {}
        self.fail_titles = set(fail_titles)
        self.unavailable = unavailable
        self.creates = 0
        self.updates = 0
        for entry in entries or ():
            self.entries[entry.id] = entry
            self.owners[entry.id] = TEST_USER_ID

    async def list_entries(self, user_id: str) -> list[WatchlistEntryRecord]:
        if self.unavailable:
            raise ConnectionError("store unavailable")
        return [entry for entry_id, entry in self.entries.items() if self.owners[entry_id] == user_id]

    async def create(self, entry: NewWatchlistEntry) -> WatchlistEntryRecord:
        if entry.title in self.fail_titles:
            raise RuntimeError(f"could not create {entry.title}")
        fields = {f.name: getattr(entry, f.name) for f in dataclasses.fields(entry) if f.name != "user_id"}
        record = WatchlistEntryRecord(id=str(uuid.uuid4()), **fields)
        self.entries[record.id] = record
        self.owners[record.id] = entry.user_id
        self.creates += 1
        return record

    async def update(self, entry_id: str, fields: dict) -> WatchlistEntryRecord:
        check_update_fields(fields)
        existing = self.entries.get(entry_id)
        if existing is None:
            raise EntryNotFound(entry_id)
        if existing.title in self.fail_titles:
            raise RuntimeError(f"could not update {existing.title}")
        if "streaming_providers" in fields:
            fields = {**fields, "streaming_providers": tuple(fields["streaming_providers"] or ())}
        updated = dataclasses.replace(existing, **fields)
        self.entries[entry_id] = updated
        self.updates += 1
        return updated

    async def delete(self, entry_id: str) -> None:
        self.entries.pop(entry_id, None)
        self.owners.pop(entry_id, None)


def make_result(catalog_id: int, title: str, year: int | None = None, media_kind: str = "movie", **extra):
    return CatalogResult(catalog_id=catalog_id, media_kind=media_kind, title=title, year=year, **extra)


def make_entry(catalog_id: int, title: str, year: int | None = None, **fields) -> WatchlistEntryRecord:
    fields.setdefault("media_kind", "movie")
    return WatchlistEntryRecord(id=str(uuid.uuid4()), catalog_id=catalog_id, title=title, year=year, **fields)


@pytest.fixture
def user_id():
    return TEST_USER_ID


@pytest.fixture
def catalog():
    return FakeCatalog(
        {
            "Arrival": [make_result(329865, "Arrival", 2016, popularity=40.0)],
            "Dune": [
                make_result(438631, "Dune", 2021, popularity=90.0),
                make_result(841, "Dune", 1984, popularity=20.0),
                make_result(90228, "Dune: Prophecy", 2024, media_kind="series", popularity=60.0),
            ],
            "Severance": [make_result(95396, "Severance", 2022, media_kind="series", popularity=70.0)],
            "The Matrix": [make_result(603, "The Matrix", 1999, popularity=80.0)],
        }
    )


@pytest.fixture
def store():
    return InMemoryWatchlistStore()
