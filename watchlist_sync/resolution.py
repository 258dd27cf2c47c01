"""Commit of a reviewed import batch against the user's watchlist.

Items are committed one at a time and each one independently: a failing item
is recorded in the result and the batch carries on. Every submitted item ends
up in exactly one of the result counters.
"""

import asyncio
import logging

from .duplicates import DuplicateIndex, _title_key, find_existing
from .errors import ConflictWithoutStrategy, EntryNotFound, NoMatchSelected, WatchlistImportError
from .normalize import more_progressed
from .schemas import CandidateMatch, ImportIssue, ImportOptions, ImportResult, PreviewItem, Resolution
from .store import NewWatchlistEntry, WatchlistEntryRecord, WatchlistStore

logger = logging.getLogger(__name__)

OVERWRITE_FIELDS = ("status", "rating", "notes", "date_added")


class ResolutionLookup:
    def __init__(self, resolutions: list[Resolution]):
        self.by_index: dict[int, Resolution] = {}
        self.by_title: dict[tuple[str, int | None], Resolution] = {}
        for resolution in resolutions:
            if resolution.item_index is not None:
                self.by_index[resolution.item_index] = resolution
            else:
                self.by_title[(_title_key(resolution.title), resolution.year)] = resolution

    def get(self, position: int, item: PreviewItem) -> Resolution | None:
        resolution = self.by_index.get(position)
        if resolution is not None:
            return resolution
        return self.by_title.get((_title_key(item.original_title), item.original_year))


def _completion_date(status: str, existing: WatchlistEntryRecord, item: PreviewItem) -> dict:
    if status == "completed" and existing.date_completed is None and item.date_completed is not None:
        return {"date_completed": item.date_completed}
    return {}


def build_merge_update(existing: WatchlistEntryRecord, item: PreviewItem, resolution: Resolution | None) -> dict:
    """Fields to change on ``existing``; only fields listed in ``merge_fields`` come from the import.

    Status is the exception: unless listed, it becomes whichever side shows more progress.
    """
    take = resolution.merge_fields if resolution else set()
    update: dict = {}

    if "status" in take:
        status = item.suggested_status
    else:
        status = more_progressed(existing.status, item.suggested_status)
    if status != existing.status:
        update["status"] = status

    if "rating" in take and item.rating is not None:
        update["rating"] = item.rating

    if "notes" in take and item.notes:
        append = resolution is not None and resolution.notes_mode == "append"
        if append and existing.notes and item.notes not in existing.notes:
            update["notes"] = f"{existing.notes}\n\n{item.notes}"
        elif not append or not existing.notes:
            update["notes"] = item.notes

    if "date_added" in take and item.date_added is not None:
        update["date_added"] = item.date_added

    if "streaming_providers" in take and item.streaming_providers:
        update["streaming_providers"] = list(item.streaming_providers)

    update.update(_completion_date(status, existing, item))
    return {
        name: value
        for name, value in update.items()
        if value != (list(existing.streaming_providers) if name == "streaming_providers" else getattr(existing, name))
    }


def build_overwrite_update(existing: WatchlistEntryRecord, item: PreviewItem) -> dict:
    update = {
        "status": item.suggested_status,
        "rating": item.rating,
        "notes": item.notes,
        "date_added": item.date_added,
    }
    update.update(_completion_date(item.suggested_status, existing, item))
    return update


class ResolutionEngine:
    def __init__(self, store: WatchlistStore, user_id: str, options: ImportOptions | None = None):
        self.store = store
        self.user_id = user_id
        self.options = options or ImportOptions()

    async def commit(self, items: list[PreviewItem], resolutions: list[Resolution] | None = None) -> ImportResult:
        # Once started, a commit is not interrupted by the caller going away.
        task = asyncio.ensure_future(self._commit_all(items, resolutions or []))
        return await asyncio.shield(task)

    async def _commit_all(self, items: list[PreviewItem], resolutions: list[Resolution]) -> ImportResult:
        result = ImportResult()
        lookup = ResolutionLookup(resolutions)

        try:
            index: DuplicateIndex | None = DuplicateIndex(await self.store.list_entries(self.user_id))
        except Exception:
            logger.exception("Could not load watchlist snapshot for user %s", self.user_id)
            index = None

        for position, item in enumerate(items):
            if item.should_skip:
                result.skipped += 1
                continue
            if index is None:
                self._record_failure(result, position, item, "store_unavailable", "Watchlist store is unavailable")
                continue
            try:
                outcome = await self._commit_item(position, item, lookup.get(position, item), index, result)
            except WatchlistImportError as exc:
                self._record_failure(result, position, item, exc.code, exc.message)
            except Exception as exc:
                logger.exception("Failed to commit import item %s (%r)", position, item.original_title)
                self._record_failure(result, position, item, "store_error", str(exc) or exc.__class__.__name__)
            else:
                setattr(result, outcome, getattr(result, outcome) + 1)

        logger.info(
            "Import committed for user %s: imported=%s skipped=%s merged=%s overwritten=%s failed=%s",
            self.user_id, result.imported, result.skipped, result.merged, result.overwritten, result.failed,
        )
        return result

    def _record_failure(self, result: ImportResult, position: int, item: PreviewItem, code: str, message: str) -> None:
        result.failed += 1
        result.errors.append(ImportIssue(item_index=position, title=item.original_title, code=code, message=message))

    def _choose_candidate(self, item: PreviewItem) -> CandidateMatch | None:
        if item.selected_match_index is not None:
            candidate = item.selected_candidate()
            if candidate is None:
                raise NoMatchSelected(
                    f"Selected match {item.selected_match_index} is out of range "
                    f"({len(item.match_candidates)} candidates)"
                )
            return candidate
        if not item.match_candidates:
            if self.options.skip_unmatched:
                return None
            raise NoMatchSelected("No catalog match is available for this item")
        if self.options.auto_select_top:
            return item.match_candidates[0]
        raise NoMatchSelected()

    def _new_entry(self, item: PreviewItem, candidate: CandidateMatch) -> NewWatchlistEntry:
        return NewWatchlistEntry(
            user_id=self.user_id,
            catalog_id=candidate.catalog_id,
            media_kind=candidate.media_kind,
            title=candidate.title,
            year=candidate.year,
            poster_path=candidate.poster_path,
            status=item.suggested_status,
            rating=item.rating,
            notes=item.notes,
            date_added=item.date_added,
            date_completed=item.date_completed if item.suggested_status == "completed" else None,
            streaming_providers=tuple(item.streaming_providers),
        )

    async def _commit_item(
        self,
        position: int,
        item: PreviewItem,
        resolution: Resolution | None,
        index: DuplicateIndex,
        result: ImportResult,
    ) -> str:
        existing: WatchlistEntryRecord | None = None
        if item.existing_entry_id:
            existing = index.get(item.existing_entry_id)
            if existing is None:
                raise EntryNotFound(item.existing_entry_id)
            if item.selected_candidate() is not None:
                # The preview keyed the entry on the top candidate; the user's pick decides.
                existing = find_existing(item, index)
        elif item.has_existing_entry:
            existing = find_existing(item, index)

        if existing is None:
            candidate = self._choose_candidate(item)
            if candidate is None:
                return "skipped"
            # Added after the preview was built, or earlier in this batch.
            existing = index.find_by_catalog(candidate.media_kind, candidate.catalog_id)
            if existing is None:
                created = await self.store.create(self._new_entry(item, candidate))
                index.add(created)
                return "imported"

        strategy = resolution.strategy if resolution is not None else self.options.default_strategy
        if strategy is None:
            conflict = ConflictWithoutStrategy()
            logger.warning(
                "Import item %s (%r) collides with entry %s and has no resolution; skipping",
                position, item.original_title, existing.id,
            )
            result.warnings.append(
                ImportIssue(item_index=position, title=item.original_title, code=conflict.code, message=conflict.message)
            )
            return "skipped"
        if strategy == "skip":
            return "skipped"

        if strategy == "overwrite":
            updated = await self.store.update(existing.id, build_overwrite_update(existing, item))
            index.replace(updated)
            return "overwritten"

        fields = build_merge_update(existing, item, resolution)
        if fields:
            updated = await self.store.update(existing.id, fields)
            index.replace(updated)
        return "merged"
