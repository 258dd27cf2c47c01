from .schemas import PreviewItem
from .store import WatchlistEntryRecord


def _title_key(title: str | None) -> str:
    return " ".join(str(title or "").casefold().split())


class DuplicateIndex:
    """Lookup of a user's existing entries by catalog identity and by title/year."""

    def __init__(self, entries: list[WatchlistEntryRecord] | None = None):
        self.by_id: dict[str, WatchlistEntryRecord] = {}
        self.by_catalog: dict[tuple[str, int], WatchlistEntryRecord] = {}
        self.by_title: dict[tuple[str, int | None], WatchlistEntryRecord] = {}
        for entry in entries or ():
            self.add(entry)

    def add(self, entry: WatchlistEntryRecord) -> None:
        self.by_id[entry.id] = entry
        self.by_catalog.setdefault((entry.media_kind, entry.catalog_id), entry)
        self.by_title.setdefault((_title_key(entry.title), entry.year), entry)

    def replace(self, entry: WatchlistEntryRecord) -> None:
        previous = self.by_id.get(entry.id)
        self.by_id[entry.id] = entry
        for mapping in (self.by_catalog, self.by_title):
            for key, value in list(mapping.items()):
                if previous is not None and value is previous:
                    mapping[key] = entry

    def get(self, entry_id: str | None) -> WatchlistEntryRecord | None:
        if not entry_id:
            return None
        return self.by_id.get(entry_id)

    def find_by_catalog(self, media_kind: str, catalog_id: int) -> WatchlistEntryRecord | None:
        return self.by_catalog.get((media_kind, catalog_id))

    def find_by_title(self, title: str, year: int | None) -> WatchlistEntryRecord | None:
        key = _title_key(title)
        if not key:
            return None
        return self.by_title.get((key, year))


def find_existing(item: PreviewItem, index: DuplicateIndex) -> WatchlistEntryRecord | None:
    selected = item.selected_candidate()
    if selected is not None:
        # An explicit pick identifies the work, the row's own title and id hint no longer apply.
        existing = index.find_by_catalog(selected.media_kind, selected.catalog_id)
        return existing or index.find_by_title(selected.title, selected.year)

    # The top candidate stands in for the selection until the user picks one.
    candidate = item.match_candidates[0] if item.match_candidates else None
    if candidate is not None:
        existing = index.find_by_catalog(candidate.media_kind, candidate.catalog_id)
        if existing is not None:
            return existing

    if item.catalog_id_hint is not None:
        kinds = (item.media_kind_hint,) if item.media_kind_hint else ("movie", "series")
        for kind in kinds:
            existing = index.find_by_catalog(kind, item.catalog_id_hint)
            if existing is not None:
                return existing

    existing = index.find_by_title(item.original_title, item.original_year)
    if existing is None and candidate is not None:
        existing = index.find_by_title(candidate.title, candidate.year)
    return existing


def detect_duplicates(items: list[PreviewItem], entries: list[WatchlistEntryRecord]) -> int:
    """Flag items that collide with an existing entry. Returns how many were flagged."""
    index = DuplicateIndex(entries)
    flagged = 0
    for item in items:
        existing = find_existing(item, index)
        item.has_existing_entry = existing is not None
        item.existing_entry_id = existing.id if existing is not None else None
        if existing is not None:
            flagged += 1
    return flagged
