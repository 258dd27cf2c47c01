class WatchlistImportError(Exception):
    """Base class for import/export failures."""

    code = "import_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FormatError(WatchlistImportError):
    """The uploaded file as a whole cannot be parsed."""

    code = "format_error"


class PayloadTooLarge(FormatError):
    code = "payload_too_large"

    def __init__(self, size: int, limit: int):
        super().__init__(f"File is too large ({size} bytes). The limit is {limit} bytes.")
        self.size = size
        self.limit = limit


class RowError(WatchlistImportError):
    """One row is defective. Reported on the preview item, never raised to the caller."""

    code = "row_error"


class LookupFailed(RowError):
    code = "lookup_failed"

    def __init__(self, message: str = "lookup failed"):
        super().__init__(message)


class NoMatchSelected(WatchlistImportError):
    code = "no_match_selected"

    def __init__(self, message: str = "No catalog match selected for this item"):
        super().__init__(message)


class ConflictWithoutStrategy(WatchlistImportError):
    code = "conflict_without_strategy"

    def __init__(self, message: str = "Already in watchlist and no resolution was supplied; skipped"):
        super().__init__(message)


class EntryNotFound(WatchlistImportError):
    code = "entry_not_found"

    def __init__(self, entry_id):
        super().__init__(f"Existing watchlist entry {entry_id} was not found")
        self.entry_id = entry_id
