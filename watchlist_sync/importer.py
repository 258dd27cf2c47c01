import logging

from .catalog import CatalogSearch
from .config import ImportSettings
from .duplicates import detect_duplicates
from .matching import CandidateMatcher, match_items
from .normalize import normalize_row
from .parsers import parse_upload
from .schemas import ParseFailure, PreviewResponse, PreviewSummary
from .store import WatchlistEntryRecord

logger = logging.getLogger(__name__)


async def build_preview(
    raw: bytes,
    *,
    catalog: CatalogSearch,
    existing_entries: list[WatchlistEntryRecord],
    settings: ImportSettings,
    filename: str | None = None,
    content_type: str | None = None,
) -> PreviewResponse:
    """Parse, normalize, match and duplicate-check an uploaded watchlist file.

    Only a FormatError escapes; every per-row problem is reported on the row.
    """
    file_format, rows = parse_upload(
        raw,
        max_bytes=settings.max_upload_bytes,
        content_type=content_type,
        filename=filename,
    )
    items = [normalize_row(row) for row in rows]

    matcher = CandidateMatcher(
        catalog,
        max_candidates=settings.max_candidates,
        min_confidence=settings.min_confidence,
        timeout=settings.lookup_timeout,
    )
    lookup_failures = await match_items(matcher, items, concurrency=settings.match_concurrency)
    duplicates = detect_duplicates(items, existing_entries)

    summary = PreviewSummary(
        format=file_format,
        total_rows=len(items),
        parse_failures=[
            ParseFailure(row_number=row.row_number, message=row.parse_note)
            for row in rows
            if row.parse_note
        ],
        lookup_failures=lookup_failures,
        duplicates=duplicates,
    )
    logger.info(
        "Built import preview (rows=%s, parse_failures=%s, lookup_failures=%s, duplicates=%s)",
        summary.total_rows, len(summary.parse_failures), lookup_failures, duplicates,
    )
    return PreviewResponse(items=items, summary=summary)
