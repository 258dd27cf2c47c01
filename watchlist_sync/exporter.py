import csv
from datetime import date
import io
import json
from typing import Iterable, Iterator

from .schemas import ExportFormat
from .store import WatchlistEntryRecord

EXPORT_COLUMNS = (
    "title",
    "year",
    "mediaKind",
    "status",
    "rating",
    "notes",
    "dateAdded",
    "dateCompleted",
    "catalogId",
    "streamingProviders",
)
PROVIDER_SEPARATOR = ";"
CONTENT_TYPES: dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}


def _format_rating(value: float | None) -> float | int | None:
    if value is None:
        return None
    return int(value) if float(value).is_integer() else value


def entry_to_export_dict(entry: WatchlistEntryRecord) -> dict:
    """Logical export record. Optional fields that are unset are left out."""
    record: dict = {
        "title": entry.title,
        "year": entry.year,
        "mediaKind": entry.media_kind,
        "status": entry.status,
        "rating": _format_rating(entry.rating),
        "notes": entry.notes,
        "dateAdded": entry.date_added.isoformat() if entry.date_added else None,
        "dateCompleted": entry.date_completed.isoformat() if entry.date_completed else None,
        "catalogId": entry.catalog_id,
        "streamingProviders": list(entry.streaming_providers),
    }
    return {key: value for key, value in record.items() if value is not None}


def _csv_row(entry: WatchlistEntryRecord) -> list[str]:
    record = entry_to_export_dict(entry)
    providers = PROVIDER_SEPARATOR.join(record.pop("streamingProviders", []))
    values = {**record, "streamingProviders": providers}
    return ["" if values.get(column) is None else str(values[column]) for column in EXPORT_COLUMNS]


def iter_csv(entries: Iterable[WatchlistEntryRecord]) -> Iterator[bytes]:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    yield buffer.getvalue().encode("utf-8")
    for entry in entries:
        buffer.seek(0)
        buffer.truncate(0)
        writer.writerow(_csv_row(entry))
        yield buffer.getvalue().encode("utf-8")


def iter_json(entries: Iterable[WatchlistEntryRecord]) -> Iterator[bytes]:
    yield b"["
    first = True
    for entry in entries:
        prefix = "\n  " if first else ",\n  "
        first = False
        yield (prefix + json.dumps(entry_to_export_dict(entry), ensure_ascii=False)).encode("utf-8")
    yield b"\n]\n" if not first else b"]\n"


def iter_export(entries: Iterable[WatchlistEntryRecord], file_format: ExportFormat) -> Iterator[bytes]:
    if file_format == "csv":
        return iter_csv(entries)
    if file_format == "json":
        return iter_json(entries)
    raise ValueError(f"Unsupported export format: {file_format}")


def serialize(entries: Iterable[WatchlistEntryRecord], file_format: ExportFormat) -> bytes:
    return b"".join(iter_export(entries, file_format))


def export_filename(file_format: ExportFormat, today: date | None = None) -> str:
    return f"watchlist-{(today or date.today()).isoformat()}.{file_format}"
