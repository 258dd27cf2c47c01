import codecs
import csv
from html import unescape
import io
import json
import logging
import math
from pathlib import PurePosixPath
import re

from .errors import FormatError, PayloadTooLarge
from .schemas import ExportFormat, RawRow

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPES = {"application/json", "text/json", "application/x-json"}
CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "text/x-csv",
    "application/x-csv",
    "text/comma-separated-values",
    "application/vnd.ms-excel",
}
# ".txt" is accepted but has to be sniffed.
ACCEPTED_EXTENSIONS: dict[str, ExportFormat | None] = {".csv": "csv", ".json": "json", ".txt": None}
BINARY_SIGNATURES = (
    b"%PDF",
    b"PK\x03\x04",
    b"\x89PNG",
    b"GIF8",
    b"\xff\xd8\xff",
    b"\xd0\xcf\x11\xe0",
    b"\x1f\x8b",
)
CSV_DELIMITERS = (",", ";", "\t", "|")

FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "title": (
        "title", "name", "movie", "moviename", "movietitle", "film", "filmname", "filmtitle",
        "show", "showname", "showtitle", "series", "seriesname", "seriestitle", "primarytitle",
    ),
    "year": ("year", "releaseyear", "yearreleased", "released", "releasedate", "firstairdate"),
    "status": ("status", "watched", "state", "watchstatus", "watchedstatus", "progress", "list"),
    "rating": ("rating", "score", "myrating", "yourrating", "userrating", "personalrating", "stars"),
    "notes": ("notes", "note", "comment", "comments", "review", "memo"),
    "date_watched": (
        "datewatched", "watcheddate", "watchedat", "watchedon", "lastwatched",
        "datecompleted", "completedat", "completedon", "datefinished",
    ),
    "date_added": ("dateadded", "addedat", "addedon", "added", "createdat", "created", "date"),
    "streaming_providers": (
        "streamingproviders", "providers", "provider", "streaming", "streamingservices",
        "services", "service", "platforms", "platform", "wheretowatch",
    ),
    "catalog_id": ("catalogid", "tmdbid", "tmdb"),
    "media_kind": ("mediakind", "mediatype", "type", "kind", "tmdbtype", "contenttype"),
}
HEADER_TO_FIELD = {alias: name for name, aliases in FIELD_SYNONYMS.items() for alias in aliases}
# Files carrying our own export identity headers already hold 10-point ratings.
EXPORT_IDENTITY_HEADERS = {"catalogid", "mediakind"}

RATING_RE = re.compile(r"^(?P<value>-?\d+(?:[.,]\d+)?)\s*(?:/\s*(?P<scale>\d+(?:[.,]\d+)?))?$")
STAR_CHARS = {"★": 1.0, "½": 0.5}


def _header_key(name: object) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name or "").lower())


def _coerce_year(value: str | int | None) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1870 <= value <= 2200 else None
    raw = str(value or "").strip()
    if not raw:
        return None
    match = re.search(r"(\d{4})", raw)
    if not match:
        return None
    year = int(match.group(1))
    return year if 1870 <= year <= 2200 else None


def _split_title_year(value: str) -> tuple[str, int | None]:
    text = unescape(str(value or "")).strip()
    if not text:
        return "", None
    for pattern in (
        r"^(?P<title>.+?),\s*(?P<year>\d{4})$",
        r"^(?P<title>.+?)\s+\((?P<year>\d{4})\)$",
    ):
        match = re.match(pattern, text)
        if not match:
            continue
        title = (match.group("title") or "").strip()
        year = _coerce_year(match.group("year"))
        if title:
            return title, year
    return text, None


def _parse_positive_int(value: str | int | None) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = int(raw)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _clean_text(value: object) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value).strip() or None


def _clean_notes(value: object) -> str | None:
    # Notes are kept verbatim, only all-blank values are dropped.
    if value is None or isinstance(value, (dict, list)):
        return None
    text = value if isinstance(value, str) else str(value)
    return text if text.strip() else None


def _parse_rating(value: object) -> tuple[float | None, int | None, str | None]:
    """Return ``(rating, scale, note)`` for a raw rating cell."""
    if value is None or isinstance(value, bool):
        return None, None, None
    if isinstance(value, (int, float)):
        try:
            rating = float(value)
        except OverflowError:
            rating = math.inf
        if not math.isfinite(rating):
            return None, None, "Invalid rating (not a finite number)"
        return rating, None, None
    raw = str(value).strip()
    if not raw:
        return None, None, None

    if all(char in STAR_CHARS for char in raw):
        return sum(STAR_CHARS[char] for char in raw), 5, None

    match = RATING_RE.match(raw)
    if not match:
        return None, None, f"Invalid rating '{raw}'"
    rating = float(match.group("value").replace(",", "."))
    scale_raw = match.group("scale")
    if scale_raw is None:
        return rating, None, None
    scale = float(scale_raw.replace(",", "."))
    if scale <= 0 or not scale.is_integer():
        return None, None, f"Invalid rating scale in '{raw}'"
    return rating, int(scale), None


def _raw_providers(value: object) -> str | tuple[str, ...] | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value if item is not None and not isinstance(item, (dict, list)))
    return _clean_text(value)


def _build_row(
    values: dict[str, object],
    extras: dict[str, str],
    *,
    row_number: int,
    note: str | None = None,
    rating_scale: int | None = None,
) -> RawRow:
    title = unescape(_clean_text(values.get("title")) or "").strip()
    year = _coerce_year(values.get("year"))
    if title and year is None:
        title, year = _split_title_year(title)

    rating, explicit_scale, rating_note = _parse_rating(values.get("rating"))
    if not title:
        note = note or "Missing title"
    note = note or rating_note

    return RawRow(
        title=title,
        year=year,
        status=_clean_text(values.get("status")),
        rating=rating,
        notes=_clean_notes(values.get("notes")),
        date_watched=_clean_text(values.get("date_watched")),
        date_added=_clean_text(values.get("date_added")),
        streaming_providers=_raw_providers(values.get("streaming_providers")),
        catalog_id=_parse_positive_int(values.get("catalog_id")),
        media_kind=_clean_text(values.get("media_kind")),
        rating_scale=explicit_scale or (rating_scale if rating is not None else None),
        row_number=row_number,
        parse_note=note,
        extras=extras,
    )


def check_payload_size(raw: bytes, max_bytes: int) -> None:
    if len(raw) > max_bytes:
        raise PayloadTooLarge(len(raw), max_bytes)


def _looks_binary(raw: bytes) -> bool:
    sample = raw[:4096]
    if not sample:
        return False
    if any(sample.startswith(signature) for signature in BINARY_SIGNATURES):
        return True
    if b"\x00" in sample:
        return True
    control = sum(1 for byte in sample if (byte < 32 and byte not in (9, 10, 13)) or byte == 127)
    return control / len(sample) > 0.05


def decode_text(raw: bytes) -> str:
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        try:
            return raw.decode("utf-16")
        except UnicodeDecodeError:
            raise FormatError("Could not decode the uploaded file as UTF-16 text.")
    if _looks_binary(raw):
        raise FormatError("The uploaded file is not a CSV or JSON text file.")
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise FormatError("Could not decode the uploaded file.")


def _sniff_format(raw: bytes) -> ExportFormat:
    body = raw[len(codecs.BOM_UTF8):] if raw.startswith(codecs.BOM_UTF8) else raw
    stripped = body.lstrip()
    if stripped[:1] in (b"{", b"["):
        return "json"
    return "csv"


def detect_format(raw: bytes, content_type: str | None = None, filename: str | None = None) -> ExportFormat:
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if media_type in JSON_CONTENT_TYPES:
        return "json"
    if media_type in CSV_CONTENT_TYPES:
        return "csv"

    suffix = PurePosixPath((filename or "").replace("\\", "/")).suffix.lower()
    if suffix:
        if suffix not in ACCEPTED_EXTENSIONS:
            raise FormatError(f"Unsupported file type '{suffix}'. Upload a .csv, .json or .txt file.")
        declared = ACCEPTED_EXTENSIONS[suffix]
        if declared:
            return declared
    return _sniff_format(raw)


def _pick_delimiter(text: str) -> str:
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    counts = {delimiter: first_line.count(delimiter) for delimiter in CSV_DELIMITERS}
    best = max(CSV_DELIMITERS, key=lambda delimiter: counts[delimiter])
    return best if counts[best] > 0 else ","


def parse_csv_text(text: str) -> list[RawRow]:
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=_pick_delimiter(text))
    rows: list[RawRow] = []
    try:
        header: list[str] | None = None
        for record in reader:
            if any(cell.strip() for cell in record):
                header = record
                break
        if header is None:
            raise FormatError("The CSV file has no header row.")

        columns: list[str | None] = []
        for name in header:
            field = HEADER_TO_FIELD.get(_header_key(name))
            columns.append(None if field in columns else field)
        if "title" not in columns:
            raise FormatError("Could not find a title column. Expected a header such as 'title' or 'name'.")
        rating_scale = 10 if EXPORT_IDENTITY_HEADERS <= {_header_key(name) for name in header} else None

        for row_number, record in enumerate(reader, start=2):
            if not any(cell.strip() for cell in record):
                continue
            note = None
            if len(record) != len(header):
                note = f"Row {row_number} has {len(record)} values but expected {len(header)}"
            values: dict[str, object] = {}
            extras: dict[str, str] = {}
            for index, cell in enumerate(record):
                if index >= len(header):
                    extras[f"column_{index + 1}"] = cell
                elif columns[index]:
                    values[columns[index]] = cell
                else:
                    extras[header[index]] = cell
            rows.append(
                _build_row(values, extras, row_number=row_number, note=note, rating_scale=rating_scale)
            )
    except csv.Error as exc:
        raise FormatError(f"Could not read the CSV file: {exc}")
    return rows


def parse_json_text(text: str) -> list[RawRow]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FormatError(f"Invalid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})")

    if isinstance(data, dict):
        items = next((value for value in data.values() if isinstance(value, list)), None)
        if items is None:
            raise FormatError("The JSON object does not contain an array of watchlist items.")
    elif isinstance(data, list):
        items = data
    else:
        raise FormatError("JSON must be an array of watchlist items or an object containing one.")

    rows: list[RawRow] = []
    for row_number, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            rows.append(RawRow(title="", row_number=row_number, parse_note=f"Item {row_number} is not an object"))
            continue
        values: dict[str, object] = {}
        extras: dict[str, str] = {}
        for key, value in item.items():
            field = HEADER_TO_FIELD.get(_header_key(key))
            if field and field not in values:
                values[field] = value
            else:
                extras[str(key)] = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        rating_scale = 10 if EXPORT_IDENTITY_HEADERS <= {_header_key(key) for key in item} else None
        rows.append(_build_row(values, extras, row_number=row_number, rating_scale=rating_scale))
    return rows


def parse_upload(
    raw: bytes,
    *,
    max_bytes: int,
    content_type: str | None = None,
    filename: str | None = None,
) -> tuple[ExportFormat, list[RawRow]]:
    check_payload_size(raw, max_bytes)
    if not raw.strip():
        raise FormatError("The uploaded file is empty.")

    file_format = detect_format(raw, content_type=content_type, filename=filename)
    text = decode_text(raw)
    rows = parse_json_text(text) if file_format == "json" else parse_csv_text(text)
    if not rows:
        raise FormatError("No watchlist rows were found in the uploaded file.")

    malformed = sum(1 for row in rows if row.parse_note)
    logger.info(
        "Parsed %s upload (filename=%s, rows=%s, malformed=%s)",
        file_format, filename, len(rows), malformed,
    )
    return file_format, rows
