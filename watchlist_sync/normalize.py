"""Row normalization: free-form source values to canonical preview fields.

Everything here is a pure function of its input so the same row always
normalizes to the same preview item.
"""

from datetime import date, datetime
import re

from .schemas import MediaKind, PreviewItem, RawRow, WatchStatus

STATUS_SYNONYMS: dict[str, WatchStatus] = {}
for _status, _phrases in (
    (
        "not_watched",
        (
            "not watched", "notwatched", "unwatched", "not started", "plan to watch", "plantowatch",
            "planned", "planning", "want to watch", "wanttowatch", "to watch", "towatch", "watchlist",
            "queued", "queue", "backlog", "to do", "todo", "later", "no", "false", "0", "n",
        ),
    ),
    (
        "watching",
        (
            "watching", "currently watching", "in progress", "inprogress", "started", "ongoing",
            "on hold", "onhold", "paused", "rewatching", "partially watched", "halfway",
        ),
    ),
    (
        "completed",
        (
            "completed", "complete", "watched", "seen", "done", "finished", "already watched",
            "yes", "true", "1", "y", "x",
        ),
    ),
):
    for _phrase in _phrases:
        STATUS_SYNONYMS[_phrase] = _status

STATUS_PROGRESS: dict[str, int] = {"not_watched": 0, "watching": 1, "completed": 2}

MEDIA_KIND_SYNONYMS: dict[str, MediaKind] = {
    "movie": "movie",
    "movies": "movie",
    "film": "movie",
    "feature": "movie",
    "series": "series",
    "tv": "series",
    "tv series": "series",
    "tvseries": "series",
    "tv show": "series",
    "show": "series",
    "miniseries": "series",
}

LOCALE_DATE_FORMATS = (
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)
PROVIDER_SPLIT_RE = re.compile(r"[,;|]")


def _collapse(value: str) -> str:
    text = re.sub(r"[^\w\s]", " ", value.lower()).replace("_", " ")
    return re.sub(r"\s+", " ", text).strip()


def normalize_status(value: str | None) -> tuple[WatchStatus, bool]:
    """Map free text to a canonical status. The flag is False when the text was not recognized."""
    if value is None or not value.strip():
        return "not_watched", True
    collapsed = _collapse(value)
    status = STATUS_SYNONYMS.get(collapsed) or STATUS_SYNONYMS.get(collapsed.replace(" ", ""))
    if status is None:
        return "not_watched", False
    return status, True


def more_progressed(first: str, second: str) -> str:
    return first if STATUS_PROGRESS.get(first, 0) >= STATUS_PROGRESS.get(second, 0) else second


def normalize_rating(value: float | None, scale: int | None = None) -> float | None:
    if value is None:
        return None
    if scale:
        scaled = value * 10.0 / scale
    elif value <= 5:
        scaled = value * 2
    else:
        scaled = value
    if scaled < 0 or scaled > 10:
        return None
    scaled = round(float(scaled), 2)
    return float(int(scaled)) if scaled.is_integer() else scaled


def normalize_date(value: str | None) -> date | None:
    raw = (value or "").strip()
    if not raw:
        return None
    iso = raw[:-1] + "+00:00" if raw.endswith(("Z", "z")) else raw
    try:
        return date.fromisoformat(iso)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        pass
    for fmt in LOCALE_DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def parse_streaming_providers(value: str | tuple[str, ...] | list[str] | None) -> list[str]:
    if not value:
        return []
    parts = PROVIDER_SPLIT_RE.split(value) if isinstance(value, str) else list(value)
    providers: list[str] = []
    seen: set[str] = set()
    for part in parts:
        name = str(part).strip()
        key = name.casefold()
        if not name or key in seen:
            continue
        seen.add(key)
        providers.append(name)
    return providers


def normalize_media_kind(value: str | None) -> MediaKind | None:
    if not value:
        return None
    return MEDIA_KIND_SYNONYMS.get(_collapse(value))


def normalize_row(row: RawRow) -> PreviewItem:
    warnings: list[str] = []

    status, recognized = normalize_status(row.status)
    notes = row.notes
    if not recognized:
        warnings.append(f"unrecognized status '{row.status}'")
        preserved = f"Imported status: {row.status.strip()}"
        notes = f"{notes}\n\n{preserved}" if notes else preserved

    rating = normalize_rating(row.rating, row.rating_scale)
    if row.rating is not None and rating is None:
        warnings.append(f"rating {row.rating:g} is outside the 0-10 range and was dropped")

    date_added = normalize_date(row.date_added)
    if row.date_added and date_added is None:
        warnings.append(f"could not parse date '{row.date_added}'")
    date_watched = normalize_date(row.date_watched)
    if row.date_watched and date_watched is None:
        warnings.append(f"could not parse date '{row.date_watched}'")

    if row.parse_note:
        warnings.insert(0, row.parse_note)

    return PreviewItem(
        row_number=row.row_number,
        original_title=row.title,
        original_year=row.year,
        suggested_status=status,
        rating=rating,
        notes=notes,
        date_added=date_added or date_watched,
        date_completed=date_watched,
        streaming_providers=parse_streaming_providers(row.streaming_providers),
        media_kind_hint=normalize_media_kind(row.media_kind),
        catalog_id_hint=row.catalog_id,
        error=warnings[0] if warnings else None,
        warnings=warnings,
    )
