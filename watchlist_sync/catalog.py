from dataclasses import dataclass
from typing import Protocol

from . import tmdb
from .parsers import _coerce_year
from .schemas import MediaKind

TMDB_MEDIA_KINDS: dict[str, MediaKind] = {"movie": "movie", "tv": "series"}


@dataclass(frozen=True)
class CatalogResult:
    catalog_id: int
    media_kind: MediaKind
    title: str
    year: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    overview: str | None = None
    popularity: float | None = None


class CatalogSearch(Protocol):
    async def search(self, query: str) -> list[CatalogResult]:
        """Unscored catalog hits for a free-text query, in catalog order."""
        ...


def _optional_str(value) -> str | None:
    text = str(value or "").strip()
    return text or None


def catalog_result_from_tmdb(row: dict) -> CatalogResult | None:
    media_kind = TMDB_MEDIA_KINDS.get(str(row.get("media_type") or ""))
    catalog_id = row.get("id")
    if media_kind is None or not isinstance(catalog_id, int) or catalog_id <= 0:
        return None
    title = str(row.get("title") or row.get("name") or row.get("original_title") or row.get("original_name") or "")
    if not title.strip():
        return None
    popularity = row.get("popularity")
    try:
        popularity = float(popularity) if popularity is not None else None
    except (TypeError, ValueError):
        popularity = None
    return CatalogResult(
        catalog_id=catalog_id,
        media_kind=media_kind,
        title=title.strip(),
        year=_coerce_year(str(row.get("release_date") or row.get("first_air_date") or "")),
        poster_path=_optional_str(row.get("poster_path")),
        backdrop_path=_optional_str(row.get("backdrop_path")),
        overview=_optional_str(row.get("overview")),
        popularity=popularity,
    )


class TmdbCatalog:
    """Catalog search over TMDB's multi search. People results are skipped."""

    async def search(self, query: str) -> list[CatalogResult]:
        data = await tmdb.search_multi(query)
        results: list[CatalogResult] = []
        for row in data.get("results", []):
            if not isinstance(row, dict):
                continue
            result = catalog_result_from_tmdb(row)
            if result is not None:
                results.append(result)
        return results
