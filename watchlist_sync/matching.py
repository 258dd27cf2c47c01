import asyncio
from collections import Counter
from difflib import SequenceMatcher
from html import unescape
import logging
import re
import unicodedata

from .catalog import CatalogResult, CatalogSearch
from .config import MAX_CANDIDATES_CEILING
from .errors import LookupFailed
from .schemas import CandidateMatch, MediaKind, PreviewItem

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 0.7
YEAR_WEIGHT = 0.3
STOP_WORDS = frozenset(
    {"the", "a", "an", "of", "and", "in", "on", "at", "to", "for", "la", "le", "les", "el", "los", "der", "die", "das"}
)
STOP_WORD_WEIGHT = 0.25
FUZZY_TOKEN_RATIO = 0.8


def _normalize_title_for_match(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", unescape(str(value or "")))
    normalized = "".join(char for char in normalized if not unicodedata.combining(char)).lower()
    normalized = normalized.replace("&", " and ")
    normalized = re.sub(r"[\W_]+", " ", normalized)
    return re.sub(r"\s+", " ", normalized).strip()


def _token_weight(token: str) -> float:
    return STOP_WORD_WEIGHT if token in STOP_WORDS else 1.0


def title_similarity(left: str, right: str) -> float:
    """Weighted token overlap (Dice) between two titles, in [0, 1]."""
    left_tokens = _normalize_title_for_match(left).split()
    right_tokens = _normalize_title_for_match(right).split()
    if not left_tokens or not right_tokens:
        return 0.0
    # "Spider-Man" vs "Spiderman"
    if "".join(left_tokens) == "".join(right_tokens):
        return 1.0

    left_counts = Counter(left_tokens)
    right_counts = Counter(right_tokens)
    total = sum(_token_weight(token) for token in left_tokens) + sum(_token_weight(token) for token in right_tokens)

    shared = 0.0
    for token, count in left_counts.items():
        common = min(count, right_counts.get(token, 0))
        if common:
            shared += _token_weight(token) * common
            left_counts[token] -= common
            right_counts[token] -= common

    leftover_right = list(right_counts.elements())
    for token in left_counts.elements():
        best_index = -1
        best_ratio = 0.0
        for index, other in enumerate(leftover_right):
            ratio = SequenceMatcher(None, token, other).ratio()
            if ratio > best_ratio:
                best_index, best_ratio = index, ratio
        if best_index >= 0 and best_ratio >= FUZZY_TOKEN_RATIO:
            other = leftover_right.pop(best_index)
            shared += best_ratio * min(_token_weight(token), _token_weight(other))

    return min(1.0, 2.0 * shared / total)


def year_bonus(year: int | None, candidate_year: int | None) -> float:
    if year is None or candidate_year is None:
        return 0.0
    diff = abs(year - candidate_year)
    if diff == 0:
        return 1.0
    if diff == 1:
        return 0.5
    return 0.0


def compute_confidence(title: str, year: int | None, candidate_title: str, candidate_year: int | None) -> float:
    score = TITLE_WEIGHT * title_similarity(title, candidate_title) + YEAR_WEIGHT * year_bonus(year, candidate_year)
    return round(min(1.0, max(0.0, score)), 4)


def rank_candidates(
    title: str,
    year: int | None,
    results: list[CatalogResult],
    *,
    max_candidates: int = MAX_CANDIDATES_CEILING,
    min_confidence: float = 0.0,
    catalog_id_hint: int | None = None,
    media_kind_hint: MediaKind | None = None,
) -> list[CandidateMatch]:
    scored: list[tuple[tuple, CatalogResult, float]] = []
    seen: set[tuple[str, int]] = set()
    for position, result in enumerate(results):
        identity = (result.media_kind, result.catalog_id)
        if identity in seen:
            continue
        seen.add(identity)

        confidence = compute_confidence(title, year, result.title, result.year)
        if (
            catalog_id_hint is not None
            and result.catalog_id == catalog_id_hint
            and (media_kind_hint is None or result.media_kind == media_kind_hint)
        ):
            confidence = 1.0
        if confidence < min_confidence:
            continue

        kind_mismatch = 1 if media_kind_hint and result.media_kind != media_kind_hint else 0
        sort_key = (-confidence, kind_mismatch, -(result.popularity or 0.0), position)
        scored.append((sort_key, result, confidence))

    scored.sort(key=lambda item: item[0])
    limit = max(0, min(max_candidates, MAX_CANDIDATES_CEILING))
    return [
        CandidateMatch(
            catalog_id=result.catalog_id,
            media_kind=result.media_kind,
            title=result.title,
            year=result.year,
            poster_path=result.poster_path,
            backdrop_path=result.backdrop_path,
            overview=result.overview,
            confidence=confidence,
        )
        for _, result, confidence in scored[:limit]
    ]


class CandidateMatcher:
    def __init__(
        self,
        catalog: CatalogSearch,
        *,
        max_candidates: int = MAX_CANDIDATES_CEILING,
        min_confidence: float = 0.3,
        timeout: float = 8.0,
    ):
        self.catalog = catalog
        self.max_candidates = max_candidates
        self.min_confidence = min_confidence
        self.timeout = timeout

    async def match(
        self,
        title: str,
        year: int | None = None,
        *,
        catalog_id_hint: int | None = None,
        media_kind_hint: MediaKind | None = None,
    ) -> list[CandidateMatch]:
        """Scored candidates for one title. Raises LookupFailed if the catalog errors or times out."""
        query = (title or "").strip()
        if not query:
            return []
        try:
            results = await asyncio.wait_for(self.catalog.search(query), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Catalog lookup timed out after %ss (query=%r)", self.timeout, query)
            raise LookupFailed() from exc
        except Exception as exc:
            logger.warning("Catalog lookup failed (query=%r): %s", query, exc)
            raise LookupFailed() from exc
        return rank_candidates(
            query,
            year,
            results,
            max_candidates=self.max_candidates,
            min_confidence=self.min_confidence,
            catalog_id_hint=catalog_id_hint,
            media_kind_hint=media_kind_hint,
        )


def _item_lookup_key(item: PreviewItem) -> tuple:
    return (
        _normalize_title_for_match(item.original_title),
        item.original_year,
        item.catalog_id_hint,
        item.media_kind_hint,
    )


async def match_items(matcher: CandidateMatcher, items: list[PreviewItem], *, concurrency: int = 5) -> int:
    """Fill ``match_candidates`` on every item in place. Returns the number of failed lookups.

    Lookups run at most ``concurrency`` at a time. Results land in index-tagged
    slots so item order never depends on completion order. If the caller is
    cancelled, lookups already started are left to finish and their results
    are dropped.
    """
    # Resolve unique title/year pairs once, then fan out to duplicates.
    unique_items: list[PreviewItem] = []
    unique_keys: list[tuple] = []
    seen_unique: set[tuple] = set()
    for item in items:
        if not item.original_title.strip():
            continue
        key = _item_lookup_key(item)
        if key in seen_unique:
            continue
        seen_unique.add(key)
        unique_keys.append(key)
        unique_items.append(item)

    if not unique_items:
        return 0

    semaphore = asyncio.Semaphore(max(1, concurrency))
    results: list[list[CandidateMatch] | LookupFailed | None] = [None] * len(unique_items)

    async def _worker(index: int, item: PreviewItem) -> None:
        async with semaphore:
            try:
                results[index] = await matcher.match(
                    item.original_title,
                    item.original_year,
                    catalog_id_hint=item.catalog_id_hint,
                    media_kind_hint=item.media_kind_hint,
                )
            except LookupFailed as exc:
                results[index] = exc
            except Exception:
                logger.exception("Unexpected error while matching %r", item.original_title)
                results[index] = LookupFailed()

    tasks = [asyncio.ensure_future(_worker(i, item)) for i, item in enumerate(unique_items)]
    try:
        await asyncio.shield(asyncio.gather(*tasks))
    except asyncio.CancelledError:
        pending = sum(1 for task in tasks if not task.done())
        logger.info("Preview cancelled; %s catalog lookups left to finish and be discarded", pending)
        raise

    resolved_by_key = {key: results[i] for i, key in enumerate(unique_keys)}
    failures = 0
    for item in items:
        if not item.original_title.strip():
            continue
        resolved = resolved_by_key.get(_item_lookup_key(item))
        if isinstance(resolved, LookupFailed) or resolved is None:
            message = resolved.message if isinstance(resolved, LookupFailed) else "lookup failed"
            item.match_candidates = []
            item.error = message
            item.warnings.append(message)
            failures += 1
            continue
        item.match_candidates = list(resolved)
    return failures
