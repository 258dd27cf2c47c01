import os
from dataclasses import dataclass

MAX_CANDIDATES_CEILING = 5


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name, "")
    try:
        value = int(raw) if raw.strip() else default
    except ValueError:
        value = default
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        value = float(raw) if raw.strip() else default
    except ValueError:
        value = default
    return max(minimum, value)


@dataclass(frozen=True)
class ImportSettings:
    max_upload_bytes: int = 10 * 1024 * 1024
    match_concurrency: int = 5
    lookup_timeout: float = 8.0
    max_candidates: int = MAX_CANDIDATES_CEILING
    min_confidence: float = 0.3
    rate_limit: str = "20/minute"


def load_settings() -> ImportSettings:
    return ImportSettings(
        max_upload_bytes=_env_int("IMPORT_MAX_UPLOAD_BYTES", 10 * 1024 * 1024, minimum=1),
        match_concurrency=_env_int("IMPORT_MATCH_CONCURRENCY", 5, minimum=1),
        lookup_timeout=_env_float("IMPORT_LOOKUP_TIMEOUT_SECONDS", 8.0, minimum=0.1),
        max_candidates=min(
            MAX_CANDIDATES_CEILING,
            _env_int("IMPORT_MAX_CANDIDATES", MAX_CANDIDATES_CEILING, minimum=1),
        ),
        min_confidence=min(1.0, _env_float("IMPORT_MIN_CONFIDENCE", 0.3)),
        rate_limit=os.environ.get("IMPORT_RATE_LIMIT", "20/minute").strip() or "20/minute",
    )
