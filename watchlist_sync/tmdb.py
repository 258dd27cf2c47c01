import os

import httpx

BASE_URL = "https://api.themoviedb.org/3"
TMDB_LANGUAGE = os.environ.get("TMDB_LANGUAGE", "en-US")
_client: httpx.AsyncClient | None = None


def _get_api_key() -> str:
    key = os.environ.get("TMDB_API_KEY", "")
    if not key:
        raise RuntimeError("TMDB_API_KEY environment variable not set.")
    return key


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        # Per-lookup deadlines are enforced by the matcher; this only bounds a stuck socket.
        _client = httpx.AsyncClient(
            base_url=BASE_URL,
            timeout=httpx.Timeout(10.0, connect=5.0),
            headers={"Accept": "application/json"},
        )
    return _client


async def close_client() -> None:
    global _client
    if _client:
        await _client.aclose()
        _client = None


async def _get(path: str, params: dict | None = None) -> dict:
    query = {"api_key": _get_api_key(), "language": TMDB_LANGUAGE, **(params or {})}
    client = await _get_client()
    resp = await client.get(path, params=query)
    resp.raise_for_status()
    return resp.json()


async def search_multi(query: str, page: int = 1) -> dict:
    """Movies, TV series and people matching ``query`` (people are filtered by the caller)."""
    return await _get("/search/multi", {"query": query, "page": page, "include_adult": "false"})
