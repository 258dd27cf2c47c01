from dataclasses import dataclass, field
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from .config import MAX_CANDIDATES_CEILING

WatchStatus = Literal["not_watched", "watching", "completed"]
MediaKind = Literal["movie", "series"]
ResolutionStrategy = Literal["skip", "merge", "overwrite"]
MergeField = Literal["status", "rating", "notes", "date_added", "streaming_providers"]
ExportFormat = Literal["csv", "json"]


@dataclass(frozen=True)
class RawRow:
    """One source record exactly as parsed, before any interpretation."""

    title: str
    year: int | None = None
    status: str | None = None
    rating: float | None = None
    notes: str | None = None
    date_watched: str | None = None
    date_added: str | None = None
    streaming_providers: str | tuple[str, ...] | None = None
    catalog_id: int | None = None
    media_kind: str | None = None
    rating_scale: int | None = None
    row_number: int = 0
    parse_note: str | None = None
    extras: dict[str, str] = field(default_factory=dict)


class CandidateMatch(BaseModel):
    catalog_id: int = Field(ge=1)
    media_kind: MediaKind
    title: str
    year: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    overview: str | None = None
    confidence: float = Field(ge=0.0, le=1.0)


class PreviewItem(BaseModel):
    row_number: int = 0
    original_title: str
    original_year: int | None = None
    match_candidates: list[CandidateMatch] = Field(default_factory=list, max_length=MAX_CANDIDATES_CEILING)
    selected_match_index: int | None = Field(default=None, ge=0)
    suggested_status: WatchStatus = "not_watched"
    rating: float | None = Field(default=None, ge=0, le=10)
    notes: str | None = None
    date_added: date | None = None
    date_completed: date | None = None
    streaming_providers: list[str] = Field(default_factory=list)
    media_kind_hint: MediaKind | None = None
    catalog_id_hint: int | None = None
    has_existing_entry: bool = False
    existing_entry_id: str | None = None
    should_skip: bool = False
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    def selected_candidate(self) -> CandidateMatch | None:
        if self.selected_match_index is None:
            return None
        if self.selected_match_index >= len(self.match_candidates):
            return None
        return self.match_candidates[self.selected_match_index]


class Resolution(BaseModel):
    item_index: int | None = Field(default=None, ge=0)
    title: str | None = Field(default=None, max_length=500)
    year: int | None = None
    strategy: ResolutionStrategy
    merge_fields: set[MergeField] = Field(default_factory=set)
    notes_mode: Literal["replace", "append"] = "replace"

    @model_validator(mode="after")
    def _require_key(self) -> "Resolution":
        if self.item_index is None and not (self.title or "").strip():
            raise ValueError("A resolution needs either item_index or title")
        return self


class ImportOptions(BaseModel):
    default_strategy: ResolutionStrategy | None = None
    skip_unmatched: bool = False
    auto_select_top: bool = False


class ConfirmImportRequest(BaseModel):
    preview_items: list[PreviewItem]
    resolutions: list[Resolution] = Field(default_factory=list)
    options: ImportOptions = Field(default_factory=ImportOptions)


class ImportIssue(BaseModel):
    item_index: int
    title: str
    code: str
    message: str


class ImportResult(BaseModel):
    imported: int = 0
    skipped: int = 0
    merged: int = 0
    overwritten: int = 0
    failed: int = 0
    errors: list[ImportIssue] = Field(default_factory=list)
    warnings: list[ImportIssue] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.imported + self.skipped + self.merged + self.overwritten + self.failed


class ParseFailure(BaseModel):
    row_number: int
    message: str


class PreviewSummary(BaseModel):
    format: ExportFormat
    total_rows: int
    parse_failures: list[ParseFailure] = Field(default_factory=list)
    lookup_failures: int = 0
    duplicates: int = 0


class PreviewResponse(BaseModel):
    items: list[PreviewItem]
    summary: PreviewSummary
