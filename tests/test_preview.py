"""Tests for building an import preview end to end (parse, normalize, match, duplicates)."""

import pytest

from conftest import FakeCatalog, make_entry, make_result
from watchlist_sync.config import ImportSettings
from watchlist_sync.errors import FormatError
from watchlist_sync.importer import build_preview

CSV_UPLOAD = (
    b"Title,Year,Status,Rating\n"
    b"Arrival,2016,Plan to Watch,4\n"
    b"Dune,2021,watched,9\n"
    b"Mystery Row,,,\n"
)


class TestBuildPreview:
    @pytest.mark.asyncio
    async def test_csv_preview(self, catalog):
        existing = [make_entry(438631, "Dune", 2021, status="watching")]

        preview = await build_preview(
            CSV_UPLOAD, catalog=catalog, existing_entries=existing, settings=ImportSettings(), filename="list.csv"
        )

        assert [item.original_title for item in preview.items] == ["Arrival", "Dune", "Mystery Row"]
        arrival, dune, mystery = preview.items

        assert arrival.suggested_status == "not_watched"
        assert arrival.rating == 8.0
        assert arrival.match_candidates[0].catalog_id == 329865
        assert arrival.match_candidates[0].confidence == 1.0
        assert arrival.selected_match_index is None
        assert arrival.has_existing_entry is False

        assert dune.suggested_status == "completed"
        assert [c.catalog_id for c in dune.match_candidates][0] == 438631
        assert dune.has_existing_entry is True
        assert dune.existing_entry_id == existing[0].id

        assert mystery.match_candidates == []
        assert mystery.error is None

        assert preview.summary.format == "csv"
        assert preview.summary.total_rows == 3
        assert preview.summary.parse_failures == []
        assert preview.summary.lookup_failures == 0
        assert preview.summary.duplicates == 1

    @pytest.mark.asyncio
    async def test_json_preview(self, catalog):
        upload = b'{"items": [{"name": "Severance", "type": "tv", "progress": "in progress"}]}'

        preview = await build_preview(upload, catalog=catalog, existing_entries=[], settings=ImportSettings())

        [item] = preview.items
        assert preview.summary.format == "json"
        assert item.suggested_status == "watching"
        assert item.media_kind_hint == "series"
        assert item.match_candidates[0].media_kind == "series"

    @pytest.mark.asyncio
    async def test_malformed_row_reported(self, catalog):
        upload = b"title,year\nDune,2021,extra\nArrival,2016\n"

        preview = await build_preview(upload, catalog=catalog, existing_entries=[], settings=ImportSettings())

        assert preview.summary.total_rows == 2
        assert [(f.row_number, f.message) for f in preview.summary.parse_failures] == [
            (2, "Row 2 has 3 values but expected 2")
        ]
        assert preview.items[0].error == "Row 2 has 3 values but expected 2"
        assert preview.items[0].match_candidates
        assert preview.items[1].error is None

    @pytest.mark.asyncio
    async def test_non_finite_json_rating_reported_on_row(self, catalog):
        upload = b'[{"title": "Arrival", "rating": NaN}]'

        preview = await build_preview(upload, catalog=catalog, existing_entries=[], settings=ImportSettings())

        [item] = preview.items
        assert item.rating is None
        assert item.error == "Invalid rating (not a finite number)"
        assert item.match_candidates[0].catalog_id == 329865
        assert [f.row_number for f in preview.summary.parse_failures] == [1]

    @pytest.mark.asyncio
    async def test_lookup_failure_does_not_block_preview(self, catalog):
        catalog.fail.add("dune")

        preview = await build_preview(CSV_UPLOAD, catalog=catalog, existing_entries=[], settings=ImportSettings())

        assert preview.summary.lookup_failures == 1
        assert preview.items[1].error == "lookup failed"
        assert preview.items[0].match_candidates

    @pytest.mark.asyncio
    async def test_concurrency_limit_respected(self):
        titles = [f"Film {i}" for i in range(9)]
        catalog = FakeCatalog({title: [make_result(i + 1, title)] for i, title in enumerate(titles)}, delay=0.02)
        upload = ("title\n" + "\n".join(titles) + "\n").encode("utf-8")

        preview = await build_preview(
            upload, catalog=catalog, existing_entries=[], settings=ImportSettings(match_concurrency=3)
        )

        assert catalog.max_active <= 3
        assert [item.match_candidates[0].catalog_id for item in preview.items] == list(range(1, 10))

    @pytest.mark.asyncio
    async def test_pdf_renamed_csv_rejected(self, catalog):
        with pytest.raises(FormatError):
            await build_preview(
                b"%PDF-1.5\n%\xb5\xb5\xb5\xb5\n1 0 obj\n",
                catalog=catalog,
                existing_entries=[],
                settings=ImportSettings(),
                filename="watchlist.csv",
                content_type="text/csv",
            )
        assert catalog.calls == []
