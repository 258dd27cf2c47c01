import logging
import os

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from .audit import log_import_commit
from .auth import get_current_user
from .catalog import CatalogSearch, TmdbCatalog
from .config import ImportSettings, load_settings
from .database import get_db
from .exporter import CONTENT_TYPES, export_filename, iter_export
from .importer import build_preview
from .models import User
from .resolution import ResolutionEngine
from .schemas import ConfirmImportRequest, ExportFormat, ImportResult, PreviewResponse
from .store import SqlWatchlistStore, WatchlistStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/watchlist", tags=["watchlist-import"])

SETTINGS = load_settings()
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.environ.get("RATE_LIMIT_ENABLED", "true").strip().lower() == "true",
)


def get_settings() -> ImportSettings:
    return SETTINGS


def get_catalog() -> CatalogSearch:
    return TmdbCatalog()


def get_store(db: AsyncSession = Depends(get_db)) -> WatchlistStore:
    return SqlWatchlistStore(db)


@router.post("/import/preview", response_model=PreviewResponse)
@limiter.limit(SETTINGS.rate_limit)
async def preview_import(
    request: Request,
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    store: WatchlistStore = Depends(get_store),
    catalog: CatalogSearch = Depends(get_catalog),
    settings: ImportSettings = Depends(get_settings),
):
    # One byte over the limit is enough to reject without reading the rest.
    raw = await file.read(settings.max_upload_bytes + 1)
    try:
        existing = await store.list_entries(str(user.id))
    except Exception:
        logger.exception("Could not load watchlist for duplicate detection (user=%s)", user.id)
        existing = []
    return await build_preview(
        raw,
        catalog=catalog,
        existing_entries=existing,
        settings=settings,
        filename=file.filename,
        content_type=file.content_type,
    )


@router.post("/import/confirm", response_model=ImportResult)
@limiter.limit(SETTINGS.rate_limit)
async def confirm_import(
    request: Request,
    body: ConfirmImportRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    store: WatchlistStore = Depends(get_store),
):
    # A failed store write rolls the session back and expires `user`.
    user_id, user_email = user.id, user.email
    engine = ResolutionEngine(store, str(user_id), options=body.options)
    result = await engine.commit(body.preview_items, body.resolutions)

    log_import_commit(db, result, actor_user_id=user_id, actor_email=user_email)
    try:
        await db.commit()
    except Exception:
        logger.exception("Could not write audit log for watchlist import (user=%s)", user_id)
        await db.rollback()
    return result


@router.get("/export")
async def export_watchlist(
    file_format: ExportFormat = Query("csv", alias="format"),
    user: User = Depends(get_current_user),
    store: WatchlistStore = Depends(get_store),
):
    entries = await store.list_entries(str(user.id))
    filename = export_filename(file_format)
    return StreamingResponse(
        iter_export(entries, file_format),
        media_type=CONTENT_TYPES[file_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
