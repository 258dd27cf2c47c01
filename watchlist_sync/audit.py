import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from .models import AuditLog
from .schemas import ImportResult

IMPORT_COMMITTED = "user.watchlist_import"
IMPORT_COUNTERS = ("imported", "merged", "overwritten", "skipped", "failed")


def _normalize_email(value: str | None) -> str | None:
    normalized = (value or "").strip().lower()
    return normalized or None


def add_audit_log(
    db: AsyncSession,
    *,
    action: str,
    message: str,
    actor_user_id: uuid.UUID | None = None,
    actor_email: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        message=message.strip(),
        actor_user_id=actor_user_id,
        actor_email=_normalize_email(actor_email),
        details=details,
    )
    db.add(entry)
    return entry


def import_result_details(result: ImportResult) -> dict:
    details: dict = {name: getattr(result, name) for name in IMPORT_COUNTERS}
    details["error_codes"] = sorted({issue.code for issue in result.errors})
    details["warnings"] = len(result.warnings)
    return details


def log_import_commit(
    db: AsyncSession,
    result: ImportResult,
    *,
    actor_user_id: uuid.UUID | None,
    actor_email: str | None,
) -> AuditLog:
    counts = ", ".join(f"{name} {getattr(result, name)}" for name in IMPORT_COUNTERS)
    return add_audit_log(
        db,
        action=IMPORT_COMMITTED,
        message=f"Watchlist import committed ({result.total} items): {counts}.",
        actor_user_id=actor_user_id,
        actor_email=actor_email,
        details=import_result_details(result),
    )
