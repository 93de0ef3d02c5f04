import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from scanvault.auth import Identity, require_admin
from scanvault.config import DEFAULT_UPLOAD_LIST_LIMIT, MAX_UPLOAD_LIST_LIMIT
from scanvault.db import get_db
from scanvault.services.audit_log import AuditLog

logger = logging.getLogger("scanvault.admin")

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["Audit Log"],
)


@router.get(
    "/uploads",
    summary="List scan audit records, most recent first",
    description=(
        f"Returns at most `limit` records (default {DEFAULT_UPLOAD_LIST_LIMIT}, "
        f"max {MAX_UPLOAD_LIST_LIMIT}). Older records are not included; raise "
        "`limit` or the UPLOAD_LIST_LIMIT_DEFAULT setting to see more."
    ),
)
async def list_uploads(
    limit: int = Query(DEFAULT_UPLOAD_LIST_LIMIT, ge=1, le=MAX_UPLOAD_LIST_LIMIT),
    admin: Identity = Depends(require_admin),
):
    try:
        records = await AuditLog(get_db()).list_records(limit)
    except Exception:
        logger.exception("Failed to list audit records")
        raise HTTPException(status_code=503, detail="Database unavailable")
    logger.info("Audit log listed by %s (%d records)", admin.username, len(records))
    return {"logs": [record.model_dump(mode="json") for record in records]}
