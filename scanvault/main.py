from pathlib import PurePosixPath
from collections import deque
from threading import Lock
from time import monotonic
import logging
import re

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from scanvault import config
from scanvault.alerts import maybe_send_alert
from scanvault.auth import Identity, get_current_identity
from scanvault.db import ensure_indexes, get_db
from scanvault.errors import InfrastructureError, ObjectCollisionError, ValidationError
from scanvault.logging_config import setup_logging
from scanvault.models import CleanScanResponse, MaliciousScanResponse
from scanvault.routers import admin
from scanvault.scanner import Blocklist, ThreatDetector
from scanvault.services.audit_log import AuditLog
from scanvault.services.object_store import build_object_store
from scanvault.services.pipeline import ScanPipeline
from scanvault.services.reconcile import run_orphan_sweep

logger = logging.getLogger("scanvault")

app = FastAPI(title="ScanVault Upload API")

app.include_router(admin.router)

MAX_FILE_SIZE_BYTES = config.MAX_FILE_SIZE_BYTES
MAX_FILENAME_LENGTH = 255
SAFE_FILENAME_RE = re.compile(r"^[\w\-. ]+$")

STORAGE_BACKEND = config.STORAGE_BACKEND
STORAGE_DIR = config.STORAGE_DIR

RATE_LIMIT_UPLOADS_PER_MINUTE = config.RATE_LIMIT_UPLOADS_PER_MINUTE
RATE_LIMIT_WINDOW_SECONDS = config.RATE_LIMIT_WINDOW_SECONDS

# Loaded once; shared read-only by every request.
BLOCKLIST = Blocklist.from_env()

_rate_limit_lock = Lock()
_upload_request_times: dict[str, deque[float]] = {}


def enforce_upload_rate_limit(client_id: str):
    now = monotonic()
    with _rate_limit_lock:
        # Cleanup: remove entries for clients with no recent activity
        stale = [
            cid for cid, ts in _upload_request_times.items()
            if not ts or now - ts[-1] >= RATE_LIMIT_WINDOW_SECONDS
        ]
        for cid in stale:
            del _upload_request_times[cid]

        timestamps = _upload_request_times.setdefault(client_id, deque())
        while timestamps and now - timestamps[0] >= RATE_LIMIT_WINDOW_SECONDS:
            timestamps.popleft()

        if len(timestamps) >= RATE_LIMIT_UPLOADS_PER_MINUTE:
            logger.warning("Rate limit exceeded for client %s", client_id)
            raise HTTPException(
                status_code=429,
                detail=f"Rate limit exceeded: max {RATE_LIMIT_UPLOADS_PER_MINUTE} uploads per minute",
            )

        timestamps.append(now)


def sanitize_filename(raw: str | None) -> str:
    """Validate and sanitize an uploaded filename."""
    if not raw:
        raise HTTPException(status_code=400, detail="Filename is required")

    # Strip path components (defence against path-traversal)
    name = PurePosixPath(raw).name
    # Also handle Windows-style backslash paths
    name = name.split("\\")[-1]

    if not name or name in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid filename")

    if len(name) > MAX_FILENAME_LENGTH:
        raise HTTPException(status_code=400, detail="Filename too long")

    if not SAFE_FILENAME_RE.match(name):
        raise HTTPException(
            status_code=400,
            detail="Filename contains invalid characters",
        )

    return name


def build_pipeline(db) -> ScanPipeline:
    return ScanPipeline(
        detector=ThreatDetector(BLOCKLIST),
        store=build_object_store(db, STORAGE_BACKEND, STORAGE_DIR),
        audit_log=AuditLog(db),
        max_size=MAX_FILE_SIZE_BYTES,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
async def startup():
    setup_logging()
    logger.info(
        "Blocklist loaded: hashes=%d storage_backend=%s max_size=%d",
        len(BLOCKLIST.hashes), STORAGE_BACKEND, MAX_FILE_SIZE_BYTES,
    )
    try:
        await ensure_indexes()
    except Exception:
        # App should stay available even if DB indexes can't be ensured at startup.
        logger.exception("Failed to ensure MongoDB indexes on startup")

    if config.ORPHAN_SWEEP_ENABLED:
        try:
            scheduler = AsyncIOScheduler()
            scheduler.add_job(
                run_orphan_sweep,
                "interval",
                minutes=config.ORPHAN_SWEEP_INTERVAL_MINUTES,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            app.state.scheduler = scheduler
        except Exception:
            logger.exception("Failed to start orphan sweep scheduler")


@app.on_event("shutdown")
def shutdown():
    if hasattr(app.state, "scheduler"):
        app.state.scheduler.shutdown()


@app.post("/scan", response_model=CleanScanResponse | MaliciousScanResponse)
async def scan(
    request: Request,
    file: UploadFile | None = File(None),
    identity: Identity | None = Depends(get_current_identity),
):
    client_ip = request.client.host if request.client else "unknown"
    if identity is None or file is None:
        raise HTTPException(status_code=400, detail="Missing file or username")

    enforce_upload_rate_limit(identity.username)
    filename = sanitize_filename(file.filename)

    # Early rejection based on Content-Length header (before reading body)
    cl = request.headers.get("content-length")
    if cl and cl.isdigit() and int(cl) > MAX_FILE_SIZE_BYTES + 64 * 1024:
        raise HTTPException(status_code=413, detail="File too large")

    # Read with a limit to avoid unbounded memory usage
    try:
        content = await file.read(MAX_FILE_SIZE_BYTES + 1)
    except OSError:
        logger.exception("Failed to read upload body for %s", filename)
        raise HTTPException(status_code=500, detail="Scan failed")

    pipeline = build_pipeline(get_db())
    try:
        result = await pipeline.scan(identity.username, filename, content)
    except ValidationError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    except ObjectCollisionError as exc:
        logger.warning("Storage collision for user=%s path=%s", identity.username, exc.path)
        raise HTTPException(status_code=409, detail="File already stored")
    except InfrastructureError as exc:
        # Full detail stays in the server log.
        logger.exception("Scan failed for file=%s user=%s stage=%s", filename, identity.username, exc.stage)
        raise HTTPException(status_code=500, detail="Scan failed")

    if isinstance(result, MaliciousScanResponse):
        await maybe_send_alert(
            filename=filename,
            sha256=result.sha256,
            reason=result.reason,
            username=identity.username,
            client_ip=client_ip,
        )
    return result
