import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
        return parsed if parsed > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
        return parsed if parsed >= 0 else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


MAX_FILE_SIZE_BYTES = _env_int("MAX_FILE_SIZE_BYTES", 2 * 1024 * 1024)

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local").strip().lower()
STORAGE_DIR = os.getenv("STORAGE_DIR", "./encrypted-files")

AUDIT_APPEND_ATTEMPTS = _env_int("AUDIT_APPEND_ATTEMPTS", 3)
AUDIT_RETRY_DELAY_SECONDS = _env_float("AUDIT_RETRY_DELAY_SECONDS", 0.2)

ORPHAN_SWEEP_ENABLED = _env_bool("ORPHAN_SWEEP_ENABLED", True)
ORPHAN_SWEEP_INTERVAL_MINUTES = _env_int("ORPHAN_SWEEP_INTERVAL_MINUTES", 15)
ORPHAN_GRACE_SECONDS = _env_int("ORPHAN_GRACE_SECONDS", 600)

RATE_LIMIT_UPLOADS_PER_MINUTE = _env_int("UPLOAD_RATE_LIMIT_PER_MINUTE", 10)
RATE_LIMIT_WINDOW_SECONDS = _env_int("UPLOAD_RATE_LIMIT_WINDOW_SECONDS", 60)

DEFAULT_UPLOAD_LIST_LIMIT = _env_int("UPLOAD_LIST_LIMIT_DEFAULT", 50)
MAX_UPLOAD_LIST_LIMIT = _env_int("UPLOAD_LIST_LIMIT_MAX", 500)
