"""
JSON-loggning för ScanVault via python-json-logger.

Poster får fälten timestamp, level, logger, message, service och
environment, plus extra-fält från logger.info(..., extra={...}).
Extra-fält som kan bära nyckelmaterial maskeras innan posten skrivs.
"""

import logging
import logging.config
import os

from pythonjsonlogger.json import JsonFormatter

SERVICE_NAME = "scanvault"
REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset({"encryption_key", "api_key", "key"})

_JSON_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", SERVICE_NAME)


class _RedactKeyFilter(logging.Filter):
    """Maskerar känsliga extra-fält; släpper alltid igenom posten."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in SENSITIVE_FIELDS.intersection(record.__dict__):
            setattr(record, field, REDACTED)
        return True


class _ScanVaultJsonFormatter(JsonFormatter):
    def __init__(self, *args, environment: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment or os.getenv("ENVIRONMENT", "production")

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["service"] = SERVICE_NAME
        log_record["environment"] = self.environment
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["logger"] = log_record.pop("name", record.name)


def setup_logging(level: str | None = None) -> None:
    """
    Konfigurera JSON-loggning för root, uvicorn och scanvault.*.

    level: t.ex. "DEBUG"; default från LOG_LEVEL, annars "INFO".
    APScheduler loggar bara från WARNING, annars syns varje svep.
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    loggers = {
        name: {"handlers": ["json"], "level": log_level, "propagate": False}
        for name in _JSON_LOGGERS
    }
    loggers["apscheduler"] = {"handlers": ["json"], "level": "WARNING", "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "redact_keys": {"()": _RedactKeyFilter},
            },
            "handlers": {
                "json": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "filters": ["redact_keys"],
                    "stream": "ext://sys.stdout",
                },
            },
            "formatters": {
                "json": {
                    "()": _ScanVaultJsonFormatter,
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "rename_fields": {"asctime": "timestamp"},
                },
            },
            "root": {
                "handlers": ["json"],
                "level": log_level,
            },
            "loggers": loggers,
        }
    )
