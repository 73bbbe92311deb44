"""
Logging configuration for Catalog Ingest Service.
Provides both console logging and database logging.
"""

import logging
import sys
import os
from typing import Optional, Any
import structlog
from structlog.types import Processor

from catalog_ingest.db.models import IngestLog
from catalog_ingest.db.database import get_db_session


def get_log_level() -> str:
    """Get log level from environment."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure structured logging for the application."""

    # Shared processors for both console and structlog
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    # Configure structlog
    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard library logging
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, (log_level or get_log_level()).upper(), logging.INFO))

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("waitress").setLevel(logging.WARNING)


class DatabaseLogHandler(logging.Handler):
    """
    Custom log handler that writes logs to the database.
    Used for displaying logs through the web API.
    """

    def __init__(self, max_logs: int = 1000):
        super().__init__()
        self.max_logs = max_logs

    def emit(self, record: logging.LogRecord) -> None:
        """Write log record to database."""
        event = record.msg if isinstance(record.msg, dict) else {}

        try:
            with get_db_session() as session:
                # Create log entry
                log_entry = IngestLog(
                    level=record.levelname,
                    message=str(event.get("event", record.getMessage())),
                    details=_json_safe_details(event),
                    ingest_run_id=event.get("ingest_run_id"),
                )
                session.add(log_entry)
                session.flush()

                # Clean up old logs if we exceed max
                count = session.query(IngestLog).count()
                if count > self.max_logs:
                    # Delete oldest logs
                    oldest = session.query(IngestLog)\
                        .order_by(IngestLog.created_at.asc())\
                        .limit(count - self.max_logs)\
                        .all()
                    for log in oldest:
                        session.delete(log)

        except Exception:
            # Logging must never break the caller
            self.handleError(record)


def _json_safe_details(event: dict) -> Optional[dict]:
    details = {
        key: value if isinstance(value, (str, int, float, bool)) or value is None else str(value)
        for key, value in event.items()
        if key not in ("event", "level", "timestamp", "ingest_run_id") and not key.startswith("_")
    }
    return details or None


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


def init_db_logging(max_logs: int = 1000) -> DatabaseLogHandler:
    """Attach the database handler to the root logger (after init_db)."""
    db_handler = DatabaseLogHandler(max_logs=max_logs)
    db_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(db_handler)
    return db_handler


class RunLogger:
    """
    Logger specifically for ingestion runs.
    Logs to both console and database with run context.
    """

    def __init__(self, ingest_run_id: Optional[str] = None):
        self.logger = get_logger("ingest")
        self.ingest_run_id = ingest_run_id

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        """Internal logging method."""
        log_method = getattr(self.logger, level.lower())

        # Add run ID to context
        if self.ingest_run_id:
            structlog.contextvars.bind_contextvars(ingest_run_id=self.ingest_run_id)

        try:
            log_method(message, **kwargs)
        finally:
            # Clear context
            structlog.contextvars.unbind_contextvars("ingest_run_id")

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("DEBUG", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an exception with traceback."""
        self._log("ERROR", message, exc_info=True, **kwargs)
