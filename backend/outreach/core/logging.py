"""
Logging setup.

Everything goes to the root logger: console (colored on a TTY), a
size-rotated ``outreach.log``, ``error.log`` for ERROR and above, and a
daily ``audit.log`` holding only operator and send actions. Celery tasks
log through ``get_task_logger`` so every line carries the task id and,
when known, the campaign id.
"""
import sys
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# libraries that are noisy at INFO
QUIET_LOGGERS = ("urllib3", "httpx", "openai", "sqlalchemy.engine", "celery.redirected")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    CONTEXT_FIELDS = ("campaign_id", "recipient_id", "task_id")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.lineno}",
        }
        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = f"{self.COLORS.get(levelname, self.RESET)}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class AuditLogFilter(logging.Filter):
    """Passes records that describe an operator or send action."""

    AUDIT_PREFIXES = ("outreach.services", "outreach.core.security", "outreach.core.middleware", "task.")
    AUDIT_WORDS = (
        "audit", "approve", "suppress", "regenerat", "delete", "sent ",
        "bounce", "complain", "transition", "paused", "completed", "test-send",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.name.startswith(self.AUDIT_PREFIXES):
            return False
        message = record.getMessage().lower()
        return any(word in message for word in self.AUDIT_WORDS)


def _file_handler(path: Path, level: int, formatter: logging.Formatter, max_bytes: int, backup_count: int):
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: str = "INFO",
    log_to_file: bool = True,
    log_to_console: bool = True,
    json_format: bool = False,
    log_dir: str = "logs",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure the root logger. Safe to call more than once; existing
    handlers are replaced.

    Args:
        level: root log level name
        log_to_file: write outreach.log, error.log and audit.log
        log_to_console: write to stdout
        json_format: emit JSON lines instead of plain text
        log_dir: directory for the log files, created if missing
        max_bytes: rotation size for the main and error logs
        backup_count: rotated files to keep
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    detailed = JSONFormatter() if json_format else logging.Formatter(DETAILED_FORMAT)

    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        if json_format:
            console.setFormatter(JSONFormatter())
        elif sys.stdout.isatty():
            console.setFormatter(ColoredFormatter(SIMPLE_FORMAT))
        else:
            console.setFormatter(logging.Formatter(SIMPLE_FORMAT))
        root.addHandler(console)

    if log_to_file:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        root.addHandler(_file_handler(path / "outreach.log", logging.INFO, detailed, max_bytes, backup_count))
        root.addHandler(_file_handler(
            path / "error.log", logging.ERROR, logging.Formatter(DETAILED_FORMAT), max_bytes, backup_count
        ))

        audit = TimedRotatingFileHandler(path / "audit.log", when="midnight", backupCount=30, encoding="utf-8")
        audit.setLevel(logging.INFO)
        audit.setFormatter(logging.Formatter(DETAILED_FORMAT))
        audit.addFilter(AuditLogFilter())
        root.addHandler(audit)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.debug("Logging configured")


class TaskLogger(logging.LoggerAdapter):
    """Prefixes messages with the Celery task id and attaches it (and the campaign) to the record."""

    def __init__(self, task_name: str, task_id: Optional[str] = None, campaign_id: Optional[int] = None):
        super().__init__(logging.getLogger(f"task.{task_name}"), {"task_id": task_id, "campaign_id": campaign_id})

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {}).update(self.extra)
        if self.extra.get("task_id"):
            msg = f"[{self.extra['task_id']}] {msg}"
        return msg, kwargs


def get_task_logger(task_name: str, task_id: Optional[str] = None, campaign_id: Optional[int] = None) -> TaskLogger:
    return TaskLogger(task_name, task_id, campaign_id)


def init_logging():
    """Called once at API and worker startup."""
    from outreach.core.config import settings

    setup_logging(
        level=settings.LOG_LEVEL,
        json_format=settings.JSON_LOGS,
        log_dir=settings.LOG_DIR,
    )
