"""structlog JSON logging on top of rotating stdlib handlers"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

LOG_FILE_NAME = "backup.log"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB max per log file
LOG_BACKUP_COUNT = 5  # Number of rotated log files to keep

_HANDLER_MARK = "_surreal_backup_handler"


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def setup_logging(log_dir: Path | None = None, level: str = "INFO", console: bool = True) -> Path | None:
    """Configure JSON logging for the process

    Records from both structlog and plain ``logging`` loggers are rendered
    as one JSON object per line with ``timestamp``, ``level`` and
    ``message`` keys. Returns the log file path, or None when only the
    console is used (no log dir, or it is not writable).
    """
    shared = _shared_processors()

    structlog.configure(
        processors=[*shared, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
    )

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    log_file: Path | None = None
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / LOG_FILE_NAME
            fh = RotatingFileHandler(log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8")
        except OSError as e:
            logging.getLogger(__name__).warning(f"File logging disabled, cannot write to {log_dir}: {e}")
            log_file = None
        else:
            fh.setFormatter(formatter)
            setattr(fh, _HANDLER_MARK, True)
            root.addHandler(fh)

    if console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(formatter)
        setattr(ch, _HANDLER_MARK, True)
        root.addHandler(ch)

    # uvicorn and APScheduler log through the root handlers
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        logging.getLogger(name).handlers.clear()
        logging.getLogger(name).propagate = True

    return log_file
