"""
Logging setup for recording and replay runs.

Every run logs to the console in the configured format and to
`<log_dir>/run_<run_id>.log` as JSON lines. Stanza traffic is logged at
DEBUG through `log_stanza`, which attaches the alias, direction and full
stanza as structured fields so the JSON log can be filtered per account.
"""

import json
import logging
import logging.config
import uuid
from typing import Any, Dict, List, Optional

from .config_models import SystemConfig

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Console lines show at most this much of a stanza; the JSON field keeps it all
STANZA_PREVIEW_CHARS = 500

_ARROWS = {"out": "->", "in": "<-"}

# Attributes every LogRecord carries; anything else arrived through `extra`
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class ContextFilter(logging.Filter):
    """Stamps the run identifier on every record."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including any structured extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", None),
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update({
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and key not in entry and not key.startswith("_")
        })
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _dict_config(config: SystemConfig, run_id: str, log_file: str) -> Dict[str, Any]:
    handler_defaults = {"filters": ["context"]}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": config.logging.format_console, "datefmt": DATE_FORMAT},
            "json": {"()": JSONFormatter, "datefmt": DATE_FORMAT},
        },
        "filters": {
            "context": {"()": ContextFilter, "run_id": run_id},
        },
        "handlers": {
            "console": {
                **handler_defaults,
                "class": "logging.StreamHandler",
                "level": config.logging.level,
                "formatter": "console",
                "stream": "ext://sys.stdout",
            },
            "run_file": {
                **handler_defaults,
                "class": "logging.FileHandler",
                "level": "DEBUG",
                "formatter": "json",
                "filename": log_file,
                "mode": "w",
            },
        },
        "loggers": {
            name: {"level": "DEBUG", "propagate": True} for name in ("virtuoso", "tests")
        },
        "root": {"level": "DEBUG", "handlers": ["console", "run_file"]},
    }


def setup_logging(config: SystemConfig, run_id: Optional[str] = None) -> str:
    """
    Configure console and per-run JSON file logging.

    Args:
        config: System configuration
        run_id: Run identifier; a UUID is generated when omitted

    Returns:
        The run identifier in use
    """
    run_id = run_id or str(uuid.uuid4())

    config.paths.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = config.paths.log_dir / f"run_{run_id}.log"

    logging.config.dictConfig(_dict_config(config, run_id, str(log_file)))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized for run {run_id}")
    logger.debug(f"Run log: {log_file}")
    return run_id


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogCapture(logging.Handler):
    """
    Context manager that records a logger's output in memory.

    Captured entries are dicts with `level`, `message`, `logger` and
    `timestamp`; the logger is lowered to DEBUG for the duration.
    """

    def __init__(self, logger_name: str = ""):
        super().__init__(level=logging.DEBUG)
        self.logger_name = logger_name
        self.logs: List[Dict[str, Any]] = []
        self._previous_level = logging.NOTSET

    def emit(self, record: logging.LogRecord) -> None:
        self.logs.append({
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": record.created,
        })

    def __enter__(self) -> "LogCapture":
        logger = logging.getLogger(self.logger_name)
        self._previous_level = logger.level
        logger.addHandler(self)
        if logger.getEffectiveLevel() > logging.DEBUG:
            logger.setLevel(logging.DEBUG)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        logger = logging.getLogger(self.logger_name)
        logger.removeHandler(self)
        logger.setLevel(self._previous_level)

    def get_logs(self, level: Optional[str] = None) -> List[Dict[str, Any]]:
        """Captured entries, optionally only those at `level`."""
        return [entry for entry in self.logs if level is None or entry["level"] == level]


def log_stanza(logger: logging.Logger, alias: str, direction: str, stanza: str) -> None:
    """
    Log one stanza sent ("out") or received ("in") on an alias.

    Raises:
        ValueError: If direction is neither "out" nor "in"
    """
    try:
        arrow = _ARROWS[direction]
    except KeyError:
        raise ValueError(f"Stanza direction must be 'out' or 'in', not {direction!r}") from None

    if not logger.isEnabledFor(logging.DEBUG):
        return

    preview = stanza
    if len(stanza) > STANZA_PREVIEW_CHARS:
        preview = f"{stanza[:STANZA_PREVIEW_CHARS]}... ({len(stanza) - STANZA_PREVIEW_CHARS} more chars)"

    logger.debug(f"STANZA {alias} {arrow} {preview}",
                 extra={"alias": alias, "direction": direction, "stanza": stanza})
