"""Logging configuration for rollcast.

Evaluation and stacking run many (split, backend) fits, so records that
concern one of them carry that context as structured fields. Pass it with
``extra=split_context(...)`` and the JSON-lines files get ``split_index``
and ``backend`` keys that can be filtered without parsing messages.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
APP_LOG = "app.jsonl"
ERROR_LOG = "errors.jsonl"

# Third-party loggers that are chatty at INFO during tuning and fitting
QUIET_LOGGERS = ("optuna", "joblib")


def split_context(
    split_index: Optional[int] = None,
    backend: Optional[str] = None,
    **fields: Any,
) -> Dict[str, Dict[str, Any]]:
    """
    Build the ``extra`` mapping for a record about one split or backend.

    Args:
        split_index: Index of the resampling split, if known
        backend: Backend id, if known
        **fields: Additional structured fields

    Returns:
        ``{"props": {...}}`` with unset values left out
    """
    props = {"split_index": split_index, "backend": backend, **fields}
    return {"props": {k: v for k, v in props.items() if v is not None}}


class JSONFormatter(logging.Formatter):
    """JSON-lines formatter for structured log files."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as a JSON string."""
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "funcName": record.funcName,
            "lineNo": record.lineno,
        }

        props = getattr(record, "props", None)
        if props:
            log_obj.update(props)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = "logs",
) -> Dict[str, Path]:
    """
    Configure the root logger.

    Args:
        log_level: Logging level name (case-insensitive)
        log_dir: Directory for the JSON-lines log files; None logs to
            the console only

    Returns:
        Mapping of 'app' and 'errors' to the log file paths (empty when
        logging to the console only)
    """
    log_level = str(log_level).upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    # Library chatter only when rollcast itself is at DEBUG
    library_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(library_level)

    paths: Dict[str, Path] = {}
    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        paths = {"app": directory / APP_LOG, "errors": directory / ERROR_LOG}

        file_handler = logging.FileHandler(paths["app"])
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(paths["errors"])
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(error_handler)

    logging.getLogger(__name__).info(
        f"Logging configured at {log_level}"
        + (f", JSON lines in {log_dir}" if log_dir is not None else "")
    )
    return paths
