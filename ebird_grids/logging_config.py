"""
Logging setup for the eBird grid pipeline.

Two outputs per process: a readable console stream and JSON Lines files
(``logs/pipeline.log``, rotating, plus ``{run_dir}/pipeline.jsonl`` for the
current run). Every record carries the run id, and filter stages attach
``rows_in`` / ``rows_out`` so the audit trail of dropped rows can be
rebuilt from the JSON log alone.

Usage:
    from ebird_grids.logging_config import get_pipeline_logger
    log = get_pipeline_logger(__name__)
"""

import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

LOG_DIR = "logs"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# ``extra=`` keys copied into JSON entries when present on a record.
_STRUCTURED_FIELDS = (
    "step_name", "input_summary", "output_summary", "timing_seconds",
    "nan_summary", "rows_in", "rows_out", "reason",
)

_run_id = None
_configured = False
_run_dir_handler = None


def get_run_id():
    """Current run id; a short random one is created on first use."""
    global _run_id
    if _run_id is None:
        _run_id = uuid.uuid4().hex[:8]
    return _run_id


def set_run_id(run_id=None):
    global _run_id
    _run_id = run_id or uuid.uuid4().hex[:8]
    return _run_id


class RunIdFilter(logging.Filter):
    """Stamp ``record.run_id``.

    Attached to handlers, not loggers: logger filters do not see records
    propagated up from child loggers.
    """

    def filter(self, record):
        record.run_id = get_run_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
                                 .isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "run_id": getattr(record, "run_id", None),
            "message": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in _STRUCTURED_FIELDS if hasattr(record, key)
        })
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _console_level():
    name = os.environ.get("LOG_LEVEL", "INFO").upper()
    return getattr(logging, name, logging.INFO)


def _attach(handler, level, formatter):
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(RunIdFilter())
    logging.getLogger().addHandler(handler)
    return handler


def setup_logging(run_dir=None, console_level=None, file_level=logging.DEBUG):
    """Configure the root logger once; attach the per-run file on request.

    Parameters
    ----------
    run_dir : str, optional
        Directory that receives ``pipeline.jsonl`` for this run. Only the
        first call with a run_dir (since the last reset) adds the file.
    console_level : int, optional
        Defaults to the ``LOG_LEVEL`` environment variable, else INFO.
    file_level : int
        Level for both JSON files.
    """
    global _configured, _run_dir_handler

    if not _configured:
        logging.getLogger().setLevel(logging.DEBUG)
        _attach(
            logging.StreamHandler(),
            console_level if console_level is not None else _console_level(),
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ),
        )
        os.makedirs(LOG_DIR, exist_ok=True)
        _attach(
            RotatingFileHandler(
                os.path.join(LOG_DIR, "pipeline.log"),
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
            ),
            file_level,
            JsonFormatter(),
        )
        _configured = True

    if run_dir and _run_dir_handler is None:
        os.makedirs(run_dir, exist_ok=True)
        _run_dir_handler = _attach(
            logging.FileHandler(os.path.join(run_dir, "pipeline.jsonl")),
            file_level,
            JsonFormatter(),
        )


def reset_logging():
    """Detach and close every root handler and forget the run id."""
    global _configured, _run_dir_handler, _run_id

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    _configured = False
    _run_dir_handler = None
    _run_id = None


def get_pipeline_logger(name, run_dir=None):
    if not _configured:
        setup_logging(run_dir=run_dir)
    return logging.getLogger(name)


def log_row_filter(logger, step_name, rows_in, rows_out, reason):
    """Log how many rows a filter or join removed; return that number.

    Logged at INFO when rows were dropped, DEBUG otherwise.
    """
    dropped = rows_in - rows_out
    logger.log(
        logging.INFO if dropped else logging.DEBUG,
        "[%s] %s: kept %d of %d rows (%d dropped)",
        step_name, reason, rows_out, rows_in, dropped,
        extra={
            "step_name": step_name,
            "rows_in": rows_in,
            "rows_out": rows_out,
            "reason": reason,
        },
    )
    return dropped


def log_step_summary(logger, step_name, status, input_summary=None,
                     output_summary=None, timing_seconds=None):
    """One INFO line per finished step, with the summaries as JSON fields."""
    message = f"[{step_name}] {status}"
    if timing_seconds is not None:
        message += f" ({timing_seconds:.1f}s)"
    if output_summary:
        message += f" output={output_summary}"

    extra = {"step_name": step_name}
    for key, value in (("input_summary", input_summary),
                       ("output_summary", output_summary),
                       ("timing_seconds", timing_seconds)):
        if value:
            extra[key] = value
    logger.info(message, extra=extra)


class StepTimer:
    """``with StepTimer() as t: ...`` then read ``t.elapsed`` (seconds)."""

    elapsed = 0.0

    def __enter__(self):
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc):
        self.elapsed = time.perf_counter() - self._start
        return False
