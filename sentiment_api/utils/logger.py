"""Logging for the sentiment signal API.

Console output at LOG_LEVEL. Unless LOG_TO_FILE is off, every process
start also writes a DEBUG file ``sentiment_api_<timestamp>.log`` plus
``sentiment_api.log`` (current run only); the 10 newest run files are kept.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from sentiment_api.config import settings

_MAX_LOG_FILES = 10
_RUN_PREFIX = "sentiment_api_"

# Third-party loggers that log every request / download at INFO
_QUIET = ("httpx", "httpcore", "transformers", "urllib3", "filelock")

_FORMAT = logging.Formatter(
    "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _prune_run_logs(logs_dir: Path, keep: int = _MAX_LOG_FILES) -> None:
    runs = sorted(logs_dir.glob(f"{_RUN_PREFIX}*.log"), key=lambda p: p.stat().st_mtime)
    for old in runs[:-keep]:
        old.unlink(missing_ok=True)


def _file_handler(path: Path, mode: str = "a") -> logging.Handler:
    handler = logging.FileHandler(path, mode=mode, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_FORMAT)
    return handler


def _attach_files(log: logging.Logger, logs_dir: Path) -> Path | None:
    """Add the per-run and stable file handlers; None if the dir is unusable."""
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        run_log = logs_dir / f"{_RUN_PREFIX}{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
        log.addHandler(_file_handler(run_log))
        log.addHandler(_file_handler(logs_dir / "sentiment_api.log", mode="w"))
    except OSError as e:
        log.warning("File logging disabled (%s): %s", logs_dir, e)
        return None
    _prune_run_logs(logs_dir)
    return run_log


def _setup_logger(name: str = "sentiment_api") -> logging.Logger:
    log = logging.getLogger(name)
    log.setLevel(logging.DEBUG)
    log.propagate = False

    # Reimport (uvicorn --reload) must not stack handlers
    if log.handlers:
        return log

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(settings.LOG_LEVEL.upper())
    console.setFormatter(_FORMAT)
    log.addHandler(console)

    for noisy in _QUIET:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if settings.LOG_TO_FILE:
        run_log = _attach_files(log, settings.LOGS_DIR)
        if run_log is not None:
            # Server errors land in the same files as pipeline logs
            uvicorn_errors = logging.getLogger("uvicorn.error")
            for handler in log.handlers[1:]:
                uvicorn_errors.addHandler(handler)
            log.info("Log started: %s", run_log.name)
    return log


logger = _setup_logger()
