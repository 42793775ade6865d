"""
Logging configuration for the deployline CLI.

main.py calls ``setup_logging`` once; every module that does
``logger = logging.getLogger(__name__)`` inherits it. Once a run id is
known, ``bind_run`` stamps it onto every record so a file log holding
several runs can be split by ``run=<id>``.

Level precedence (see ``resolve_level``):
    --debug  >  --verbose  >  --quiet  >  DEPLOYLINE_LOG_LEVEL  >  WARNING

File output is opt-in through DEPLOYLINE_LOG_FILE, with its own level in
DEPLOYLINE_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping

LEVEL_ENV = "DEPLOYLINE_LOG_LEVEL"
FILE_ENV = "DEPLOYLINE_LOG_FILE"
FILE_LEVEL_ENV = "DEPLOYLINE_LOG_FILE_LEVEL"

_NO_RUN = "-"

# ── Format strings ──────────────────────────────────────────────

_FMT_MINIMAL = "%(message)s"

_FMT_VERBOSE = "%(asctime)s run=%(run_id)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

_FMT_DEBUG = "%(asctime)s %(levelname)-5s run=%(run_id)s %(name)s:%(lineno)d: %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"

_FMT_FILE = "%(asctime)s %(levelname)-5s run=%(run_id)s %(name)s: %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


class RunIdFilter(logging.Filter):
    """Adds ``record.run_id`` to every record passing through a handler."""

    def __init__(self) -> None:
        super().__init__()
        self.run_id = _NO_RUN

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = self.run_id
        return True


_run_filter = RunIdFilter()


def bind_run(run_id: int | None) -> None:
    """Stamp subsequent records with ``run_id`` (``None`` clears it)."""
    _run_filter.run_id = _NO_RUN if run_id is None else str(run_id)


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the console level name from CLI flags and the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    env = environ if environ is not None else {}
    name = env.get(LEVEL_ENV, "").strip().upper()
    return name if isinstance(logging.getLevelName(name), int) else "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root handlers with a stderr handler and an optional file.

    Args:
        level: Console level name.
        log_file: Path of an append-mode log file, or None.
        log_file_level: Level for the file; defaults to ``level``.
    """
    numeric_level = _parse_level(level)

    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    handlers: list[logging.Handler] = []

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    handlers.append(console)

    root_level = numeric_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        root_level = min(root_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        handlers.append(fh)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        handler.addFilter(_run_filter)
        root.addHandler(handler)
    root.setLevel(root_level)

    # A broken stderr must not fail a deploy
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    numeric = logging.getLevelName((level or "").upper())
    return numeric if isinstance(numeric, int) else logging.WARNING
