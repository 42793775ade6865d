"""
Pipeline state file — ``<state_dir>/current.json``.

The file carries the last run record and the run counters. It is
disposable: a missing, corrupt or newer-schema file means a fresh
PipelineState, which only restarts run id numbering at 1. Writes go to
a temp file in the same directory, are fsynced, then replace the old
file, so a killed agent never leaves half a file behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from deployline.core.models.state import PipelineState, RunRecord

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".state"
DEFAULT_STATE_FILE = "current.json"
SCHEMA_VERSION = PipelineState.model_fields["schema_version"].default


def default_state_path(project_root: Path, state_dir: str = DEFAULT_STATE_DIR) -> Path:
    return project_root / state_dir / DEFAULT_STATE_FILE


def load_state(path: Path) -> PipelineState:
    """Read the state file, or return a fresh state if it is unusable."""
    if not path.is_file():
        logger.info("No state file at %s, run numbering starts at 1", path)
        return PipelineState()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return PipelineState()

    version = data.get("schema_version", SCHEMA_VERSION) if isinstance(data, dict) else None
    if not isinstance(version, int) or version > SCHEMA_VERSION:
        logger.warning(
            "Ignoring state file %s with schema_version %r (this deployline writes %d)",
            path, version, SCHEMA_VERSION,
        )
        return PipelineState()

    try:
        state = PipelineState.model_validate(data)
    except ValidationError as e:
        logger.warning("Ignoring malformed state file %s: %d field error(s)", path, e.error_count())
        return PipelineState()

    logger.debug("Loaded state from %s (last run %d)", path, state.last_run.run_id)
    return state


def save_state(state: PipelineState, path: Path) -> None:
    """Write ``state`` to ``path`` atomically. Raises OSError on failure."""
    state.touch()
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".current_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.debug("State saved to %s", path)


def record_run(path: Path, pipeline_name: str, record: RunRecord) -> PipelineState:
    """Fold one finished run into the state file and return the new state."""
    state = load_state(path)
    state.pipeline_name = pipeline_name
    state.record_run(record)
    save_state(state, path)
    return state
