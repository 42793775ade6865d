"""
History use case — recent runs from the ledger and the state file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from deployline.core.config.loader import ConfigError, config_root, find_config_file, load_config
from deployline.core.models.state import PipelineState
from deployline.core.persistence.ledger import DEFAULT_LEDGER_FILE, LedgerEntry, RunLedger
from deployline.core.persistence.state_file import default_state_path, load_state


@dataclass
class HistoryResult:
    """Recent ledger entries plus the persisted counters."""

    entries: list[LedgerEntry] = field(default_factory=list)
    state: PipelineState | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        state = self.state or PipelineState()
        return {
            "runs_total": state.runs_total,
            "runs_failed": state.runs_failed,
            "last_run": state.last_run.model_dump(mode="json"),
            "entries": [
                e.model_dump(mode="json", exclude={"summary"}) for e in self.entries
            ],
        }


def load_history(
    config_path: Path | None = None,
    limit: int = 20,
    environ: dict[str, str] | None = None,
) -> HistoryResult:
    """Read the most recent ``limit`` runs, newest last."""
    result = HistoryResult()
    try:
        if config_path is None:
            config_path = find_config_file()
        if config_path is None:
            raise ConfigError("No deployline.yml found.")
        config = load_config(config_path, environ=environ)
    except ConfigError as e:
        result.error = str(e)
        return result

    root = config_root(config_path)
    ledger = RunLedger(path=root / config.state_dir / DEFAULT_LEDGER_FILE)
    result.entries = ledger.read_recent(limit)
    result.state = load_state(default_state_path(root, config.state_dir))
    return result
