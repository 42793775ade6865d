"""
Run ledger — append-only history of run summaries.

Every finished run appends one NDJSON line with its structured
summary. Entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_DIR = ".state"
DEFAULT_LEDGER_FILE = "runs.ndjson"


class LedgerEntry(BaseModel):
    """A single run ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    run_id: int = 0
    revision: str = ""
    repository: str = ""
    tag: str = ""
    cluster: str = ""
    region: str = ""
    status: str = ""               # success, failed
    failed_stage: str | None = None
    failure_reason: str | None = None
    duration_ms: int = 0
    warnings: list[str] = Field(default_factory=list)

    # Full summary as produced by RunReport.summary()
    summary: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_summary(cls, summary: dict[str, Any]) -> LedgerEntry:
        return cls(
            run_id=summary.get("run_id", 0),
            revision=summary.get("revision", ""),
            repository=summary.get("repository", ""),
            tag=summary.get("tag", ""),
            cluster=summary.get("cluster", ""),
            region=summary.get("region", ""),
            status=summary.get("status", ""),
            failed_stage=summary.get("failed_stage"),
            failure_reason=summary.get("failure_reason"),
            duration_ms=summary.get("duration_ms", 0),
            warnings=list(summary.get("warnings", [])),
            summary=summary,
        )


class RunLedger:
    """Append-only run ledger writer/reader."""

    def __init__(self, path: Path | None = None, project_root: Path | None = None):
        if path is not None:
            self._path = path
        elif project_root is not None:
            self._path = project_root / DEFAULT_LEDGER_DIR / DEFAULT_LEDGER_FILE
        else:
            self._path = Path(DEFAULT_LEDGER_DIR) / DEFAULT_LEDGER_FILE

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: LedgerEntry) -> None:
        """Append an entry to the ledger."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"

        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Ledger entry written: run %s (%s)", entry.run_id, entry.status)
        except OSError as e:
            logger.error("Failed to write ledger entry: %s", e)

    def read_all(self) -> list[LedgerEntry]:
        """Read all entries, oldest first. Corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(LedgerEntry.model_validate(json.loads(line)))
                    except Exception as e:
                        logger.warning("Skipping corrupt ledger entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read run ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[LedgerEntry]:
        """Read the most recent N entries."""
        return self.read_all()[-n:]
