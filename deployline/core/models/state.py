"""
PipelineState — what the pipeline remembers between runs.

Serialized to .state/current.json. The last run id is the source of
the next monotonic build number when none is supplied by the CI
environment.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class RunRecord(BaseModel):
    """Summary of the last run."""

    run_id: int = 0
    revision: str = ""
    tag: str = ""
    status: str = ""  # success, failed
    failed_stage: str | None = None
    started_at: str = ""
    ended_at: str = ""


class PipelineState(BaseModel):
    """Root state model — serialized to .state/current.json.

    Disposable: deleting it only resets run id numbering.
    """

    schema_version: int = 1

    pipeline_name: str = ""

    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    last_run: RunRecord = Field(default_factory=RunRecord)
    runs_total: int = 0
    runs_failed: int = 0

    metadata: dict[str, Any] = Field(default_factory=dict)

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    def next_run_id(self) -> int:
        return self.last_run.run_id + 1

    def record_run(self, record: RunRecord) -> None:
        self.last_run = record
        self.runs_total += 1
        if record.status == "failed":
            self.runs_failed += 1
