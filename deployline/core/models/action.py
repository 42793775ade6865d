"""
Action and Receipt — what a stage asks a tool to do, and what came back.

A stage never shells out itself: it builds an Action, the adapter
registry routes it to the docker/aws/kubectl/http/git adapter, and a
Receipt comes back. A failed tool call is a failed Receipt, not an
exception; the stage decides whether that failure is fatal.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """One tool operation within a run.

    Ids are deterministic: ``<run_id>:<adapter>:<operation>``, plus a
    qualifier (tag name, manifest path, ``poll-3``) when an operation
    repeats within the run. Tests address single calls by id.
    """

    id: str
    adapter: str
    operation: str = ""
    params: dict[str, Any] = Field(default_factory=dict)
    timeout: float = 300.0          # seconds

    @classmethod
    def for_run(
        cls,
        run_id: int | str,
        adapter: str,
        operation: str,
        qualifier: str = "",
        *,
        timeout: float = 300.0,
        params: dict[str, Any] | None = None,
    ) -> Action:
        parts = [str(run_id), adapter, operation]
        if qualifier:
            parts.append(qualifier)
        return cls(
            id=":".join(parts),
            adapter=adapter,
            operation=operation,
            params=params or {},
            timeout=timeout,
        )


class Receipt(BaseModel):
    """Outcome of one Action."""

    adapter: str
    action_id: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    output: str = ""
    error: str | None = None

    # Adapter extras: return_code, command, status_code, body
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def output_json(self) -> Any:
        """Decode ``output`` as JSON (``-o json`` style tools).

        Empty output decodes to ``{}``. Raises ValueError on bad JSON.
        """
        return json.loads(self.output or "{}")

    @classmethod
    def success(cls, adapter: str, action_id: str, output: str = "", **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="ok", output=output, **kwargs)

    @classmethod
    def failure(cls, adapter: str, action_id: str, error: str, **kwargs: Any) -> Receipt:
        return cls(adapter=adapter, action_id=action_id, status="failed", error=error, **kwargs)
