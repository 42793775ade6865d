"""
Adapter base — the protocol contract between stages and tools.

Stages only talk to external tools (docker, aws, kubectl, HTTP) through
this protocol, never directly. That keeps every side effect behind a
name the registry can swap for a test double.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from deployline.core.models.action import Action, Receipt

logger = logging.getLogger(__name__)


class ExecutionContext(BaseModel):
    """Everything an adapter needs to execute an action."""

    action: Action
    working_dir: str = "."

    @property
    def params(self) -> dict[str, Any]:
        return self.action.params


class Adapter(ABC):
    """Abstract base class for all adapters.

    Adapters perform external side effects and return receipts.
    They NEVER raise exceptions — failures are captured in the Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'docker', 'aws', 'kubectl')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this adapter's underlying tool is available."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be executed.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Execute the action and return a receipt. MUST never raise."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


class CommandAdapter(Adapter):
    """Adapter backed by a CLI binary.

    Subclasses declare ``binary`` and ``required_params`` and implement
    one ``_op_<operation>`` method per operation, returning the argv
    tail (and optionally stdin text) for that operation.
    """

    binary: str = ""
    required_params: dict[str, tuple[str, ...]] = {}

    @property
    def name(self) -> str:
        return self.binary

    @property
    def operations(self) -> set[str]:
        return set(self.required_params)

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        operation = context.action.operation
        if not operation:
            return False, "Missing action operation"
        if operation not in self.required_params:
            return False, (
                f"Unknown operation '{operation}'. "
                f"Valid: {', '.join(sorted(self.required_params))}"
            )
        missing = [p for p in self.required_params[operation] if not context.params.get(p)]
        if missing:
            return False, f"Missing required param(s) for '{operation}': {', '.join(missing)}"
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        operation = context.action.operation
        builder: Callable[[dict[str, Any]], tuple[list[str], str | None]] | None = getattr(
            self, f"_op_{operation.replace('-', '_')}", None
        )
        if builder is None:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Unknown operation: {operation}",
            )
        try:
            args, stdin = builder(context.params)
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=context.action.id,
                error=f"Cannot build '{operation}' command: {e}",
            )
        return self._run(context, args, stdin)

    def _run(self, ctx: ExecutionContext, args: list[str], stdin: str | None = None) -> Receipt:
        """Run the binary with ``args`` and capture the outcome."""
        command = [self.binary, *args]
        timeout = ctx.action.timeout
        logger.debug("Executing: %s (cwd=%s)", " ".join(command), ctx.working_dir)
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                cwd=ctx.working_dir,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"Command timed out after {timeout}s",
                metadata={"command": _format_command(command), "timeout": timeout},
            )
        except FileNotFoundError:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"'{self.binary}' not found on PATH",
                metadata={"command": _format_command(command)},
            )
        except Exception as e:
            return Receipt.failure(
                adapter=self.name,
                action_id=ctx.action.id,
                error=f"Command execution error: {e}",
                metadata={"command": _format_command(command)},
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout.strip()
        stderr = result.stderr.strip()

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                action_id=ctx.action.id,
                output=output,
                duration_ms=elapsed_ms,
                metadata={
                    "command": _format_command(command),
                    "return_code": 0,
                    "stderr": stderr,
                },
            )
        return Receipt.failure(
            adapter=self.name,
            action_id=ctx.action.id,
            error=stderr or f"Command exited with code {result.returncode}",
            duration_ms=elapsed_ms,
            metadata={
                "command": _format_command(command),
                "return_code": result.returncode,
                "stdout": output,
            },
        )


def _format_command(command: list[str]) -> str:
    # Secrets are passed on stdin, never in argv
    return " ".join(command)
