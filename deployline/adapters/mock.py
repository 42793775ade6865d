"""
Mock adapter — universal test double for adapter operations.

Returns success for everything by default. Responses can be pinned per
action ID, failures per action ID or per operation, and dynamic
behaviour supplied through per-operation handlers.
"""

from __future__ import annotations

from collections.abc import Callable

from deployline.adapters.base import Adapter, ExecutionContext
from deployline.core.models.action import Receipt

Handler = Callable[[ExecutionContext], Receipt]


class MockAdapter(Adapter):
    """Universal mock adapter for testing."""

    def __init__(
        self,
        adapter_name: str = "mock",
        available: bool = True,
        default_output: str = "[mock] executed",
    ):
        self._name = adapter_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[str, Receipt] = {}
        self._handlers: dict[str, Handler] = {}
        self._call_log: list[ExecutionContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[ExecutionContext]:
        """All execution contexts this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def calls(self, operation: str) -> list[ExecutionContext]:
        """Calls made for one operation, in order."""
        return [c for c in self._call_log if c.action.operation == operation]

    def is_available(self) -> bool:
        return self._available

    def set_response(self, action_id: str, receipt: Receipt) -> None:
        """Set a custom response for a specific action ID."""
        self._responses[action_id] = receipt

    def set_failure(self, action_id: str, error: str = "Mock failure") -> None:
        """Configure a specific action to fail."""
        self._responses[action_id] = Receipt.failure(
            adapter=self._name,
            action_id=action_id,
            error=error,
        )

    def set_output(self, operation: str, output: str) -> None:
        """Return ``output`` for every call of ``operation``."""
        self.set_handler(
            operation,
            lambda ctx: Receipt.success(
                adapter=self._name, action_id=ctx.action.id, output=output
            ),
        )

    def fail_operation(self, operation: str, error: str = "Mock failure") -> None:
        """Fail every call of ``operation``."""
        self.set_handler(
            operation,
            lambda ctx: Receipt.failure(
                adapter=self._name, action_id=ctx.action.id, error=error
            ),
        )

    def set_handler(self, operation: str, handler: Handler) -> None:
        """Compute the receipt for ``operation`` dynamically."""
        self._handlers[operation] = handler

    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        return True, ""

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)

        if context.action.id in self._responses:
            return self._responses[context.action.id]

        handler = self._handlers.get(context.action.operation)
        if handler is not None:
            return handler(context)

        return Receipt.success(
            adapter=self._name,
            action_id=context.action.id,
            output=self._default_output,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log, custom responses and handlers."""
        self._call_log.clear()
        self._responses.clear()
        self._handlers.clear()
