"""
Per-execution state carried through a traversal.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from automation_engine.core.exceptions import ExecutionCancelledError
from automation_engine.core.models import ChannelConfig
from automation_engine.template.resolver import TemplateResolver, lookup


class CancellationToken:
    """Cooperative cancellation signal for a running execution."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def event(self) -> asyncio.Event:
        return self._event

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExecutionCancelledError()


@dataclass
class ExecutionContext:
    """
    Mutable bindings for one execution.

    ``variables`` is seeded from the trigger payload and extended by action
    bindings; ``trigger_data`` is the immutable payload snapshot used as a
    fallback for lookups.
    """

    workflow_id: UUID
    execution_id: UUID
    trigger_data: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    acting_user_id: Optional[str] = None
    channels: ChannelConfig = field(default_factory=ChannelConfig)
    visited: list[str] = field(default_factory=list)
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    @classmethod
    def seeded(
        cls,
        workflow_id: UUID,
        execution_id: UUID,
        trigger_data: dict[str, Any],
        **kwargs: Any,
    ) -> "ExecutionContext":
        """Build a context whose variables start as a copy of the payload."""
        return cls(
            workflow_id=workflow_id,
            execution_id=execution_id,
            trigger_data=dict(trigger_data),
            variables=dict(trigger_data),
            **kwargs,
        )

    def get(self, name: str) -> Any:
        """Look up a binding; returns MISSING when unbound."""
        return lookup(name, self.variables, self.trigger_data)

    def bind(self, bindings: dict[str, Any]) -> None:
        self.variables.update(bindings)

    def mark_visited(self, node_id: str) -> bool:
        """Record a visit; returns False if the node was already visited."""
        if node_id in self.visited:
            return False
        self.visited.append(node_id)
        return True

    @property
    def resolver(self) -> TemplateResolver:
        return TemplateResolver(self.variables, self.trigger_data)

    def render(self, value: Any) -> Any:
        """Render templates in a string or nested structure."""
        return self.resolver.resolve(value)
