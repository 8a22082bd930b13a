"""
Base action handler.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from automation_engine.core.context import ExecutionContext
from automation_engine.core.models import ActionOutcome, ActionType


class ActionHandler(ABC):
    """
    Performs one kind of side effect for an action node.

    Handlers receive params with templates already rendered. Provider-level
    failures are returned as failed outcomes; data-store errors propagate.
    """

    action_type: ClassVar[ActionType]

    @abstractmethod
    async def handle(self, params: dict[str, Any], context: ExecutionContext) -> ActionOutcome:
        """
        Perform the action.

        Args:
            params: Rendered action parameters
            context: Execution context of the current run

        Returns:
            ActionOutcome with success flag, error and variable bindings
        """
        pass


def first_param(params: dict[str, Any], *names: str, default: Any = None) -> Any:
    """Return the first present, non-empty parameter among aliases."""
    for name in names:
        value = params.get(name)
        if value is not None and value != "":
            return value
    return default


def split_addresses(value: Any) -> list[str]:
    """Accept a list or a comma/semicolon separated string of addresses."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).replace(";", ",").split(",")
    return [item.strip() for item in items if item and item.strip()]
