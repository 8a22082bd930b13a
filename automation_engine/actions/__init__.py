"""Action dispatch and handlers."""

from automation_engine.actions.base import ActionHandler
from automation_engine.actions.dispatcher import ActionDispatcher, build_dispatcher

__all__ = ["ActionHandler", "ActionDispatcher", "build_dispatcher"]
