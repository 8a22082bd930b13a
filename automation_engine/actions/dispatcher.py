"""
Routes action nodes to their handlers.
"""

import logging
from typing import Optional, Union

import httpx

from automation_engine.actions.base import ActionHandler
from automation_engine.actions.handlers import (
    CreateAppointmentHandler,
    CreateReminderHandler,
    SendEmailHandler,
    SendWhatsAppHandler,
    UpdateStatusHandler,
    WebhookHandler,
)
from automation_engine.channels.calendar import CalendarSender
from automation_engine.channels.email import EmailSender
from automation_engine.channels.whatsapp import WhatsAppSender
from automation_engine.core.context import ExecutionContext
from automation_engine.core.models import ActionConfig, ActionOutcome, ActionType
from automation_engine.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """
    Registry of action handlers keyed by action type.

    Params are template-rendered against the execution context before the
    handler sees them.
    """

    def __init__(self) -> None:
        self._handlers: dict[ActionType, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        self._handlers[handler.action_type] = handler

    def get_handler(self, action_type: ActionType) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    @property
    def action_types(self) -> list[ActionType]:
        return list(self._handlers)

    async def dispatch(
        self,
        action_type: Union[ActionType, str],
        config: ActionConfig,
        context: ExecutionContext,
    ) -> ActionOutcome:
        """
        Run the handler for an action.

        Returns:
            The handler's outcome, or a failed outcome for unknown types
        """
        try:
            action_type = ActionType(action_type)
        except ValueError:
            logger.warning(f"Unknown action type '{action_type}'")
            return ActionOutcome.failed(f"Unknown action type: {action_type}")

        handler = self._handlers.get(action_type)
        if handler is None:
            logger.warning(f"No handler registered for action type '{action_type.value}'")
            return ActionOutcome.failed(f"No handler for action type: {action_type.value}")

        params = context.resolver.resolve(config.params, preserve_types=True)
        outcome = await handler.handle(params, context)

        if outcome.success:
            logger.debug(f"Action {action_type.value} succeeded with bindings {list(outcome.bindings)}")
        else:
            logger.warning(f"Action {action_type.value} failed: {outcome.error}")
        return outcome


def build_dispatcher(
    store: WorkflowStore,
    email_sender: EmailSender,
    whatsapp_sender: WhatsAppSender,
    http_client: httpx.AsyncClient,
    webhook_timeout: float = 15.0,
    calendar_sender: Optional[CalendarSender] = None,
) -> ActionDispatcher:
    """Dispatcher with every built-in handler registered."""
    dispatcher = ActionDispatcher()
    dispatcher.register(SendEmailHandler(email_sender))
    dispatcher.register(SendWhatsAppHandler(whatsapp_sender))
    dispatcher.register(CreateReminderHandler(store))
    dispatcher.register(CreateAppointmentHandler(store, calendar_sender))
    dispatcher.register(UpdateStatusHandler(store))
    dispatcher.register(WebhookHandler(http_client, default_timeout=webhook_timeout))
    return dispatcher
