"""
Event trigger router.

Maps domain events to the active workflows listening for them and runs
each one in its own error boundary.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Union

from automation_engine.conditions.evaluator import ConditionEvaluator, loose_equals
from automation_engine.config.settings import EngineSettings
from automation_engine.core.models import TriggerType, Workflow, WorkflowRunSummary
from automation_engine.events import build_trigger_payload
from automation_engine.orchestrator.executor import WorkflowExecutor
from automation_engine.storage.base import WorkflowStore
from automation_engine.template.resolver import lookup

logger = logging.getLogger(__name__)


class EventTriggerRouter:
    """
    Dispatches domain events to matching workflows.

    Emission through trigger_workflow_event never blocks the caller and never
    raises for workflow failures. Matching workflows run concurrently, bounded
    by max_concurrent_workflows.
    """

    def __init__(
        self,
        store: WorkflowStore,
        executor: WorkflowExecutor,
        settings: Optional[EngineSettings] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.store = store
        self.executor = executor
        self.settings = settings or EngineSettings()
        self.evaluator = evaluator or ConditionEvaluator()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_workflows)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        """Number of in-flight background dispatches."""
        return len(self._tasks)

    def trigger_workflow_event(
        self,
        event_type: Union[TriggerType, str],
        entity_data: dict[str, Any],
        acting_user_id: Optional[str] = None,
        entity_id: Any = None,
    ) -> asyncio.Task:
        """
        Schedule dispatch of a domain event and return immediately.

        Raises:
            ValueError: If event_type is not a known trigger type
        """
        event_type = TriggerType(event_type)
        task = asyncio.create_task(
            self._dispatch_guarded(event_type, entity_data, acting_user_id, entity_id),
            name=f"workflow-event-{event_type.value}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch_event(
        self,
        event_type: Union[TriggerType, str],
        entity_data: dict[str, Any],
        acting_user_id: Optional[str] = None,
        entity_id: Any = None,
    ) -> list[WorkflowRunSummary]:
        """
        Run every active workflow matching the event and wait for them.

        Returns:
            One summary per matching workflow, in lookup order
        """
        event_type = TriggerType(event_type)
        payload = build_trigger_payload(
            event_type, entity_data, user_id=acting_user_id, entity_id=entity_id
        )

        workflows = await self.store.list_active_workflows(event_type)
        matching = [w for w in workflows if self.matches_trigger_config(w, payload)]
        if not matching:
            logger.info(f"No active workflows for event {event_type.value}")
            return []

        logger.info(f"Dispatching {event_type.value} to {len(matching)} workflow(s)")
        return list(await asyncio.gather(
            *(self._run_isolated(workflow, payload, acting_user_id) for workflow in matching)
        ))

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight background dispatches to finish."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} event dispatch(es) still running after drain timeout")

    def matches_trigger_config(self, workflow: Workflow, payload: Mapping[str, Any]) -> bool:
        """
        Apply a workflow's trigger_config to an event payload.

        ``filters`` is a mapping of payload field to expected value compared
        with loose equality; ``condition`` is a full condition spec.
        """
        config = workflow.trigger_config or {}

        filters = config.get("filters") or {}
        if not isinstance(filters, Mapping):
            logger.warning(f"Invalid trigger filters on workflow {workflow.id}, failing closed")
            return False
        for field, expected in filters.items():
            if not loose_equals(lookup(field, payload), expected):
                return False

        condition = config.get("condition")
        if condition is not None and not self.evaluator.evaluate(condition, payload):
            return False

        return True

    async def _run_isolated(
        self,
        workflow: Workflow,
        payload: dict[str, Any],
        acting_user_id: Optional[str],
    ) -> WorkflowRunSummary:
        async with self._semaphore:
            try:
                result = await self.executor.execute_workflow(
                    workflow.id, payload, acting_user_id=acting_user_id
                )
            except Exception as e:
                logger.error(f"Workflow {workflow.id} raised during dispatch: {e}", exc_info=True)
                return WorkflowRunSummary(workflow_id=workflow.id, error=str(e))
        return WorkflowRunSummary(workflow_id=workflow.id, result=result)

    async def _dispatch_guarded(
        self,
        event_type: TriggerType,
        entity_data: dict[str, Any],
        acting_user_id: Optional[str],
        entity_id: Any,
    ) -> None:
        try:
            await self.dispatch_event(event_type, entity_data, acting_user_id, entity_id)
        except Exception as e:
            logger.error(f"Dispatch of event {event_type.value} failed: {e}", exc_info=True)
