"""
Node graph executor.

Traverses a workflow graph from its trigger node, evaluating conditions,
dispatching actions and suspending on long delays and approvals. Every
entry point returns an ExecutionResult; errors are recorded on the
Execution rather than raised to the caller.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, assert_never
from uuid import UUID

from automation_engine.actions.dispatcher import ActionDispatcher
from automation_engine.conditions.evaluator import ConditionEvaluator
from automation_engine.config.settings import EngineSettings
from automation_engine.core.clock import Clock
from automation_engine.core.context import CancellationToken, ExecutionContext
from automation_engine.core.exceptions import (
    ActionFailedError,
    AutomationEngineError,
    CheckpointNotDueError,
    ExecutionCancelledError,
    ExecutionNotAwaitingApprovalError,
    ExecutionNotFoundError,
    ExecutionNotPausedError,
    WorkflowNotActiveError,
    WorkflowNotFoundError,
)
from automation_engine.core.graph import WorkflowGraph
from automation_engine.core.models import (
    ActionNode,
    ApprovalNode,
    ChannelConfig,
    CheckpointReason,
    ConditionNode,
    ConnectionType,
    DelayNode,
    Execution,
    ExecutionCheckpoint,
    ExecutionResult,
    TriggerNode,
)
from automation_engine.core.state_machine import ExecutionStateMachine, ExecutionStatus
from automation_engine.storage.base import WorkflowStore

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """
    Executes workflows against an injected store, dispatcher and clock.

    Traversal is depth first over an explicit frontier. Nodes with several
    successors are visited in edge-listing order, and each node is visited
    at most once per execution.
    """

    def __init__(
        self,
        store: WorkflowStore,
        dispatcher: ActionDispatcher,
        evaluator: Optional[ConditionEvaluator] = None,
        clock: Optional[Clock] = None,
        settings: Optional[EngineSettings] = None,
        default_channels: Optional[ChannelConfig] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.evaluator = evaluator or ConditionEvaluator()
        self.clock = clock or Clock()
        self.settings = settings or EngineSettings()
        self.default_channels = default_channels or ChannelConfig()

    # ==================== Entry Points ====================

    async def execute_workflow(
        self,
        workflow_id: UUID,
        trigger_payload: dict[str, Any],
        acting_user_id: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Run a workflow from its trigger node.

        Args:
            workflow_id: Workflow to execute
            trigger_payload: Event payload; seeds the execution variables
            acting_user_id: User whose channel configuration is used
            cancel_token: Optional cooperative cancellation signal

        Returns:
            ExecutionResult. Not-found and inactive workflows fail without
            creating an Execution record.
        """
        workflow = await self.store.get_workflow(workflow_id)
        if workflow is None:
            error: AutomationEngineError = WorkflowNotFoundError(workflow_id)
            logger.warning(str(error))
            return ExecutionResult.from_error(error)
        if not workflow.is_active:
            error = WorkflowNotActiveError(workflow_id, workflow.status.value)
            logger.warning(str(error))
            return ExecutionResult.from_error(error)

        nodes, connections = await self.store.get_graph(workflow_id)
        channels = await self.load_channels(acting_user_id)

        execution = Execution(
            workflow_id=workflow_id,
            trigger_data=dict(trigger_payload),
            variables=dict(trigger_payload),
            acting_user_id=acting_user_id,
            started_at=self.clock.now(),
        )
        await self.store.create_execution(execution)
        logger.info(f"Started execution {execution.id} of workflow '{workflow.name}' ({workflow_id})")

        context = ExecutionContext.seeded(
            workflow_id=workflow_id,
            execution_id=execution.id,
            trigger_data=trigger_payload,
            acting_user_id=acting_user_id,
            channels=channels,
            cancel_token=cancel_token or CancellationToken(),
        )

        try:
            graph = WorkflowGraph(nodes, connections)
            graph.ensure_valid(workflow_id)
            return await self._run(execution, graph, context, [graph.trigger.id])
        except Exception as e:
            return await self._fail(execution, context, e)

    async def resume_execution(
        self,
        execution_id: UUID,
        variables: Optional[dict[str, Any]] = None,
        force: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Resume a paused execution at its checkpoint.

        Only one caller wins the paused -> running transition; the others get
        a failed result and the ledger is left untouched.

        Args:
            execution_id: Execution to resume
            variables: Extra bindings merged before traversal continues
            force: Resume a delay checkpoint before its resume time
            cancel_token: Optional cooperative cancellation signal
        """
        execution = await self.store.get_execution(execution_id)
        error = self._check_resumable(execution_id, execution)
        if error is None and execution.checkpoint.reason == CheckpointReason.DELAY and not force:
            resume_after = execution.checkpoint.resume_after
            if resume_after is not None and resume_after > self.clock.now():
                error = CheckpointNotDueError(execution_id, resume_after)
        if error is not None:
            logger.info(str(error))
            return ExecutionResult.from_error(
                error, execution_id, execution.status if execution else None
            )

        if not await self._claim(execution):
            error = ExecutionNotPausedError(execution_id, "claimed by another resumer")
            logger.info(str(error))
            return ExecutionResult.from_error(error, execution_id)

        logger.info(f"Resuming execution {execution_id} at {execution.checkpoint.next_node_ids}")
        return await self._continue(execution, variables or {}, cancel_token)

    async def resolve_approval(
        self,
        execution_id: UUID,
        approved: bool,
        actor_id: Optional[str] = None,
        comment: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Approve or reject an execution paused on an approval node.

        Approval continues at the approval node's successors. Rejection
        completes the execution without visiting anything else.
        """
        execution = await self.store.get_execution(execution_id)
        error = self._check_resumable(execution_id, execution)
        if error is None and execution.checkpoint.reason != CheckpointReason.APPROVAL:
            error = ExecutionNotAwaitingApprovalError(execution_id, execution.checkpoint.reason.value)
        if error is not None:
            logger.info(str(error))
            return ExecutionResult.from_error(
                error, execution_id, execution.status if execution else None
            )

        if not await self._claim(execution):
            error = ExecutionNotPausedError(execution_id, "claimed by another resumer")
            logger.info(str(error))
            return ExecutionResult.from_error(error, execution_id)

        bindings = {
            "approval_status": "approved" if approved else "rejected",
            "approved_by": actor_id,
            "approval_comment": comment,
        }
        logger.info(
            f"Execution {execution_id} {bindings['approval_status']} by {actor_id or 'unknown'}"
        )

        if approved:
            return await self._continue(execution, bindings, cancel_token)

        context = self._restore_context(execution, ChannelConfig(), bindings, cancel_token)
        execution.checkpoint = None
        return await self._complete(execution, context)

    # ==================== Traversal ====================

    async def _run(
        self,
        execution: Execution,
        graph: WorkflowGraph,
        context: ExecutionContext,
        stack: list[str],
    ) -> ExecutionResult:
        """
        Visit nodes until the frontier is empty or the run suspends.

        ``stack`` is popped from the end, so callers push in reverse visit
        order.
        """
        while stack:
            context.cancel_token.raise_if_cancelled()
            node_id = stack.pop()
            node = graph.get_node(node_id)
            if node is None or not context.mark_visited(node_id):
                continue

            logger.debug(f"Visiting {node.kind} node '{node.id}' (execution {execution.id})")

            match node:
                case TriggerNode():
                    successors = graph.successors(node.id)

                case ConditionNode():
                    result = self.evaluator.evaluate(
                        node.config.to_spec(), context.variables, context.trigger_data
                    )
                    label = ConnectionType.TRUE if result else ConnectionType.FALSE
                    logger.info(f"Condition '{node.id}' evaluated {label.value}")
                    successors = graph.successors(node.id, label)

                case ActionNode():
                    outcome = await self.dispatcher.dispatch(
                        node.config.action_type, node.config, context
                    )
                    context.bind(outcome.bindings)
                    if not outcome.success:
                        logger.warning(
                            f"Action node '{node.id}' ({node.config.action_type.value}) "
                            f"failed: {outcome.error}"
                        )
                        if not node.config.continue_on_error:
                            raise ActionFailedError(
                                node.id, node.config.action_type.value, outcome.error
                            )
                    successors = graph.successors(node.id)

                case DelayNode():
                    seconds = node.config.total_seconds
                    successors = graph.successors(node.id)
                    if seconds >= self.settings.sync_delay_threshold_seconds:
                        return await self._suspend(
                            execution,
                            context,
                            CheckpointReason.DELAY,
                            node.id,
                            successors + stack[::-1],
                            resume_after=self.clock.now() + timedelta(seconds=seconds),
                        )
                    if not await self.clock.sleep(seconds, interrupt=context.cancel_token.event):
                        raise ExecutionCancelledError()

                case ApprovalNode():
                    return await self._suspend(
                        execution,
                        context,
                        CheckpointReason.APPROVAL,
                        node.id,
                        graph.successors(node.id) + stack[::-1],
                    )

                case _:
                    assert_never(node)

            stack.extend(reversed(successors))

        return await self._complete(execution, context)

    async def _continue(
        self,
        execution: Execution,
        bindings: dict[str, Any],
        cancel_token: Optional[CancellationToken],
    ) -> ExecutionResult:
        """Re-enter traversal at a claimed execution's checkpoint."""
        channels = await self.load_channels(execution.acting_user_id)
        context = self._restore_context(execution, channels, bindings, cancel_token)
        next_node_ids = list(execution.checkpoint.next_node_ids)
        execution.checkpoint = None

        try:
            workflow = await self.store.get_workflow(execution.workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(execution.workflow_id)
            nodes, connections = await self.store.get_graph(execution.workflow_id)
            graph = WorkflowGraph(nodes, connections)
            graph.ensure_valid(execution.workflow_id)
            return await self._run(execution, graph, context, next_node_ids[::-1])
        except Exception as e:
            return await self._fail(execution, context, e)

    # ==================== Ledger Updates ====================

    async def _suspend(
        self,
        execution: Execution,
        context: ExecutionContext,
        reason: CheckpointReason,
        node_id: str,
        next_node_ids: list[str],
        resume_after: Optional[datetime] = None,
    ) -> ExecutionResult:
        execution.checkpoint = ExecutionCheckpoint(
            reason=reason,
            node_id=node_id,
            next_node_ids=next_node_ids,
            resume_after=resume_after,
            created_at=self.clock.now(),
        )
        self._transition(execution, ExecutionStatus.PAUSED, f"{reason.value} at {node_id}")
        self._snapshot(execution, context)
        await self.store.update_execution(execution)

        logger.info(
            f"Execution {execution.id} paused on {reason.value} node '{node_id}'"
            + (f" until {resume_after.isoformat()}" if resume_after else "")
        )
        return ExecutionResult(
            success=True, execution_id=execution.id, status=ExecutionStatus.PAUSED
        )

    async def _complete(self, execution: Execution, context: ExecutionContext) -> ExecutionResult:
        self._transition(execution, ExecutionStatus.COMPLETED, "frontier exhausted")
        self._snapshot(execution, context)
        execution.completed_at = self.clock.now()
        await self.store.update_execution(execution)

        logger.info(
            f"Execution {execution.id} completed after visiting {len(context.visited)} node(s)"
        )
        return ExecutionResult(
            success=True, execution_id=execution.id, status=ExecutionStatus.COMPLETED
        )

    async def _fail(
        self,
        execution: Execution,
        context: ExecutionContext,
        error: Exception,
    ) -> ExecutionResult:
        if isinstance(error, ExecutionCancelledError):
            logger.warning(f"Execution {execution.id} cancelled")
        else:
            logger.error(f"Execution {execution.id} failed: {error}", exc_info=True)

        if ExecutionStateMachine(execution.status).can_transition_to(ExecutionStatus.FAILED):
            self._transition(execution, ExecutionStatus.FAILED, str(error))
        else:
            # already terminal; force failed without a table transition
            execution.status = ExecutionStatus.FAILED
        self._snapshot(execution, context)
        execution.error_message = str(error)
        execution.completed_at = self.clock.now()
        await self.store.update_execution(execution)

        return ExecutionResult.from_error(error, execution.id, ExecutionStatus.FAILED)

    # ==================== Helpers ====================

    def _check_resumable(
        self, execution_id: UUID, execution: Optional[Execution]
    ) -> Optional[AutomationEngineError]:
        if execution is None:
            return ExecutionNotFoundError(execution_id)
        if execution.status != ExecutionStatus.PAUSED or execution.checkpoint is None:
            return ExecutionNotPausedError(execution_id, execution.status.value)
        return None

    async def _claim(self, execution: Execution) -> bool:
        """Guarded paused -> running transition in the store."""
        claimed = await self.store.transition_execution(
            execution.id, ExecutionStatus.PAUSED, ExecutionStatus.RUNNING
        )
        if claimed:
            self._transition(execution, ExecutionStatus.RUNNING, "resumed")
        return claimed

    def _transition(self, execution: Execution, to_state: ExecutionStatus, reason: str) -> None:
        machine = ExecutionStateMachine(execution.status)
        machine.transition(to_state, reason=reason, triggered_by="executor")
        execution.status = machine.state

    def _snapshot(self, execution: Execution, context: ExecutionContext) -> None:
        execution.variables = dict(context.variables)
        execution.visited_node_ids = list(context.visited)

    def _restore_context(
        self,
        execution: Execution,
        channels: ChannelConfig,
        bindings: dict[str, Any],
        cancel_token: Optional[CancellationToken],
    ) -> ExecutionContext:
        context = ExecutionContext(
            workflow_id=execution.workflow_id,
            execution_id=execution.id,
            trigger_data=dict(execution.trigger_data),
            variables=dict(execution.variables),
            acting_user_id=execution.acting_user_id,
            channels=channels,
            visited=list(execution.visited_node_ids),
            cancel_token=cancel_token or CancellationToken(),
        )
        context.bind(bindings)
        return context

    async def load_channels(self, acting_user_id: Optional[str]) -> ChannelConfig:
        if acting_user_id:
            config = await self.store.get_channel_config(acting_user_id)
            if config is not None:
                return config
        return self.default_channels.model_copy(deep=True)
