"""
Integration tests for workflow execution over the in-memory store.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from automation_engine.core.context import CancellationToken
from automation_engine.core.models import ChannelConfig, CheckpointReason, WorkflowStatus
from automation_engine.core.state_machine import ExecutionStatus


def email_action(node_id: str, **params) -> dict:
    config = {"actionType": "send_email", "emailTo": "{{client_email}}", "emailSubject": node_id}
    config.update(params)
    return {"id": node_id, "kind": "action", "config": config}


def edge(source: str, target: str, label=None) -> dict:
    connection = {"sourceNodeId": source, "targetNodeId": target}
    if label is not None:
        connection["connectionType"] = label
    return connection


class TestConditionBranching:
    """Tests for the overdue invoice scenario."""

    @pytest.mark.asyncio
    async def test_true_branch_sends_email(self, executor, store, email_sender, overdue_invoice_definition):
        """Test an invoice twelve days overdue gets the reminder e-mail."""
        workflow = await store.save_workflow(overdue_invoice_definition)

        result = await executor.execute_workflow(workflow.id, {
            "days_overdue": 12,
            "client_email": "anna@example.com",
            "client_name": "Anna",
            "invoice_number": "F-1",
        })

        assert result.success
        assert result.status == ExecutionStatus.COMPLETED
        assert len(email_sender.sent) == 1
        message = email_sender.sent[0]
        assert message.to == ["anna@example.com"]
        assert message.subject == "Invoice F-1 overdue"
        assert message.html == "Hello Anna, 12 days overdue."

        execution = await store.get_execution(result.execution_id)
        assert execution.visited_node_ids == ["t", "c", "a"]
        assert execution.variables["last_email_id"] == "email-1"
        assert execution.completed_at is not None

    @pytest.mark.asyncio
    async def test_false_branch_without_edge(self, executor, store, email_sender, overdue_invoice_definition):
        """Test a condition with no false edge completes quietly."""
        workflow = await store.save_workflow(overdue_invoice_definition)

        result = await executor.execute_workflow(workflow.id, {"days_overdue": 3, "client_email": "a@b.c"})

        assert result.status == ExecutionStatus.COMPLETED
        assert email_sender.sent == []
        execution = await store.get_execution(result.execution_id)
        assert execution.visited_node_ids == ["t", "c"]

    @pytest.fixture
    def escalation_definition(self, make_definition):
        """Trigger -> condition(daysOverdue > 7) -> true: email / false: WhatsApp."""
        return make_definition(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "c", "kind": "condition",
                 "config": {"field": "daysOverdue", "operator": "greater_than", "value": 7}},
                email_action("email", emailBody="{{daysOverdue}} days overdue"),
                {"id": "whatsapp", "kind": "action",
                 "config": {"actionType": "send_whatsapp", "whatsappPhone": "{{phone}}", "whatsappMessage": "hi"}},
            ],
            [edge("t", "c"), edge("c", "email", "true"), edge("c", "whatsapp", "false")],
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days_overdue,emails,messages", [
        (10, 1, 0),
        (3, 0, 1),
    ])
    async def test_branch_selects_one_channel(
        self, executor, store, email_sender, whatsapp_sender, escalation_definition,
        days_overdue, emails, messages,
    ):
        """Test only the matching branch's channel is used."""
        workflow = await store.save_workflow(escalation_definition)

        result = await executor.execute_workflow(workflow.id, {
            "daysOverdue": days_overdue,
            "client_email": "anna@example.com",
            "phone": "+34600000000",
        })

        assert result.status == ExecutionStatus.COMPLETED
        assert len(email_sender.sent) == emails
        assert len(whatsapp_sender.sent) == messages
        if emails:
            assert email_sender.sent[0].html == f"{days_overdue} days overdue"
        else:
            assert whatsapp_sender.sent == [("+34600000000", "hi")]


class TestExecutionPreconditions:
    """Tests for runs that never start a traversal."""

    @pytest.mark.asyncio
    async def test_workflow_not_found(self, executor, store):
        """Test that an unknown workflow fails without an execution record."""
        workflow_id = uuid4()
        result = await executor.execute_workflow(workflow_id, {})

        assert not result.success
        assert result.error_type == "WorkflowNotFoundError"
        assert result.execution_id is None
        assert await store.list_executions(workflow_id) == []

    @pytest.mark.asyncio
    async def test_inactive_workflow(self, executor, store, make_definition):
        """Test that an inactive workflow does not run."""
        definition = make_definition(
            [{"id": "t", "kind": "trigger"}, email_action("a")],
            [edge("t", "a")],
            status=WorkflowStatus.INACTIVE,
        )
        workflow = await store.save_workflow(definition)

        result = await executor.execute_workflow(workflow.id, {})

        assert result.error_type == "WorkflowNotActiveError"
        assert await store.list_executions(workflow.id) == []

    @pytest.mark.asyncio
    async def test_missing_trigger_records_failure(self, executor, store, make_definition):
        """Test a stored graph without a trigger fails its execution."""
        workflow = await store.save_workflow(make_definition([email_action("a")], []))

        result = await executor.execute_workflow(workflow.id, {})

        assert not result.success
        assert result.error_type == "MissingTriggerError"
        assert result.status == ExecutionStatus.FAILED
        execution = await store.get_execution(result.execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_message


class TestTraversal:
    """Tests for traversal order and action failure handling."""

    @pytest.mark.asyncio
    async def test_diamond_visits_join_once(self, executor, store, email_sender, make_definition):
        """Test depth-first order and at-most-once visits."""
        definition = make_definition(
            [{"id": "t", "kind": "trigger"}, email_action("a"), email_action("b"), email_action("join")],
            [edge("t", "a"), edge("t", "b"), edge("a", "join"), edge("b", "join")],
        )
        workflow = await store.save_workflow(definition)

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        execution = await store.get_execution(result.execution_id)
        assert execution.visited_node_ids == ["t", "a", "join", "b"]
        assert [m.subject for m in email_sender.sent] == ["a", "join", "b"]

    @pytest.mark.asyncio
    async def test_bindings_flow_to_later_actions(self, executor, store, email_sender, make_definition):
        """Test that an action's bindings are visible to its successors."""
        definition = make_definition(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "r", "kind": "action", "config": {"actionType": "create_reminder", "title": "Call"}},
                email_action("a", emailBody="Reminder {{reminder_id}} created"),
            ],
            [edge("t", "r"), edge("r", "a")],
        )
        workflow = await store.save_workflow(definition)

        await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        reminder_id = next(iter(store.entities["reminder"]))
        assert email_sender.sent[0].html == f"Reminder {reminder_id} created"

    @pytest.mark.asyncio
    async def test_failed_action_continues_by_default(self, executor, store, email_sender, make_definition):
        """Test that a failing action does not stop the traversal."""
        definition = make_definition(
            [{"id": "t", "kind": "trigger"}, email_action("broken", emailTo=""), email_action("next")],
            [edge("t", "broken"), edge("broken", "next")],
        )
        workflow = await store.save_workflow(definition)

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        assert result.status == ExecutionStatus.COMPLETED
        assert [m.subject for m in email_sender.sent] == ["next"]

    @pytest.mark.asyncio
    async def test_failed_action_can_stop_execution(self, executor, store, email_sender, make_definition):
        """Test continueOnError=false fails the execution."""
        definition = make_definition(
            [
                {"id": "t", "kind": "trigger"},
                email_action("broken", emailTo="", continueOnError=False),
                email_action("next"),
            ],
            [edge("t", "broken"), edge("broken", "next")],
        )
        workflow = await store.save_workflow(definition)

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        assert not result.success
        assert result.error_type == "ActionFailedError"
        execution = await store.get_execution(result.execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert execution.visited_node_ids == ["t", "broken"]
        assert email_sender.sent == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [
        {"timeout": "{{timeout}}"},
        {"headers": "X-Token: abc"},
    ])
    async def test_malformed_webhook_does_not_block_later_actions(
        self, executor, store, email_sender, make_definition, params,
    ):
        """Test a webhook with unusable timeout or headers fails alone and the run continues."""
        webhook = {"id": "hook", "kind": "action",
                   "config": {"actionType": "webhook", "url": "https://hooks.example.com/x", **params}}
        definition = make_definition(
            [{"id": "t", "kind": "trigger"}, webhook, email_action("next")],
            [edge("t", "hook"), edge("hook", "next")],
        )
        workflow = await store.save_workflow(definition)

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c", "timeout": "soon"})

        assert result.success
        assert result.status == ExecutionStatus.COMPLETED
        assert [m.subject for m in email_sender.sent] == ["next"]
        execution = await store.get_execution(result.execution_id)
        assert execution.visited_node_ids == ["t", "hook", "next"]

    @pytest.mark.asyncio
    async def test_cancellation(self, executor, store, email_sender, make_definition):
        """Test a cancelled token stops the run and records a failure."""
        workflow = await store.save_workflow(make_definition(
            [{"id": "t", "kind": "trigger"}, email_action("a")],
            [edge("t", "a")],
        ))
        token = CancellationToken()
        token.cancel()

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"}, cancel_token=token)

        assert result.error_type == "ExecutionCancelledError"
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_user_channel_config_wins(self, executor, store, email_sender, make_definition):
        """Test that a user without e-mail channel cannot send e-mail."""
        await store.save_channel_config("user-2", ChannelConfig())
        workflow = await store.save_workflow(make_definition(
            [{"id": "t", "kind": "trigger"}, email_action("a")],
            [edge("t", "a")],
        ))

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"}, acting_user_id="user-2")

        assert result.status == ExecutionStatus.COMPLETED
        assert email_sender.sent == []


class TestDelays:
    """Tests for synchronous and persisted delays."""

    @pytest.mark.asyncio
    async def test_short_delay_sleeps(self, executor, store, clock, email_sender, make_definition):
        """Test delays under the threshold sleep in-line."""
        workflow = await store.save_workflow(make_definition(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "d", "kind": "delay", "config": {"duration": 30, "unit": "seconds"}},
                email_action("a"),
            ],
            [edge("t", "d"), edge("d", "a")],
        ))

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        assert result.status == ExecutionStatus.COMPLETED
        assert clock.sleeps == [30]
        assert len(email_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_long_delay_suspends_and_resumes(self, executor, store, clock, email_sender, make_definition):
        """Test long delays checkpoint and resume only when due."""
        workflow = await store.save_workflow(make_definition(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "d", "kind": "delay", "config": {"duration": 2, "unit": "hours"}},
                email_action("after"),
                email_action("sibling"),
            ],
            [edge("t", "d"), edge("t", "sibling"), edge("d", "after")],
        ))
        started = clock.now()

        result = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        assert result.success
        assert result.status == ExecutionStatus.PAUSED
        assert clock.sleeps == []
        execution = await store.get_execution(result.execution_id)
        assert execution.checkpoint.reason == CheckpointReason.DELAY
        assert execution.checkpoint.resume_after == started + timedelta(hours=2)
        assert execution.checkpoint.next_node_ids == ["after", "sibling"]

        early = await executor.resume_execution(result.execution_id)
        assert early.error_type == "CheckpointNotDueError"

        clock.advance(7200)
        resumed = await executor.resume_execution(result.execution_id, variables={"note": "late"})

        assert resumed.status == ExecutionStatus.COMPLETED
        assert [m.subject for m in email_sender.sent] == ["after", "sibling"]
        execution = await store.get_execution(result.execution_id)
        assert execution.checkpoint is None
        assert execution.variables["note"] == "late"
        assert execution.visited_node_ids == ["t", "d", "after", "sibling"]

    @pytest.mark.asyncio
    async def test_force_resume_before_due(self, executor, store, make_definition):
        """Test force skips the due-time check."""
        workflow = await store.save_workflow(make_definition(
            [{"id": "t", "kind": "trigger"}, {"id": "d", "kind": "delay", "config": {"duration": 1, "unit": "days"}}],
            [edge("t", "d")],
        ))
        paused = await executor.execute_workflow(workflow.id, {})

        result = await executor.resume_execution(paused.execution_id, force=True)

        assert result.status == ExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_resume_runs_once(self, executor, store, clock, email_sender, make_definition):
        """Test that only one of two concurrent resumers continues the run."""
        workflow = await store.save_workflow(make_definition(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "d", "kind": "delay", "config": {"duration": 5, "unit": "minutes"}},
                email_action("a"),
            ],
            [edge("t", "d"), edge("d", "a")],
        ))
        paused = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})
        clock.advance(300)

        results = await asyncio.gather(
            executor.resume_execution(paused.execution_id),
            executor.resume_execution(paused.execution_id),
        )

        assert sorted(r.success for r in results) == [False, True]
        loser = next(r for r in results if not r.success)
        assert loser.error_type == "ExecutionNotPausedError"
        assert len(email_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_resume_errors(self, executor, store, make_definition):
        """Test resuming unknown and completed executions."""
        missing = await executor.resume_execution(uuid4())
        assert missing.error_type == "ExecutionNotFoundError"

        workflow = await store.save_workflow(make_definition([{"id": "t", "kind": "trigger"}], []))
        done = await executor.execute_workflow(workflow.id, {})
        again = await executor.resume_execution(done.execution_id)
        assert again.error_type == "ExecutionNotPausedError"
        assert again.status == ExecutionStatus.COMPLETED


class TestApprovals:
    """Tests for approval checkpoints."""

    @pytest.fixture
    def approval_definition(self, make_definition):
        return make_definition(
            [
                {"id": "t", "kind": "trigger"},
                {"id": "approve", "kind": "approval", "config": {"title": "Check"}},
                email_action("after"),
            ],
            [edge("t", "approve"), edge("approve", "after")],
        )

    @pytest.mark.asyncio
    async def test_approve_continues(self, executor, store, email_sender, approval_definition):
        """Test approval continues at the approval node's successors."""
        workflow = await store.save_workflow(approval_definition)
        paused = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})
        assert paused.status == ExecutionStatus.PAUSED

        result = await executor.resolve_approval(paused.execution_id, True, actor_id="boss", comment="ok")

        assert result.status == ExecutionStatus.COMPLETED
        assert len(email_sender.sent) == 1
        execution = await store.get_execution(paused.execution_id)
        assert execution.variables["approval_status"] == "approved"
        assert execution.variables["approved_by"] == "boss"

    @pytest.mark.asyncio
    async def test_reject_completes_without_successors(self, executor, store, email_sender, approval_definition):
        """Test rejection completes the execution and skips the rest."""
        workflow = await store.save_workflow(approval_definition)
        paused = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})

        result = await executor.resolve_approval(paused.execution_id, False, actor_id="boss")

        assert result.status == ExecutionStatus.COMPLETED
        assert email_sender.sent == []
        execution = await store.get_execution(paused.execution_id)
        assert execution.variables["approval_status"] == "rejected"
        assert execution.visited_node_ids == ["t", "approve"]

    @pytest.mark.asyncio
    async def test_approval_on_delay_checkpoint(self, executor, store, make_definition):
        """Test approving an execution paused on a delay is rejected."""
        workflow = await store.save_workflow(make_definition(
            [{"id": "t", "kind": "trigger"}, {"id": "d", "kind": "delay", "config": {"duration": 1, "unit": "days"}}],
            [edge("t", "d")],
        ))
        paused = await executor.execute_workflow(workflow.id, {})

        result = await executor.resolve_approval(paused.execution_id, True)

        assert result.error_type == "ExecutionNotAwaitingApprovalError"
        execution = await store.get_execution(paused.execution_id)
        assert execution.status == ExecutionStatus.PAUSED

    @pytest.mark.asyncio
    async def test_resume_after_workflow_deleted(self, executor, store, approval_definition):
        """Test a checkpoint whose workflow was deleted fails on resume."""
        workflow = await store.save_workflow(approval_definition)
        paused = await executor.execute_workflow(workflow.id, {"client_email": "a@b.c"})
        await store.delete_workflow(workflow.id)

        result = await executor.resolve_approval(paused.execution_id, True)

        assert result.error_type == "WorkflowNotFoundError"
        execution = await store.get_execution(paused.execution_id)
        assert execution.status == ExecutionStatus.FAILED
