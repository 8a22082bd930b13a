"""
Checkpoint scheduler.

Polls the store for paused executions whose delay has elapsed and resumes
them through the executor. The same loop e-mails approvers about approval
checkpoints left pending longer than the reminder threshold, once per
checkpoint.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

import httpx

from automation_engine.channels.email import EmailMessage, EmailSender
from automation_engine.channels.email_templates import get_email_template
from automation_engine.config.settings import EngineSettings
from automation_engine.core.clock import Clock
from automation_engine.core.exceptions import ChannelDeliveryError
from automation_engine.core.models import ApprovalNode, Execution, ExecutionResult
from automation_engine.orchestrator.executor import WorkflowExecutor
from automation_engine.storage.base import WorkflowStore
from automation_engine.template.resolver import TemplateResolver

logger = logging.getLogger(__name__)


class CheckpointScheduler:
    """Background loop resuming due delay checkpoints and reminding approvers."""

    def __init__(
        self,
        store: WorkflowStore,
        executor: WorkflowExecutor,
        clock: Optional[Clock] = None,
        settings: Optional[EngineSettings] = None,
        email_sender: Optional[EmailSender] = None,
    ):
        self.store = store
        self.executor = executor
        self.email_sender = email_sender
        self.clock = clock or Clock()
        self.settings = settings or EngineSettings()

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Checkpoint scheduler started (interval {self.settings.scheduler_poll_interval}s)"
        )

    async def stop(self) -> None:
        """Stop the polling loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Checkpoint scheduler stopped")

    async def run_once(self) -> list[ExecutionResult]:
        """
        Resume every due execution once.

        Returns:
            Results of the resumptions attempted in this sweep
        """
        due = await self.store.list_due_executions(
            self.clock.now(), limit=self.settings.scheduler_batch_size
        )
        if not due:
            return []

        logger.info(f"Resuming {len(due)} due execution(s)")
        results = []
        for execution in due:
            results.append(await self.executor.resume_execution(execution.id))
        return results

    # ==================== Approval Reminders ====================

    async def remind_pending_approvals(self) -> list[UUID]:
        """
        E-mail approvers about approval checkpoints older than the threshold.

        Each checkpoint is stamped before its e-mail goes out, so a reminder
        is sent at most once even when several schedulers share the store. A
        failed delivery is logged and not retried.

        Returns:
            Ids of the executions whose approvers were e-mailed
        """
        if self.email_sender is None:
            return []

        now = self.clock.now()
        cutoff = now - timedelta(hours=self.settings.approval_reminder_after_hours)
        stale = await self.store.list_stale_approvals(cutoff, limit=self.settings.scheduler_batch_size)

        reminded = []
        for execution in stale:
            if not await self.store.mark_approval_reminded(execution.id, now):
                continue
            if await self._send_reminder(execution):
                reminded.append(execution.id)
        if reminded:
            logger.info(f"Sent {len(reminded)} approval reminder(s)")
        return reminded

    async def _send_reminder(self, execution: Execution) -> bool:
        channels = await self.executor.load_channels(execution.acting_user_id)
        if channels.email is None:
            logger.warning(f"No e-mail channel to remind approvers of execution {execution.id}")
            return False

        workflow = await self.store.get_workflow(execution.workflow_id)
        nodes, _ = await self.store.get_graph(execution.workflow_id)
        node = next(
            (n for n in nodes if n.id == execution.checkpoint.node_id and isinstance(n, ApprovalNode)),
            None,
        )

        recipients = [a for a in node.config.approvers if "@" in a] if node else []
        if not recipients:
            recipients = [channels.email.from_email]

        template = get_email_template("approval_pending")
        resolver = TemplateResolver({
            "workflow_name": workflow.name if workflow else str(execution.workflow_id),
            "paused_at": execution.checkpoint.created_at.strftime("%Y-%m-%d %H:%M UTC"),
            "approval_message": (node.config.description if node else None)
            or "This workflow requires your approval to continue.",
            "execution_id": str(execution.id),
        })
        message = EmailMessage(
            to=recipients,
            subject=resolver.render(template.subject),
            html=resolver.render(template.html),
        )

        try:
            await self.email_sender.send(channels.email, message)
        except (ChannelDeliveryError, httpx.HTTPError) as e:
            logger.warning(f"Approval reminder for execution {execution.id} failed: {e}")
            return False

        logger.info(f"Reminded {recipients} of pending approval (execution {execution.id})")
        return True

    async def _poll_loop(self) -> None:
        interval = self.settings.scheduler_poll_interval

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Checkpoint sweep failed: {e}", exc_info=True)

            if self.settings.approval_reminders_enabled:
                try:
                    await self.remind_pending_approvals()
                except Exception as e:
                    logger.error(f"Approval reminder sweep failed: {e}", exc_info=True)

            await asyncio.sleep(interval)
