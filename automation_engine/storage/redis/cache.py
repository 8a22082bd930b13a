"""
Redis cache layer for hot read paths.

Redis is used as a cache layer - PostgreSQL is the source of truth. Every
event dispatch reads the active workflows for one trigger type and every
traversal reads one workflow graph, so those are the two cached shapes.
"""

import json
import logging
from typing import Any, Optional
from uuid import UUID

import redis.asyncio as redis

from automation_engine.core.models import (
    Connection,
    Node,
    TriggerType,
    Workflow,
    parse_node,
)

logger = logging.getLogger(__name__)


class WorkflowCache:
    """
    Redis cache for workflow definitions.

    Entries expire after ``ttl`` seconds; writers call the invalidate
    methods so readers never see a graph older than the last save.
    """

    # Key prefixes
    GRAPH_PREFIX = "ae:graph:"
    ACTIVE_PREFIX = "ae:active:"

    def __init__(self, client: redis.Redis, ttl: int = 300):
        self.client = client
        self.ttl = ttl

    # ==================== Graph Cache ====================

    async def get_graph(self, workflow_id: UUID) -> Optional[tuple[list[Node], list[Connection]]]:
        """Get a cached graph, or None on a miss."""
        data = await self.client.get(f"{self.GRAPH_PREFIX}{workflow_id}")
        if not data:
            return None

        raw = json.loads(data)
        nodes = [parse_node(n) for n in raw["nodes"]]
        connections = [Connection.model_validate(c) for c in raw["connections"]]
        return nodes, connections

    async def set_graph(
        self,
        workflow_id: UUID,
        nodes: list[Node],
        connections: list[Connection],
    ) -> None:
        """Cache a workflow graph."""
        data = {
            "nodes": [n.model_dump(mode="json") for n in nodes],
            "connections": [c.model_dump(mode="json") for c in connections],
        }
        await self.client.setex(
            f"{self.GRAPH_PREFIX}{workflow_id}",
            self.ttl,
            json.dumps(data, default=str),
        )

    # ==================== Active Workflow Cache ====================

    async def get_active_workflows(self, trigger_type: TriggerType) -> Optional[list[Workflow]]:
        """Get cached active workflows for a trigger type, or None on a miss."""
        data = await self.client.get(f"{self.ACTIVE_PREFIX}{trigger_type.value}")
        if data is None:
            return None
        return [Workflow.model_validate(w) for w in json.loads(data)]

    async def set_active_workflows(self, trigger_type: TriggerType, workflows: list[Workflow]) -> None:
        await self.client.setex(
            f"{self.ACTIVE_PREFIX}{trigger_type.value}",
            self.ttl,
            json.dumps([w.model_dump(mode="json") for w in workflows], default=str),
        )

    # ==================== Invalidation ====================

    async def invalidate_workflow(self, workflow_id: UUID, trigger_types: Optional[list[TriggerType]] = None) -> None:
        """
        Drop cached data for a workflow.

        Args:
            workflow_id: Workflow whose graph is dropped
            trigger_types: Active lists to drop; all trigger types when None
        """
        keys: list[str] = [f"{self.GRAPH_PREFIX}{workflow_id}"]
        for trigger_type in trigger_types or list(TriggerType):
            keys.append(f"{self.ACTIVE_PREFIX}{trigger_type.value}")
        await self.client.delete(*keys)
        logger.debug(f"Invalidated cache for workflow {workflow_id}")

    async def clear(self) -> None:
        """Remove every key owned by this cache."""
        for prefix in (self.GRAPH_PREFIX, self.ACTIVE_PREFIX):
            keys: list[Any] = [key async for key in self.client.scan_iter(match=f"{prefix}*")]
            if keys:
                await self.client.delete(*keys)
