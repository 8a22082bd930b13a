"""
Workflow graph indexing and structural validation.

Cycle detection uses Kahn's algorithm; reachability uses BFS from the trigger.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from automation_engine.core.exceptions import InvalidWorkflowGraphError, MissingTriggerError
from automation_engine.core.models import (
    ConditionNode,
    Connection,
    ConnectionType,
    Node,
    TriggerNode,
)


@dataclass
class ValidationError:
    """Represents a single validation error."""

    code: str
    message: str
    node_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidationResult:
    """Result of graph validation."""

    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)
    topological_order: list[str] = field(default_factory=list)

    def add_error(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Add a validation error."""
        self.errors.append(ValidationError(code, message, node_id, details))
        self.is_valid = False

    def add_warning(
        self,
        code: str,
        message: str,
        node_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Add a validation warning."""
        self.warnings.append(ValidationError(code, message, node_id, details))

    def has_error(self, code: str) -> bool:
        return any(error.code == code for error in self.errors)


class WorkflowGraph:
    """
    Indexed view over a workflow's nodes and connections.

    Outbound edges keep their listing order, which is the traversal order
    for nodes with several successors.
    """

    def __init__(self, nodes: Iterable[Node], connections: Iterable[Connection]):
        self.nodes: list[Node] = list(nodes)
        self.connections: list[Connection] = list(connections)
        self._node_map: dict[str, Node] = {node.id: node for node in self.nodes}
        self._outbound: dict[str, list[Connection]] = defaultdict(list)
        self._inbound: dict[str, list[Connection]] = defaultdict(list)

        for connection in self.connections:
            self._outbound[connection.source_node_id].append(connection)
            self._inbound[connection.target_node_id].append(connection)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._node_map.get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    @property
    def triggers(self) -> list[TriggerNode]:
        return [node for node in self.nodes if isinstance(node, TriggerNode)]

    @property
    def trigger(self) -> Optional[TriggerNode]:
        """The unique entry node, or None if there is not exactly one."""
        triggers = self.triggers
        return triggers[0] if len(triggers) == 1 else None

    def outbound(self, node_id: str) -> list[Connection]:
        return list(self._outbound.get(node_id, []))

    def successors(self, node_id: str, label: Optional[ConnectionType] = None) -> list[str]:
        """
        Target node ids of a node's outbound edges, in listing order.

        Args:
            node_id: Source node
            label: If given, only edges with this branch label are followed

        Returns:
            Target ids that exist in the graph, without duplicates
        """
        targets: list[str] = []
        for connection in self._outbound.get(node_id, []):
            if label is not None and connection.connection_type != label:
                continue
            target = connection.target_node_id
            if target in self._node_map and target not in targets:
                targets.append(target)
        return targets

    def validate(self) -> ValidationResult:
        """
        Perform full structural validation.

        Returns:
            ValidationResult with errors, warnings and a topological order
        """
        result = ValidationResult(is_valid=True)

        self._validate_trigger(result)
        self._validate_edge_references(result)
        self._validate_condition_edges(result)
        self._detect_cycles(result)
        self._check_unreachable_nodes(result)

        return result

    def ensure_valid(self, workflow_id: Any = None) -> ValidationResult:
        """
        Validate and raise on the first structural problem.

        Raises:
            MissingTriggerError: If the graph has no trigger node
            InvalidWorkflowGraphError: For every other structural error
        """
        result = self.validate()
        if result.has_error("MISSING_TRIGGER"):
            raise MissingTriggerError(workflow_id)
        if not result.is_valid:
            raise InvalidWorkflowGraphError(
                "; ".join(error.message for error in result.errors),
                errors=result.errors,
            )
        return result

    def _validate_trigger(self, result: ValidationResult) -> None:
        """Exactly one trigger, with no inbound edges."""
        triggers = self.triggers
        if not triggers:
            result.add_error(
                code="MISSING_TRIGGER",
                message="Workflow has no trigger node",
            )
            return

        if len(triggers) > 1:
            result.add_error(
                code="MULTIPLE_TRIGGERS",
                message=f"Workflow has {len(triggers)} trigger nodes: {[t.id for t in triggers]}",
                trigger_ids=[t.id for t in triggers],
            )

        for trigger in triggers:
            if self._inbound.get(trigger.id):
                result.add_error(
                    code="TRIGGER_HAS_INBOUND",
                    message=f"Trigger node '{trigger.id}' has inbound connections",
                    node_id=trigger.id,
                )

    def _validate_edge_references(self, result: ValidationResult) -> None:
        """Validate that every edge references existing nodes."""
        for connection in self.connections:
            for end in (connection.source_node_id, connection.target_node_id):
                if end not in self._node_map:
                    result.add_error(
                        code="INVALID_EDGE",
                        message=f"Connection '{connection.id}' references non-existent node '{end}'",
                        node_id=end,
                        connection_id=connection.id,
                    )

    def _validate_condition_edges(self, result: ValidationResult) -> None:
        """Condition outbound edges must carry a true/false label."""
        for node in self.nodes:
            if not isinstance(node, ConditionNode):
                continue
            for connection in self._outbound.get(node.id, []):
                if connection.connection_type is None:
                    result.add_error(
                        code="UNLABELED_CONDITION_EDGE",
                        message=(
                            f"Connection '{connection.id}' leaves condition node "
                            f"'{node.id}' without a true/false label"
                        ),
                        node_id=node.id,
                        connection_id=connection.id,
                    )

    def _detect_cycles(self, result: ValidationResult) -> None:
        """Kahn's algorithm over edges between known nodes."""
        in_degree = {node_id: 0 for node_id in self._node_map}
        adjacency: dict[str, list[str]] = defaultdict(list)
        for connection in self.connections:
            source, target = connection.source_node_id, connection.target_node_id
            if source in self._node_map and target in self._node_map:
                adjacency[source].append(target)
                in_degree[target] += 1

        queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []

        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for neighbor in adjacency[node_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(order) != len(self._node_map):
            cycle_nodes = sorted(set(self._node_map) - set(order))
            result.add_error(
                code="CYCLE_DETECTED",
                message=f"Workflow contains a cycle involving nodes: {cycle_nodes}",
                cycle_nodes=cycle_nodes,
            )
        else:
            result.topological_order = order

    def _check_unreachable_nodes(self, result: ValidationResult) -> None:
        """Warn about nodes the trigger can never reach."""
        trigger = self.trigger
        if trigger is None:
            return

        reachable = {trigger.id}
        queue = deque([trigger.id])
        while queue:
            node_id = queue.popleft()
            for neighbor in self.successors(node_id):
                if neighbor not in reachable:
                    reachable.add(neighbor)
                    queue.append(neighbor)

        unreachable = sorted(set(self._node_map) - reachable)
        if unreachable:
            result.add_warning(
                code="UNREACHABLE_NODES",
                message=f"Nodes {unreachable} are not reachable from the trigger",
                unreachable_nodes=unreachable,
            )
