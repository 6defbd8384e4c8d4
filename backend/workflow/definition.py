"""Workflow definition parsing and validation.

Definition schema (stored in ``Workflow.definition``):
{
    "variables": {"notice_days": 30},
    "nodes": [
        {"id": "start", "type": "trigger", "config": {"event": "contract.expiring"}},
        {"id": "task", "type": "action",
         "config": {"action_type": "create_task", "params": {"title": "..."}}},
        {"id": "check", "type": "condition",
         "config": {"field": "trigger.priority", "operator": "equals", "value": "high"},
         "true_branch": "email", "false_branch": "pause"},
        {"id": "pause", "type": "wait", "config": {"duration": "24h"}},
        ...
    ],
    "edges": [
        {"source": "start", "target": "task"},
        {"source": "check", "target": "email", "branch": "true"},
        ...
    ]
}

Edges are folded into ``next_node_id`` / ``true_branch`` / ``false_branch``
when the node does not already set them. camelCase keys
(``nextNodeId``, ``trueBranch``, ``falseBranch``, ``sourceHandle``) are
accepted.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from core.constants import NodeType
from core.exceptions import WorkflowConfigError

_BRANCH_ALIASES = {
    "true": "true",
    "yes": "true",
    "false": "false",
    "no": "false",
}


@dataclass
class Node:
    """A single node in a workflow graph."""

    id: str
    type: NodeType
    config: dict[str, Any] = field(default_factory=dict)
    next_node_id: Optional[str] = None
    true_branch: Optional[str] = None
    false_branch: Optional[str] = None
    label: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Node":
        node_id = data.get("id")
        if not node_id or not isinstance(node_id, str):
            raise WorkflowConfigError(f"Node is missing a string 'id': {data!r}")
        raw_type = data.get("type")
        try:
            node_type = NodeType(raw_type)
        except ValueError:
            raise WorkflowConfigError(f"Node '{node_id}' has unknown type '{raw_type}'")
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise WorkflowConfigError(f"Node '{node_id}' config must be an object")
        return cls(
            id=node_id,
            type=node_type,
            config=config,
            next_node_id=data.get("next_node_id", data.get("nextNodeId")),
            true_branch=data.get("true_branch", data.get("trueBranch")),
            false_branch=data.get("false_branch", data.get("falseBranch")),
            label=data.get("label") or data.get("name"),
        )


@dataclass
class WorkflowDefinition:
    """Parsed, validated workflow graph."""

    nodes: dict[str, Node]
    variables: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WorkflowDefinition":
        """Parse and validate a stored definition.

        Raises:
            WorkflowConfigError: the graph is malformed.
        """
        if not data or not isinstance(data, dict):
            raise WorkflowConfigError("Workflow definition is empty")
        raw_nodes = data.get("nodes") or []
        if not isinstance(raw_nodes, list) or not raw_nodes:
            raise WorkflowConfigError("Workflow definition has no nodes")

        nodes: dict[str, Node] = {}
        for raw in raw_nodes:
            node = Node.from_dict(raw)
            if node.id in nodes:
                raise WorkflowConfigError(f"Duplicate node id '{node.id}'")
            nodes[node.id] = node

        for edge in data.get("edges") or []:
            _apply_edge(nodes, edge)

        definition = cls(nodes=nodes, variables=dict(data.get("variables") or {}))
        definition.validate()
        return definition

    def validate(self) -> None:
        triggers = [n for n in self.nodes.values() if n.type == NodeType.TRIGGER]
        if len(triggers) > 1:
            raise WorkflowConfigError("Workflow definition has more than one trigger node")
        for node in self.nodes.values():
            for target in (node.next_node_id, node.true_branch, node.false_branch):
                if target is not None and target not in self.nodes:
                    raise WorkflowConfigError(
                        f"Node '{node.id}' points at unknown node '{target}'"
                    )

    def get(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise WorkflowConfigError(f"Node '{node_id}' not found in workflow definition")
        return node

    def trigger_node(self) -> Node:
        for node in self.nodes.values():
            if node.type == NodeType.TRIGGER:
                return node
        raise WorkflowConfigError("Workflow definition has no trigger node")


def _apply_edge(nodes: dict[str, Node], edge: dict) -> None:
    source = edge.get("source")
    target = edge.get("target")
    if source not in nodes:
        raise WorkflowConfigError(f"Edge source '{source}' is not a node")
    if target not in nodes:
        raise WorkflowConfigError(f"Edge target '{target}' is not a node")

    node = nodes[source]
    raw_branch = edge.get("branch", edge.get("sourceHandle"))
    branch = _BRANCH_ALIASES.get(str(raw_branch).lower()) if raw_branch is not None else None

    if node.type == NodeType.CONDITION:
        if branch is None:
            raise WorkflowConfigError(
                f"Edge from condition node '{source}' must name a 'true' or 'false' branch"
            )
        attr = "true_branch" if branch == "true" else "false_branch"
        if getattr(node, attr) is None:
            setattr(node, attr, target)
        return

    if node.next_node_id is None:
        node.next_node_id = target
    elif node.next_node_id != target:
        raise WorkflowConfigError(f"Node '{source}' has more than one outgoing edge")
