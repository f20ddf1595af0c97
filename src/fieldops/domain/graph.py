"""
Validated snapshot of a brand's diagnostic graph.

A WorkflowGraph is built once per run start (or resume) from the nodes and
edges fetched for a brand, and is immutable afterwards.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from typing import Any

from fieldops.domain.diagnostics import (
    CheckNode,
    DiagnosticEdge,
    EdgeCondition,
    EndNode,
    RepairNode,
    parse_edges,
    parse_nodes,
)
from fieldops.domain.exceptions import GraphDefinitionError

Node = CheckNode | RepairNode | EndNode


def compute_graph_hash(
    nodes: Iterable[Node], edges: Iterable[DiagnosticEdge]
) -> str:
    """Compute a content hash of a (nodes, edges) snapshot.

    Produces a deterministic hash by:
    1. Sorting nodes and edges by id so fetch order does not matter
    2. Canonical JSON serialization (sorted keys, no whitespace)
    3. SHA-256 of the canonical form

    Returns:
        Hex-encoded SHA-256 hash string.
    """
    snapshot = {
        "nodes": sorted(
            (n.model_dump(mode="json") for n in nodes), key=lambda n: n["id"]
        ),
        "edges": sorted(
            (e.model_dump(mode="json") for e in edges),
            key=lambda e: (e["from_node_id"], e["condition"], e["to_node_id"]),
        ),
    }
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class WorkflowGraph:
    """
    Directed graph of check/repair/end nodes with conditional edges.

    The first node (in fetch order) is the entry point of a run.

    Raises:
        GraphDefinitionError: On an empty graph, an edge pointing at an
            unknown node, or two edges with the same condition leaving one
            node
    """

    def __init__(self, nodes: Sequence[Node], edges: Sequence[DiagnosticEdge]):
        if not nodes:
            raise GraphDefinitionError("Workflow has no nodes")

        self._nodes: dict[str, Node] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise GraphDefinitionError(f"Duplicate node id: {node.id}")
            self._nodes[node.id] = node
        self._order = tuple(n.id for n in nodes)

        self._edges: dict[tuple[str, EdgeCondition], str] = {}
        for edge in edges:
            for endpoint in (edge.from_node_id, edge.to_node_id):
                if endpoint not in self._nodes:
                    raise GraphDefinitionError(
                        f"Edge {edge.id or '?'} references unknown node {endpoint}"
                    )
            key = (edge.from_node_id, edge.condition)
            if key in self._edges:
                raise GraphDefinitionError(
                    f"Node {edge.from_node_id} has more than one "
                    f"'{edge.condition.value}' edge"
                )
            self._edges[key] = edge.to_node_id

        self.version_hash = compute_graph_hash(nodes, edges)

    @classmethod
    def from_records(
        cls, node_records: list[dict[str, Any]], edge_records: list[dict[str, Any]]
    ) -> WorkflowGraph:
        """Build from raw store records, validating node payloads."""
        try:
            nodes = parse_nodes(node_records)
            edges = parse_edges(edge_records)
        except ValueError as e:
            raise GraphDefinitionError(f"Invalid workflow definition: {e}") from e
        return cls(nodes, edges)

    @property
    def first_node(self) -> Node:
        return self._nodes[self._order[0]]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise GraphDefinitionError(f"Unknown node: {node_id}") from None

    def follow(self, node_id: str, condition: EdgeCondition) -> Node | None:
        """
        Node reached from ``node_id`` under ``condition``.

        Repair nodes only ever advance along ``next``. Returns None when no
        edge matches (the branch is exhausted).
        """
        source = self.node(node_id)
        if isinstance(source, RepairNode) and condition != EdgeCondition.NEXT:
            return None
        target = self._edges.get((node_id, condition))
        return self._nodes[target] if target is not None else None
