# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Graph Validation

Structural checks and execution ordering (Kahn's algorithm).
"""

from typing import Dict, FrozenSet, Iterable, List, Sequence
from collections import deque

from .models import GraphNode, GraphEdge
from .exceptions import WorkflowValidationError, GraphIntegrityError

START_NODE_TYPE = "start"


def validate_graph(
    nodes: Sequence[GraphNode],
    edges: Sequence[GraphEdge],
    single_predecessor_types: Iterable[str] = frozenset({"llm"}),
) -> None:
    """
    Validate workflow graph shape before any resource is committed.

    Rules, in order:
    1. At least one node
    2. Exactly one start node
    3. Nodes of single-predecessor types have exactly one incoming edge
    4. Node ids are unique
    5. Every edge references a declared node

    No end node is required. Raises WorkflowValidationError on the first violation.
    """
    # 1. Empty workflow check
    if len(nodes) == 0:
        raise WorkflowValidationError("Workflow must have at least one node", field="nodes")

    # 2. Exactly one start node
    start_nodes = [node for node in nodes if node.type == START_NODE_TYPE]
    if len(start_nodes) == 0:
        raise WorkflowValidationError("Workflow must have a start node", field="nodes")
    if len(start_nodes) > 1:
        raise WorkflowValidationError(
            f"Workflow must have exactly one start node, found {len(start_nodes)}",
            field="nodes"
        )

    # 3. Single-predecessor rule
    restricted: FrozenSet[str] = frozenset(single_predecessor_types)
    incoming: Dict[str, int] = {}
    for edge in edges:
        incoming[edge.target] = incoming.get(edge.target, 0) + 1

    for node in nodes:
        if node.type not in restricted:
            continue
        count = incoming.get(node.id, 0)
        if count == 0:
            raise WorkflowValidationError(
                f"Node '{node.label}' must have an incoming connection",
                field=f"nodes[{node.id}]"
            )
        if count > 1:
            raise WorkflowValidationError(
                f"Node '{node.label}' can only have one incoming connection, found {count}",
                field=f"nodes[{node.id}]"
            )

    # 4. Duplicate node IDs
    node_ids = [node.id for node in nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
        raise WorkflowValidationError(f"Duplicate node IDs found: {duplicates}", field="nodes")

    # 5. Invalid edge references
    _check_edge_references(set(node_ids), edges)


def _check_edge_references(node_ids: set, edges: Sequence[GraphEdge]) -> None:
    for edge in edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in node_ids:
                raise GraphIntegrityError(
                    f"Edge references non-existent node: {endpoint}",
                    field="edges"
                )


def topological_sort(nodes: Sequence[GraphNode], edges: Sequence[GraphEdge]) -> List[GraphNode]:
    """
    Perform topological sort using Kahn's algorithm.

    Ready nodes are scheduled in declaration order, and neighbours are released
    in edge order, so a fixed graph always yields the same sequence.

    Detects:
    - Dangling edge references
    - Graphs without a source node
    - Cycles (including self-loops)

    Returns nodes in execution order.

    Raises GraphIntegrityError if the graph is not a DAG.
    """
    by_id: Dict[str, GraphNode] = {node.id: node for node in nodes}

    # Build adjacency list and in-degree count
    graph: Dict[str, List[str]] = {node.id: [] for node in nodes}
    in_degree: Dict[str, int] = {node.id: 0 for node in nodes}

    for edge in edges:
        if edge.source not in graph or edge.target not in graph:
            missing = edge.source if edge.source not in graph else edge.target
            raise GraphIntegrityError(
                f"Edge references non-existent node: {missing}",
                field="edges"
            )
        graph[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    # Seed with source nodes in declaration order
    queue = deque([node.id for node in nodes if in_degree[node.id] == 0])

    if not queue:
        raise GraphIntegrityError(
            "No start node found (all nodes have incoming edges)",
            field="edges"
        )

    # Kahn's algorithm
    order: List[str] = []

    while queue:
        node_id = queue.popleft()
        order.append(node_id)

        for neighbor in graph[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(order) != len(by_id):
        seen = set(order)
        unprocessed = [node.id for node in nodes if node.id not in seen]
        raise GraphIntegrityError(
            f"Cycle detected in workflow graph involving nodes: {unprocessed}",
            field="edges"
        )

    return [by_id[node_id] for node_id in order]


def incoming_edges(edges: Sequence[GraphEdge]) -> Dict[str, List[GraphEdge]]:
    """Map node_id -> its incoming edges, in edge order"""
    incoming: Dict[str, List[GraphEdge]] = {}
    for edge in edges:
        incoming.setdefault(edge.target, []).append(edge)
    return incoming
