# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Conditional Branches

A classifier selects one output port per run. Edges leaving that node from
another "output-*" port are dead, and a node whose incoming edges are all dead
is skipped. Skipping propagates: edges out of a skipped node are dead too.
"""

from typing import Any, Optional, Sequence

from .context import ExecutionContext
from .models import GraphEdge

BRANCH_HANDLE_PREFIX = "output-"


def branch_handle(category_id: str) -> str:
    """Output port name for a classifier category"""
    return f"{BRANCH_HANDLE_PREFIX}{category_id}"


def is_live_edge(edge: GraphEdge, context: ExecutionContext) -> bool:
    """
    Whether an edge carries data in this run.

    Edges from skipped nodes are dead. A branch edge is live only if its
    source selected that port; a branch edge whose source recorded no decision
    behaves like a plain edge.
    """
    if context.is_skipped(edge.source):
        return False

    handle = edge.source_handle
    if handle and handle.startswith(BRANCH_HANDLE_PREFIX):
        decision = context.branch_decisions.get(edge.source)
        if decision is not None:
            return decision == handle

    return context.is_completed(edge.source)


def should_skip_node(incoming: Sequence[GraphEdge], context: ExecutionContext) -> bool:
    """Nodes with incoming edges run only if at least one of them is live"""
    if not incoming:
        return False
    return not any(is_live_edge(edge, context) for edge in incoming)


def select_upstream(incoming: Sequence[GraphEdge], context: ExecutionContext) -> Optional[Any]:
    """Output of the first live incoming edge's source, in edge order"""
    for edge in incoming:
        if is_live_edge(edge, context):
            return context.get_result(edge.source)
    return None
