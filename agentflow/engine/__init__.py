# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Execution Engine

Sequential DAG execution with two-phase credit accounting.
"""

from .models import (
    GraphNode,
    GraphEdge,
    WorkflowGraph,
    Workflow,
    NodeTypeConfig,
    Execution,
    NodeExecution,
    ExecutionStatus,
    NodeExecutionStatus,
    NodeResult,
    ExecutionResult,
    CancelResult,
)
from .context import ExecutionContext
from .branching import branch_handle, should_skip_node, select_upstream
from .validation import validate_graph, topological_sort
from .variables import substitute_variables
from .output import normalize_output
from .registry import NodeRegistry
from .credits import CreditAccountingCoordinator, CreditReservation
from .executor import WorkflowExecutor
from .exceptions import (
    WorkflowValidationError,
    GraphIntegrityError,
    UnknownNodeTypeError,
    NodeTypeInactiveError,
    NodeConfigurationError,
    WorkflowNotPublishedError,
    InsufficientCreditsError,
    NodeExecutionError,
    ExecutionTimeoutError,
    ExecutionStateError,
    ExecutionCancelledError,
)

__all__ = [
    "GraphNode",
    "GraphEdge",
    "WorkflowGraph",
    "Workflow",
    "NodeTypeConfig",
    "Execution",
    "NodeExecution",
    "ExecutionStatus",
    "NodeExecutionStatus",
    "NodeResult",
    "ExecutionResult",
    "CancelResult",
    "ExecutionContext",
    "branch_handle",
    "should_skip_node",
    "select_upstream",
    "validate_graph",
    "topological_sort",
    "substitute_variables",
    "normalize_output",
    "NodeRegistry",
    "CreditAccountingCoordinator",
    "CreditReservation",
    "WorkflowExecutor",
    "WorkflowValidationError",
    "GraphIntegrityError",
    "UnknownNodeTypeError",
    "NodeTypeInactiveError",
    "NodeConfigurationError",
    "WorkflowNotPublishedError",
    "InsufficientCreditsError",
    "NodeExecutionError",
    "ExecutionTimeoutError",
    "ExecutionStateError",
    "ExecutionCancelledError",
]
