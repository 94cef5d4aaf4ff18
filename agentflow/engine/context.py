# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Execution Context

Tracks execution state for a workflow run.
"""

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from datetime import datetime, timezone


class ExecutionContext:
    """
    Execution context for a workflow run.

    Tracks:
    - Caller input and identity
    - Node outputs (append-only, one entry per completed node)
    - The upstream output visible to the node currently executing
    - Branch decisions of classifier nodes and the nodes they cut off
    - Cooperative cancellation flag
    """

    def __init__(
        self,
        input: Optional[Dict[str, Any]],
        user_id: str,
        workflow_id: str,
        execution_id: Optional[str] = None,
        group_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ):
        self.input: Dict[str, Any] = dict(input or {})
        self.user_id = user_id
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.group_id = group_id
        self.user_role = user_role
        self.started_at = datetime.now(timezone.utc).isoformat()
        self.completed_at: Optional[str] = None

        self.upstream_output: Any = None
        self.cancel_requested = False

        # Node execution tracking
        self._outputs: Dict[str, Any] = {}
        self.completed_nodes: List[str] = []

        # node_id -> selected output port
        self.branch_decisions: Dict[str, str] = {}
        self.skipped_nodes: List[str] = []

    @property
    def variables(self) -> Mapping[str, Any]:
        """Read-only view of node_id -> output"""
        return MappingProxyType(self._outputs)

    def record_output(self, node_id: str, output: Any) -> None:
        """Record a completed node's output. Each node id is recorded once."""
        if node_id in self._outputs:
            raise ValueError(f"Output already recorded for node: {node_id}")
        self._outputs[node_id] = output
        self.completed_nodes.append(node_id)

    def is_completed(self, node_id: str) -> bool:
        """Check if a node has completed"""
        return node_id in self._outputs

    def get_result(self, node_id: str) -> Any:
        """Get output for a completed node"""
        return self._outputs.get(node_id)

    def snapshot_variables(self) -> Dict[str, Any]:
        """Shallow copy of the outputs visible right now"""
        return dict(self._outputs)

    def finalize(self) -> None:
        """Mark execution as complete"""
        self.completed_at = datetime.now(timezone.utc).isoformat()

    def record_branch(self, node_id: str, handle: str) -> None:
        """Remember the output port a branching node selected"""
        self.branch_decisions[node_id] = handle

    def mark_skipped(self, node_id: str) -> None:
        if node_id not in self.skipped_nodes:
            self.skipped_nodes.append(node_id)

    def is_skipped(self, node_id: str) -> bool:
        return node_id in self.skipped_nodes
