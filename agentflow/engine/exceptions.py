# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Exceptions

Typed failures raised by validation, scheduling, credit accounting and
execution. Each maps onto the core error hierarchy so the API layer can
render it with the right status code.
"""

from typing import List, Optional

from agentflow.core.errors import (
    ConflictError,
    ExecutionError,
    ForbiddenError,
    PaymentRequiredError,
    ValidationError,
)


class WorkflowValidationError(ValidationError):
    """Workflow graph failed structural validation"""
    pass


class GraphIntegrityError(WorkflowValidationError):
    """Cycle, dangling edge reference or graph without a source node"""
    pass


class UnknownNodeTypeError(WorkflowValidationError):
    """Node type is not registered"""
    def __init__(self, node_type: str):
        super().__init__(f"Unknown node type: {node_type}", field="nodes")
        self.node_type = node_type


class NodeTypeInactiveError(WorkflowValidationError):
    """Node type is configured but disabled"""
    def __init__(self, node_type: str):
        super().__init__(f"Node type is disabled: {node_type}", field="nodes")
        self.node_type = node_type


class NodeConfigurationError(WorkflowValidationError):
    """Node reported configuration errors from validate()"""
    def __init__(self, node_id: str, node_type: str, errors: List[str]):
        super().__init__(
            f"Node '{node_id}' ({node_type}) configuration error: {', '.join(errors)}",
            field=f"nodes[{node_id}]",
            details={"node_id": node_id, "errors": errors},
        )
        self.node_id = node_id
        self.node_type = node_type
        self.errors = errors


class WorkflowNotPublishedError(ForbiddenError):
    """Workflow must be published before it can run"""
    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow is not published: {workflow_id}", resource="workflow")
        self.workflow_id = workflow_id


class InsufficientCreditsError(PaymentRequiredError):
    """Ledger balance does not cover the estimated cost"""
    def __init__(self, required: int, balance: int):
        super().__init__(
            f"Insufficient credits: {required} required, balance is {balance}",
            details={"required": required, "balance": balance},
        )
        self.required = required
        self.balance = balance


class NodeExecutionError(ExecutionError):
    """A node's execute() raised"""
    def __init__(self, node_id: str, node_type: str, message: str, execution_id: Optional[str] = None):
        super().__init__(
            f"Node '{node_id}' ({node_type}) failed: {message}",
            execution_id=execution_id,
            details={"node_id": node_id, "node_type": node_type},
        )
        self.node_id = node_id
        self.node_type = node_type


class ExecutionTimeoutError(ExecutionError):
    """Wall-clock budget exceeded between nodes"""
    def __init__(self, budget_seconds: float, execution_id: Optional[str] = None):
        super().__init__(
            f"Execution exceeded time budget ({budget_seconds:g}s)",
            execution_id=execution_id,
            details={"budget_seconds": budget_seconds},
        )
        self.status_code = 504
        self.budget_seconds = budget_seconds


class ExecutionStateError(ConflictError):
    """Execution is not in a state that allows the operation"""
    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message, resource="execution", details={"status": status})
        self.status = status


class ExecutionCancelledError(ExecutionStateError):
    """Run stopped because it was cancelled out of band"""
    def __init__(self, execution_id: str):
        super().__init__(f"Execution was cancelled: {execution_id}", status="cancelled")
        self.execution_id = execution_id
