# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Models

Pydantic models for workflow graphs, execution records and engine results.
"""

from enum import Enum
from typing import List, Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NodeExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"  # branch not taken


# ============================================================================
# Workflow Definition Models
# ============================================================================

class GraphNode(BaseModel):
    """Single node in a workflow graph"""
    model_config = ConfigDict(extra="allow")  # editor fields such as position

    id: str
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.data.get("label") or self.id


class GraphEdge(BaseModel):
    """
    Directed dependency: source must finish before target starts.

    source_handle names the output port the edge leaves from. Ports named
    "output-<category_id>" are conditional branches of a classifier.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)  # targetHandle

    source: str
    target: str
    source_handle: Optional[str] = Field(default=None, alias="sourceHandle")


class WorkflowGraph(BaseModel):
    """Node and edge lists stored with a workflow"""
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class Workflow(BaseModel):
    """Stored workflow, read-only for the engine"""
    id: str
    user_id: str
    name: str
    description: Optional[str] = None
    flow_data: WorkflowGraph = Field(default_factory=WorkflowGraph)
    is_published: bool = False


class NodeTypeConfig(BaseModel):
    """Per-type metadata: cost and availability"""
    type_key: str
    name: Optional[str] = None
    description: Optional[str] = None
    category: str = "process"
    credits_per_execution: int = Field(default=0, ge=0)
    is_active: bool = True

    @classmethod
    def default_for(cls, type_key: str) -> "NodeTypeConfig":
        """Zero-cost fallback for types without stored config"""
        return cls(type_key=type_key, name=type_key, credits_per_execution=0, is_active=True)


# ============================================================================
# Execution Records
# ============================================================================

class Execution(BaseModel):
    """One record per workflow run"""
    id: str
    workflow_id: str
    user_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Any] = None
    estimated_credits: int = 0
    total_credits_used: int = 0
    credits_refunded: int = 0
    credits_settled: bool = False
    error_message: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None


class NodeExecution(BaseModel):
    """One record per node per run"""
    id: str
    execution_id: str
    node_id: str
    node_type: str
    status: NodeExecutionStatus = NodeExecutionStatus.RUNNING
    input_data: Optional[Dict[str, Any]] = None
    output_data: Optional[Any] = None
    credits_used: int = 0
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None


# ============================================================================
# Engine Results
# ============================================================================

class NodeResult(BaseModel):
    """Value returned by a node's execute()"""
    output: Any = None
    credits_used: int = Field(default=0, ge=0)
    branch: Optional[str] = None  # output port selected by a branching node


class CreditBreakdown(BaseModel):
    estimated: int
    used: int
    refunded: int


class ExecutionResult(BaseModel):
    """Result of execute_workflow"""
    success: bool
    execution_id: str
    output: Dict[str, Any]
    credits: CreditBreakdown
    duration_ms: int
    skipped_nodes: List[str] = Field(default_factory=list)


class CancelResult(BaseModel):
    success: bool
    message: str


class WorkflowRunRequest(BaseModel):
    """Request body for running a workflow"""
    input_data: Dict[str, Any] = Field(default_factory=dict)


class SessionMessageRequest(BaseModel):
    """Request body for one conversation turn"""
    session_id: str
    message: str


# ============================================================================
# Collaborator Models
# ============================================================================

class AIModel(BaseModel):
    """Model provider entry from the model catalog"""
    name: str
    display_name: Optional[str] = None
    provider: str = "openai"
    model_id: Optional[str] = None
    api_endpoint: Optional[str] = None
    api_key: Optional[str] = None
    api_version: Optional[str] = None
    is_active: bool = True

    @property
    def label(self) -> str:
        return self.display_name or self.name


class KnowledgeItem(BaseModel):
    """Knowledge base entry readable by a knowledge node"""
    id: str
    title: str
    content: str = ""
    user_id: Optional[str] = None
    group_id: Optional[str] = None
    is_public: bool = False
    token_count: Optional[int] = None


class CreditTransaction(BaseModel):
    """Ledger entry recorded for every balance change"""
    amount: int
    balance_after: int
    reason: str
    reference: Optional[str] = None
    model_ref: Optional[str] = None
    context_ref: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)
    created_at: str
