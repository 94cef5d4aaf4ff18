# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Test Fixtures and Utilities

Provides graph builders, in-memory collaborators and an executor wired with
the built-in node types and a mocked AI client.
"""

import os
import sys
from typing import Any, Dict, List, Tuple
from unittest.mock import AsyncMock

import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from agentflow.core.config import Config
from agentflow.engine.executor import WorkflowExecutor
from agentflow.engine.models import (
    AIModel,
    GraphEdge,
    GraphNode,
    NodeTypeConfig,
    Workflow,
    WorkflowGraph,
)
from agentflow.engine.registry import NodeRegistry
from agentflow.nodes.base import NodeDependencies
from agentflow.storage.memory import (
    CreditAccount,
    InMemoryAccountStore,
    InMemoryExecutionRecorder,
    InMemoryKnowledgeSource,
    InMemoryWorkflowStore,
    ModelCatalog,
    NodeTypeCatalog,
)


# ============================================================================
# Graph Builders
# ============================================================================

def node(node_id: str, node_type: str, **config: Any) -> GraphNode:
    """Graph node with its settings under data.config"""
    data: Dict[str, Any] = {"label": node_id}
    if config:
        data["config"] = config
    return GraphNode(id=node_id, type=node_type, data=data)


def llm(node_id: str, **config: Any) -> GraphNode:
    return node(node_id, "llm", model=config.pop("model", "test-model"), **config)


def edges(*pairs: Tuple[str, str]) -> List[GraphEdge]:
    return [GraphEdge(source=source, target=target) for source, target in pairs]


def make_workflow(
    nodes: List[GraphNode],
    edge_list: List[GraphEdge],
    workflow_id: str = "wf-1",
    owner: str = "user-1",
    published: bool = True,
) -> Workflow:
    return Workflow(
        id=workflow_id,
        user_id=owner,
        name=f"Workflow {workflow_id}",
        flow_data=WorkflowGraph(nodes=nodes, edges=edge_list),
        is_published=published,
    )


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def config():
    """Engine config with defaults"""
    return Config()


@pytest.fixture
def node_types():
    """Node type catalog: llm costs 10, classifier 5, the rest are free"""
    return NodeTypeCatalog([
        NodeTypeConfig(type_key="start", credits_per_execution=0),
        NodeTypeConfig(type_key="llm", credits_per_execution=10),
        NodeTypeConfig(type_key="classifier", credits_per_execution=5),
        NodeTypeConfig(type_key="knowledge", credits_per_execution=0),
        NodeTypeConfig(type_key="end", credits_per_execution=0),
    ])


@pytest.fixture
def model_catalog():
    return ModelCatalog([
        AIModel(name="test-model", display_name="Test Model", api_endpoint="http://models.test/v1", api_key="k"),
        AIModel(name="disabled-model", api_endpoint="http://models.test/v1", is_active=False),
    ])


@pytest.fixture
def ai_client():
    """Mock AI client returning a fixed reply"""
    client = AsyncMock()
    client.call = AsyncMock(return_value="model text")
    return client


@pytest.fixture
def knowledge_source():
    return InMemoryKnowledgeSource()


@pytest.fixture
def dependencies(ai_client, model_catalog, knowledge_source):
    return NodeDependencies(ai_client=ai_client, model_catalog=model_catalog, knowledge_source=knowledge_source)


@pytest.fixture
def registry(dependencies):
    return NodeRegistry(dependencies)


@pytest.fixture
def workflow_store():
    return InMemoryWorkflowStore()


@pytest.fixture
def recorder():
    return InMemoryExecutionRecorder()


@pytest.fixture
def account():
    """Owner of the test workflows, 100 credits"""
    return CreditAccount(user_id="user-1", credits=100)


@pytest.fixture
def accounts(account):
    return InMemoryAccountStore([
        account,
        CreditAccount(user_id="user-2", credits=100),
        CreditAccount(user_id="admin", credits=100, role="super_admin"),
    ])


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def executor(workflow_store, recorder, accounts, node_types, registry, config, clock):
    """Executor over in-memory collaborators"""
    return WorkflowExecutor(
        workflow_store=workflow_store,
        recorder=recorder,
        accounts=accounts,
        node_types=node_types,
        registry=registry,
        config=config,
        clock=clock,
    )


@pytest.fixture
def add_workflow(workflow_store):
    """Store a workflow built from nodes and edges"""
    def _add(nodes: List[GraphNode], edge_list: List[GraphEdge], **kwargs: Any) -> Workflow:
        workflow = make_workflow(nodes, edge_list, **kwargs)
        workflow_store.add(workflow)
        return workflow
    return _add
