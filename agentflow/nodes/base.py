# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node Contract

Every node type subclasses BaseNode and implements validate() and execute().
Nodes read context but never write to it; the executor records outputs.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from agentflow.core.errors import NotFoundError, ValidationError
from agentflow.core.logging import get_service_logger, log_event
from agentflow.engine.context import ExecutionContext
from agentflow.engine.models import AIModel, GraphNode, NodeResult, NodeTypeConfig
from agentflow.engine.variables import substitute_variables

logger = get_service_logger("nodes")


@dataclass
class NodeDependencies:
    """Collaborators handed to every node instance"""
    ai_client: Any = None
    model_catalog: Any = None
    knowledge_source: Any = None
    classifier_timeout: float = 60.0


class BaseNode:
    """Base class for workflow node implementations."""

    # Nodes of this type must have exactly one incoming edge
    requires_single_predecessor = False

    def __init__(self, node: GraphNode, dependencies: Optional[NodeDependencies] = None):
        self.id = node.id
        self.type = node.type
        self.data: Dict[str, Any] = node.data or {}
        self.label = node.label
        self.dependencies = dependencies or NodeDependencies()

    def get_config(self, key: str, default: Any = None) -> Any:
        """Read node config from data.config first, then data"""
        config = self.data.get("config")
        if isinstance(config, dict) and config.get(key) is not None:
            return config[key]
        if self.data.get(key) is not None:
            return self.data[key]
        return default

    def validate(self) -> List[str]:
        """Return configuration errors; empty means valid"""
        return []

    async def execute(
        self,
        context: ExecutionContext,
        user_id: str,
        type_config: NodeTypeConfig,
    ) -> NodeResult:
        raise NotImplementedError(f"Node type {self.type} does not implement execute()")

    def replace_variables(self, text: Any, context: ExecutionContext) -> Any:
        return substitute_variables(text, context.variables)

    def log(self, level: str, message: str, **fields: Any) -> None:
        log_event(logger, f"[Node {self.type}:{self.id}] {message}", level=level, node_id=self.id, **fields)

    async def resolve_model(self, model_name: str) -> AIModel:
        """Look up an active model in the catalog"""
        catalog = self.dependencies.model_catalog
        if catalog is None:
            raise ValidationError("No model catalog configured", field="model")
        model = await catalog.find_by_name(model_name)
        if model is None:
            raise NotFoundError("AI model", model_name)
        if not model.is_active:
            raise ValidationError(f"AI model is disabled: {model.label}", field="model")
        return model

    async def call_model(self, model: AIModel, messages: List[Dict[str, str]], options: Dict[str, Any]) -> str:
        if self.dependencies.ai_client is None:
            raise ValidationError("No AI client configured", field="model")
        return await self.dependencies.ai_client.call(model, messages, options)


def recent_history(context: ExecutionContext, history_turns: int) -> List[Dict[str, str]]:
    """Last `history_turns` exchanges (two messages each) from input.messages"""
    messages = context.input.get("messages") or []
    if history_turns <= 0 or not messages:
        return []
    return list(messages[-history_turns * 2:])


def to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
