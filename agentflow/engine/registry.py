# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node Registry

Maps a node type key to the constructor that builds a live node from a graph
node. One registry instance is built per executor and passed in explicitly.
"""

from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List, Optional

from agentflow.core.logging import get_service_logger
from .models import GraphNode

if TYPE_CHECKING:
    from agentflow.nodes.base import BaseNode, NodeDependencies

logger = get_service_logger("node-registry")

NodeConstructor = Callable[[GraphNode, "NodeDependencies"], "BaseNode"]


def builtin_node_types() -> Dict[str, NodeConstructor]:
    """Built-in node implementations keyed by type"""
    from agentflow.nodes import (
        StartNode,
        LLMNode,
        EndNode,
        KnowledgeNode,
        ClassifierNode,
    )

    return {
        "start": StartNode,
        "llm": LLMNode,
        "end": EndNode,
        "knowledge": KnowledgeNode,
        "classifier": ClassifierNode,
    }


class NodeRegistry:
    """
    Type key -> node constructor table.

    Pre-seeded with the built-in node types unless register_builtins is False.
    Re-registering a key replaces the previous constructor with a warning.
    """

    def __init__(self, dependencies: Optional["NodeDependencies"] = None, register_builtins: bool = True):
        self.dependencies = dependencies
        self._constructors: Dict[str, NodeConstructor] = {}

        if register_builtins:
            for type_key, constructor in builtin_node_types().items():
                self.register(type_key, constructor)
            logger.info(f"Node registry initialized with {len(self._constructors)} types")

    def register(self, type_key: str, constructor: NodeConstructor) -> None:
        """Register or override a node type"""
        if type_key in self._constructors:
            logger.warning(f"Overriding registered node type: {type_key}")
        self._constructors[type_key] = constructor
        logger.debug(f"Registered node type: {type_key}")

    def get(self, type_key: str) -> Optional[NodeConstructor]:
        return self._constructors.get(type_key)

    def has(self, type_key: str) -> bool:
        return type_key in self._constructors

    def registered_types(self) -> List[str]:
        return list(self._constructors)

    def single_predecessor_types(self) -> FrozenSet[str]:
        """Types whose nodes must have exactly one incoming edge"""
        return frozenset(
            type_key for type_key, constructor in self._constructors.items()
            if getattr(constructor, "requires_single_predecessor", False)
        )

    def create_instance(self, node: GraphNode) -> Optional["BaseNode"]:
        """
        Build a live node for a graph node.

        Returns None if the type is not registered.
        """
        constructor = self.get(node.type)
        if constructor is None:
            logger.warning(f"Unknown node type: {node.type} (node {node.id})")
            return None
        return constructor(node, self.dependencies)
