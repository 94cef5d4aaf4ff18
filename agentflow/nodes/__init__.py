# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Built-in workflow node types.
"""

from .base import BaseNode, NodeDependencies
from .start import StartNode
from .llm import LLMNode
from .end import EndNode
from .knowledge import KnowledgeNode
from .classifier import ClassifierNode
from .ai_client import AIClient, AIProviderError

__all__ = [
    "BaseNode",
    "NodeDependencies",
    "StartNode",
    "LLMNode",
    "EndNode",
    "KnowledgeNode",
    "ClassifierNode",
    "AIClient",
    "AIProviderError",
]
