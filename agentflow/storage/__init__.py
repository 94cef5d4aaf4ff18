# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Storage backends for workflows, executions, credit accounts and catalogs.
"""

from .memory import (
    CreditAccount,
    InMemoryAccountStore,
    InMemoryExecutionRecorder,
    InMemoryKnowledgeSource,
    InMemoryWorkflowStore,
    ModelCatalog,
    NodeTypeCatalog,
)
from .files import (
    JSONAccountStore,
    JSONExecutionRecorder,
    JSONKnowledgeSource,
    JSONWorkflowStore,
    load_model_catalog,
    load_node_type_catalog,
)

__all__ = [
    "CreditAccount",
    "InMemoryAccountStore",
    "InMemoryExecutionRecorder",
    "InMemoryKnowledgeSource",
    "InMemoryWorkflowStore",
    "ModelCatalog",
    "NodeTypeCatalog",
    "JSONAccountStore",
    "JSONExecutionRecorder",
    "JSONKnowledgeSource",
    "JSONWorkflowStore",
    "load_model_catalog",
    "load_node_type_catalog",
]
