# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Core utilities and shared modules for agentflow.

This package contains:
- config: Configuration management
- dependencies: Dependency injection
- errors: Custom exceptions
- logging: Structured logging
"""

from agentflow.core.config import get_config, Config
from agentflow.core.errors import AgentFlowError, NotFoundError, ValidationError
from agentflow.core.logging import get_logger

__all__ = [
    "get_config",
    "Config",
    "AgentFlowError",
    "NotFoundError",
    "ValidationError",
    "get_logger",
]
