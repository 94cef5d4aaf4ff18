# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Service layer for agentflow.
"""

from .execution_service import ExecutionService
from .session_service import SessionService

__all__ = ["ExecutionService", "SessionService"]
