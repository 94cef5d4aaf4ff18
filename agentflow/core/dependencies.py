# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency injection for agentflow.

Provides FastAPI dependencies for services and the calling user.
Runtime objects are created in create_app() and stored in app.state.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request

from agentflow.core.errors import UnauthorizedError


@dataclass(frozen=True)
class Caller:
    """Identity of the user making the request"""
    user_id: str
    role: Optional[str] = None
    group_id: Optional[str] = None


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_group_id: Optional[str] = Header(default=None),
) -> Caller:
    """
    Resolve the caller from headers set by the authenticating gateway.

    Raises:
        UnauthorizedError: X-User-Id missing
    """
    if not x_user_id:
        raise UnauthorizedError("Missing X-User-Id header")
    return Caller(user_id=x_user_id, role=x_user_role, group_id=x_group_id)


def get_execution_service(request: Request):
    """Get ExecutionService instance from app.state (initialized in create_app)."""
    return request.app.state.execution_service


def get_session_service(request: Request):
    """Get SessionService instance from app.state (initialized in create_app)."""
    return request.app.state.session_service
