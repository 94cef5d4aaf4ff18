# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Agent Workflow API Routes

Execution, cancellation, history and statistics for agent workflows, plus
multi-turn test sessions.
Errors raised by the service propagate to the AgentFlowError handler.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from agentflow.core.dependencies import Caller, get_caller, get_execution_service, get_session_service
from agentflow.engine.models import (
    CancelResult,
    ExecutionResult,
    ExecutionStatus,
    SessionMessageRequest,
    WorkflowRunRequest,
)
from agentflow.services.execution_service import ExecutionService
from agentflow.services.session_service import SessionService

router = APIRouter(prefix="/agent", tags=["agent"])


@router.get("/node-types")
async def list_node_types(
    service: ExecutionService = Depends(get_execution_service)
) -> List[Dict[str, Any]]:
    """List active node types with their per-execution cost"""
    return await service.list_node_types()


@router.post("/workflows/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    request: Optional[WorkflowRunRequest] = None,
    caller: Caller = Depends(get_caller),
    service: ExecutionService = Depends(get_execution_service)
) -> ExecutionResult:
    """Execute a published workflow"""
    return await service.run_workflow(
        workflow_id,
        caller.user_id,
        request.input_data if request else {},
        group_id=caller.group_id,
        user_role=caller.role,
    )


@router.post("/executions/{execution_id}/cancel")
async def cancel_execution(
    execution_id: str,
    caller: Caller = Depends(get_caller),
    service: ExecutionService = Depends(get_execution_service)
) -> CancelResult:
    """Cancel a running execution"""
    return await service.cancel_execution(execution_id, caller.user_id)


@router.get("/executions")
async def list_executions(
    workflow_id: Optional[str] = None,
    status: Optional[ExecutionStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    caller: Caller = Depends(get_caller),
    service: ExecutionService = Depends(get_execution_service)
) -> Dict[str, Any]:
    """List the caller's executions, newest first"""
    return await service.list_executions(
        caller.user_id,
        workflow_id=workflow_id,
        status=status.value if status else None,
        page=page,
        limit=limit,
    )


@router.get("/executions/{execution_id}")
async def get_execution(
    execution_id: str,
    caller: Caller = Depends(get_caller),
    service: ExecutionService = Depends(get_execution_service)
) -> Dict[str, Any]:
    """Get an execution with its node executions"""
    return await service.get_execution(execution_id, caller.user_id, caller.role)


@router.delete("/executions/{execution_id}")
async def delete_execution(
    execution_id: str,
    caller: Caller = Depends(get_caller),
    service: ExecutionService = Depends(get_execution_service)
) -> Dict[str, str]:
    """Delete a finished execution"""
    return await service.delete_execution(execution_id, caller.user_id)


@router.get("/stats")
async def get_stats(
    caller: Caller = Depends(get_caller),
    service: ExecutionService = Depends(get_execution_service)
) -> Dict[str, int]:
    """Execution statistics for the caller"""
    return await service.get_stats(caller.user_id)


# ============================================================================
# Test Sessions
# ============================================================================

@router.post("/workflows/{workflow_id}/test/session")
async def create_test_session(
    workflow_id: str,
    caller: Caller = Depends(get_caller),
    sessions: SessionService = Depends(get_session_service)
) -> Dict[str, str]:
    """Open a conversation session on a workflow"""
    return await sessions.create_session(workflow_id, caller.user_id)


@router.post("/workflows/{workflow_id}/test/message")
async def send_test_message(
    workflow_id: str,
    request: SessionMessageRequest,
    caller: Caller = Depends(get_caller),
    sessions: SessionService = Depends(get_session_service)
) -> Dict[str, Any]:
    """Run the workflow for one message with the session history"""
    return await sessions.send_message(
        workflow_id,
        request.session_id,
        request.message,
        caller.user_id,
        group_id=caller.group_id,
        user_role=caller.role,
    )


@router.get("/workflows/{workflow_id}/test/history")
async def get_test_history(
    workflow_id: str,
    session_id: str,
    caller: Caller = Depends(get_caller),
    sessions: SessionService = Depends(get_session_service)
) -> Dict[str, Any]:
    """Messages exchanged in a session"""
    return sessions.get_history(workflow_id, session_id, caller.user_id)


@router.delete("/workflows/{workflow_id}/test/session")
async def delete_test_session(
    workflow_id: str,
    session_id: str,
    caller: Caller = Depends(get_caller),
    sessions: SessionService = Depends(get_session_service)
) -> Dict[str, str]:
    """Close a session"""
    return sessions.delete_session(workflow_id, session_id, caller.user_id)
