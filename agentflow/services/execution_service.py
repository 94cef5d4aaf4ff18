# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Service

Runs workflows through the executor and exposes execution history.
"""

from typing import Any, Dict, List, Optional, Sequence

from agentflow.core.errors import ForbiddenError, NotFoundError
from agentflow.core.logging import get_service_logger
from agentflow.engine.exceptions import ExecutionStateError
from agentflow.engine.executor import WorkflowExecutor
from agentflow.engine.models import CancelResult, ExecutionResult, ExecutionStatus

logger = get_service_logger("execution")

MAX_PAGE_SIZE = 100


class ExecutionService:
    """
    Manages workflow runs for API callers.

    Responsibilities:
    - Execute and cancel workflows via WorkflowExecutor
    - List, inspect and delete execution records
    - Per-user execution statistics
    - Active node type listing
    """

    def __init__(self, executor: WorkflowExecutor, recorder, node_types, elevated_roles: Sequence[str] = ("super_admin",)):
        self.executor = executor
        self.recorder = recorder
        self.node_types = node_types
        self.elevated_roles = tuple(elevated_roles)

    async def run_workflow(
        self,
        workflow_id: str,
        user_id: str,
        input_data: Optional[Dict[str, Any]] = None,
        group_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> ExecutionResult:
        return await self.executor.execute_workflow(
            workflow_id,
            user_id,
            input_data or {},
            group_id=group_id,
            user_role=user_role,
        )

    async def cancel_execution(self, execution_id: str, user_id: str) -> CancelResult:
        return await self.executor.cancel_execution(execution_id, user_id)

    async def list_executions(
        self,
        user_id: str,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Paged execution history for a user"""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        items, total = await self.recorder.list_executions(
            user_id, workflow_id=workflow_id, status=status, page=page, limit=limit
        )
        return {
            "items": [e.model_dump(mode="json") for e in items],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def get_execution(self, execution_id: str, user_id: str, user_role: Optional[str] = None) -> Dict[str, Any]:
        """Execution with its node executions, visible to the owner or elevated roles"""
        execution = await self.recorder.find_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        if execution.user_id != user_id and user_role not in self.elevated_roles:
            raise ForbiddenError("Not allowed to view this execution", resource="execution")

        nodes = await self.recorder.list_node_executions(execution_id)
        return {
            **execution.model_dump(mode="json"),
            "node_executions": [n.model_dump(mode="json") for n in nodes],
        }

    async def delete_execution(self, execution_id: str, user_id: str) -> Dict[str, str]:
        execution = await self.recorder.find_execution(execution_id)
        if execution is None or execution.user_id != user_id:
            raise NotFoundError("Execution", execution_id)
        if execution.status == ExecutionStatus.RUNNING:
            raise ExecutionStateError("Cannot delete a running execution", status=execution.status.value)
        if not execution.credits_settled:
            # The record is the only marker the recovery sweep refunds from
            raise ExecutionStateError(
                "Cannot delete an execution until its credits are settled",
                status=execution.status.value,
            )

        if not await self.recorder.delete_execution(execution_id, user_id):
            raise NotFoundError("Execution", execution_id)

        logger.info(f"Deleted execution: {execution_id}")
        return {"message": f"Execution '{execution_id}' deleted"}

    async def get_stats(self, user_id: str) -> Dict[str, int]:
        return await self.recorder.get_user_stats(user_id)

    async def list_node_types(self) -> List[Dict[str, Any]]:
        node_types = await self.node_types.list_active()
        return [t.model_dump() for t in node_types]
