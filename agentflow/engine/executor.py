# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Executor

Sequential, credit-accounted workflow execution:
validate -> schedule -> estimate -> reserve -> run nodes in order -> settle.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from agentflow.core.config import Config, get_config
from agentflow.core.errors import AgentFlowError, ForbiddenError, NotFoundError, sanitize_error_for_user
from agentflow.core.logging import get_service_logger, log_event
from .branching import select_upstream, should_skip_node
from .context import ExecutionContext
from .credits import CreditAccountingCoordinator, CreditReservation
from .exceptions import (
    ExecutionCancelledError,
    ExecutionStateError,
    ExecutionTimeoutError,
    NodeConfigurationError,
    NodeExecutionError,
    UnknownNodeTypeError,
    WorkflowNotPublishedError,
)
from .models import (
    CancelResult,
    CreditBreakdown,
    Execution,
    ExecutionResult,
    ExecutionStatus,
    GraphNode,
    NodeExecutionStatus,
    NodeResult,
    NodeTypeConfig,
    Workflow,
)
from .output import normalize_output
from .registry import NodeRegistry
from .validation import incoming_edges, topological_sort, validate_graph

logger = get_service_logger("executor")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorkflowExecutor:
    """
    Runs one workflow to completion per call.

    Nodes execute strictly one at a time in topological order. The wall-clock
    budget is checked between nodes; a node call already in flight is never
    interrupted.
    """

    def __init__(
        self,
        workflow_store,
        recorder,
        accounts,
        node_types,
        registry: NodeRegistry,
        config: Optional[Config] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.workflow_store = workflow_store
        self.recorder = recorder
        self.accounts = accounts
        self.registry = registry
        self.credits = CreditAccountingCoordinator(node_types)
        self.config = config or get_config()
        self.clock = clock

        # execution_id -> context of runs in this process
        self.active_executions: Dict[str, ExecutionContext] = {}

    @property
    def max_execution_seconds(self) -> float:
        return self.config.max_execution_seconds

    # ========================================================================
    # Execute
    # ========================================================================

    async def execute_workflow(
        self,
        workflow_id: str,
        user_id: str,
        input_data: Optional[Dict[str, Any]] = None,
        group_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Execute a published workflow on behalf of a user.

        Raises:
            NotFoundError: workflow or user missing
            ForbiddenError: caller is neither owner nor elevated, or workflow unpublished
            WorkflowValidationError: bad graph, unknown or inactive node type
            InsufficientCreditsError: balance below the estimate
            NodeExecutionError, ExecutionTimeoutError, ExecutionCancelledError: run aborted
        """
        start = self.clock()
        input_data = input_data or {}

        log_event(logger, "workflow_execution_started", workflow_id=workflow_id, user_id=user_id)

        # 1. Authorization
        workflow = await self._load_workflow(workflow_id)
        account = await self.accounts.find_by_id(user_id)
        if account is None:
            raise NotFoundError("User", user_id)
        self._check_permission(workflow, user_id, account.role)
        if not workflow.is_published:
            raise WorkflowNotPublishedError(workflow_id)

        # 2. Validation and ordering, before any credit is touched
        nodes = workflow.flow_data.nodes
        edges = workflow.flow_data.edges
        validate_graph(nodes, edges, self.registry.single_predecessor_types())
        for node in nodes:
            if not self.registry.has(node.type):
                raise UnknownNodeTypeError(node.type)
        order = topological_sort(nodes, edges)

        estimate = await self.credits.estimate(nodes)
        reservation = await self.credits.reserve(account, estimate.total, workflow.id, workflow.name)

        execution_id: Optional[str] = None
        context: Optional[ExecutionContext] = None

        try:
            execution_id = await self.recorder.create_execution({
                "workflow_id": workflow.id,
                "user_id": user_id,
                "status": ExecutionStatus.RUNNING.value,
                "input_data": input_data,
                "estimated_credits": estimate.total,
                "credits_settled": False,
                "started_at": _now_iso(),
            })
            reservation.execution_id = execution_id

            context = ExecutionContext(
                input=input_data,
                user_id=user_id,
                workflow_id=workflow.id,
                execution_id=execution_id,
                group_id=group_id,
                user_role=user_role,
            )
            self.active_executions[execution_id] = context

            logger.info(
                f"Execution {execution_id} order: "
                f"{[f'{n.type}:{n.id}' for n in order]}"
            )

            # 3. Run nodes in order
            incoming = incoming_edges(edges)
            last_output: Any = None

            for node in order:
                self._check_budget(start, execution_id)
                self._check_cancelled(context)

                node_incoming = incoming.get(node.id, [])
                if should_skip_node(node_incoming, context):
                    await self._skip_node(node, context)
                    continue

                context.upstream_output = select_upstream(node_incoming, context)

                result = await self._run_node(node, context, estimate.type_configs[node.type])

                reservation.meter(result.credits_used)
                context.record_output(node.id, result.output)
                if result.branch:
                    context.record_branch(node.id, result.branch)
                last_output = result.output

            self._check_cancelled(context)

            # 4. Settle
            final_output = normalize_output(last_output)
            refunded = await self.credits.settle(account, reservation, workflow.name)
            duration_ms = self._elapsed_ms(start)

            completed = await self.recorder.update_execution(execution_id, {
                "status": ExecutionStatus.SUCCESS.value,
                "output_data": final_output,
                "total_credits_used": reservation.used,
                "credits_refunded": refunded,
                "credits_settled": True,
                "completed_at": _now_iso(),
                "duration_ms": duration_ms,
            }, expected_status=ExecutionStatus.RUNNING)

            if not completed:
                # Cancelled while settling: the cancelled record stands
                await self.credits.revoke_settlement(account, reservation, "Execution cancelled by user")
                raise ExecutionCancelledError(execution_id)

            log_event(
                logger, "workflow_execution_succeeded",
                execution_id=execution_id, workflow_id=workflow.id, user_id=user_id,
                credits_used=reservation.used, credits_refunded=refunded, duration_ms=duration_ms,
            )

            return ExecutionResult(
                success=True,
                execution_id=execution_id,
                output=final_output,
                credits=CreditBreakdown(
                    estimated=estimate.total,
                    used=reservation.used,
                    refunded=refunded,
                ),
                duration_ms=duration_ms,
                skipped_nodes=list(context.skipped_nodes),
            )

        except Exception as e:
            await self._handle_failure(e, account, reservation, execution_id, start)
            raise

        finally:
            if context is not None:
                context.finalize()
            if execution_id is not None:
                self.active_executions.pop(execution_id, None)

    async def _load_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.workflow_store.find_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    def _check_permission(self, workflow: Workflow, user_id: str, role: Optional[str]) -> None:
        if workflow.user_id == user_id:
            return
        if role in self.config.elevated_roles:
            return
        raise ForbiddenError("Not allowed to execute this workflow", resource="workflow")

    def _check_budget(self, start: float, execution_id: str) -> None:
        if self.clock() - start > self.max_execution_seconds:
            raise ExecutionTimeoutError(self.max_execution_seconds, execution_id)

    def _check_cancelled(self, context: ExecutionContext) -> None:
        if context.cancel_requested:
            raise ExecutionCancelledError(context.execution_id)

    def _elapsed_ms(self, start: float) -> int:
        return int((self.clock() - start) * 1000)

    async def _run_node(
        self,
        node: GraphNode,
        context: ExecutionContext,
        type_config: NodeTypeConfig,
    ) -> NodeResult:
        """Run a single node and record its NodeExecution"""
        node_start = self.clock()
        node_execution_id = await self.recorder.create_node_execution({
            "execution_id": context.execution_id,
            "node_id": node.id,
            "node_type": node.type,
            "status": NodeExecutionStatus.RUNNING.value,
            "input_data": context.snapshot_variables(),
            "started_at": _now_iso(),
        })

        logger.info(
            f"Executing node {node.id} ({node.type}) in {context.execution_id}, "
            f"upstream={'yes' if context.upstream_output is not None else 'no'}"
        )

        try:
            instance = self.registry.create_instance(node)
            if instance is None:
                raise UnknownNodeTypeError(node.type)

            errors = instance.validate()
            if errors:
                raise NodeConfigurationError(node.id, node.type, errors)

            try:
                result = await instance.execute(context, context.user_id, type_config)
            except AgentFlowError as e:
                raise NodeExecutionError(node.id, node.type, e.message, context.execution_id) from e
            except Exception as e:
                raise NodeExecutionError(
                    node.id, node.type, sanitize_error_for_user(e, include_type=False), context.execution_id
                ) from e

        except Exception as e:
            message = e.message if isinstance(e, AgentFlowError) else sanitize_error_for_user(e)
            log_event(
                logger, "node_execution_failed", level="ERROR",
                execution_id=context.execution_id, node_id=node.id, node_type=node.type, error=message,
            )
            await self.recorder.update_node_execution(node_execution_id, {
                "status": NodeExecutionStatus.FAILED.value,
                "error_message": message,
                "duration_ms": self._elapsed_ms(node_start),
                "completed_at": _now_iso(),
            })
            raise

        duration_ms = self._elapsed_ms(node_start)
        await self.recorder.update_node_execution(node_execution_id, {
            "status": NodeExecutionStatus.SUCCESS.value,
            "output_data": result.output,
            "credits_used": result.credits_used,
            "duration_ms": duration_ms,
            "completed_at": _now_iso(),
        })
        logger.info(
            f"Node {node.id} ({node.type}) succeeded: "
            f"credits={result.credits_used}, duration={duration_ms}ms"
        )
        return result

    async def _skip_node(self, node: GraphNode, context: ExecutionContext) -> None:
        """Record a node cut off by a branch decision; it runs nothing and costs nothing"""
        context.mark_skipped(node.id)
        now = _now_iso()
        await self.recorder.create_node_execution({
            "execution_id": context.execution_id,
            "node_id": node.id,
            "node_type": node.type,
            "status": NodeExecutionStatus.SKIPPED.value,
            "started_at": now,
            "completed_at": now,
            "duration_ms": 0,
        })
        logger.info(f"Skipping node {node.id} ({node.type}) in {context.execution_id}: branch not taken")

    async def _handle_failure(
        self,
        error: Exception,
        account,
        reservation: CreditReservation,
        execution_id: Optional[str],
        start: float,
    ) -> None:
        """
        Mark the run failed and return the reservation.

        Errors raised here are logged, never propagated, so the caller always
        sees the original failure.
        """
        message = error.message if isinstance(error, AgentFlowError) else sanitize_error_for_user(error)
        log_event(
            logger, "workflow_execution_failed", level="ERROR",
            execution_id=execution_id, workflow_id=reservation.workflow_id,
            user_id=reservation.user_id, error=message,
        )

        try:
            await self.credits.compensate(account, reservation, message)
        except Exception:
            logger.exception(f"Failed to refund reservation for execution {execution_id}")

        if execution_id is None:
            return

        try:
            fields: Dict[str, Any] = {
                "total_credits_used": reservation.used,
                "credits_refunded": reservation.refunded,
                "credits_settled": reservation.settled,
            }
            failed = await self.recorder.update_execution(execution_id, {
                **fields,
                "status": ExecutionStatus.FAILED.value,
                "error_message": message,
                "output_data": {"error": message},
                "completed_at": _now_iso(),
                "duration_ms": self._elapsed_ms(start),
            }, expected_status=ExecutionStatus.RUNNING)
            if not failed:
                # Already terminal (cancelled): keep its status, record the credits
                await self.recorder.update_execution(execution_id, fields)
        except Exception:
            logger.exception(f"Failed to mark execution {execution_id} as failed")

    # ========================================================================
    # Cancel
    # ========================================================================

    async def cancel_execution(self, execution_id: str, user_id: str) -> CancelResult:
        """
        Flip a running execution to cancelled.

        An in-process run stops before its next node and refunds its reservation.
        """
        execution = await self.recorder.find_execution(execution_id)
        if execution is None:
            raise NotFoundError("Execution", execution_id)
        if execution.user_id != user_id:
            raise ForbiddenError("Not allowed to cancel this execution", resource="execution")
        if execution.status != ExecutionStatus.RUNNING:
            raise ExecutionStateError(
                "Can only cancel a running execution",
                status=ExecutionStatus(execution.status).value,
            )

        message = "Execution cancelled by user"
        cancelled = await self.recorder.update_execution(execution_id, {
            "status": ExecutionStatus.CANCELLED.value,
            "output_data": {"cancelled": True, "message": message},
            "completed_at": _now_iso(),
        }, expected_status=ExecutionStatus.RUNNING)
        if not cancelled:
            current = await self.recorder.find_execution(execution_id)
            raise ExecutionStateError(
                "Can only cancel a running execution",
                status=ExecutionStatus(current.status).value if current else None,
            )

        context = self.active_executions.get(execution_id)
        if context is not None:
            context.cancel_requested = True

        log_event(logger, "workflow_execution_cancelled", execution_id=execution_id, user_id=user_id)
        return CancelResult(success=True, message=message)

    # ========================================================================
    # Recovery
    # ========================================================================

    async def recover_stale_executions(self, now: Optional[datetime] = None) -> List[str]:
        """
        Refund reservations left behind by runs that never settled.

        Picks executions with credits_settled False that are not active in this
        process and started longer ago than the time budget plus grace period.
        Running ones are marked failed. Returns the recovered execution ids.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(
            seconds=self.max_execution_seconds + self.config.stale_execution_grace_seconds
        )
        recovered: List[str] = []

        for execution in await self.recorder.list_unsettled_executions():
            if execution.id in self.active_executions:
                continue
            if execution.status == ExecutionStatus.SUCCESS:
                continue
            if _parse_time(execution.started_at) > cutoff:
                continue

            try:
                await self._recover_execution(execution)
            except Exception:
                logger.exception(f"Failed to recover execution {execution.id}")
                continue
            recovered.append(execution.id)

        if recovered:
            logger.warning(f"Recovered {len(recovered)} stale executions: {recovered}")
        return recovered

    async def _recover_execution(self, execution: Execution) -> None:
        refund = execution.estimated_credits
        if refund > 0:
            account = await self.accounts.find_by_id(execution.user_id)
            if account is None:
                raise NotFoundError("User", execution.user_id)
            await account.add_credits(
                refund,
                reason="Abandoned execution refund",
                ref=execution.id,
                extra={"workflow_id": execution.workflow_id},
            )

        fields: Dict[str, Any] = {"credits_refunded": refund, "credits_settled": True}
        if execution.status == ExecutionStatus.RUNNING:
            message = "Execution abandoned"
            fields.update({
                "status": ExecutionStatus.FAILED.value,
                "error_message": message,
                "output_data": {"error": message},
                "completed_at": _now_iso(),
            })
        await self.recorder.update_execution(execution.id, fields)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
