# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Credit Accounting

Two-phase protocol around a workflow run:
reserve (pre-deduct the estimate) -> meter per node -> settle or compensate.
Every ledger touch is written to the audit log.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from agentflow.core.logging import get_audit_logger, get_service_logger, log_event
from .models import GraphNode, NodeTypeConfig
from .exceptions import InsufficientCreditsError, NodeTypeInactiveError

logger = get_service_logger("credits")
audit_logger = get_audit_logger()


@dataclass
class CreditEstimate:
    """Pre-run cost, counted once per distinct node type"""
    total: int
    type_configs: Dict[str, NodeTypeConfig] = field(default_factory=dict)


@dataclass
class CreditReservation:
    """
    Credits held for one run.

    `used` grows with every successful node; `settled` flips exactly once,
    when the reservation is either settled or compensated.
    """
    user_id: str
    workflow_id: str
    reserved: int
    used: int = 0
    refunded: int = 0
    settled: bool = False
    execution_id: Optional[str] = None

    def meter(self, amount: int) -> None:
        """Add one node's reported cost"""
        self.used += max(0, int(amount or 0))


class CreditAccountingCoordinator:
    """Estimates, reserves, meters and settles workflow credits."""

    def __init__(self, node_types):
        """
        Args:
            node_types: catalog exposing async find_by_type_key(key)
        """
        self.node_types = node_types

    async def resolve_type_config(self, type_key: str) -> NodeTypeConfig:
        """Stored config for a type, or the zero-cost default"""
        type_config = await self.node_types.find_by_type_key(type_key)
        if type_config is None:
            logger.warning(f"No config for node type '{type_key}', using zero-cost default")
            return NodeTypeConfig.default_for(type_key)
        return type_config

    async def estimate(self, nodes: Sequence[GraphNode]) -> CreditEstimate:
        """
        Sum credits_per_execution once per distinct node type.

        Raises NodeTypeInactiveError if a present type is disabled.
        """
        type_configs: Dict[str, NodeTypeConfig] = {}
        for node in nodes:
            if node.type in type_configs:
                continue
            type_config = await self.resolve_type_config(node.type)
            if not type_config.is_active:
                raise NodeTypeInactiveError(node.type)
            type_configs[node.type] = type_config

        total = sum(tc.credits_per_execution for tc in type_configs.values())
        logger.debug(f"Estimated {total} credits for types {list(type_configs)}")
        return CreditEstimate(total=total, type_configs=type_configs)

    async def reserve(self, account, amount: int, workflow_id: str, workflow_name: str) -> CreditReservation:
        """
        Pre-deduct the estimate from the account.

        A zero amount never touches the ledger.
        Raises InsufficientCreditsError when the balance does not cover it.
        """
        reservation = CreditReservation(
            user_id=account.user_id,
            workflow_id=workflow_id,
            reserved=amount,
        )
        if amount <= 0:
            return reservation

        if not account.has_credits(amount):
            log_event(
                audit_logger, "credits_insufficient", level="WARNING",
                user_id=account.user_id, workflow_id=workflow_id,
                required=amount, balance=account.credits,
            )
            raise InsufficientCreditsError(amount, account.credits)

        result = await account.consume_credits(
            amount,
            model_ref=None,
            context_ref=workflow_id,
            reason=f"Workflow pre-deduction: {workflow_name}",
        )
        log_event(
            audit_logger, "credits_reserved",
            user_id=account.user_id, workflow_id=workflow_id,
            amount=amount, balance_after=result.get("balance_after"),
        )
        return reservation

    async def settle(self, account, reservation: CreditReservation, workflow_name: str) -> int:
        """
        Success path: refund max(0, reserved - used).

        Usage above the reservation is absorbed, never topped up.
        Returns the refunded amount.
        """
        if reservation.settled:
            return reservation.refunded

        if reservation.used > reservation.reserved:
            logger.warning(
                f"Credit under-collection on workflow {reservation.workflow_id}: "
                f"reserved {reservation.reserved}, used {reservation.used}"
            )

        refund = max(0, reservation.reserved - reservation.used)
        if refund > 0:
            await account.add_credits(
                refund,
                reason=f"Workflow refund: {workflow_name}",
                ref=reservation.execution_id,
                extra={
                    "workflow_id": reservation.workflow_id,
                    "reserved": reservation.reserved,
                    "used": reservation.used,
                },
            )
        reservation.refunded = refund
        reservation.settled = True
        log_event(
            audit_logger, "credits_settled",
            user_id=reservation.user_id, workflow_id=reservation.workflow_id,
            execution_id=reservation.execution_id, reserved=reservation.reserved,
            used=reservation.used, refunded=refund,
        )
        return refund

    async def compensate(self, account, reservation: CreditReservation, reason: str) -> int:
        """
        Failure path: return the whole reservation as one credit.

        No-op if the reservation was already settled.
        Returns the refunded amount.
        """
        if reservation.settled:
            return 0

        refund = reservation.reserved
        if refund > 0:
            await account.add_credits(
                refund,
                reason=f"Workflow failed refund: {reason}",
                ref=reservation.execution_id,
                extra={
                    "workflow_id": reservation.workflow_id,
                    "used_before_failure": reservation.used,
                },
            )
        reservation.refunded = refund
        reservation.settled = True
        log_event(
            audit_logger, "credits_compensated",
            user_id=reservation.user_id, workflow_id=reservation.workflow_id,
            execution_id=reservation.execution_id, refunded=refund, reason=reason,
        )
        return refund

    async def revoke_settlement(self, account, reservation: CreditReservation, reason: str) -> int:
        """
        Turn a settled reservation into a full refund.

        Used when a run is cancelled while its settlement is in flight: the
        part kept by settle() is returned, so the account ends up exactly where
        it was before the reservation. Unsettled reservations are compensated.
        Returns the amount refunded by this call.
        """
        if not reservation.settled:
            return await self.compensate(account, reservation, reason)

        refund = max(0, reservation.reserved - reservation.refunded)
        if refund > 0:
            await account.add_credits(
                refund,
                reason=f"Workflow cancelled refund: {reason}",
                ref=reservation.execution_id,
                extra={
                    "workflow_id": reservation.workflow_id,
                    "used_before_cancel": reservation.used,
                },
            )
        reservation.refunded += refund
        log_event(
            audit_logger, "credits_settlement_revoked",
            user_id=reservation.user_id, workflow_id=reservation.workflow_id,
            execution_id=reservation.execution_id, refunded=refund, reason=reason,
        )
        return refund
