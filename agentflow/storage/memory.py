# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
In-memory collaborators for the workflow engine.

Workflow store, execution recorder, credit accounts, node-type and model
catalogs and a knowledge source. Used by default and in tests; the file-backed
stores build on the same classes.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from agentflow.engine.exceptions import InsufficientCreditsError
from agentflow.engine.models import (
    AIModel,
    CreditTransaction,
    Execution,
    ExecutionStatus,
    KnowledgeItem,
    NodeExecution,
    NodeTypeConfig,
    Workflow,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_execution_id() -> str:
    return f"exec_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


# ============================================================================
# Workflows
# ============================================================================

class InMemoryWorkflowStore:
    """Workflow lookup by id"""

    def __init__(self, workflows: Iterable[Workflow] = ()):
        self._workflows: Dict[str, Workflow] = {w.id: w for w in workflows}

    def add(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow

    async def find_by_id(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)


# ============================================================================
# Executions
# ============================================================================

class InMemoryExecutionRecorder:
    """
    Execution and node execution records.

    Subclasses persist changes by overriding _on_execution_changed and
    _on_execution_deleted.
    """

    def __init__(self):
        self._executions: Dict[str, Execution] = {}
        self._node_executions: Dict[str, NodeExecution] = {}
        self._nodes_by_execution: Dict[str, List[str]] = {}

    async def _on_execution_changed(self, execution_id: str) -> None:
        pass

    async def _on_execution_deleted(self, execution_id: str) -> None:
        pass

    # -- Executions --

    async def create_execution(self, fields: Dict[str, Any]) -> str:
        execution_id = fields.get("id") or new_execution_id()
        execution = Execution.model_validate({
            "started_at": _now_iso(),
            **fields,
            "id": execution_id,
        })
        self._executions[execution_id] = execution
        self._nodes_by_execution.setdefault(execution_id, [])
        await self._on_execution_changed(execution_id)
        return execution_id

    async def update_execution(
        self,
        execution_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[ExecutionStatus] = None,
    ) -> bool:
        """
        Merge fields into an execution.

        With expected_status, the write only happens if the stored status still
        matches; check and write happen without yielding. Returns False when
        the record is missing or the status moved on.
        """
        current = self._executions.get(execution_id)
        if current is None:
            return False
        if expected_status is not None and current.status != expected_status:
            return False
        self._executions[execution_id] = Execution.model_validate({**current.model_dump(), **fields})
        await self._on_execution_changed(execution_id)
        return True

    async def find_execution(self, execution_id: str) -> Optional[Execution]:
        return self._executions.get(execution_id)

    async def list_executions(
        self,
        user_id: str,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Execution], int]:
        """User's executions, newest first, with the unpaged total"""
        matches = [
            e for e in self._executions.values()
            if e.user_id == user_id
            and (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == status)
        ]
        matches.sort(key=lambda e: e.started_at, reverse=True)
        offset = (max(page, 1) - 1) * limit
        return matches[offset:offset + limit], len(matches)

    async def list_unsettled_executions(self) -> List[Execution]:
        return [e for e in self._executions.values() if not e.credits_settled]

    async def delete_execution(self, execution_id: str, user_id: str) -> bool:
        execution = self._executions.get(execution_id)
        if execution is None or execution.user_id != user_id:
            return False
        del self._executions[execution_id]
        for node_execution_id in self._nodes_by_execution.pop(execution_id, []):
            self._node_executions.pop(node_execution_id, None)
        await self._on_execution_deleted(execution_id)
        return True

    async def get_user_stats(self, user_id: str) -> Dict[str, int]:
        executions = [e for e in self._executions.values() if e.user_id == user_id]
        today = datetime.now(timezone.utc).date().isoformat()

        def count(status: ExecutionStatus) -> int:
            return sum(1 for e in executions if e.status == status)

        return {
            "total_count": len(executions),
            "success_count": count(ExecutionStatus.SUCCESS),
            "failed_count": count(ExecutionStatus.FAILED),
            "running_count": count(ExecutionStatus.RUNNING),
            "cancelled_count": count(ExecutionStatus.CANCELLED),
            "total_credits": sum(e.total_credits_used for e in executions),
            "today_count": sum(1 for e in executions if e.started_at[:10] == today),
        }

    # -- Node executions --

    async def create_node_execution(self, fields: Dict[str, Any]) -> str:
        node_execution_id = uuid.uuid4().hex
        record = NodeExecution.model_validate({
            "started_at": _now_iso(),
            **fields,
            "id": node_execution_id,
        })
        self._node_executions[node_execution_id] = record
        self._nodes_by_execution.setdefault(record.execution_id, []).append(node_execution_id)
        await self._on_execution_changed(record.execution_id)
        return node_execution_id

    async def update_node_execution(self, node_execution_id: str, fields: Dict[str, Any]) -> bool:
        current = self._node_executions.get(node_execution_id)
        if current is None:
            return False
        updated = NodeExecution.model_validate({**current.model_dump(), **fields})
        self._node_executions[node_execution_id] = updated
        await self._on_execution_changed(updated.execution_id)
        return True

    async def find_node_execution(self, execution_id: str, node_id: str) -> Optional[NodeExecution]:
        for record in await self.list_node_executions(execution_id):
            if record.node_id == node_id:
                return record
        return None

    async def list_node_executions(self, execution_id: str) -> List[NodeExecution]:
        """Node executions in the order they started"""
        return [
            self._node_executions[node_execution_id]
            for node_execution_id in self._nodes_by_execution.get(execution_id, [])
        ]


# ============================================================================
# Credit Accounts
# ============================================================================

class CreditAccount:
    """
    Credit ledger for one user.

    Balance changes are serialized with an asyncio.Lock and every change is
    appended to `transactions`.
    """

    def __init__(
        self,
        user_id: str,
        credits: int = 0,
        role: Optional[str] = None,
        transactions: Optional[List[CreditTransaction]] = None,
        on_change: Optional[Callable[["CreditAccount"], Awaitable[None]]] = None,
    ):
        self.user_id = user_id
        self.credits = credits
        self.role = role
        self.transactions: List[CreditTransaction] = list(transactions or [])
        self._on_change = on_change
        self._lock = asyncio.Lock()

    def has_credits(self, amount: int) -> bool:
        return self.credits >= amount

    async def consume_credits(
        self,
        amount: int,
        model_ref: Optional[str] = None,
        context_ref: Optional[str] = None,
        reason: str = "",
    ) -> Dict[str, int]:
        async with self._lock:
            if self.credits < amount:
                raise InsufficientCreditsError(amount, self.credits)
            self.credits -= amount
            self.transactions.append(CreditTransaction(
                amount=-amount,
                balance_after=self.credits,
                reason=reason,
                model_ref=model_ref,
                context_ref=context_ref,
                created_at=_now_iso(),
            ))
            await self._changed()
            return {"balance_after": self.credits}

    async def add_credits(
        self,
        amount: int,
        reason: str = "",
        ref: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._lock:
            self.credits += amount
            self.transactions.append(CreditTransaction(
                amount=amount,
                balance_after=self.credits,
                reason=reason,
                reference=ref,
                extra=extra or {},
                created_at=_now_iso(),
            ))
            await self._changed()

    async def _changed(self) -> None:
        if self._on_change is not None:
            await self._on_change(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "credits": self.credits,
            "transactions": [t.model_dump() for t in self.transactions],
        }


class InMemoryAccountStore:
    """Credit accounts by user id"""

    def __init__(self, accounts: Iterable[CreditAccount] = ()):
        self._accounts: Dict[str, CreditAccount] = {a.user_id: a for a in accounts}

    def add(self, account: CreditAccount) -> None:
        self._accounts[account.user_id] = account

    async def find_by_id(self, user_id: str) -> Optional[CreditAccount]:
        return self._accounts.get(user_id)


# ============================================================================
# Catalogs
# ============================================================================

class NodeTypeCatalog:
    """Per-type cost and availability"""

    def __init__(self, node_types: Iterable[NodeTypeConfig] = ()):
        self._types: Dict[str, NodeTypeConfig] = {t.type_key: t for t in node_types}

    async def find_by_type_key(self, type_key: str) -> Optional[NodeTypeConfig]:
        return self._types.get(type_key)

    async def list_active(self) -> List[NodeTypeConfig]:
        return [t for t in self._types.values() if t.is_active]


class ModelCatalog:
    """AI models by name"""

    def __init__(self, models: Iterable[AIModel] = ()):
        self._models: Dict[str, AIModel] = {m.name: m for m in models}

    async def find_by_name(self, name: str) -> Optional[AIModel]:
        return self._models.get(name)


# ============================================================================
# Knowledge
# ============================================================================

def can_read_item(
    item: KnowledgeItem,
    user_id: str,
    group_id: Optional[str],
    user_role: Optional[str],
    elevated_roles: Iterable[str] = ("super_admin",),
) -> bool:
    """Owner, public items, same group, or an elevated role"""
    if item.is_public or item.user_id == user_id:
        return True
    if group_id and item.group_id == group_id:
        return True
    return user_role in elevated_roles


class InMemoryKnowledgeSource:
    """Knowledge items with per-user visibility"""

    def __init__(self, items: Iterable[KnowledgeItem] = ()):
        self._items: Dict[str, KnowledgeItem] = {i.id: i for i in items}

    def add(self, item: KnowledgeItem) -> None:
        self._items[item.id] = item

    async def find_item(
        self,
        item_id: str,
        user_id: str,
        group_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> Optional[KnowledgeItem]:
        item = self._items.get(item_id)
        if item is None or not can_read_item(item, user_id, group_id, user_role):
            return None
        return item
