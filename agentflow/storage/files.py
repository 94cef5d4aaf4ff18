# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
File-backed collaborators.

Workflows, executions, accounts and knowledge items live in JSON files; node
types and models are YAML catalogs. File writes use aiofiles behind a
per-file asyncio.Lock.

Storage structure:
    data/
    ├── workflows/{workflow_id}.json
    ├── executions/{execution_id}.json   # execution + node executions
    ├── accounts/{user_id}.json          # balance + transactions
    └── knowledge/{item_id}.json
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
import yaml

from agentflow.core.errors import ConfigurationError
from agentflow.core.logging import get_service_logger
from agentflow.engine.models import (
    AIModel,
    CreditTransaction,
    Execution,
    KnowledgeItem,
    NodeExecution,
    NodeTypeConfig,
    Workflow,
)
from .memory import (
    CreditAccount,
    InMemoryExecutionRecorder,
    ModelCatalog,
    NodeTypeCatalog,
    can_read_item,
)

logger = get_service_logger("storage")


class _LockedFiles:
    """Per-file async locks"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get_lock(self, file_path: Path) -> asyncio.Lock:
        key = str(file_path)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def read_json(self, file_path: Path) -> Optional[Dict[str, Any]]:
        if not file_path.exists():
            return None
        async with self.get_lock(file_path):
            async with aiofiles.open(file_path, "r") as f:
                return json.loads(await f.read())

    async def write_json(self, file_path: Path, data: Dict[str, Any]) -> None:
        async with self.get_lock(file_path):
            async with aiofiles.open(file_path, "w") as f:
                await f.write(json.dumps(data, indent=2, default=str, ensure_ascii=False))


# ============================================================================
# Workflows
# ============================================================================

class JSONWorkflowStore(_LockedFiles):
    """Read-only workflow definitions from {base_dir}/{id}.json"""

    def __init__(self, base_dir: str):
        super().__init__()
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    async def find_by_id(self, workflow_id: str) -> Optional[Workflow]:
        data = await self.read_json(self.base_dir / f"{Path(workflow_id).name}.json")
        if data is None:
            return None

        # flow_data may be stored as an encoded JSON string
        if isinstance(data.get("flow_data"), str):
            try:
                data["flow_data"] = json.loads(data["flow_data"])
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Workflow {workflow_id} has malformed flow_data: {e}",
                    config_file=str(self.base_dir / f"{workflow_id}.json"),
                )
        return Workflow.model_validate(data)

    async def save(self, workflow: Workflow) -> None:
        await self.write_json(self.base_dir / f"{workflow.id}.json", workflow.model_dump(mode="json", by_alias=True))


# ============================================================================
# Executions
# ============================================================================

class JSONExecutionRecorder(InMemoryExecutionRecorder):
    """
    Write-through execution recorder.

    Records are indexed in memory and every change rewrites the execution's
    file. Call load() once at startup to read existing files.
    """

    def __init__(self, base_dir: str):
        super().__init__()
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._files = _LockedFiles()

    def _path(self, execution_id: str) -> Path:
        return self.base_dir / f"{execution_id}.json"

    async def load(self) -> int:
        """Index every execution file. Returns the number loaded."""
        loaded = 0
        for execution_file in sorted(self.base_dir.glob("*.json")):
            try:
                data = await self._files.read_json(execution_file)
                execution = Execution.model_validate(data["execution"])
                nodes = [NodeExecution.model_validate(n) for n in data.get("node_executions", [])]
            except Exception as e:
                logger.warning(f"Failed to load execution {execution_file}: {e}")
                continue

            self._executions[execution.id] = execution
            self._nodes_by_execution[execution.id] = []
            for node in nodes:
                self._node_executions[node.id] = node
                self._nodes_by_execution[execution.id].append(node.id)
            loaded += 1

        logger.info(f"Loaded {loaded} executions from {self.base_dir}")
        return loaded

    async def _on_execution_changed(self, execution_id: str) -> None:
        execution = self._executions.get(execution_id)
        if execution is None:
            return
        nodes = await self.list_node_executions(execution_id)
        await self._files.write_json(self._path(execution_id), {
            "execution": execution.model_dump(mode="json"),
            "node_executions": [n.model_dump(mode="json") for n in nodes],
        })

    async def _on_execution_deleted(self, execution_id: str) -> None:
        file_path = self._path(execution_id)
        async with self._files.get_lock(file_path):
            if file_path.exists():
                await aiofiles.os.remove(file_path)


# ============================================================================
# Accounts
# ============================================================================

class JSONAccountStore(_LockedFiles):
    """
    Credit accounts in {base_dir}/{user_id}.json.

    Accounts are cached after first load so every caller shares one balance lock.
    """

    def __init__(self, base_dir: str):
        super().__init__()
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._accounts: Dict[str, CreditAccount] = {}

    def _path(self, user_id: str) -> Path:
        return self.base_dir / f"{Path(user_id).name}.json"

    async def find_by_id(self, user_id: str) -> Optional[CreditAccount]:
        if user_id in self._accounts:
            return self._accounts[user_id]

        data = await self.read_json(self._path(user_id))
        if data is None:
            return None

        account = CreditAccount(
            user_id=data.get("user_id", user_id),
            credits=int(data.get("credits", 0)),
            role=data.get("role"),
            transactions=[CreditTransaction.model_validate(t) for t in data.get("transactions", [])],
            on_change=self._save,
        )
        self._accounts[user_id] = account
        return account

    async def create(self, user_id: str, credits: int = 0, role: Optional[str] = None) -> CreditAccount:
        account = CreditAccount(user_id=user_id, credits=credits, role=role, on_change=self._save)
        self._accounts[user_id] = account
        await self._save(account)
        return account

    async def _save(self, account: CreditAccount) -> None:
        await self.write_json(self._path(account.user_id), account.to_dict())


# ============================================================================
# Knowledge
# ============================================================================

class JSONKnowledgeSource(_LockedFiles):
    """Knowledge items in {base_dir}/{item_id}.json"""

    def __init__(self, base_dir: str, elevated_roles=("super_admin",)):
        super().__init__()
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.elevated_roles = tuple(elevated_roles)

    async def find_item(
        self,
        item_id: str,
        user_id: str,
        group_id: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> Optional[KnowledgeItem]:
        data = await self.read_json(self.base_dir / f"{Path(item_id).name}.json")
        if data is None:
            return None
        item = KnowledgeItem.model_validate(data)
        if not can_read_item(item, user_id, group_id, user_role, self.elevated_roles):
            return None
        return item


# ============================================================================
# YAML Catalogs
# ============================================================================

def _load_yaml(path: str) -> Dict[str, Any]:
    if not Path(path).exists():
        logger.warning(f"Catalog not found: {path}")
        return {}
    try:
        with open(path) as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", config_file=path)


def load_node_type_catalog(path: str) -> NodeTypeCatalog:
    """
    Load node types from YAML:

        node_types:
          - type_key: llm
            name: AI Chat
            credits_per_execution: 10
            is_active: true
    """
    entries: List[Dict[str, Any]] = _load_yaml(path).get("node_types") or []
    try:
        node_types = [NodeTypeConfig.model_validate(entry) for entry in entries]
    except ValueError as e:
        raise ConfigurationError(f"Invalid node type in {path}: {e}", config_file=path)
    logger.info(f"Loaded {len(node_types)} node types from {path}")
    return NodeTypeCatalog(node_types)


def load_model_catalog(path: str) -> ModelCatalog:
    """
    Load AI models from YAML. Keys come from the environment only:

        models:
          - name: gpt-4o-mini
            api_endpoint: https://api.openai.com/v1
            api_key_env: OPENAI_API_KEY
    """
    entries: List[Dict[str, Any]] = _load_yaml(path).get("models") or []
    models = []
    for entry in entries:
        entry = dict(entry)
        key_env = entry.pop("api_key_env", None)
        if key_env:
            entry["api_key"] = os.getenv(key_env)
            if not entry["api_key"]:
                logger.warning(f"Model {entry.get('name')}: environment variable {key_env} is not set")
        try:
            models.append(AIModel.model_validate(entry))
        except ValueError as e:
            raise ConfigurationError(f"Invalid model in {path}: {e}", config_file=path)
    logger.info(f"Loaded {len(models)} models from {path}")
    return ModelCatalog(models)
