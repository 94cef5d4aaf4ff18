# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Storage tests: in-memory recorder and ledger, JSON file stores, YAML catalogs.
"""

import json

import pytest

from agentflow.core.errors import ConfigurationError
from agentflow.engine.exceptions import InsufficientCreditsError
from agentflow.engine.models import ExecutionStatus, KnowledgeItem
from agentflow.storage import (
    CreditAccount,
    InMemoryExecutionRecorder,
    JSONAccountStore,
    JSONExecutionRecorder,
    JSONKnowledgeSource,
    JSONWorkflowStore,
    load_model_catalog,
    load_node_type_catalog,
)

FLOW = {
    "nodes": [{"id": "start", "type": "start", "data": {"label": "Start"}, "position": {"x": 0, "y": 0}}],
    "edges": [],
}


# ============================================================================
# In-memory Recorder
# ============================================================================

@pytest.mark.asyncio
async def test_execution_ids_are_generated():
    recorder = InMemoryExecutionRecorder()
    execution_id = await recorder.create_execution({"workflow_id": "wf-1", "user_id": "user-1"})

    assert execution_id.startswith("exec_")
    execution = await recorder.find_execution(execution_id)
    assert execution.status == ExecutionStatus.RUNNING
    assert execution.started_at


@pytest.mark.asyncio
async def test_update_execution_expected_status():
    """Guarded writes only land while the stored status still matches"""
    recorder = InMemoryExecutionRecorder()
    execution_id = await recorder.create_execution({"workflow_id": "wf-1", "user_id": "user-1"})
    await recorder.update_execution(execution_id, {"status": "cancelled"})

    written = await recorder.update_execution(
        execution_id, {"status": "success"}, expected_status=ExecutionStatus.RUNNING
    )

    assert not written
    assert (await recorder.find_execution(execution_id)).status == ExecutionStatus.CANCELLED
    assert await recorder.update_execution(
        execution_id, {"credits_settled": True}, expected_status=ExecutionStatus.CANCELLED
    )


@pytest.mark.asyncio
async def test_list_executions_filters_and_pages():
    """Newest first, filtered by workflow and status, with the full total"""
    recorder = InMemoryExecutionRecorder()
    for i in range(5):
        await recorder.create_execution({
            "id": f"e{i}", "workflow_id": "wf-1" if i < 4 else "wf-2", "user_id": "user-1",
            "status": "success" if i % 2 == 0 else "failed",
            "started_at": f"2026-01-01T00:00:0{i}+00:00",
        })
    await recorder.create_execution({"workflow_id": "wf-1", "user_id": "user-2"})

    items, total = await recorder.list_executions("user-1", page=1, limit=2)
    assert total == 5
    assert [e.id for e in items] == ["e4", "e3"]

    items, total = await recorder.list_executions("user-1", page=3, limit=2)
    assert [e.id for e in items] == ["e0"]

    items, total = await recorder.list_executions("user-1", workflow_id="wf-1", status="success")
    assert total == 2
    assert [e.id for e in items] == ["e2", "e0"]


@pytest.mark.asyncio
async def test_user_stats():
    recorder = InMemoryExecutionRecorder()
    await recorder.create_execution({"workflow_id": "w", "user_id": "u", "status": "success", "total_credits_used": 10})
    await recorder.create_execution({"workflow_id": "w", "user_id": "u", "status": "failed", "total_credits_used": 5})
    await recorder.create_execution({"workflow_id": "w", "user_id": "u"})

    stats = await recorder.get_user_stats("u")

    assert stats == {
        "total_count": 3,
        "success_count": 1,
        "failed_count": 1,
        "running_count": 1,
        "cancelled_count": 0,
        "total_credits": 15,
        "today_count": 3,
    }


@pytest.mark.asyncio
async def test_delete_removes_node_records():
    recorder = InMemoryExecutionRecorder()
    execution_id = await recorder.create_execution({"workflow_id": "w", "user_id": "u"})
    await recorder.create_node_execution({"execution_id": execution_id, "node_id": "start", "node_type": "start"})

    assert not await recorder.delete_execution(execution_id, "someone-else")
    assert await recorder.delete_execution(execution_id, "u")
    assert await recorder.find_execution(execution_id) is None
    assert await recorder.list_node_executions(execution_id) == []


# ============================================================================
# Credit Account
# ============================================================================

@pytest.mark.asyncio
async def test_consume_and_add_credits():
    account = CreditAccount("user-1", credits=20)

    result = await account.consume_credits(15, context_ref="wf-1", reason="run")
    await account.add_credits(5, reason="refund", ref="exec-1", extra={"k": "v"})

    assert result == {"balance_after": 5}
    assert account.credits == 10
    assert [(t.amount, t.balance_after) for t in account.transactions] == [(-15, 5), (5, 10)]
    assert account.transactions[1].extra == {"k": "v"}


@pytest.mark.asyncio
async def test_consume_more_than_balance():
    account = CreditAccount("user-1", credits=3)
    with pytest.raises(InsufficientCreditsError):
        await account.consume_credits(4)
    assert account.credits == 3
    assert account.transactions == []


# ============================================================================
# JSON Stores
# ============================================================================

@pytest.mark.asyncio
async def test_workflow_store_decodes_string_flow_data(tmp_path):
    """flow_data may be stored as an encoded JSON string"""
    (tmp_path / "wf-1.json").write_text(json.dumps({
        "id": "wf-1", "user_id": "user-1", "name": "Demo", "is_published": True,
        "flow_data": json.dumps(FLOW),
    }))
    store = JSONWorkflowStore(str(tmp_path))

    workflow = await store.find_by_id("wf-1")

    assert workflow.name == "Demo"
    assert workflow.flow_data.nodes[0].id == "start"
    assert await store.find_by_id("missing") is None


@pytest.mark.asyncio
async def test_workflow_store_malformed_flow_data(tmp_path):
    (tmp_path / "bad.json").write_text(json.dumps({
        "id": "bad", "user_id": "user-1", "name": "Bad", "flow_data": "{not json",
    }))
    with pytest.raises(ConfigurationError):
        await JSONWorkflowStore(str(tmp_path)).find_by_id("bad")


@pytest.mark.asyncio
async def test_execution_recorder_persists(tmp_path):
    """Records survive a restart via load()"""
    recorder = JSONExecutionRecorder(str(tmp_path))
    execution_id = await recorder.create_execution({"workflow_id": "wf-1", "user_id": "user-1", "estimated_credits": 10})
    node_id = await recorder.create_node_execution({"execution_id": execution_id, "node_id": "start", "node_type": "start"})
    await recorder.update_node_execution(node_id, {"status": "success", "output_data": {"q": 1}})
    await recorder.update_execution(execution_id, {"status": "success", "credits_settled": True})

    saved = json.loads((tmp_path / f"{execution_id}.json").read_text())
    assert saved["execution"]["status"] == "success"
    assert saved["node_executions"][0]["output_data"] == {"q": 1}

    reloaded = JSONExecutionRecorder(str(tmp_path))
    assert await reloaded.load() == 1
    execution = await reloaded.find_execution(execution_id)
    assert execution.estimated_credits == 10
    assert (await reloaded.find_node_execution(execution_id, "start")).status == "success"


@pytest.mark.asyncio
async def test_execution_recorder_delete_removes_file(tmp_path):
    recorder = JSONExecutionRecorder(str(tmp_path))
    execution_id = await recorder.create_execution({"workflow_id": "wf-1", "user_id": "user-1"})

    assert await recorder.delete_execution(execution_id, "user-1")
    assert not (tmp_path / f"{execution_id}.json").exists()


@pytest.mark.asyncio
async def test_execution_recorder_skips_corrupt_files(tmp_path):
    (tmp_path / "broken.json").write_text("{")
    assert await JSONExecutionRecorder(str(tmp_path)).load() == 0


@pytest.mark.asyncio
async def test_account_store_writes_through(tmp_path):
    """Balance changes are saved to the account file"""
    store = JSONAccountStore(str(tmp_path))
    account = await store.create("user-1", credits=50, role="member")
    await account.consume_credits(20, reason="run")

    saved = json.loads((tmp_path / "user-1.json").read_text())
    assert saved["credits"] == 30
    assert saved["transactions"][0]["amount"] == -20

    reloaded = await JSONAccountStore(str(tmp_path)).find_by_id("user-1")
    assert reloaded.credits == 30
    assert reloaded.role == "member"
    assert len(reloaded.transactions) == 1
    assert await store.find_by_id("user-1") is account


@pytest.mark.asyncio
async def test_knowledge_source_visibility(tmp_path):
    item = KnowledgeItem(id="k1", title="Private", content="x", user_id="user-2")
    (tmp_path / "k1.json").write_text(item.model_dump_json())
    source = JSONKnowledgeSource(str(tmp_path))

    assert await source.find_item("k1", "user-1") is None
    assert (await source.find_item("k1", "user-2")).title == "Private"
    assert (await source.find_item("k1", "user-1", user_role="super_admin")).id == "k1"
    assert await source.find_item("missing", "user-2") is None


# ============================================================================
# YAML Catalogs
# ============================================================================

@pytest.mark.asyncio
async def test_load_node_type_catalog(tmp_path):
    path = tmp_path / "node_types.yaml"
    path.write_text(
        "node_types:\n"
        "  - type_key: llm\n"
        "    credits_per_execution: 10\n"
        "  - type_key: classifier\n"
        "    credits_per_execution: 5\n"
        "    is_active: false\n"
    )
    catalog = load_node_type_catalog(str(path))

    assert (await catalog.find_by_type_key("llm")).credits_per_execution == 10
    assert [t.type_key for t in await catalog.list_active()] == ["llm"]


def test_node_type_catalog_rejects_negative_cost(tmp_path):
    path = tmp_path / "node_types.yaml"
    path.write_text("node_types:\n  - type_key: llm\n    credits_per_execution: -1\n")
    with pytest.raises(ConfigurationError):
        load_node_type_catalog(str(path))


@pytest.mark.asyncio
async def test_missing_catalog_is_empty(tmp_path):
    catalog = load_node_type_catalog(str(tmp_path / "absent.yaml"))
    assert await catalog.list_active() == []


@pytest.mark.asyncio
async def test_load_model_catalog_reads_keys_from_env(tmp_path, monkeypatch):
    """api_key_env is resolved from the environment"""
    monkeypatch.setenv("TEST_MODEL_KEY", "sk-test")
    monkeypatch.delenv("UNSET_MODEL_KEY", raising=False)
    path = tmp_path / "models.yaml"
    path.write_text(
        "models:\n"
        "  - name: m1\n"
        "    api_endpoint: https://api.example.com/v1\n"
        "    api_key_env: TEST_MODEL_KEY\n"
        "  - name: m2\n"
        "    api_key_env: UNSET_MODEL_KEY\n"
    )
    catalog = load_model_catalog(str(path))

    assert (await catalog.find_by_name("m1")).api_key == "sk-test"
    assert (await catalog.find_by_name("m2")).api_key is None


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "models.yaml"
    path.write_text("models: [unclosed\n")
    with pytest.raises(ConfigurationError):
        load_model_catalog(str(path))
