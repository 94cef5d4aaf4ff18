# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tests for the built-in node types.
"""

import json

import pytest

from agentflow.core.errors import NotFoundError, ValidationError
from agentflow.engine.context import ExecutionContext
from agentflow.engine.models import KnowledgeItem, NodeTypeConfig
from agentflow.nodes import ClassifierNode, EndNode, KnowledgeNode, LLMNode, StartNode
from agentflow.nodes.classifier import parse_classification
from agentflow.nodes.end import format_output
from conftest import llm, node

LLM_TYPE = NodeTypeConfig(type_key="llm", credits_per_execution=10)
FREE_TYPE = NodeTypeConfig(type_key="free", credits_per_execution=0)


def make_context(input=None, upstream=None, outputs=None, **kwargs):
    context = ExecutionContext(input=input or {}, user_id="user-1", workflow_id="wf-1", execution_id="exec-1", **kwargs)
    for node_id, output in (outputs or {}).items():
        context.record_output(node_id, output)
    context.upstream_output = upstream
    return context


def last_user_message(ai_client):
    return ai_client.call.call_args.args[1][-1]["content"]


# ============================================================================
# Start / End
# ============================================================================

@pytest.mark.asyncio
async def test_start_passes_input_through():
    result = await StartNode(node("start", "start")).execute(make_context({"query": "hi"}), "user-1", FREE_TYPE)
    assert result.output == {"query": "hi"}
    assert result.credits_used == 0


def test_format_output_variants():
    """text, json and markdown renderings"""
    data = {"a": 1}
    assert format_output(data, "text") == json.dumps(data)
    assert format_output("plain", "text") == "plain"
    assert format_output(None, "text") == ""
    assert format_output(data, "json") == data
    assert format_output("plain", "json") == {"result": "plain"}
    assert format_output(data, "markdown") == '```json\n{\n  "a": 1\n}\n```'
    assert format_output("# Title", "markdown") == "# Title"


def test_end_rejects_unknown_format():
    errors = EndNode(node("end", "end", output_format="xml")).validate()
    assert errors == ["Invalid output format: xml, supported formats: text, json, markdown"]


@pytest.mark.asyncio
async def test_end_uses_upstream_output():
    end = EndNode(node("end", "end", output_format="json"))
    result = await end.execute(make_context(upstream={"x": 1}), "user-1", FREE_TYPE)
    assert result.output == {"output": {"x": 1}, "format": "json"}


@pytest.mark.asyncio
async def test_end_without_edge_uses_last_output():
    """Disconnected end node formats the most recent output"""
    context = make_context(outputs={"start": {"q": 1}, "ai": "last"})
    result = await EndNode(node("end", "end")).execute(context, "user-1", FREE_TYPE)
    assert result.output == {"output": "last", "format": "text"}


# ============================================================================
# LLM
# ============================================================================

def test_llm_validation_ranges():
    """Out-of-range settings are reported together"""
    errors = LLMNode(llm("ai", model=None, history_turns=101, temperature=3, max_tokens=50)).validate()
    assert errors == [
        "An AI model must be selected",
        "history_turns must be between 0 and 100",
        "temperature must be between 0 and 2",
        "max_tokens must be between 100 and 4000",
    ]


def test_llm_accepts_model_name_key():
    assert LLMNode(node("ai", "llm", model_name="test-model")).validate() == []


@pytest.mark.asyncio
async def test_llm_output_and_credits(dependencies, ai_client):
    """Output carries the reply, model and token estimate"""
    ai = LLMNode(llm("ai", temperature=0.2, max_tokens=500), dependencies)

    result = await ai.execute(make_context({"query": "hi"}), "user-1", LLM_TYPE)

    assert result.output == {
        "content": "model text",
        "model": "test-model",
        "display_name": "Test Model",
        "tokens_used": 3,
    }
    assert result.credits_used == 10
    model, messages, options = ai_client.call.call_args.args
    assert model.name == "test-model"
    assert messages == [{"role": "user", "content": "hi"}]
    assert options == {"temperature": 0.2, "max_tokens": 500}


@pytest.mark.asyncio
async def test_llm_template_wins(dependencies, ai_client):
    """Prompt template takes priority over upstream output"""
    ai = LLMNode(llm("ai", user_prompt="Summarize {{start.query}}", system_prompt="Be brief about {{start.query}}"), dependencies)
    context = make_context({"query": "cats"}, upstream={"content": "ignored"}, outputs={"start": {"query": "cats"}})

    await ai.execute(context, "user-1", LLM_TYPE)

    messages = ai_client.call.call_args.args[1]
    assert messages[0] == {"role": "system", "content": "Be brief about cats"}
    assert messages[-1] == {"role": "user", "content": "Summarize cats"}


@pytest.mark.asyncio
async def test_llm_knowledge_prompt(dependencies, ai_client):
    """Knowledge output is combined with the user query"""
    upstream = {"knowledge_context": "Cats sleep a lot.", "total_tokens": 4, "wiki_count": 1, "loaded_wikis": []}
    ai = LLMNode(llm("ai"), dependencies)

    await ai.execute(make_context({"query": "Do cats sleep?"}, upstream=upstream), "user-1", LLM_TYPE)

    content = last_user_message(ai_client)
    assert "[Knowledge]\nCats sleep a lot." in content
    assert "[Question]\nDo cats sleep?" in content


@pytest.mark.asyncio
async def test_llm_upstream_content(dependencies, ai_client):
    await LLMNode(llm("ai"), dependencies).execute(
        make_context({"query": "hi"}, upstream={"content": "previous answer"}), "user-1", LLM_TYPE
    )
    assert last_user_message(ai_client) == "previous answer"


@pytest.mark.asyncio
async def test_llm_falls_back_to_input(dependencies, ai_client):
    """No upstream: input.query, then the whole input as JSON"""
    ai = LLMNode(llm("ai"), dependencies)

    await ai.execute(make_context({"query": "direct"}), "user-1", LLM_TYPE)
    assert last_user_message(ai_client) == "direct"

    await ai.execute(make_context({"topic": "x"}), "user-1", LLM_TYPE)
    assert last_user_message(ai_client) == '{"topic": "x"}'


@pytest.mark.asyncio
async def test_llm_without_any_input(dependencies):
    with pytest.raises(ValidationError):
        await LLMNode(llm("ai"), dependencies).execute(make_context({}), "user-1", LLM_TYPE)


@pytest.mark.asyncio
async def test_llm_history_trimmed(dependencies, ai_client):
    """history_turns keeps the last N exchanges"""
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(6)]
    ai = LLMNode(llm("ai", history_turns=1), dependencies)

    await ai.execute(make_context({"query": "now", "messages": history}), "user-1", LLM_TYPE)

    messages = ai_client.call.call_args.args[1]
    assert [m["content"] for m in messages] == ["m4", "m5", "now"]


@pytest.mark.asyncio
async def test_llm_disabled_model(dependencies):
    with pytest.raises(ValidationError) as exc_info:
        await LLMNode(llm("ai", model="disabled-model"), dependencies).execute(
            make_context({"query": "hi"}), "user-1", LLM_TYPE
        )
    assert "disabled" in exc_info.value.message


@pytest.mark.asyncio
async def test_llm_unknown_model(dependencies):
    with pytest.raises(NotFoundError):
        await LLMNode(llm("ai", model="nope"), dependencies).execute(make_context({"query": "hi"}), "user-1", LLM_TYPE)


# ============================================================================
# Knowledge
# ============================================================================

def test_knowledge_requires_items():
    assert KnowledgeNode(node("kb", "knowledge")).validate() == ["At least one knowledge base must be selected"]
    assert KnowledgeNode(node("kb", "knowledge", wiki_ids=["k1"])).validate() == []


@pytest.mark.asyncio
async def test_knowledge_loads_visible_items(dependencies, knowledge_source):
    """Own and public items load; others' private items are skipped"""
    knowledge_source.add(KnowledgeItem(id="k1", title="Cats", content="Cats sleep.", user_id="user-1"))
    knowledge_source.add(KnowledgeItem(id="k2", title="Dogs", content="Dogs bark.", is_public=True, token_count=7))
    knowledge_source.add(KnowledgeItem(id="k3", title="Secret", content="Hidden.", user_id="user-2"))
    knowledge_source.add(KnowledgeItem(id="k4", title="Empty", content="", user_id="user-1"))

    kb = KnowledgeNode(node("kb", "knowledge", wiki_ids=["k1", "k2", "k3", "k4", "missing"]), dependencies)
    result = await kb.execute(make_context(), "user-1", FREE_TYPE)

    output = result.output
    assert result.credits_used == 0
    assert output["wiki_count"] == 2
    assert [w["id"] for w in output["loaded_wikis"]] == ["k1", "k2"]
    assert output["total_tokens"] == 3 + 7
    assert "=== Knowledge: Cats ===" in output["knowledge_context"]
    assert "Dogs bark." in output["knowledge_context"]
    assert "Hidden." not in output["knowledge_context"]


@pytest.mark.asyncio
async def test_knowledge_group_visibility(dependencies, knowledge_source):
    knowledge_source.add(KnowledgeItem(id="k1", title="Team", content="Shared.", user_id="user-2", group_id="g1"))
    kb = KnowledgeNode(node("kb", "knowledge", wiki_ids=["k1"]), dependencies)

    result = await kb.execute(make_context(group_id="g1"), "user-1", FREE_TYPE)
    assert result.output["wiki_count"] == 1


@pytest.mark.asyncio
async def test_knowledge_unsupported_mode_is_empty(dependencies):
    kb = KnowledgeNode(node("kb", "knowledge", wiki_ids=["k1"], mode="vector"), dependencies)
    result = await kb.execute(make_context(), "user-1", FREE_TYPE)
    assert result.output == {"knowledge_context": "", "total_tokens": 0, "wiki_count": 0, "loaded_wikis": []}


# ============================================================================
# Classifier
# ============================================================================

CATEGORIES = [
    {"id": "billing", "name": "Billing"},
    {"name": "Technical", "description": "Bugs and errors"},
]


def test_parse_classification_number():
    result = parse_classification("2", CATEGORIES)
    assert result == {"category_id": "cat-1", "category_name": "Technical", "category_index": 1, "confidence": "high"}


def test_parse_classification_name_match():
    assert parse_classification("Probably billing.", CATEGORIES)["confidence"] == "medium"
    assert parse_classification("Probably billing.", CATEGORIES)["category_id"] == "billing"


def test_parse_classification_fallback():
    """Unparseable and out-of-range replies fall back to the first category"""
    assert parse_classification("no idea", CATEGORIES)["confidence"] == "low"
    assert parse_classification("7", CATEGORIES)["category_index"] == 0


def test_classifier_validation():
    errors = ClassifierNode(node("cls", "classifier", categories=[{"name": "A"}, {"name": " "}])).validate()
    assert errors == ["An AI model must be selected", "Category 2 is missing a name"]

    errors = ClassifierNode(node("cls", "classifier", model="test-model")).validate()
    assert errors == ["At least one category must be defined"]

    too_many = [{"name": f"c{i}"} for i in range(101)]
    errors = ClassifierNode(node("cls", "classifier", model="test-model", categories=too_many)).validate()
    assert errors == ["No more than 100 categories are allowed"]


@pytest.mark.asyncio
async def test_classifier_execute(dependencies, ai_client):
    """Model reply is mapped to a category with a low temperature call"""
    ai_client.call.return_value = "1"
    cls = ClassifierNode(node("cls", "classifier", model="test-model", categories=CATEGORIES), dependencies)

    result = await cls.execute(make_context({"query": "My invoice is wrong"}), "user-1", NodeTypeConfig(type_key="classifier", credits_per_execution=5))

    assert result.credits_used == 5
    assert result.output["category_id"] == "billing"
    assert result.branch == "output-billing"
    assert result.output["original_query"] == "My invoice is wrong"
    assert result.output["all_categories"] == [{"id": "billing", "name": "Billing"}, {"id": None, "name": "Technical"}]

    messages, options = ai_client.call.call_args.args[1:]
    assert options == {"temperature": 0.1, "max_tokens": 100, "timeout": 60.0}
    assert "1. Billing" in messages[0]["content"]
    assert "My invoice is wrong" in messages[1]["content"]


@pytest.mark.asyncio
async def test_classifier_needs_a_question(dependencies):
    cls = ClassifierNode(node("cls", "classifier", model="test-model", categories=CATEGORIES), dependencies)
    with pytest.raises(ValidationError):
        await cls.execute(make_context({}), "user-1", FREE_TYPE)
