# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
LLM Node

Calls a language model with an assembled message list. Supports conversation
history trimming, prompt templates with variable references and knowledge
context handed down from a knowledge node.
"""

import json
from typing import Any, Dict, List, Optional

from agentflow.core.errors import ValidationError
from agentflow.engine.models import NodeResult
from .ai_client import estimate_tokens
from .base import BaseNode, recent_history, to_float, to_int

DEFAULT_HISTORY_TURNS = 10
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000


def is_knowledge_output(upstream: Any) -> bool:
    return isinstance(upstream, dict) and "knowledge_context" in upstream


def extract_upstream_content(upstream: Any) -> Optional[str]:
    """Pick the most useful text out of a predecessor's output"""
    if upstream is None:
        return None
    if isinstance(upstream, dict):
        for key in ("knowledge_context", "content", "query"):
            if upstream.get(key):
                return str(upstream[key])
        return json.dumps(upstream, ensure_ascii=False)
    return str(upstream)


def build_knowledge_prompt(knowledge_context: str, user_query: str) -> str:
    if not knowledge_context.strip():
        return user_query
    if not user_query.strip():
        return (
            f"Please read the following knowledge base content:\n\n{knowledge_context}\n\n"
            "Use it to help the user."
        )
    return (
        "Use the following knowledge base content to answer the user's question.\n\n"
        f"[Knowledge]\n{knowledge_context}\n\n"
        f"[Question]\n{user_query}\n\n"
        "Answer accurately from the knowledge base. If it has no relevant information, "
        "say so and help as well as you can."
    )


class LLMNode(BaseNode):
    """Language model call node."""

    requires_single_predecessor = True

    @property
    def model_name(self) -> Optional[str]:
        return self.get_config("model") or self.get_config("model_name")

    def validate(self) -> List[str]:
        errors = []
        if not self.model_name:
            errors.append("An AI model must be selected")

        history_turns = self.get_config("history_turns")
        if history_turns is not None:
            turns = to_int(history_turns, -1)
            if turns < 0 or turns > 100:
                errors.append("history_turns must be between 0 and 100")

        temperature = self.get_config("temperature")
        if temperature is not None:
            value = to_float(temperature, -1.0)
            if value < 0 or value > 2:
                errors.append("temperature must be between 0 and 2")

        max_tokens = self.get_config("max_tokens")
        if max_tokens is not None:
            value = to_int(max_tokens, 0)
            if value < 100 or value > 4000:
                errors.append("max_tokens must be between 100 and 4000")

        return errors

    def build_user_message(self, context) -> str:
        """
        Resolve the user message, first match wins:
        prompt template, knowledge context + query, upstream output,
        input.query, the whole input as JSON.
        """
        template = self.get_config("user_prompt") or self.get_config("prompt")
        if template:
            return self.replace_variables(template, context)

        upstream = context.upstream_output
        user_query = context.input.get("query") or ""

        if is_knowledge_output(upstream) and upstream.get("knowledge_context"):
            return build_knowledge_prompt(upstream["knowledge_context"], user_query)

        if upstream:
            return extract_upstream_content(upstream)

        if user_query:
            return user_query

        if context.input:
            return json.dumps(context.input, ensure_ascii=False)

        raise ValidationError(
            "No user input: no prompt template, upstream output or input data",
            field=f"nodes[{self.id}]"
        )

    def build_messages(self, context) -> List[Dict[str, str]]:
        history_turns = to_int(self.get_config("history_turns", DEFAULT_HISTORY_TURNS), DEFAULT_HISTORY_TURNS)
        system_prompt = self.replace_variables(self.get_config("system_prompt", ""), context)

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(recent_history(context, history_turns))
        messages.append({"role": "user", "content": self.build_user_message(context)})
        return messages

    async def execute(self, context, user_id, type_config) -> NodeResult:
        if not self.model_name:
            raise ValidationError("No AI model selected", field=f"nodes[{self.id}]")

        model = await self.resolve_model(self.model_name)
        messages = self.build_messages(context)
        self.log("info", "Calling model", model=model.name, message_count=len(messages))

        response = await self.call_model(model, messages, {
            "temperature": to_float(self.get_config("temperature", DEFAULT_TEMPERATURE), DEFAULT_TEMPERATURE),
            "max_tokens": to_int(self.get_config("max_tokens", DEFAULT_MAX_TOKENS), DEFAULT_MAX_TOKENS),
        })

        tokens = estimate_tokens(response)
        self.log("info", "Model responded", response_length=len(response), tokens_used=tokens)

        return NodeResult(
            output={
                "content": response,
                "model": model.name,
                "display_name": model.label,
                "tokens_used": tokens,
            },
            credits_used=type_config.credits_per_execution,
        )
