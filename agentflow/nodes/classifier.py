# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Classifier Node

Asks a model to place the user's question in one of up to 100 predefined
categories. The selected category picks the "output-<category_id>" branch
the run continues on.
"""

import json
import re
from typing import Any, Dict, List

from agentflow.core.errors import ValidationError
from agentflow.engine.branching import branch_handle
from agentflow.engine.models import NodeResult
from .base import BaseNode, recent_history, to_int

MAX_CATEGORIES = 100
DEFAULT_HISTORY_TURNS = 6

_NUMBER = re.compile(r"\d+")


def build_system_prompt(categories: List[Dict[str, Any]], background_knowledge: str) -> str:
    lines = [
        "You are a question classifier. Assign the user's question to exactly one of the predefined categories.",
        "",
        "[Rules]",
        "1. Read the question and the conversation history carefully",
        "2. Use the background knowledge and category descriptions to pick the best match",
        "3. Output only the category number, nothing else",
        "4. If unsure, pick the closest category",
        "",
        "[Categories]",
    ]
    for index, category in enumerate(categories, start=1):
        line = f"{index}. {category.get('name')}"
        if category.get("description"):
            line += f" - {category['description']}"
        lines.append(line)

    if background_knowledge and background_knowledge.strip():
        lines.extend(["", "[Background]", background_knowledge])

    lines.extend([
        "",
        "[Output format]",
        f"A single number between 1 and {len(categories)}. Nothing else.",
    ])
    return "\n".join(lines)


def build_classification_prompt(
    user_query: str,
    categories: List[Dict[str, Any]],
    history: List[Dict[str, str]],
) -> str:
    prompt = ""
    if history:
        prompt += "[Conversation history]\n"
        for message in history:
            role = "User" if message.get("role") == "user" else "AI"
            prompt += f"{role}: {message.get('content', '')}\n"
        prompt += "\n"

    prompt += f"[Current question]\n{user_query}\n\n[Choose a category number]\n"
    for index, category in enumerate(categories, start=1):
        prompt += f"{index}. {category.get('name')}\n"
    prompt += "\nCategory number (digits only):"
    return prompt


def parse_classification(response: str, categories: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Map a model reply to a category.

    First number in range -> high confidence; category name mentioned ->
    medium; otherwise the first category with low confidence.
    """
    def pick(index: int, confidence: str) -> Dict[str, Any]:
        category = categories[index]
        return {
            "category_id": category.get("id") or f"cat-{index}",
            "category_name": category.get("name"),
            "category_index": index,
            "confidence": confidence,
        }

    match = _NUMBER.search(response or "")
    if match:
        index = int(match.group(0)) - 1
        if 0 <= index < len(categories):
            return pick(index, "high")

    lowered = (response or "").lower()
    for index, category in enumerate(categories):
        name = (category.get("name") or "").lower()
        if name and name in lowered:
            return pick(index, "medium")

    return pick(0, "low")


class ClassifierNode(BaseNode):
    """Model-backed question classifier."""

    @property
    def categories(self) -> List[Dict[str, Any]]:
        return self.get_config("categories") or []

    def validate(self) -> List[str]:
        errors = []
        if not self.get_config("model"):
            errors.append("An AI model must be selected")

        categories = self.categories
        if not categories:
            errors.append("At least one category must be defined")
        if len(categories) > MAX_CATEGORIES:
            errors.append(f"No more than {MAX_CATEGORIES} categories are allowed")

        for index, category in enumerate(categories, start=1):
            if not str(category.get("name") or "").strip():
                errors.append(f"Category {index} is missing a name")
        return errors

    def resolve_query(self, context) -> str:
        upstream = context.upstream_output
        query = ""
        if isinstance(upstream, dict):
            query = upstream.get("query") or upstream.get("content") or json.dumps(upstream, ensure_ascii=False)
        elif upstream is not None:
            query = str(upstream)

        if not query:
            query = context.input.get("query") or ""
        if not query:
            raise ValidationError("No user question to classify", field=f"nodes[{self.id}]")
        return query

    async def execute(self, context, user_id, type_config) -> NodeResult:
        categories = self.categories
        model = await self.resolve_model(self.get_config("model"))
        user_query = self.resolve_query(context)

        history_turns = to_int(self.get_config("history_turns", DEFAULT_HISTORY_TURNS), DEFAULT_HISTORY_TURNS)
        messages = [
            {
                "role": "system",
                "content": build_system_prompt(categories, self.get_config("background_knowledge", "")),
            },
            {
                "role": "user",
                "content": build_classification_prompt(user_query, categories, recent_history(context, history_turns)),
            },
        ]

        response = await self.call_model(model, messages, {
            "temperature": 0.1,
            "max_tokens": 100,
            "timeout": self.dependencies.classifier_timeout,
        })
        result = parse_classification(response, categories)
        if result["confidence"] == "low":
            self.log("warning", "Could not parse classification, using first category", response=response[:200])
        self.log(
            "info", "Classified question",
            category_id=result["category_id"], confidence=result["confidence"],
        )

        return NodeResult(
            output={
                **result,
                "original_query": user_query,
                "all_categories": [{"id": c.get("id"), "name": c.get("name")} for c in categories],
            },
            credits_used=type_config.credits_per_execution,
            branch=branch_handle(result["category_id"]),
        )
