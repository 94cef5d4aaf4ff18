# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Knowledge Node

Loads knowledge base items and passes their combined content downstream as
context for a model call.
"""

from typing import Any, Dict, List

from agentflow.engine.models import KnowledgeItem, NodeResult
from .ai_client import estimate_tokens
from .base import BaseNode

SEPARATOR = "=" * 50


def format_content_block(item: KnowledgeItem) -> str:
    header = f"=== Knowledge: {item.title} ==="
    return f"{SEPARATOR}\n{header}\n{SEPARATOR}\n\n{item.content}"


def empty_output() -> Dict[str, Any]:
    return {"knowledge_context": "", "total_tokens": 0, "wiki_count": 0, "loaded_wikis": []}


class KnowledgeNode(BaseNode):
    """Direct-load knowledge retrieval. Costs no credits."""

    def validate(self) -> List[str]:
        if self.get_config("source", "wiki") == "wiki" and self.get_config("mode", "direct") == "direct":
            wiki_ids = self.get_config("wiki_ids")
            if not isinstance(wiki_ids, list) or not wiki_ids:
                return ["At least one knowledge base must be selected"]
        return []

    async def execute(self, context, user_id, type_config) -> NodeResult:
        source = self.get_config("source", "wiki")
        mode = self.get_config("mode", "direct")
        wiki_ids = self.get_config("wiki_ids") or []

        if source != "wiki" or not wiki_ids:
            self.log("info", "No knowledge source selected, skipping", source=source)
            return NodeResult(output=empty_output(), credits_used=0)

        if mode != "direct":
            self.log("warning", "Unsupported knowledge load mode", mode=mode)
            return NodeResult(output=empty_output(), credits_used=0)

        return NodeResult(output=await self.load_direct(wiki_ids, context), credits_used=0)

    async def load_direct(self, wiki_ids: List[Any], context) -> Dict[str, Any]:
        knowledge = self.dependencies.knowledge_source
        blocks: List[str] = []
        loaded: List[Dict[str, Any]] = []
        total_tokens = 0

        for wiki_id in wiki_ids:
            item = None
            if knowledge is not None:
                item = await knowledge.find_item(str(wiki_id), context.user_id, context.group_id, context.user_role)
            if item is None:
                self.log("warning", "Knowledge item missing or not accessible, skipping", wiki_id=str(wiki_id))
                continue
            if not item.content:
                self.log("warning", "Knowledge item is empty, skipping", wiki_id=item.id)
                continue

            tokens = item.token_count if item.token_count is not None else estimate_tokens(item.content)
            total_tokens += tokens
            blocks.append(format_content_block(item))
            loaded.append({"id": item.id, "title": item.title, "tokens": tokens})

        self.log("info", "Knowledge loaded", loaded_count=len(loaded), total_tokens=total_tokens)
        return {
            "knowledge_context": "\n\n".join(blocks),
            "total_tokens": total_tokens,
            "wiki_count": len(loaded),
            "loaded_wikis": loaded,
        }
