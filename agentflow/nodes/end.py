# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""End node: formats the final workflow output."""

import json
from typing import Any, List

from agentflow.engine.models import NodeResult
from .base import BaseNode

OUTPUT_FORMATS = ("text", "json", "markdown")


def format_output(value: Any, output_format: str) -> Any:
    structured = isinstance(value, (dict, list))

    if output_format == "json":
        return value if structured else {"result": value}

    if output_format == "markdown":
        if structured:
            return f"```json\n{json.dumps(value, ensure_ascii=False, indent=2)}\n```"
        return "" if value is None else str(value)

    if structured:
        return json.dumps(value, ensure_ascii=False)
    return "" if value is None else str(value)


class EndNode(BaseNode):
    """
    Formats the preceding output as text, json or markdown.

    Reads the upstream output, or the most recent recorded output when the
    node has no incoming edge.
    """

    @property
    def output_format(self) -> str:
        return self.get_config("output_format", "text")

    def validate(self) -> List[str]:
        if self.output_format not in OUTPUT_FORMATS:
            return [
                f"Invalid output format: {self.output_format}, "
                f"supported formats: {', '.join(OUTPUT_FORMATS)}"
            ]
        return []

    async def execute(self, context, user_id, type_config) -> NodeResult:
        source = context.upstream_output
        if source is None and context.completed_nodes:
            source = context.get_result(context.completed_nodes[-1])

        formatted = format_output(source, self.output_format)
        self.log("info", "End node executing", output_format=self.output_format)
        return NodeResult(
            output={"output": formatted, "format": self.output_format},
            credits_used=0,
        )
