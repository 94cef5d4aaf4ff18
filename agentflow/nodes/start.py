# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Start node: entry point that exposes the caller's input."""

from agentflow.engine.models import NodeResult
from .base import BaseNode


class StartNode(BaseNode):
    """Passes the run input through as its output."""

    async def execute(self, context, user_id, type_config) -> NodeResult:
        self.log("info", "Start node executing", input_keys=sorted(context.input))
        return NodeResult(output=dict(context.input), credits_used=0)
