# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Variable substitution for node text fields.

Resolves `{{nodeId}}` and `{{nodeId.path.to.value}}` against the outputs of
nodes that already ran. Unresolvable references are left in place.
"""

import json
import re
from typing import Any, Mapping

from agentflow.core.logging import get_service_logger

logger = get_service_logger("variables")

VARIABLE_PATTERN = re.compile(r"\{\{([A-Za-z0-9_-]+)(?:\.([A-Za-z0-9_.-]+))?\}\}")

_MISSING = object()


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _get_nested_value(obj: Any, path: str) -> Any:
    """Get nested value using dot notation, _MISSING if any key is absent"""
    current = obj
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def substitute_variables(text: Any, variables: Mapping[str, Any]) -> Any:
    """
    Replace variable references in text.

    Args:
        text: Template text; non-string values are returned unchanged
        variables: node_id -> output of that node

    Returns:
        Text with every resolvable reference replaced
    """
    if not isinstance(text, str) or "{{" not in text:
        return text

    def replace_ref(match: re.Match) -> str:
        node_id, path = match.group(1), match.group(2)

        if node_id not in variables:
            logger.debug(f"Unresolved variable reference: {match.group(0)}")
            return match.group(0)

        value = variables[node_id]
        if path:
            value = _get_nested_value(value, path)
            if value is _MISSING:
                logger.debug(f"Unresolved variable path: {match.group(0)}")
                return match.group(0)

        return _stringify(value)

    return VARIABLE_PATTERN.sub(replace_ref, text)
