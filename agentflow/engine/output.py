# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""Canonical storage shape for the final node output."""

from typing import Any, Dict


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


def normalize_output(output: Any) -> Dict[str, Any]:
    """
    Normalize the last node's output for storage.

    - None -> {"result": None}
    - dict with "output": inner dict as-is, inner string as text, else wrapped
    - dict with "content": treated as a model response
    - any other dict: unchanged
    - list -> {"result": [...], "type": "array"}
    - primitive -> {"result": value, "type": <kind>}
    """
    if output is None:
        return {"result": None}

    if isinstance(output, dict):
        if "output" in output:
            inner = output["output"]
            if isinstance(inner, dict):
                return inner
            if isinstance(inner, str):
                return {"result": inner, "type": "text"}
            return {"result": inner}

        if "content" in output:
            return {"result": output["content"], "type": "llm_response"}

        return output

    if isinstance(output, (list, tuple)):
        return {"result": list(output), "type": "array"}

    return {"result": output, "type": _type_name(output)}
