"""
Decoding of model-generated tool arguments.

Models wrap JSON in code fences or prose often enough that a plain
``json.loads`` is not good enough.
"""

import json
import re
from typing import Any

from conduit.utils.logging import get_logger

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"```[a-zA-Z0-9_-]*\s*(.*?)\s*```", re.DOTALL)


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def decode_tool_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """
    Decode raw tool-call arguments into a dict.

    Tries, in order: the text as-is, the contents of a markdown code fence,
    and the outermost ``{...}`` span. Anything that still fails to parse
    decodes to an empty dict.

    Examples:
        >>> decode_tool_arguments('```json\\n{"a": 1}\\n```')
        {'a': 1}
        >>> decode_tool_arguments('sure: {"a": 1} done')
        {'a': 1}
        >>> decode_tool_arguments("not json")
        {}
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw

    text = raw.strip()
    if not text:
        return {}

    parsed = _loads_object(text)
    if parsed is not None:
        return parsed

    fence = _CODE_FENCE.search(text)
    if fence:
        parsed = _loads_object(fence.group(1))
        if parsed is not None:
            return parsed

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        parsed = _loads_object(text[start : end + 1])
        if parsed is not None:
            return parsed

    logger.warning("tool_arguments_undecodable", raw_length=len(text), preview=text[:200])
    return {}


__all__ = ["decode_tool_arguments"]
