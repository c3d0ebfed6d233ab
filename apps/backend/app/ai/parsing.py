"""Helpers for pulling JSON objects out of generative-model replies."""

import json
import re
from typing import Optional

_FENCE_RE = re.compile(r"```(?:json)?\s*|```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def extract_json(raw: Optional[str]) -> Optional[dict]:
    """
    Extract and parse the first JSON object found in `raw`.

    Markdown code fences are stripped first. Returns None when no object
    can be parsed, or when the parsed value is not a dict.
    """
    if not raw:
        return None
    m = _OBJECT_RE.search(_FENCE_RE.sub("", raw))
    if not m:
        return None
    try:
        data = json.loads(m.group())
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None
