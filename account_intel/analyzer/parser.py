"""
Output Parser for Synthesis Responses

Claude is asked for bare JSON but occasionally wraps it in markdown
fences or adds a sentence before it. Strip what is safe to strip;
anything else is malformed and must not reach the cache.
"""

import json
import logging
import re
from typing import Any, Dict, List

from account_intel.errors import MalformedSynthesisOutput

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    text = raw.strip()
    text = _FENCE_OPEN.sub("", text)
    text = _FENCE_CLOSE.sub("", text)
    return text.strip()


def parse_json_output(raw: str) -> Any:
    """
    Parse a JSON document out of model output.

    Falls back to the outermost [...] or {...} span when the model added
    prose around the payload.
    """
    text = strip_fences(raw or "")
    if not text:
        raise MalformedSynthesisOutput("Empty synthesis output", raw_output=raw or "")

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for open_char, close_char in (("[", "]"), ("{", "}")):
        start = text.find(open_char)
        end = text.rfind(close_char)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue

    logger.debug(f"Unparseable synthesis output: {text[:200]}")
    raise MalformedSynthesisOutput("Synthesis output is not valid JSON", raw_output=raw)


def expect_list(parsed: Any) -> List[Dict]:
    """Require a JSON array of objects."""
    if not isinstance(parsed, list):
        raise MalformedSynthesisOutput(f"Expected JSON array, got {type(parsed).__name__}")
    return [item for item in parsed if isinstance(item, dict)]


def expect_object(parsed: Any) -> Dict:
    """Require a JSON object."""
    if not isinstance(parsed, dict):
        raise MalformedSynthesisOutput(f"Expected JSON object, got {type(parsed).__name__}")
    return parsed
