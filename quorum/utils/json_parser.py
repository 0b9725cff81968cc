"""JSON extraction and number coercion for model output.

Models wrap JSON in prose, markdown fences or trailing commentary; the
helpers here recover the first JSON object and read numeric fields that may
arrive as strings such as "7/10" or "85%".
"""

import json
import re
from typing import Any, Dict, Iterator, Optional

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n(.*?)\n\s*```", re.DOTALL)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def _candidates(text: str) -> Iterator[str]:
    yield text
    for match in _FENCE_RE.finditer(text):
        yield match.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        yield text[start:end + 1]


def parse_json_from_llm(raw: str) -> Dict[str, Any]:
    """Parse the first JSON object found in model output.

    Tries, in order: the whole text, each fenced code block, and the span
    from the first "{" to the last "}".

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError("Empty input")

    text = raw.strip()
    for candidate in _candidates(text):
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result

    raise ValueError(f"No valid JSON found in LLM output: {text[:200]}")


def coerce_number(value: Any) -> Optional[float]:
    """Read a number from an int, float or numeric-looking string.

    Booleans and non-numeric values return None. For strings the first
    number wins, so "7/10" reads as 7.0 and "85%" as 85.0.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if number == number else None
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if match:
            return float(match.group(0))
    return None
