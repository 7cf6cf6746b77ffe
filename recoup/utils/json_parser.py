"""Parsing helpers for free-text LLM output.

Handles the wrapping patterns models add around structured answers: markdown
code fences, leading prose, trailing commentary.
"""

import json
import math
import re
from typing import Any, Dict

_FENCE_OPEN = re.compile(r"^\s*```[\w-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?[ \t]*```\s*$")


def strip_code_fences(raw: str) -> str:
    """Remove a leading ```lang line and a trailing ``` from LLM output.

    Fences in the middle of the text are left alone.
    """
    text = raw.strip()
    text = _FENCE_OPEN.sub("", text, count=1)
    text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def parse_json_from_llm(raw: str) -> Dict[str, Any]:
    """Parse a JSON object from LLM output.

    Supports:
    - Plain JSON: '{"key": "value"}'
    - Markdown code blocks: '```json\\n{"key": "value"}\\n```'
    - JSON with surrounding text

    Raises:
        ValueError: If no JSON object can be found.
    """
    if not raw or not raw.strip():
        raise ValueError("Empty input")

    text = raw.strip()

    # Try 1: direct parse
    try:
        result = json.loads(text)
        if isinstance(result, dict):
            return result
    except json.JSONDecodeError:
        pass

    # Try 2: fenced block
    code_block_match = re.search(r'```(?:json)?\s*\n(.*?)\n\s*```', text, re.DOTALL)
    if code_block_match:
        try:
            result = json.loads(code_block_match.group(1).strip())
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    # Try 3: outermost { ... }
    brace_match = re.search(r'\{.*\}', text, re.DOTALL)
    if brace_match:
        try:
            result = json.loads(brace_match.group(0))
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

    raise ValueError(f"No valid JSON found in LLM output: {text[:200]}")


def extract_float(value: Any) -> float:
    """Pull a number out of an LLM field.

    Accepts numbers, numeric strings ("72", "72/100", "72%") and nested dicts
    like {"value": 72}. Booleans, NaN and infinities are rejected.

    Raises:
        ValueError: If no number can be extracted.
    """
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a score: {value!r}")
    if isinstance(value, (int, float)):
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"Not a finite number: {value!r}")
        return number
    if isinstance(value, str):
        match = re.match(r"^\s*(-?\d+(?:\.\d+)?)\s*(?:%|/\s*100)?\s*$", value)
        if match:
            return float(match.group(1))
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, dict):
        for key in ("value", "score"):
            if key in value:
                return extract_float(value[key])
    raise ValueError(f"Not a number: {value!r}")
