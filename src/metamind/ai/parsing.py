"""
Extraction of a JSON payload from free-form model output.

Models wrap JSON in prose or markdown fences no matter how the prompt is
worded, so we locate the outermost bracket pair of the expected shape and
parse only that slice.
"""

import json
from typing import Optional

from .types import ExpectedShape, StructuredValue
from ..exceptions import MalformedStructureError


_FENCE = "```"


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` if present"""
    text = text.strip()
    if text.startswith(_FENCE):
        text = text[len(_FENCE):]
        if text[:4].lower() == "json":
            text = text[4:]
    if text.endswith(_FENCE):
        text = text[:-len(_FENCE)]
    return text.strip()


def extract_structured(
    raw_text: str,
    expected_shape: ExpectedShape = ExpectedShape.OBJECT,
    provider: Optional[str] = None
) -> StructuredValue:
    """
    Parse the structured payload out of model text.

    Args:
        raw_text: Text as returned by the provider
        expected_shape: Which bracket pair delimits the payload
        provider: Provider name, only used to enrich errors

    Returns:
        The parsed dict or list

    Raises:
        MalformedStructureError: No bracket pair found, or the slice is not JSON
    """
    expected_shape = ExpectedShape.parse(expected_shape)
    text = strip_code_fence(raw_text or "")
    open_char, close_char = expected_shape.brackets

    start = text.find(open_char)
    end = text.rfind(close_char)
    if start == -1 or end == -1 or end < start:
        raise MalformedStructureError(
            f"no {open_char}...{close_char} structure found",
            raw_text or "",
            provider=provider,
        )

    try:
        value = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise MalformedStructureError(f"invalid JSON ({e.msg})", raw_text, provider=provider) from e

    return value
