"""
Narration Normalizer

Every answer that may be read aloud ends up with one plain-text `fullText`
field, whichever way the prompt asked the model to structure it:
- SSML variants are flattened when the TTS runtime cannot render them
- stray tags inside `fullText` are stripped
- briefings that only carry title / mantra / focus get a synthesized `fullText`

Normalizing twice gives the same result as normalizing once.
"""

import copy
import html
import re
from typing import Any, Optional

from .types import StructuredValue


NARRATION_FIELD = "fullText"
MARKUP_FIELDS = ("fullTextSsml", "ssml")

# Every container present is normalized; the root is used when none is
NARRATION_CONTAINERS = (
    "realtimeAdvice",
    "preGameAnalysis",
    "postGameAnalysis",
    "strategicBriefing",
    "liveCoaching",
    "briefing",
)

# Dotted paths reach into nested objects such as preGameAnalysis.advice.mind
TITLE_FIELDS = ("title",)
MANTRA_FIELDS = ("mantra", "astralMantra", "advice.mind")
FOCUS_FIELDS = ("focus", "technicalFocus", "advice.rift")

_TERMINAL_PUNCTUATION = ".!?"

_BREAK_RE = re.compile(r"<break\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"</?[A-Za-z][\w:-]*(?:\s[^<>]*)?/?>")
_WS_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.;:!?])")
_COMMA_AFTER_STOP_RE = re.compile(r"([.;:!?])(?:\s*,)+")
_COMMA_BEFORE_STOP_RE = re.compile(r",\s*([.;:!?])")
_REPEATED_COMMA_RE = re.compile(r",(?:\s*,)+")


def has_markup(text: str) -> bool:
    return bool(_TAG_RE.search(text))


def _ensure_terminal(text: str) -> str:
    if text and text[-1] not in _TERMINAL_PUNCTUATION:
        return text + "."
    return text


def to_plain_text(markup: str) -> str:
    """
    Flatten SSML-ish markup into speakable plain text.

    Entities are unescaped first, <break> pauses become commas, every other
    tag is dropped, whitespace collapses and the text ends with terminal punctuation.
    """
    text = html.unescape(markup)
    # Dropping an inner tag can close up a new outer one, so repeat until stable
    previous = None
    while text != previous:
        previous = text
        text = _BREAK_RE.sub(", ", text)
        text = _TAG_RE.sub(" ", text)
    text = _WS_RE.sub(" ", text).strip()
    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _REPEATED_COMMA_RE.sub(",", text)
    text = _COMMA_AFTER_STOP_RE.sub(r"\1", text)
    text = _COMMA_BEFORE_STOP_RE.sub(r"\1", text)
    text = text.strip(" ,")
    return _ensure_terminal(text)


def _lookup(container: dict[str, Any], path: str) -> Optional[str]:
    node: Any = container
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    if isinstance(node, str) and node.strip():
        return node.strip()
    return None


def _first(container: dict[str, Any], paths: tuple[str, ...]) -> Optional[str]:
    for path in paths:
        value = _lookup(container, path)
        if value:
            return value
    return None


def _synthesize(container: dict[str, Any]) -> Optional[str]:
    title = _first(container, TITLE_FIELDS)
    mantra = _first(container, MANTRA_FIELDS)
    focus = _first(container, FOCUS_FIELDS)
    parts = [p for p in (title, mantra, focus) if p]
    if not parts:
        return None
    return " ".join(_ensure_terminal(p) for p in parts)


def _normalize_container(container: dict[str, Any], supports_markup: bool) -> None:
    markup = _first(container, MARKUP_FIELDS)
    text = container.get(NARRATION_FIELD)
    text = text.strip() if isinstance(text, str) else ""

    if not text and markup:
        text = markup if supports_markup else to_plain_text(markup)

    if not text:
        text = _synthesize(container) or ""

    if text and has_markup(text) and not (supports_markup and text == markup):
        text = to_plain_text(text)

    if text:
        container[NARRATION_FIELD] = text


def _normalize_object(obj: dict[str, Any], supports_markup: bool) -> None:
    found = False
    for name in NARRATION_CONTAINERS:
        container = obj.get(name)
        if isinstance(container, dict):
            _normalize_container(container, supports_markup)
            found = True
    if not found:
        _normalize_container(obj, supports_markup)


def normalize_narration(result: StructuredValue, supports_markup: bool = False) -> StructuredValue:
    """
    Return a normalized copy of a provider result.

    Args:
        result: Parsed provider output (dict, or list of dicts for array prompts)
        supports_markup: True when the narration runtime renders SSML itself

    Returns:
        A deep copy with `fullText` canonicalized in every narration container
    """
    result = copy.deepcopy(result)
    if isinstance(result, dict):
        _normalize_object(result, supports_markup)
    elif isinstance(result, list):
        for item in result:
            if isinstance(item, dict):
                _normalize_object(item, supports_markup)
    return result
