"""
Value types shared by the orchestration layer
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Optional, Union

from ..exceptions import InvalidRequestError


# Whatever json.loads produced from the model output
StructuredValue = Union[dict[str, Any], list[Any]]


class ExpectedShape(str, Enum):
    """Top-level JSON shape the prompt asked the model for"""
    OBJECT = "object"
    ARRAY = "array"

    @property
    def brackets(self) -> tuple[str, str]:
        return ("[", "]") if self is ExpectedShape.ARRAY else ("{", "}")

    @classmethod
    def parse(cls, value: Union[str, "ExpectedShape", None]) -> "ExpectedShape":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.OBJECT
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            raise InvalidRequestError.unknown_shape(value)


@dataclass(frozen=True)
class OrchestratedRequest:
    """
    One call into the orchestrator.

    The prompt is opaque: the orchestrator never inspects it beyond hashing.
    """
    prompt: str
    expected_shape: ExpectedShape = ExpectedShape.OBJECT
    kind: str = "realtime"
    cache_lifetime_ms: Optional[int] = None
    force_refresh: bool = False

    def __post_init__(self):
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise InvalidRequestError.empty_prompt()
        lifetime = self.cache_lifetime_ms
        valid = isinstance(lifetime, int) and not isinstance(lifetime, bool) and lifetime >= 1
        if lifetime is not None and not valid:
            raise InvalidRequestError.bad_lifetime(lifetime)
        # Frozen: go through object.__setattr__ to coerce string shapes
        object.__setattr__(self, "expected_shape", ExpectedShape.parse(self.expected_shape))
        object.__setattr__(self, "kind", (self.kind or "default").strip().lower())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrchestratedRequest":
        """Build from a JSON entry such as those in a precache file"""
        return cls(
            prompt=data.get("prompt", ""),
            expected_shape=data.get("expectedShape") or data.get("expected_shape") or "object",
            kind=data.get("kind") or "realtime",
            cache_lifetime_ms=data.get("cacheLifetimeMs", data.get("cache_lifetime_ms")),
            force_refresh=bool(data.get("forceRefresh") or data.get("force_refresh")),
        )


@dataclass(frozen=True)
class MetricRecord:
    """Outcome of one orchestrated provider sequence"""
    provider: Optional[str]
    model: str
    duration_ms: int
    success: bool
    used_fallback: bool
    cache_key: str
    kind: str = "default"
    attempts: int = 0
    error_type: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
