"""
Static routing table: request kind -> model, provider preference, cache lifetime
"""

from dataclasses import dataclass
from typing import Optional

from ..config import OrchestratorConfig


@dataclass(frozen=True)
class Route:
    """Where a request of a given kind is sent"""
    kind: str
    model: str
    primary: str
    fallback: Optional[str]
    default_lifetime_ms: int
    attempt_timeout: float


# realtime: in-game advice, lowest latency wins
# analysis: post-game and weekly work, quality over speed
# a None lifetime means OrchestratorConfig.default_cache_lifetime_ms
DEFAULT_ROUTES: dict[str, tuple[str, str, Optional[str], Optional[int]]] = {
    "realtime": ("gemini-2.0-flash", "gemini", "openai", 60 * 1000),
    "analysis": ("gpt-4o-mini", "openai", "gemini", 60 * 60 * 1000),
    "default": ("gemini-2.0-flash", "gemini", "openai", None),
}


class RoutingTable:
    """Resolves a kind to a Route; unknown kinds use the 'default' row"""

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        routes: Optional[dict[str, tuple[str, str, Optional[str], Optional[int]]]] = None
    ):
        config = config or OrchestratorConfig()
        rows = dict(DEFAULT_ROUTES)
        if routes:
            rows.update(routes)

        self._routes: dict[str, Route] = {}
        for kind, (model, primary, fallback, lifetime_ms) in rows.items():
            timeout = (
                config.realtime_attempt_timeout if kind == "realtime"
                else config.analysis_attempt_timeout
            )
            self._routes[kind] = Route(
                kind=kind,
                model=model,
                primary=primary,
                fallback=fallback,
                default_lifetime_ms=lifetime_ms or config.default_cache_lifetime_ms,
                attempt_timeout=timeout,
            )

    def resolve(self, kind: Optional[str]) -> Route:
        return self._routes.get((kind or "").lower(), self._routes["default"])

    @property
    def kinds(self) -> list[str]:
        return sorted(self._routes)
