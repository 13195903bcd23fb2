"""
Shared test fixtures for MetaMind tests.
"""

import asyncio
import pytest
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Union

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from metamind.ai.providers import Provider
from metamind.ai.types import MetricRecord
from metamind.config import OrchestratorConfig


PROVIDER_ENV_VARS = [
    f"{prefix}_API_KEY{suffix}"
    for prefix in ("GEMINI", "OPENAI", "ANTHROPIC")
    for suffix in ("", "_2", "_3", "_4", "_5")
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the config reads so the host env never leaks in"""
    for name in PROVIDER_ENV_VARS + [
        "REDIS_URL", "APP_ENV", "DEBUG", "LOG_LEVEL", "LOG_FILE",
        "AI_CACHE_TTL_MS", "AI_COALESCE_GRACE_MS", "AI_TRANSIENT_RETRIES",
        "AI_REALTIME_TIMEOUT", "AI_ANALYSIS_TIMEOUT", "TTS_SUPPORTS_SSML",
        "AI_METRICS_ENABLED", "AI_METRICS_DB", "GEMINI_MODEL", "OPENAI_MODEL",
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def mock_env_vars(clean_env):
    """Set up mock environment variables for testing"""
    clean_env.setenv("GEMINI_API_KEY", "gemini-test-key-1")
    clean_env.setenv("GEMINI_API_KEY_2", "gemini-test-key-2")
    clean_env.setenv("OPENAI_API_KEY", "sk-test-openai-key-12345")
    clean_env.setenv("APP_ENV", "development")
    clean_env.setenv("LOG_LEVEL", "DEBUG")
    return clean_env


class FakeClock:
    """Manually advanced monotonic clock (seconds)"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def fake_clock():
    return FakeClock()


Behavior = Union[Any, BaseException, Callable[[str, str], Any]]


class FakeProvider(Provider):
    """
    Scriptable provider.

    `responses` maps a credential to what `_generate` does for it: a string is
    returned as model text, an exception is raised. A `default` is used for
    credentials without an entry. `delay` makes every call take that long so
    concurrent callers overlap.
    """

    def __init__(
        self,
        name: str,
        default_model: str = "fake-model",
        responses: Optional[dict[str, Behavior]] = None,
        default: Behavior = '{"fullText": "Ward the river."}',
        delay: float = 0.0
    ):
        super().__init__(default_model)
        self.name = name
        self.responses = responses or {}
        self.default = default
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def _generate(self, prompt: str, model: str, credential: str) -> str:
        self.calls.append({"prompt": prompt, "model": model, "credential": credential})
        if self.delay:
            await asyncio.sleep(self.delay)
        behavior = self.responses.get(credential, self.default)
        if isinstance(behavior, BaseException):
            raise behavior
        if callable(behavior):
            return behavior(prompt, model)
        return behavior

    async def close(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.calls)


class RecordingSink:
    """Metrics sink that keeps every record in memory"""

    def __init__(self):
        self.records: list[MetricRecord] = []
        self.closed = False

    async def record(self, metric: MetricRecord) -> None:
        self.records.append(metric)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def fast_config():
    """No transient retries and a short coalescing grace"""
    return OrchestratorConfig(
        coalesce_grace_ms=10,
        transient_retries=0,
        retry_min_wait=0.0,
        retry_max_wait=0.0,
        realtime_attempt_timeout=2.0,
        analysis_attempt_timeout=2.0,
    )


@pytest.fixture
def sample_briefing():
    """Pre-game briefing without fullText, as the analysis prompt returns it"""
    return {
        "preGameAnalysis": {
            "title": "The Patient Hunter",
            "astralMantra": "Patience wins the long game",
            "technicalFocus": "Track the enemy jungler before every trade",
        }
    }
