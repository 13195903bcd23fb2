# MetaMind - AI orchestration layer
from .types import ExpectedShape, MetricRecord, OrchestratedRequest, StructuredValue
from .orchestrator import AIOrchestrator, build_orchestrator
from .cache import MemoryCacheStore, RedisCacheStore, make_cache_key
from .metrics import CompositeMetricsSink, LoggingMetricsSink, SQLiteMetricsSink
from .normalizer import normalize_narration, to_plain_text
from .parsing import extract_structured
from .providers import ClaudeProvider, GeminiProvider, OpenAIProvider, create_provider
from .routing import Route, RoutingTable, DEFAULT_ROUTES
