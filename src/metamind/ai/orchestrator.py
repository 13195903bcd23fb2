"""
AI Request Orchestrator

Single entry point between application code and the LLM providers:

    cache lookup -> join identical in-flight request -> primary provider
    (each key in turn) -> fallback provider (each key in turn) -> normalize
    -> cache -> metric

At most one provider sequence runs per cache key at any instant. The cache
and the in-flight registry belong to the orchestrator instance, so tests and
separate services can run isolated orchestrators side by side.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .cache import CacheStore, MemoryCacheStore, RedisCacheStore, make_cache_key
from .metrics import CompositeMetricsSink, LoggingMetricsSink, MetricsSink, SQLiteMetricsSink
from .normalizer import normalize_narration
from .providers import Provider, create_provider
from .routing import Route, RoutingTable
from .types import ExpectedShape, MetricRecord, OrchestratedRequest, StructuredValue
from ..config import AppConfig, OrchestratorConfig
from ..exceptions import (
    AllProvidersExhaustedError,
    CacheUnavailableError,
    InvalidRequestError,
    ProviderError,
    ProviderTimeoutError,
)
from ..logging_config import LogContext, get_logger

logger = get_logger(__name__)


def _is_transient(exception: BaseException) -> bool:
    return isinstance(exception, ProviderError) and exception.is_transient


@dataclass
class _AttemptLog:
    """What happened while walking the provider/credential plan"""
    attempts: int = 0
    used_fallback: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None
    last_error: Optional[BaseException] = None


class AIOrchestrator:
    """
    Caching, coalescing, multi-provider front for LLM calls.

    Usage:
        async with build_orchestrator(get_config()) as orchestrator:
            advice = await orchestrator.get_orchestrated_response(
                prompt, expected_shape="object", kind="realtime",
                cache_lifetime_ms=60_000,
            )

    Results may be shared between coalesced callers and the cache; treat
    them as read-only.
    """

    def __init__(
        self,
        providers: Mapping[str, Provider],
        credentials: Mapping[str, Sequence[str]],
        cache: Optional[CacheStore] = None,
        metrics: Optional[MetricsSink] = None,
        routing: Optional[RoutingTable] = None,
        config: Optional[OrchestratorConfig] = None
    ):
        self.config = config or OrchestratorConfig()
        self.providers = dict(providers)
        self.credentials = {name: tuple(keys) for name, keys in credentials.items()}
        self.cache = cache if cache is not None else MemoryCacheStore()
        self.metrics = metrics
        self.routing = routing or RoutingTable(self.config)

        self._inflight: dict[str, asyncio.Task] = {}
        self._metric_tasks: set[asyncio.Task] = set()
        self._started = False

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start background work (cache sweep). Needs a running event loop."""
        if not self._started:
            self.cache.start()
            self._started = True

    async def close(self) -> None:
        """Flush metrics and release cache, provider and sink resources"""
        await self.flush_metrics()
        await self.cache.close()
        for provider in self.providers.values():
            await provider.close()
        if self.metrics is not None:
            await self.metrics.close()
        self._started = False

    async def __aenter__(self) -> "AIOrchestrator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def in_flight_count(self) -> int:
        return len(self._inflight)

    # ==================== Entry points ====================

    async def get_orchestrated_response(
        self,
        prompt: str,
        expected_shape: Union[str, ExpectedShape] = ExpectedShape.OBJECT,
        kind: str = "realtime",
        cache_lifetime_ms: Optional[int] = None,
        force_refresh: bool = False
    ) -> StructuredValue:
        """
        Get a normalized structured answer for a prompt.

        Args:
            prompt: Opaque prompt text
            expected_shape: "object" or "array"
            kind: Routing tag ("realtime", "analysis", anything else -> default)
            cache_lifetime_ms: Overrides the route's default lifetime
            force_refresh: Skip the cache read (identical in-flight calls are still joined)

        Raises:
            InvalidRequestError: Empty prompt or unknown shape
            AllProvidersExhaustedError: Every credential of every routed provider failed
        """
        request = OrchestratedRequest(
            prompt=prompt if isinstance(prompt, str) else "",
            expected_shape=expected_shape,
            kind=kind,
            cache_lifetime_ms=cache_lifetime_ms,
            force_refresh=force_refresh,
        )
        return await self.submit(request)

    async def submit(self, request: OrchestratedRequest) -> StructuredValue:
        """Same as get_orchestrated_response, for a prebuilt request"""
        self.start()
        route = self.routing.resolve(request.kind)
        key = make_cache_key(request.prompt, route.model, request.kind, request.expected_shape)

        with LogContext(cache_key=key):
            if not request.force_refresh:
                cached = await self._cache_get(key)
                if cached is not None:
                    logger.debug("Serving from cache", extra={"kind": request.kind})
                    return cached

            # Check and register with no await in between
            task = self._inflight.get(key)
            if task is not None:
                logger.info("Coalescing with in-flight request", extra={"kind": request.kind})
            else:
                task = asyncio.get_running_loop().create_task(self._execute(request, route, key))
                self._inflight[key] = task
                task.add_done_callback(lambda t: self._on_settled(key, t))

            # Shielded: a caller giving up must not cancel the shared call
            return await asyncio.shield(task)

    async def precache_prompts(
        self,
        entries: Iterable[Union[OrchestratedRequest, dict[str, Any]]]
    ) -> list[StructuredValue]:
        """
        Warm the cache one entry at a time.

        Entries that fail are logged and skipped; the successful results are
        returned in order.
        """
        entries = list(entries)
        logger.info(f"Precache started: {len(entries)} items")
        results = []
        for entry in entries:
            try:
                request = (
                    entry if isinstance(entry, OrchestratedRequest)
                    else OrchestratedRequest.from_dict(entry)
                )
                results.append(await self.submit(request))
            except (InvalidRequestError, AllProvidersExhaustedError) as e:
                logger.warning(f"Precache entry failed: {e}")
        logger.info(f"Precache finished: {len(results)}/{len(entries)} cached")
        return results

    # ==================== In-flight registry ====================

    def _on_settled(self, key: str, task: asyncio.Task) -> None:
        if not task.cancelled():
            # Mark retrieved; every joined caller already got it via shield
            task.exception()
        grace = max(self.config.coalesce_grace_ms, 0) / 1000.0
        task.get_loop().call_later(grace, self._forget, key, task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    # ==================== Provider sequence ====================

    async def _execute(self, request: OrchestratedRequest, route: Route, key: str) -> StructuredValue:
        started = time.perf_counter()
        log = _AttemptLog()
        logger.info(
            f"Calling providers (model={route.model}, kind={request.kind})",
            extra={"primary": route.primary, "fallback": route.fallback}
        )

        try:
            value = await self._run_plan(request, route, log)
        except AllProvidersExhaustedError as e:
            logger.error(f"All providers failed: {e}")
            self._emit_metric(MetricRecord(
                provider=None,
                model=route.model,
                duration_ms=self._elapsed_ms(started),
                success=False,
                used_fallback=log.used_fallback,
                cache_key=key,
                kind=request.kind,
                attempts=log.attempts,
                error_type=type(e.last_error).__name__ if e.last_error else None,
            ))
            raise

        normalized = normalize_narration(value, supports_markup=self.config.supports_markup)
        lifetime_ms = request.cache_lifetime_ms
        if lifetime_ms is None:
            lifetime_ms = route.default_lifetime_ms
        await self._cache_set(key, normalized, lifetime_ms)

        self._emit_metric(MetricRecord(
            provider=log.provider,
            model=log.model or route.model,
            duration_ms=self._elapsed_ms(started),
            success=True,
            used_fallback=log.used_fallback,
            cache_key=key,
            kind=request.kind,
            attempts=log.attempts,
        ))
        return normalized

    def _plan(self, route: Route) -> list[tuple[str, Optional[str], bool]]:
        """(provider name, model, is_fallback) in the order they are tried"""
        plan = [(route.primary, route.model, False)]
        if route.fallback and route.fallback != route.primary:
            fallback = self.providers.get(route.fallback)
            plan.append((route.fallback, fallback.default_model if fallback else None, True))
        return plan

    async def _run_plan(self, request: OrchestratedRequest, route: Route, log: _AttemptLog) -> StructuredValue:
        for name, model, is_fallback in self._plan(route):
            provider = self.providers.get(name)
            keys = self.credentials.get(name, ())
            if provider is None or not keys:
                logger.warning(f"Skipping {name}: provider not configured")
                continue

            if is_fallback:
                logger.warning(f"Primary provider exhausted, falling back to {name} ({model})")
                log.used_fallback = True

            for index, credential in enumerate(keys, start=1):
                log.attempts += 1
                try:
                    value = await self._attempt(provider, request, model, credential, route.attempt_timeout)
                except ProviderError as e:
                    log.last_error = e
                    logger.warning(
                        f"{name} failed with key #{index}: {e}",
                        extra={"provider": name, "error_type": type(e).__name__}
                    )
                    continue

                log.provider = name
                log.model = model or provider.default_model
                return value

        raise AllProvidersExhaustedError(log.attempts, log.last_error)

    async def _attempt(
        self,
        provider: Provider,
        request: OrchestratedRequest,
        model: Optional[str],
        credential: str,
        timeout: float
    ) -> StructuredValue:
        """One credential, retried in place only on transient failures"""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self.config.transient_retries, 0) + 1),
            wait=wait_exponential(
                multiplier=self.config.retry_min_wait,
                min=self.config.retry_min_wait,
                max=self.config.retry_max_wait,
            ),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                value = await self._call_once(provider, request, model, credential, timeout)
        return value

    async def _call_once(
        self,
        provider: Provider,
        request: OrchestratedRequest,
        model: Optional[str],
        credential: str,
        timeout: float
    ) -> StructuredValue:
        try:
            return await asyncio.wait_for(
                provider.call(request.prompt, request.expected_shape, model, credential),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(provider.name, timeout)
        except ProviderError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error from {provider.name}: {e}")
            raise ProviderError(f"Unexpected error: {e}", provider=provider.name) from e

    # ==================== Cache & metrics (best effort) ====================

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self.cache.get(key)
        except CacheUnavailableError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return None

    async def _cache_set(self, key: str, value: Any, lifetime_ms: int) -> None:
        try:
            await self.cache.set(key, value, lifetime_ms)
        except CacheUnavailableError as e:
            logger.warning(f"Cache write failed, result not cached: {e}")

    def _emit_metric(self, record: MetricRecord) -> None:
        if self.metrics is None:
            return
        task = asyncio.get_running_loop().create_task(self._record_metric(record))
        self._metric_tasks.add(task)
        task.add_done_callback(self._metric_tasks.discard)

    async def _record_metric(self, record: MetricRecord) -> None:
        try:
            await self.metrics.record(record)
        except Exception as e:
            logger.warning(f"Metric could not be recorded: {e}")

    async def flush_metrics(self) -> None:
        """Wait for every fire-and-forget metric task to finish"""
        while self._metric_tasks:
            await asyncio.gather(*list(self._metric_tasks))

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)


def build_orchestrator(
    config: AppConfig,
    routing: Optional[RoutingTable] = None
) -> AIOrchestrator:
    """
    Wire an orchestrator from application config.

    Providers are created for every provider with at least one key; Redis is
    used when REDIS_URL is set; metrics go to the log and, when enabled, to
    the ai_requests table.
    """
    providers: dict[str, Provider] = {}
    credentials: dict[str, tuple[str, ...]] = {}
    for name, provider_config in config.providers.items():
        if provider_config.enabled:
            providers[name] = create_provider(provider_config)
            credentials[name] = provider_config.api_keys

    if config.cache.redis_url:
        cache: CacheStore = RedisCacheStore.from_url(
            config.cache.redis_url,
            key_prefix=config.cache.key_prefix,
            fallback=MemoryCacheStore(config.cache.sweep_interval_seconds),
        )
    else:
        cache = MemoryCacheStore(config.cache.sweep_interval_seconds)

    sinks: list[MetricsSink] = [LoggingMetricsSink()]
    if config.metrics.enabled and config.metrics.db_path:
        sinks.append(SQLiteMetricsSink(config.metrics.db_path))

    logger.info(
        f"Orchestrator configured with providers: {', '.join(providers) or 'none'}",
        extra={"redis": bool(config.cache.redis_url), "metrics_sinks": len(sinks)}
    )

    return AIOrchestrator(
        providers=providers,
        credentials=credentials,
        cache=cache,
        metrics=CompositeMetricsSink(sinks),
        routing=routing or RoutingTable(config.orchestrator),
        config=config.orchestrator,
    )
