"""Request orchestration: cache, admission, key issuance, retry and fallback.

The Orchestrator owns one instance of every engine component. Nothing in
the engine is a process-wide singleton, so tests build isolated instances
with fake clocks, clients and sleep functions.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from switchboard.core.cache import ResponseCache, fingerprint_request, fingerprint_text
from switchboard.core.error_types import REQUEST_SHAPED_KINDS, ErrorKind
from switchboard.core.exceptions import (
    AllProvidersExhausted,
    CapacityRejected,
    NoKeyAvailable,
    PermanentRequestError,
    ProviderError,
)
from switchboard.core.fallback import FallbackChain, ProviderFilter
from switchboard.core.key_pool import KeyPool, KeyPoolStats
from switchboard.core.logging import correlation_context
from switchboard.core.model_chain import ModelChain
from switchboard.core.models import (
    AttemptRecord,
    ChatCompletion,
    ChatRequest,
    Credential,
    Embedding,
    EmbeddingSpec,
    Outcome,
    RequestSpec,
)
from switchboard.core.provider_client import OpenAICompatibleClient, ProviderClient
from switchboard.core.providers import DEFAULT_CAPABILITIES, Provider, ProviderCapability
from switchboard.core.rate_gate import GateLimits, QueueStats, RateGate
from switchboard.core.retry import RetryPolicy
from switchboard.core.storage import JsonFileStore, KeyValueStore
from switchboard.core.telemetry import Aggregate, AlertThresholds, Telemetry

if TYPE_CHECKING:
    from switchboard.core.config.config import Config
    from switchboard.core.models import Alert

logger = logging.getLogger(__name__)

R = TypeVar("R", ChatCompletion, Embedding)

MIN_TEST_KEY_LENGTH = 10
TEST_PROMPT = "Hi"
TEST_MAX_TOKENS = 10


@dataclass(frozen=True)
class AutoConfigureResult:
    success: bool
    message: str
    selected_provider: Provider | None = None
    active_keys: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "selected_provider": self.selected_provider.value if self.selected_provider else None,
            "active_keys": self.active_keys,
        }


class Orchestrator:
    """Facade composing the engine components behind ``complete``/``embed``.

    Responsibilities:
    - Serve repeated requests from the response cache
    - Admit each provider call through the RateGate
    - Issue keys from the KeyPool and record their use
    - Retry retryable failures on the same provider with backoff
    - Rotate to another key when the provider rejects one
    - Walk the provider's model chain once a model runs out of quota
    - Fall back along the FallbackChain on provider-level failures
    - Submit one AttemptRecord per provider invocation to Telemetry
    """

    def __init__(
        self,
        key_pool: KeyPool,
        response_cache: ResponseCache[ChatCompletion],
        embedding_cache: ResponseCache[Embedding],
        rate_gate: RateGate,
        retry_policy: RetryPolicy,
        fallback_chain: FallbackChain,
        telemetry: Telemetry,
        clients: Mapping[Provider, ProviderClient],
        capabilities: Mapping[Provider, ProviderCapability] | None = None,
        active_provider: Provider | None = None,
        store: KeyValueStore | None = None,
        env_keys: Mapping[Provider, Iterable[str]] | None = None,
        model_chain: ModelChain | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key_pool = key_pool
        self.response_cache = response_cache
        self.embedding_cache = embedding_cache
        self.rate_gate = rate_gate
        self.retry_policy = retry_policy
        self.fallback_chain = fallback_chain
        self.telemetry = telemetry
        self.clients = dict(clients)
        self.capabilities = dict(capabilities or DEFAULT_CAPABILITIES)
        self.model_chain = model_chain or ModelChain.from_capabilities(self.capabilities, clock=clock)
        self.store = store
        self._env_keys = {p: tuple(keys) for p, keys in (env_keys or {}).items()}
        self._active_provider = active_provider
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: KeyValueStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> Orchestrator:
        """Build the default component graph from ``config``."""
        capabilities = config.capabilities()
        key_pool = KeyPool()
        telemetry_settings = config.telemetry
        engine = config.engine

        clients: dict[Provider, ProviderClient] = {
            provider: OpenAICompatibleClient(
                provider,
                capability.base_url,
                timeout=engine.request_timeout,
                http_client=http_client,
            )
            for provider, capability in capabilities.items()
        }
        return cls(
            key_pool=key_pool,
            response_cache=ResponseCache(
                "response",
                config.cache.response_cache_max_size,
                config.cache.response_cache_ttl_seconds,
            ),
            embedding_cache=ResponseCache(
                "embedding",
                config.cache.embedding_cache_max_size,
                config.cache.embedding_cache_ttl_seconds,
            ),
            rate_gate=RateGate(
                {
                    provider: GateLimits(capability.rate_limit_rpm, capability.concurrency)
                    for provider, capability in capabilities.items()
                },
                max_queue_depth=engine.queue_max_depth,
            ),
            retry_policy=RetryPolicy(
                max_attempts=engine.max_attempts,
                base_delay_ms=engine.retry_base_delay_ms,
                max_delay_ms=engine.retry_max_delay_ms,
            ),
            fallback_chain=FallbackChain(key_pool, engine.fallback_order),
            telemetry=Telemetry(
                retention_seconds=telemetry_settings.retention_hours * 3600,
                max_records=telemetry_settings.max_records,
                thresholds=AlertThresholds(
                    error_rate=telemetry_settings.alert_error_rate_threshold,
                    window_seconds=telemetry_settings.alert_window_seconds,
                    cooldown_seconds=telemetry_settings.alert_cooldown_seconds,
                    latency_ms=telemetry_settings.alert_latency_ms,
                ),
                max_alerts=telemetry_settings.max_alerts,
                summary_interval=telemetry_settings.log_summary_interval,
            ),
            clients=clients,
            capabilities=capabilities,
            active_provider=engine.active_provider,
            store=store if store is not None else JsonFileStore(engine.key_store_path),
            env_keys={provider: config.env_keys(provider) for provider in Provider},
        )

    # === Lifecycle ===

    async def start(self) -> None:
        """Load persisted keys, seed environment keys and pick a provider."""
        if self.store is not None:
            self.key_pool.load(self.store)

        seeded = 0
        for provider, secrets in self._env_keys.items():
            for secret in secrets:
                if not self.key_pool.contains_secret(provider, secret):
                    self.key_pool.add(provider, secret, label=f"{provider.value} (env)")
                    seeded += 1
        if seeded:
            logger.info(f"🔑 Seeded {seeded} key(s) from environment")
        self.key_pool.remove_duplicates()

        if self._active_provider is None:
            result = self.auto_configure()
            logger.info(result.message)
        else:
            logger.info(f"✅ Active provider: {self._active_provider.value}")
        self._started = True

    async def stop(self) -> None:
        """Persist keys, cancel gate timers and close provider clients."""
        if self.store is not None:
            self.key_pool.save(self.store)
        self.rate_gate.close()
        for client in self.clients.values():
            await client.aclose()
        self._started = False
        logger.info("🛑 Orchestrator stopped")

    @property
    def started(self) -> bool:
        return self._started

    # === Hot path ===

    async def complete(self, spec: RequestSpec) -> ChatCompletion:
        """Run one chat completion through cache, gate, keys, retry and fallback.

        Raises:
            CapacityRejected: The provider queue is full
            PermanentRequestError: The request itself was rejected
            AllProvidersExhausted: Every candidate provider failed or had no key
        """
        request_id = uuid.uuid4().hex
        with correlation_context(request_id):
            provider = spec.provider or self._resolve_active()
            if provider is None:
                raise AllProvidersExhausted([])
            model = spec.model or self._chat_model(provider)

            fingerprint = fingerprint_request(spec, provider, model) if spec.use_cache else None
            if fingerprint is not None:
                entry = self.response_cache.get(fingerprint)
                if entry is not None:
                    logger.info(f"⚡ Cache hit for {spec.endpoint} ({provider.value}/{model})")
                    self._record_cache_hit(spec.endpoint, entry.payload, spec.user_id, request_id)
                    return replace(entry.payload, cached=True, attempts=0)

            messages = tuple(spec.to_messages())

            async def invoke(target: Provider, credential: Credential, target_model: str) -> ChatCompletion:
                request = ChatRequest(
                    provider=target,
                    model=target_model,
                    messages=messages,
                    temperature=spec.temperature,
                    max_tokens=spec.max_tokens,
                )
                return await self._client(target).chat(request, credential.secret)

            result = await self._execute(
                provider,
                model,
                endpoint=spec.endpoint,
                user_id=spec.user_id,
                request_id=request_id,
                invoke=invoke,
                model_for=self._chat_model,
                next_model=self._next_chat_model,
            )
            if fingerprint is not None:
                self.response_cache.put(fingerprint, replace(result, attempts=1), scope=spec.tenant_id)
            return result

    async def embed(self, spec: EmbeddingSpec) -> Embedding:
        """Embed ``spec.text``; only providers with an embedding model take part."""
        request_id = uuid.uuid4().hex
        with correlation_context(request_id):
            eligible = self._supports_embeddings
            provider = spec.provider or self._resolve_active()
            if provider is None or not eligible(provider):
                if provider is not None:
                    logger.info(f"{provider.value} has no embedding model, choosing another provider")
                provider = self.fallback_chain.next_candidate(None, [], eligible=eligible)
                if provider is None:
                    raise AllProvidersExhausted([])
            model = spec.model or self._embedding_model(provider)

            fingerprint = fingerprint_text(provider, model, spec.text) if spec.use_cache else None
            if fingerprint is not None:
                entry = self.embedding_cache.get(fingerprint)
                if entry is not None:
                    logger.info(f"⚡ Embedding cache hit ({provider.value}/{model})")
                    self._record_cache_hit(spec.endpoint, entry.payload, spec.user_id, request_id)
                    return replace(entry.payload, cached=True, attempts=0)

            async def invoke(target: Provider, credential: Credential, target_model: str) -> Embedding:
                return await self._client(target).embed(spec.text, target_model, credential.secret)

            result = await self._execute(
                provider,
                model,
                endpoint=spec.endpoint,
                user_id=spec.user_id,
                request_id=request_id,
                invoke=invoke,
                model_for=self._embedding_model,
                eligible=eligible,
            )
            if fingerprint is not None:
                self.embedding_cache.put(fingerprint, replace(result, attempts=1), scope=spec.tenant_id)
            return result

    async def _execute(
        self,
        provider: Provider,
        model: str,
        *,
        endpoint: str,
        user_id: str | None,
        request_id: str,
        invoke: Callable[[Provider, Credential, str], Awaitable[R]],
        model_for: Callable[[Provider], str],
        next_model: Callable[[Provider, str, ErrorKind], str | None] | None = None,
        eligible: ProviderFilter | None = None,
    ) -> R:
        tried: list[Provider] = []
        failures: list[tuple[Provider, ErrorKind]] = []
        total_attempts = 0
        current: Provider | None = provider
        current_model = model

        while current is not None:
            tried.append(current)
            attempt = 0
            last_kind = ErrorKind.UNEXPECTED
            # Keys the provider rejected during this call.
            rejected: set[str] = set()

            while True:
                if not self.key_pool.has_active(current, exclude=rejected):
                    last_kind = ErrorKind.NO_KEY_AVAILABLE
                    logger.warning(f"🔑 No active key for {current.value}")
                    break

                attempt += 1
                started_at = self._clock()
                start = self._monotonic()
                admitted = False
                credential: Credential | None = None
                try:
                    async with self.rate_gate.slot(current):
                        admitted = True
                        start = self._monotonic()
                        credential = self.key_pool.issue(current, exclude=rejected)
                        result = await invoke(current, credential, current_model)
                        self.key_pool.mark_used(credential.id)
                except NoKeyAvailable:
                    last_kind = ErrorKind.NO_KEY_AVAILABLE
                    logger.warning(f"🔑 No active key for {current.value}")
                    break
                except CapacityRejected:
                    self._submit(
                        endpoint, current, current_model, user_id, request_id, started_at,
                        latency_ms=0.0, outcome=Outcome.ERROR, error_kind=ErrorKind.CAPACITY_REJECTED,
                    )
                    logger.warning(f"🚫 {current.value} queue full, rejecting request")
                    raise
                except asyncio.CancelledError:
                    if admitted:
                        self._submit(
                            endpoint, current, current_model, user_id, request_id, started_at,
                            latency_ms=(self._monotonic() - start) * 1000,
                            outcome=Outcome.CANCELLED, error_kind=ErrorKind.CANCELLED,
                        )
                    raise
                except ProviderError as e:
                    total_attempts += 1
                    last_kind = e.kind
                    self._submit(
                        endpoint, current, current_model, user_id, request_id, started_at,
                        latency_ms=(self._monotonic() - start) * 1000,
                        outcome=Outcome.TIMEOUT if e.kind is ErrorKind.TIMEOUT else Outcome.ERROR,
                        error_kind=e.kind,
                    )
                    logger.warning(f"❌ {current.value} attempt {attempt} failed: {e}")

                    if e.kind is ErrorKind.RATE_LIMITED:
                        self.rate_gate.penalize(current)
                    if e.kind in REQUEST_SHAPED_KINDS:
                        if isinstance(e, PermanentRequestError):
                            raise
                        raise PermanentRequestError(e.kind, e.provider, e.message, e.status_code) from e
                    if credential is not None:
                        self.key_pool.mark_failed(credential.id)

                    if e.kind is ErrorKind.AUTH_ERROR and credential is not None:
                        rejected.add(credential.id)
                        if not self.key_pool.has_active(current, exclude=rejected):
                            break
                        logger.info(f"🔑 {current.value} rejected key {credential.label}, trying the next key")
                        continue

                    decision = self.retry_policy.should_retry(attempt, e.kind)
                    if not decision.retry:
                        switched = next_model(current, current_model, e.kind) if next_model else None
                        if switched is None:
                            break
                        current_model = switched
                        attempt = 0
                        continue
                    logger.info(
                        f"🔄 Retrying {current.value} in {decision.delay_ms:.0f}ms "
                        f"(attempt {attempt + 1}/{self.retry_policy.max_attempts})"
                    )
                    await self._sleep(decision.delay_ms / 1000)
                    continue

                total_attempts += 1
                latency_ms = (self._monotonic() - start) * 1000
                self._submit(
                    endpoint, current, result.model, user_id, request_id, started_at,
                    latency_ms=latency_ms, outcome=Outcome.SUCCESS,
                    tokens_in=result.tokens_in,
                    tokens_out=getattr(result, "tokens_out", 0),
                )
                logger.info(
                    f"✅ {endpoint} via {current.value}/{result.model} in {latency_ms:.0f}ms "
                    f"({result.total_tokens} tokens)"
                )
                return replace(result, attempts=total_attempts)

            failures.append((current, last_kind))
            current = self.fallback_chain.next_candidate(current, tried, last_kind, eligible)
            if current is not None:
                current_model = model_for(current)

        last = tried[-1]
        self._submit(
            endpoint, last, None, user_id, request_id, self._clock(),
            latency_ms=0.0, outcome=Outcome.ERROR, error_kind=ErrorKind.ALL_PROVIDERS_EXHAUSTED,
        )
        error = AllProvidersExhausted(failures)
        logger.error(f"💥 {error}")
        raise error

    # === Provider selection ===

    def set_active_provider(self, provider: Provider | str) -> Provider:
        provider = Provider.parse(provider)
        self._active_provider = provider
        if not self.key_pool.has_active(provider):
            logger.warning(f"Active provider set to {provider.value}, which has no active key")
        else:
            logger.info(f"✅ Active provider set to {provider.value}")
        return provider

    def get_active_provider(self) -> Provider | None:
        """The explicitly chosen provider, or the de-facto one from the chain."""
        return self._resolve_active()

    def auto_configure(self) -> AutoConfigureResult:
        """Select the first provider in fallback order that has an active key."""
        provider = self.fallback_chain.resolve_active()
        if provider is None:
            return AutoConfigureResult(
                success=False,
                message="❌ No active API keys found. Add at least one key to auto-configure.",
            )
        self._active_provider = provider
        active_keys = self.key_pool.stats(provider).active_keys
        return AutoConfigureResult(
            success=True,
            message=f"✅ Auto-configured {provider.value} with {active_keys} active key(s)",
            selected_provider=provider,
            active_keys=active_keys,
        )

    async def test_connection(self, provider: Provider | str, api_key: str | None = None) -> bool:
        """Send a minimal chat request to ``provider``.

        Uses ``api_key`` when given, otherwise a key issued from the pool.

        Raises:
            ValueError: If ``api_key`` is given but too short to be real.
            NoKeyAvailable: If no override is given and the pool has no key.
        """
        provider = Provider.parse(provider)
        if api_key is not None:
            api_key = api_key.strip()
            if len(api_key) < MIN_TEST_KEY_LENGTH:
                raise ValueError("API key looks incomplete or invalid")

        request = ChatRequest(
            provider=provider,
            model=self._capability(provider).default_model,
            messages=({"role": "user", "content": TEST_PROMPT},),
            temperature=0.0,
            max_tokens=TEST_MAX_TOKENS,
        )
        async with self.rate_gate.slot(provider):
            credential = None if api_key is not None else self.key_pool.issue(provider)
            secret = api_key if api_key is not None else credential.secret
            try:
                await self._client(provider).chat(request, secret)
            except ProviderError as e:
                logger.warning(f"❌ Connection test for {provider.value} failed: {e}")
                if credential is not None and e.kind not in REQUEST_SHAPED_KINDS:
                    self.key_pool.mark_failed(credential.id)
                return False
            if credential is not None:
                self.key_pool.mark_used(credential.id)
        logger.info(f"✅ Connection test for {provider.value} succeeded")
        return True

    # === Key administration ===

    def add_key(self, provider: Provider | str, secret: str, label: str | None = None) -> Credential:
        credential = self.key_pool.add(Provider.parse(provider), secret, label)
        self._persist()
        return credential

    def remove_key(self, credential_id: str) -> Credential:
        credential = self.key_pool.remove(credential_id)
        self._persist()
        return credential

    def toggle_key_active(self, credential_id: str) -> Credential:
        credential = self.key_pool.toggle_active(credential_id)
        self._persist()
        return credential

    def list_keys(self, provider: Provider | str | None = None) -> list[Credential]:
        return self.key_pool.list_keys(Provider.parse(provider) if provider else None)

    def key_stats(self, provider: Provider | str) -> KeyPoolStats:
        return self.key_pool.stats(Provider.parse(provider))

    def aggregated_key_stats(self) -> dict[str, Any]:
        return self.key_pool.aggregated_stats()

    # === Read-only stats ===

    def endpoint_stats(self, name: str, window_ms: float | None = None) -> Aggregate:
        if window_ms is None:
            return self.telemetry.stats_for_endpoint(name)
        return self.telemetry.stats_for_endpoint(name, window_ms)

    def provider_stats(self, provider: Provider | str, window_ms: float | None = None) -> Aggregate:
        provider = Provider.parse(provider)
        if window_ms is None:
            return self.telemetry.stats_for_provider(provider)
        return self.telemetry.stats_for_provider(provider, window_ms)

    def user_stats(self, user_id: str, window_ms: float | None = None) -> Aggregate:
        if window_ms is None:
            return self.telemetry.stats_for_user(user_id)
        return self.telemetry.stats_for_user(user_id, window_ms)

    def recent_alerts(self, limit: int = 20) -> list[Alert]:
        return self.telemetry.recent_alerts(limit)

    def cache_stats(self) -> dict[str, Any]:
        return {
            "response": self.response_cache.stats(),
            "embedding": self.embedding_cache.stats(),
        }

    def queue_stats(self, provider: Provider | str | None = None) -> dict[Provider, QueueStats]:
        if provider is not None:
            provider = Provider.parse(provider)
            return {provider: self.rate_gate.stats(provider)}
        return self.rate_gate.all_stats()

    def quota_stats(self) -> dict[str, Any]:
        return self.model_chain.quota_stats()

    def configuration(self) -> dict[str, Any]:
        """Snapshot of provider selection and per-provider capabilities."""
        active = self.get_active_provider()
        return {
            "active_provider": active.value if active else None,
            "fallback_order": [p.value for p in self.fallback_chain.order],
            "providers": {
                provider.value: {
                    "default_model": capability.default_model,
                    "current_model": self._chat_model(provider),
                    "model_chain": list(self.model_chain.chain(provider)),
                    "embedding_model": capability.embedding_model,
                    "base_url": capability.base_url,
                    "rate_limit_rpm": capability.rate_limit_rpm,
                    "concurrency": capability.concurrency,
                    "active_keys": self.key_pool.stats(provider).active_keys,
                }
                for provider, capability in self.capabilities.items()
            },
            "quota": self.quota_stats(),
        }

    # === Internals ===

    def _resolve_active(self) -> Provider | None:
        if self._active_provider is not None:
            return self._active_provider
        return self.fallback_chain.resolve_active()

    def _capability(self, provider: Provider) -> ProviderCapability:
        return self.capabilities.get(provider) or DEFAULT_CAPABILITIES[provider]

    def _chat_model(self, provider: Provider) -> str:
        return self.model_chain.first_available(provider, self._capability(provider).default_model)

    def _next_chat_model(self, provider: Provider, model: str, error_kind: ErrorKind) -> str | None:
        """Mark ``model`` out of quota after a rate limit and pick its successor."""
        if error_kind is not ErrorKind.RATE_LIMITED:
            return None
        self.model_chain.mark_quota_exceeded(provider, model)
        return self.model_chain.next_model(provider, model)

    def _supports_embeddings(self, provider: Provider) -> bool:
        return self._capability(provider).supports_embeddings

    def _embedding_model(self, provider: Provider) -> str:
        model = self._capability(provider).embedding_model
        if model is None:
            raise ValueError(f"Provider '{provider.value}' has no embedding model")
        return model

    def _client(self, provider: Provider) -> ProviderClient:
        client = self.clients.get(provider)
        if client is None:
            raise ProviderError(
                ErrorKind.UNEXPECTED, provider, f"No client configured for provider '{provider.value}'"
            )
        return client

    def _persist(self) -> None:
        if self.store is not None:
            self.key_pool.save(self.store)

    def _record_cache_hit(
        self, endpoint: str, payload: ChatCompletion | Embedding, user_id: str | None, request_id: str
    ) -> None:
        # Charged to whoever produced the payload, which may be a fallback provider.
        self._submit(
            endpoint, payload.provider, payload.model, user_id, request_id, self._clock(),
            latency_ms=0.0, outcome=Outcome.SUCCESS, cached=True,
        )

    def _submit(
        self,
        endpoint: str,
        provider: Provider,
        model: str | None,
        user_id: str | None,
        request_id: str,
        started_at: float,
        *,
        latency_ms: float,
        outcome: Outcome,
        error_kind: ErrorKind | None = None,
        tokens_in: int = 0,
        tokens_out: int = 0,
        cached: bool = False,
    ) -> None:
        cost = 0.0
        if outcome is Outcome.SUCCESS and not cached:
            cost = self._capability(provider).estimate_cost(tokens_in, tokens_out)
        self.telemetry.submit(
            AttemptRecord(
                endpoint=endpoint,
                provider=provider,
                outcome=outcome,
                timestamp_start=started_at,
                latency_ms=latency_ms,
                user_id=user_id,
                model=model,
                error_kind=error_kind,
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                cost_estimate=cost,
                cached=cached,
                request_id=request_id,
            )
        )
