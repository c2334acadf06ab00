"""FastAPI dependency injection wiring."""

from __future__ import annotations

from functools import lru_cache

import httpx

from discussion_gateway.domain.value_objects import ModelAllowList, TimeoutTiers
from discussion_gateway.infrastructure.config import Settings, get_settings
from discussion_gateway.infrastructure.ollama_adapter import OllamaAdapter
from discussion_gateway.services.cancellation import CancellationBroadcaster
from discussion_gateway.services.generation_gateway import GenerationGateway
from discussion_gateway.services.model_policy import ModelPolicyGuard
from discussion_gateway.services.retry_engine import RetryEngine, RetryPolicy

_http_client: httpx.AsyncClient | None = None
_broadcaster: CancellationBroadcaster | None = None


async def startup() -> None:
    """Initialise shared resources; called from the lifespan context manager."""
    global _http_client, _broadcaster  # noqa: PLW0603

    settings = get_settings()
    _http_client = httpx.AsyncClient(
        base_url=settings.ollama_base_url,
        timeout=httpx.Timeout(settings.long_timeout_s, connect=settings.connect_timeout_s),
    )
    _broadcaster = CancellationBroadcaster(capacity=settings.cancel_buffer_size)


async def shutdown() -> None:
    """Release shared resources."""
    global _http_client, _broadcaster  # noqa: PLW0603

    if _broadcaster:
        _broadcaster.close()
        _broadcaster = None
    if _http_client:
        await _http_client.aclose()
        _http_client = None


@lru_cache(maxsize=1)
def _settings() -> Settings:
    return get_settings()


def get_gateway() -> GenerationGateway:
    """Build the gateway around the shared HTTP client and broadcaster."""
    settings = _settings()

    assert _http_client is not None, "startup() was not called"
    assert _broadcaster is not None, "startup() was not called"

    engine = RetryEngine(
        _broadcaster,
        RetryPolicy(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            poll_slice_ms=settings.cancel_poll_ms,
        ),
    )
    policy = ModelPolicyGuard(
        ModelAllowList.from_prefixes(settings.allowed_model_prefixes),
        default_model=settings.default_model,
    )
    return GenerationGateway(
        transport=OllamaAdapter(_http_client),
        engine=engine,
        policy=policy,
        timeouts=TimeoutTiers(
            short_s=settings.short_timeout_s, long_s=settings.long_timeout_s
        ),
    )
