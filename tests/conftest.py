"""Shared fixtures: fake clock, collecting sink and a gateway wired to httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest

from discussion_gateway.domain.entities import ParticipantProfile, StreamToken
from discussion_gateway.domain.value_objects import ModelAllowList, TimeoutTiers
from discussion_gateway.infrastructure.ollama_adapter import OllamaAdapter
from discussion_gateway.services.cancellation import CancellationBroadcaster
from discussion_gateway.services.generation_gateway import GenerationGateway
from discussion_gateway.services.model_policy import ModelPolicyGuard
from discussion_gateway.services.retry_engine import RetryEngine, RetryPolicy

BASE_URL = "http://ollama.test"


class FakeSleep:
    """Records requested sleeps and only yields to the event loop."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)

    @property
    def total_ms(self) -> int:
        return round(sum(self.calls) * 1000)


class ListSink:
    def __init__(self) -> None:
        self.tokens: list[StreamToken] = []

    async def send(self, token: StreamToken) -> None:
        self.tokens.append(token)

    @property
    def texts(self) -> list[str]:
        return [t.text for t in self.tokens if not t.done]


class RecordingHandler:
    """MockTransport handler that replays a script of responses / exceptions."""

    def __init__(self, *script: httpx.Response | Exception | Callable[[], Any]) -> None:
        self._script = list(script)
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = self._script[min(len(self.requests), len(self._script)) - 1]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step()
        return step


def refused() -> httpx.ConnectError:
    return httpx.ConnectError("Connection refused")


def ok(text: str) -> httpx.Response:
    return httpx.Response(200, json={"response": text, "done": True})


def stalled_stream(*chunks: bytes) -> Callable[[], httpx.Response]:
    """Streaming response that sends *chunks* and then never finishes."""

    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk
        await asyncio.sleep(3600)

    return lambda: httpx.Response(200, content=body())


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def broadcaster() -> CancellationBroadcaster:
    return CancellationBroadcaster(capacity=4)


@pytest.fixture
def participant() -> ParticipantProfile:
    return ParticipantProfile(name="ソクラテス", role="哲学者", description="問いを重ねる。")


@pytest.fixture
def make_gateway(
    broadcaster: CancellationBroadcaster, fake_sleep: FakeSleep
) -> Callable[..., GenerationGateway]:
    def _make(
        handler: Callable[[httpx.Request], Any],
        *,
        max_retries: int = 3,
        base_delay_ms: int = 100,
        poll_slice_ms: int = 50,
        short_s: float = 5.0,
        long_s: float = 5.0,
        sleep: Callable[[float], Any] | None = None,
    ) -> GenerationGateway:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
        engine = RetryEngine(
            broadcaster,
            RetryPolicy(
                max_retries=max_retries,
                base_delay_ms=base_delay_ms,
                poll_slice_ms=poll_slice_ms,
            ),
            sleep=sleep or fake_sleep,
        )
        return GenerationGateway(
            transport=OllamaAdapter(client),
            engine=engine,
            policy=ModelPolicyGuard(
                ModelAllowList.from_prefixes(["gemma3:1b", "gemma3:4b"]),
                default_model="gemma3:4b",
            ),
            timeouts=TimeoutTiers(short_s=short_s, long_s=long_s),
        )

    return _make
