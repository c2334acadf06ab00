from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable

import httpx
import pytest
from conftest import FakeSleep, ListSink, RecordingHandler, ok, refused, stalled_stream

from discussion_gateway.domain.entities import ParticipantProfile, StreamToken
from discussion_gateway.domain.exceptions import (
    ExhaustedRetriesError,
    GenerationCancelledError,
    GenerationTimeoutError,
    StreamInterruptedError,
    UnsupportedModelError,
)
from discussion_gateway.services.cancellation import CancellationBroadcaster
from discussion_gateway.services.generation_gateway import (
    GenerationGateway,
    mask_prompt_for_log,
)

MakeGateway = Callable[..., GenerationGateway]


def _stream(*chunks: bytes, error: Exception | None = None) -> Callable[[], httpx.Response]:
    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    return lambda: httpx.Response(200, content=body())


async def _until_first_token(sink: ListSink) -> None:
    while not sink.tokens:
        await asyncio.sleep(0.005)


# ── Buffered scenarios ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_attempt_success(make_gateway: MakeGateway, fake_sleep: FakeSleep) -> None:
    handler = RecordingHandler(ok("こんにちは"))
    gateway = make_gateway(handler)

    assert await gateway.generate_text("挨拶して") == "こんにちは"
    assert handler.calls == 1
    assert handler.bodies()[0] == {"model": "gemma3:4b", "prompt": "挨拶して", "stream": False}
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_two_refusals_then_success(make_gateway: MakeGateway, fake_sleep: FakeSleep) -> None:
    handler = RecordingHandler(refused(), refused(), ok("ok"))
    gateway = make_gateway(handler, base_delay_ms=100, poll_slice_ms=50)

    assert await gateway.generate_text("p") == "ok"
    assert handler.calls == 3
    assert fake_sleep.calls == [0.05] * 6
    assert fake_sleep.total_ms == 100 + 200


@pytest.mark.asyncio
async def test_always_refused_exhausts_after_ceiling(make_gateway: MakeGateway) -> None:
    handler = RecordingHandler(refused())
    gateway = make_gateway(handler, max_retries=3)

    with pytest.raises(ExhaustedRetriesError) as info:
        await gateway.generate_text("p")

    assert handler.calls == 3
    assert len(info.value.attempts) == 3
    assert "Connection refused" in str(info.value.last_error)


@pytest.mark.asyncio
async def test_malformed_response_is_retried(make_gateway: MakeGateway) -> None:
    handler = RecordingHandler(httpx.Response(200, json={"done": True}), ok("fixed"))
    gateway = make_gateway(handler)

    assert await gateway.generate_text("p") == "fixed"
    assert handler.calls == 2


@pytest.mark.parametrize("model", ["llama3:8b", "gemma3:27b", "GEMMA3:4b"])
@pytest.mark.asyncio
async def test_unsupported_model_never_reaches_network(
    make_gateway: MakeGateway, participant: ParticipantProfile, model: str
) -> None:
    handler = RecordingHandler(ok("unreachable"))
    gateway = make_gateway(handler)
    sink = ListSink()

    calls = [
        gateway.generate_text("p", model=model),
        gateway.generate_ai_response(participant, "", "AI", model=model),
        gateway.start_discussion("AI", ["A"], model=model),
        gateway.analyze_discussion_points("AI", "h", ["A"], model=model),
        gateway.analyze_recent_discussion("AI", "h", ["A"], model=model),
        gateway.summarize_discussion("AI", "h", ["A"], model=model),
        gateway.summarize_incrementally("AI", "s", "m", ["A"], model=model),
        gateway.stream_ai_response(participant, "", "AI", sink, model=model),
    ]
    for call in calls:
        with pytest.raises(UnsupportedModelError):
            await call

    assert handler.calls == 0
    assert sink.tokens == []


@pytest.mark.asyncio
async def test_explicit_model_is_sent(make_gateway: MakeGateway) -> None:
    handler = RecordingHandler(ok("x"))
    await make_gateway(handler).generate_text("p", model="gemma3:1b")
    assert handler.bodies()[0]["model"] == "gemma3:1b"


@pytest.mark.asyncio
async def test_operations_send_their_prompts(
    make_gateway: MakeGateway, participant: ParticipantProfile
) -> None:
    handler = RecordingHandler(*(ok(f"r{i}") for i in range(6)))
    gateway = make_gateway(handler)

    await gateway.generate_ai_response(participant, "ユーザー: 賛成です", "気候変動")
    await gateway.start_discussion("気候変動", ["ソクラテス", "カント"])
    await gateway.analyze_discussion_points("気候変動", "カント: 義務です", ["カント"])
    await gateway.analyze_recent_discussion("気候変動", "カント: 義務です", ["カント"])
    await gateway.summarize_discussion("気候変動", "カント: 義務です", ["カント"])
    await gateway.summarize_incrementally("気候変動", "前回の要約", "新しい発言", ["カント"])

    prompts = [body["prompt"] for body in handler.bodies()]
    assert "<name>ソクラテス</name>" in prompts[0]
    assert "ユーザー: 賛成です" in prompts[0]
    assert "<participants>ソクラテス, カント</participants>" in prompts[1]
    assert "mainPoints" in prompts[2]
    assert "currentMainPoints" in prompts[3]
    assert "<conversation_to_summarize>" in prompts[4]
    assert "前回の要約" in prompts[5] and "新しい発言" in prompts[5]
    assert all("気候変動" in p for p in prompts)


@pytest.mark.asyncio
async def test_timeout_tiers(make_gateway: MakeGateway) -> None:
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.1)
        return httpx.Response(200, json={"response": "slow but fine"})

    gateway = make_gateway(slow, max_retries=1, short_s=0.02, long_s=2.0)

    with pytest.raises(ExhaustedRetriesError) as info:
        await gateway.generate_text("short tier")
    assert isinstance(info.value.last_error, GenerationTimeoutError)

    assert await gateway.summarize_discussion("t", "h", ["A"]) == "slow but fine"


@pytest.mark.asyncio
async def test_cancel_all_interrupts_in_flight_calls(
    make_gateway: MakeGateway, broadcaster: CancellationBroadcaster
) -> None:
    arrived = asyncio.Event()

    async def hanging(request: httpx.Request) -> httpx.Response:
        arrived.set()
        await asyncio.sleep(10)
        return httpx.Response(200, json={"response": "late"})

    gateway = make_gateway(hanging)
    first = asyncio.create_task(gateway.generate_text("a"))
    second = asyncio.create_task(gateway.summarize_discussion("t", "h", ["A"]))
    await arrived.wait()
    await asyncio.sleep(0.01)

    assert gateway.cancel_all() == 2
    for task in (first, second):
        with pytest.raises(GenerationCancelledError):
            await asyncio.wait_for(task, 1.0)
    assert broadcaster.listener_count == 0


@pytest.mark.asyncio
async def test_cancel_during_backoff_returns_promptly(make_gateway: MakeGateway) -> None:
    handler = RecordingHandler(refused())
    gateway = make_gateway(handler, base_delay_ms=300, poll_slice_ms=25, sleep=asyncio.sleep)

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        gateway.cancel_all()

    canceller = asyncio.create_task(cancel_soon())
    started = time.monotonic()
    with pytest.raises(GenerationCancelledError):
        await gateway.generate_text("p")
    await canceller

    assert time.monotonic() - started < 0.15
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_backend_reachability(make_gateway: MakeGateway) -> None:
    running = RecordingHandler(httpx.Response(200, text="Ollama is running"))
    assert await make_gateway(running).is_backend_reachable()
    assert not await make_gateway(RecordingHandler(refused())).is_backend_reachable()


# ── Streaming scenarios ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stream_tokens_in_order_with_terminal(
    make_gateway: MakeGateway, participant: ParticipantProfile
) -> None:
    handler = RecordingHandler(
        _stream(b'{"response":"A"}\n', b'{"response":"B"}\n', b'{"done":true}\n')
    )
    sink = ListSink()

    text = await make_gateway(handler).stream_ai_response(participant, "", "AI", sink)

    assert text == "AB"
    assert sink.tokens == [StreamToken("A"), StreamToken("B"), StreamToken.terminal("AB")]
    assert handler.bodies()[0]["stream"] is True


@pytest.mark.asyncio
async def test_stream_without_done_marker_completes(
    make_gateway: MakeGateway, participant: ParticipantProfile
) -> None:
    handler = RecordingHandler(_stream(b'{"response":"A"}\n'))
    sink = ListSink()

    assert await make_gateway(handler).stream_ai_response(participant, "", "AI", sink) == "A"
    assert sink.tokens == [StreamToken("A"), StreamToken.terminal("A")]


@pytest.mark.asyncio
async def test_stream_failing_before_first_token_is_retried(
    make_gateway: MakeGateway, participant: ParticipantProfile
) -> None:
    handler = RecordingHandler(
        refused(),
        _stream(b'{"response":"ok"}\n{"done":true}\n'),
    )
    sink = ListSink()

    assert await make_gateway(handler).stream_ai_response(participant, "", "AI", sink) == "ok"
    assert handler.calls == 2
    assert sink.texts == ["ok"]


@pytest.mark.asyncio
async def test_stream_broken_after_tokens_is_not_replayed(
    make_gateway: MakeGateway, participant: ParticipantProfile
) -> None:
    handler = RecordingHandler(
        _stream(b'{"response":"A"}\n', error=httpx.ReadError("connection reset")),
        _stream(b'{"response":"A"}\n{"done":true}\n'),
    )
    sink = ListSink()

    with pytest.raises(ExhaustedRetriesError) as info:
        await make_gateway(handler).stream_ai_response(participant, "", "AI", sink)

    assert handler.calls == 1
    assert isinstance(info.value.last_error, StreamInterruptedError)
    assert sink.texts == ["A"]
    assert not any(t.done for t in sink.tokens)


@pytest.mark.asyncio
async def test_cancel_all_interrupts_stream_mid_chunk(
    make_gateway: MakeGateway,
    participant: ParticipantProfile,
    broadcaster: CancellationBroadcaster,
) -> None:
    handler = RecordingHandler(stalled_stream(b'{"response":"A"}\n'))
    gateway = make_gateway(handler)
    sink = ListSink()

    call = asyncio.create_task(gateway.stream_ai_response(participant, "", "AI", sink))
    await asyncio.wait_for(_until_first_token(sink), 1.0)

    assert gateway.cancel_all() == 1
    with pytest.raises(GenerationCancelledError):
        await asyncio.wait_for(call, 1.0)

    assert handler.calls == 1
    assert sink.texts == ["A"]
    assert not any(t.done for t in sink.tokens)
    assert broadcaster.listener_count == 0


def test_mask_prompt_for_log() -> None:
    assert mask_prompt_for_log("short") == "short"
    long_prompt = "あ" * 120
    assert mask_prompt_for_log(long_prompt) == "あ" * 50 + "...[70 chars omitted]"
