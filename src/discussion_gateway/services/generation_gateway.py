"""Generation gateway: the single entry point for every model call.

Each public operation validates the model, builds its prompt through the
``PromptTemplates`` collaborator and runs one buffered or streaming exchange
through the :class:`RetryEngine`.  Only :class:`UnsupportedModelError`,
:class:`GenerationCancelledError` and :class:`ExhaustedRetriesError` escape.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from contextlib import aclosing

from discussion_gateway.domain.entities import (
    GenerationRequest,
    ParticipantProfile,
    TimeoutTier,
)
from discussion_gateway.domain.exceptions import (
    GenerationTimeoutError,
    MalformedResponseError,
    StreamInterruptedError,
    TransportError,
)
from discussion_gateway.domain.ports.generation_transport import GenerationTransport
from discussion_gateway.domain.ports.prompt_templates import PromptTemplates
from discussion_gateway.domain.ports.token_sink import TokenSink
from discussion_gateway.domain.value_objects import TimeoutTiers
from discussion_gateway.services.model_policy import ModelPolicyGuard
from discussion_gateway.services.prompt_templates import DiscussionPromptTemplates
from discussion_gateway.services.retry_engine import RetryEngine
from discussion_gateway.services.stream_framer import StreamFramer

logger = logging.getLogger(__name__)

_MASK_THRESHOLD = 100
_MASK_KEEP = 50


def mask_prompt_for_log(prompt: str) -> str:
    """Shorten long prompts so logs do not carry whole conversations."""
    if len(prompt) <= _MASK_THRESHOLD:
        return prompt
    return f"{prompt[:_MASK_KEEP]}...[{len(prompt) - _MASK_KEEP} chars omitted]"


class GenerationGateway:
    """Resilient facade over the inference backend.

    Parameters
    ----------
    transport:
        Adapter performing one HTTP exchange per call.
    engine:
        Retry/backoff engine; its broadcaster is also used by :meth:`cancel_all`.
    policy:
        Model allow-list guard.
    timeouts:
        Short / long per-attempt ceilings.
    prompts:
        Prompt template collaborator (defaults to the bundled templates).
    """

    def __init__(
        self,
        transport: GenerationTransport,
        engine: RetryEngine,
        policy: ModelPolicyGuard,
        timeouts: TimeoutTiers,
        prompts: PromptTemplates | None = None,
    ) -> None:
        self._transport = transport
        self._engine = engine
        self._policy = policy
        self._timeouts = timeouts
        self._prompts = prompts or DiscussionPromptTemplates()

    # ── Control ─────────────────────────────────────────────────────────

    def ensure_model_allowed(self, model: str | None = None) -> str:
        return self._policy.ensure_allowed(model)

    def cancel_all(self) -> int:
        """Interrupt every generation call currently in flight."""
        return self._engine.broadcaster.emit_cancel()

    async def is_backend_reachable(self) -> bool:
        return await self._transport.ping()

    # ── Buffered operations ─────────────────────────────────────────────

    async def generate_text(self, prompt: str, *, model: str | None = None) -> str:
        resolved = self._policy.ensure_allowed(model)
        return await self._generate(resolved, prompt, TimeoutTier.SHORT, "generate_text")

    async def generate_ai_response(
        self,
        participant: ParticipantProfile,
        conversation_history: str,
        topic: str,
        *,
        model: str | None = None,
    ) -> str:
        resolved = self._policy.ensure_allowed(model)
        logger.info(
            "generate_ai_response: participant=%s role=%s history=[%d chars]",
            participant.name,
            participant.role,
            len(conversation_history),
        )
        prompt = self._prompts.ai_response(participant, conversation_history, topic)
        return await self._generate(
            resolved, prompt, TimeoutTier.SHORT, "generate_ai_response"
        )

    async def start_discussion(
        self, topic: str, participants: Sequence[str], *, model: str | None = None
    ) -> str:
        resolved = self._policy.ensure_allowed(model)
        prompt = self._prompts.discussion_start(topic, participants)
        return await self._generate(resolved, prompt, TimeoutTier.SHORT, "start_discussion")

    async def analyze_discussion_points(
        self,
        topic: str,
        conversation_history: str,
        participants: Sequence[str],
        *,
        model: str | None = None,
    ) -> str:
        resolved = self._policy.ensure_allowed(model)
        prompt = self._prompts.discussion_analysis(topic, conversation_history, participants)
        return await self._generate(
            resolved, prompt, TimeoutTier.LONG, "analyze_discussion_points"
        )

    async def analyze_recent_discussion(
        self,
        topic: str,
        conversation_history: str,
        participants: Sequence[str],
        *,
        model: str | None = None,
    ) -> str:
        resolved = self._policy.ensure_allowed(model)
        prompt = self._prompts.lightweight_analysis(topic, conversation_history, participants)
        return await self._generate(
            resolved, prompt, TimeoutTier.LONG, "analyze_recent_discussion"
        )

    async def summarize_discussion(
        self,
        topic: str,
        conversation_history: str,
        participants: Sequence[str],
        *,
        model: str | None = None,
    ) -> str:
        resolved = self._policy.ensure_allowed(model)
        prompt = self._prompts.discussion_summary(topic, conversation_history, participants)
        return await self._generate(
            resolved, prompt, TimeoutTier.LONG, "summarize_discussion"
        )

    async def summarize_incrementally(
        self,
        topic: str,
        previous_summary: str,
        new_messages: str,
        participants: Sequence[str],
        *,
        model: str | None = None,
    ) -> str:
        resolved = self._policy.ensure_allowed(model)
        prompt = self._prompts.incremental_summary(
            topic, previous_summary, new_messages, participants
        )
        return await self._generate(
            resolved, prompt, TimeoutTier.LONG, "summarize_incrementally"
        )

    # ── Streaming operation ─────────────────────────────────────────────

    async def stream_ai_response(
        self,
        participant: ParticipantProfile,
        conversation_history: str,
        topic: str,
        sink: TokenSink,
        *,
        model: str | None = None,
    ) -> str:
        """Stream one participant's statement to *sink*; return the full text.

        The sink receives every token in order, then one terminal token with
        the full text.  A stream that fails after tokens were delivered is not
        replayed, since the sink would see them twice.
        """
        resolved = self._policy.ensure_allowed(model)
        prompt = self._prompts.ai_response(participant, conversation_history, topic)
        request = GenerationRequest(model=resolved, prompt=prompt, stream=True)
        timeout_s = self._timeouts.seconds_for(TimeoutTier.LONG)
        logger.info(
            "stream_ai_response via %s: prompt=%s", resolved, mask_prompt_for_log(prompt)
        )

        async def attempt() -> str:
            framer = StreamFramer()
            try:
                return await asyncio.wait_for(
                    self._consume_stream(request, framer, sink), timeout_s
                )
            except asyncio.TimeoutError as exc:
                if framer.token_count:
                    raise StreamInterruptedError(
                        f"Stream exceeded {timeout_s:g}s after {framer.token_count} token(s)"
                    ) from exc
                raise GenerationTimeoutError(f"Attempt exceeded {timeout_s:g}s") from exc
            except (TransportError, MalformedResponseError) as exc:
                if framer.token_count and not isinstance(exc, StreamInterruptedError):
                    raise StreamInterruptedError(
                        f"Stream broke after {framer.token_count} token(s): {exc}"
                    ) from exc
                raise

        result = await self._engine.run(attempt, label="stream_ai_response")
        logger.info(
            "stream_ai_response finished after %d attempt(s), %d chars",
            len(result.attempts),
            len(result.text),
        )
        return result.text

    # ── Internals ───────────────────────────────────────────────────────

    async def _generate(
        self, model: str, prompt: str, tier: TimeoutTier, label: str
    ) -> str:
        request = GenerationRequest(model=model, prompt=prompt, stream=False)
        logger.info("%s via %s: prompt=%s", label, model, mask_prompt_for_log(prompt))
        result = await self._engine.run(
            lambda: self._transport.generate(request),
            timeout_s=self._timeouts.seconds_for(tier),
            label=label,
        )
        logger.info("%s succeeded after %d attempt(s)", label, len(result.attempts))
        return result.text

    async def _consume_stream(
        self, request: GenerationRequest, framer: StreamFramer, sink: TokenSink
    ) -> str:
        async with aclosing(self._transport.stream_generate(request)) as chunks:
            async for chunk in chunks:
                for token in framer.feed(chunk):
                    await sink.send(token)
                if framer.done:
                    break
        for token in framer.finish():
            await sink.send(token)
        return framer.text
