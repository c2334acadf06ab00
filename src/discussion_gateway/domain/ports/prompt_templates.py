"""Prompt templates port: pure functions from discussion state to prompt text."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from discussion_gateway.domain.entities import ParticipantProfile


class PromptTemplates(Protocol):
    """Builds the prompt for each gateway operation.

    Output is treated as an opaque string by the gateway.
    """

    def ai_response(
        self, participant: ParticipantProfile, conversation_history: str, topic: str
    ) -> str:
        ...

    def discussion_start(self, topic: str, participants: Sequence[str]) -> str:
        ...

    def discussion_analysis(
        self, topic: str, conversation_history: str, participants: Sequence[str]
    ) -> str:
        ...

    def lightweight_analysis(
        self, topic: str, conversation_history: str, participants: Sequence[str]
    ) -> str:
        ...

    def discussion_summary(
        self, topic: str, conversation_history: str, participants: Sequence[str]
    ) -> str:
        ...

    def incremental_summary(
        self,
        topic: str,
        previous_summary: str,
        new_messages: str,
        participants: Sequence[str],
    ) -> str:
        ...
