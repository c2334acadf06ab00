"""Domain entities: pure data structures with no external dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AttemptOutcome(str, Enum):
    """How a single HTTP exchange with the backend ended."""

    SUCCESS = "success"
    MALFORMED_RESPONSE = "malformed-response"
    TRANSPORT_ERROR = "transport-error"
    STREAM_INTERRUPTED = "stream-interrupted"
    CANCELLED = "cancelled"


class TimeoutTier(str, Enum):
    """Wall-clock ceiling class for one attempt."""

    SHORT = "short"  # conversational turns
    LONG = "long"  # analysis, summaries, streaming


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """One call to ``/api/generate``.  Only built for an allow-listed model."""

    model: str
    prompt: str
    stream: bool = False

    def to_payload(self) -> dict[str, object]:
        return {"model": self.model, "prompt": self.prompt, "stream": self.stream}


@dataclass(frozen=True, slots=True)
class GenerationAttempt:
    """Record of one exchange made on behalf of a generation call."""

    number: int
    waited_ms: int
    outcome: AttemptOutcome
    error: str | None = None


@dataclass(frozen=True, slots=True)
class StreamToken:
    """A decoded streaming increment, or the terminal marker.

    The terminal marker has ``done=True`` and carries the full concatenated
    text in ``text``.
    """

    text: str
    done: bool = False

    @classmethod
    def terminal(cls, full_text: str) -> StreamToken:
        return cls(text=full_text, done=True)


@dataclass(frozen=True, slots=True)
class RetryResult:
    """Successful outcome of a retried call."""

    text: str
    attempts: tuple[GenerationAttempt, ...]


@dataclass(frozen=True, slots=True)
class ParticipantProfile:
    """An AI participant taking part in a discussion."""

    name: str
    role: str
    description: str = ""
