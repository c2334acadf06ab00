"""Pydantic request / response DTOs for the API boundary."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from discussion_gateway.domain.entities import ParticipantProfile, StreamToken


class _ModelSelectable(BaseModel):
    """Optional model override; the configured default is used when omitted."""

    model: str | None = None


class GenerateRequest(_ModelSelectable):
    """Request body for ``POST /generate``."""

    prompt: str

    @field_validator("prompt")
    @classmethod
    def _must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            msg = "prompt must not be empty."
            raise ValueError(msg)
        return v


class StartDiscussionRequest(_ModelSelectable):
    """Request body for ``POST /discussion/start``."""

    topic: str
    participants: list[str] = Field(default_factory=list)


class ParticipantResponseRequest(_ModelSelectable):
    """Request body for ``POST /discussion/respond`` and its streaming twin."""

    participant_name: str
    role: str
    description: str = ""
    conversation_history: str = ""
    discussion_topic: str

    def participant(self) -> ParticipantProfile:
        return ParticipantProfile(
            name=self.participant_name, role=self.role, description=self.description
        )


class DiscussionRequest(_ModelSelectable):
    """Request body for the analysis and full-summary routes."""

    discussion_topic: str
    conversation_history: str = ""
    participants: list[str] = Field(default_factory=list)


class IncrementalSummaryRequest(_ModelSelectable):
    """Request body for ``POST /discussion/summary/incremental``."""

    discussion_topic: str
    previous_summary: str
    new_messages: str
    participants: list[str] = Field(default_factory=list)


class TextResponse(BaseModel):
    """Successful response carrying generated text."""

    text: str


class BackendStatusResponse(BaseModel):
    reachable: bool


class CancelResponse(BaseModel):
    status: str = "cancelling"
    listeners: int


class StreamEvent(BaseModel):
    """One NDJSON line of ``POST /discussion/respond/stream``."""

    response: str | None = None
    done: bool | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def from_token(cls, token: StreamToken) -> StreamEvent:
        if token.done:
            return cls(response=token.text, done=True)
        return cls(response=token.text)

    def to_line(self) -> bytes:
        return (self.model_dump_json(exclude_none=True) + "\n").encode("utf-8")


class ErrorResponse(BaseModel):
    """Standard error envelope returned on all failure paths."""

    status: str = "error"
    code: str
    message: str
    detail: str | None = None
