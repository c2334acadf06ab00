"""API routes: thin controllers that delegate to the generation gateway."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse

from discussion_gateway.interface.dependencies import get_gateway
from discussion_gateway.interface.schemas import (
    BackendStatusResponse,
    CancelResponse,
    DiscussionRequest,
    GenerateRequest,
    IncrementalSummaryRequest,
    ParticipantResponseRequest,
    StartDiscussionRequest,
    TextResponse,
)
from discussion_gateway.interface.streaming import QueueTokenSink
from discussion_gateway.services.generation_gateway import GenerationGateway

router = APIRouter()

_GENERATION_RESPONSES: dict[int | str, dict[str, str]] = {
    409: {"description": "Generation cancelled by the user"},
    422: {"description": "Unsupported model or invalid request"},
    503: {"description": "Backend unavailable after retries"},
}


@router.get("/backend/status", response_model=BackendStatusResponse)
async def backend_status(
    gateway: GenerationGateway = Depends(get_gateway),
) -> BackendStatusResponse:
    """Probe whether the inference backend answers at all."""
    return BackendStatusResponse(reachable=await gateway.is_backend_reachable())


@router.post("/generate", response_model=TextResponse, responses=_GENERATION_RESPONSES)
async def generate(
    body: GenerateRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    text = await gateway.generate_text(body.prompt, model=body.model)
    return TextResponse(text=text)


@router.post(
    "/discussion/start", response_model=TextResponse, responses=_GENERATION_RESPONSES
)
async def start_discussion(
    body: StartDiscussionRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    text = await gateway.start_discussion(body.topic, body.participants, model=body.model)
    return TextResponse(text=text)


@router.post(
    "/discussion/respond", response_model=TextResponse, responses=_GENERATION_RESPONSES
)
async def respond(
    body: ParticipantResponseRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    """Generate one participant's next statement."""
    text = await gateway.generate_ai_response(
        body.participant(),
        body.conversation_history,
        body.discussion_topic,
        model=body.model,
    )
    return TextResponse(text=text)


@router.post("/discussion/respond/stream", responses={422: _GENERATION_RESPONSES[422]})
async def respond_stream(
    body: ParticipantResponseRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> StreamingResponse:
    """Stream one participant's next statement as NDJSON."""
    gateway.ensure_model_allowed(body.model)
    sink = QueueTokenSink()
    lines = sink.relay(
        lambda s: gateway.stream_ai_response(
            body.participant(),
            body.conversation_history,
            body.discussion_topic,
            s,
            model=body.model,
        )
    )
    return StreamingResponse(lines, media_type="application/x-ndjson")


@router.post(
    "/discussion/analysis", response_model=TextResponse, responses=_GENERATION_RESPONSES
)
async def analyze(
    body: DiscussionRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    text = await gateway.analyze_discussion_points(
        body.discussion_topic, body.conversation_history, body.participants, model=body.model
    )
    return TextResponse(text=text)


@router.post(
    "/discussion/analysis/recent",
    response_model=TextResponse,
    responses=_GENERATION_RESPONSES,
)
async def analyze_recent(
    body: DiscussionRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    text = await gateway.analyze_recent_discussion(
        body.discussion_topic, body.conversation_history, body.participants, model=body.model
    )
    return TextResponse(text=text)


@router.post(
    "/discussion/summary", response_model=TextResponse, responses=_GENERATION_RESPONSES
)
async def summarize(
    body: DiscussionRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    text = await gateway.summarize_discussion(
        body.discussion_topic, body.conversation_history, body.participants, model=body.model
    )
    return TextResponse(text=text)


@router.post(
    "/discussion/summary/incremental",
    response_model=TextResponse,
    responses=_GENERATION_RESPONSES,
)
async def summarize_incremental(
    body: IncrementalSummaryRequest,
    gateway: GenerationGateway = Depends(get_gateway),
) -> TextResponse:
    text = await gateway.summarize_incrementally(
        body.discussion_topic,
        body.previous_summary,
        body.new_messages,
        body.participants,
        model=body.model,
    )
    return TextResponse(text=text)


@router.post(
    "/generation/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel(gateway: GenerationGateway = Depends(get_gateway)) -> CancelResponse:
    """Cancel every generation call currently in flight."""
    return CancelResponse(listeners=gateway.cancel_all())
