"""Global exception handlers: translate gateway errors to HTTP responses.

Each classified error maps to a status code and the
``{"status": "error", "code": ..., "message": ..., "detail": ...}`` envelope,
where ``message`` is the short localized text and ``detail`` the diagnostic.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from discussion_gateway.domain.exceptions import (
    ExhaustedRetriesError,
    GatewayError,
    GenerationCancelledError,
    UnsupportedModelError,
)
from discussion_gateway.interface.schemas import ErrorResponse

logger = logging.getLogger(__name__)

_EXCEPTION_STATUS: list[tuple[type[GatewayError], int]] = [
    (UnsupportedModelError, 422),
    (GenerationCancelledError, 409),
    (ExhaustedRetriesError, 503),
]


def _error_json(
    status_code: int, code: str, message: str, detail: str | None = None
) -> JSONResponse:
    body = ErrorResponse(code=code, message=message, detail=detail)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI) -> None:
    """Attach exception handlers to the FastAPI application."""

    # ── Gateway exceptions ──────────────────────────────────────────────

    for exc_type, code in _EXCEPTION_STATUS:

        def _make_handler(
            status_code: int,
        ):  # type: ignore[no-untyped-def]
            async def handler(request: Request, exc: GatewayError) -> JSONResponse:
                logger.warning("%s: %s", type(exc).__name__, exc)
                return _error_json(status_code, exc.code, exc.user_message, str(exc))

            return handler

        app.add_exception_handler(exc_type, _make_handler(code))

    # ── Pydantic / FastAPI validation errors ────────────────────────────

    @app.exception_handler(RequestValidationError)
    async def validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        messages = []
        for err in exc.errors():
            loc = " → ".join(str(p) for p in err.get("loc", []))
            messages.append(f"{loc}: {err.get('msg', 'validation error')}")
        return _error_json(422, "invalid_request", "; ".join(messages))

    # ── Catch-all for unexpected errors ─────────────────────────────────

    @app.exception_handler(Exception)
    async def generic_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception")
        return _error_json(500, GatewayError.code, GatewayError.user_message)
