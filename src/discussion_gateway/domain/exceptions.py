"""Domain exception hierarchy.

Only :class:`UnsupportedModelError`, :class:`GenerationCancelledError` and
:class:`ExhaustedRetriesError` leave the gateway.  The attempt-level errors
are raised by the transport and absorbed by the retry engine.

Every exception carries a stable ``code`` and a short localized
``user_message``; ``str(exc)`` is the diagnostic.
"""

from __future__ import annotations

from collections.abc import Sequence

from discussion_gateway.domain.entities import GenerationAttempt


class GatewayError(Exception):
    """Base exception for the entire application."""

    code = "gateway_error"
    user_message = "予期しないエラーが発生しました。"


# ── Policy ──────────────────────────────────────────────────────────────────


class UnsupportedModelError(GatewayError):
    """The requested model is not on the allow-list."""

    code = "unsupported_model"
    user_message = "選択されたモデルはサポートされていません。"

    def __init__(self, model: str) -> None:
        super().__init__(f"Model {model!r} does not match any allowed prefix.")
        self.model = model


# ── Attempt-level errors (retryable) ────────────────────────────────────────


class TransportError(GatewayError):
    """Network / IO failure while talking to the backend."""

    code = "transport_error"


class GenerationTimeoutError(TransportError):
    """An attempt exceeded its wall-clock ceiling."""

    code = "timeout"


class StreamInterruptedError(TransportError):
    """A stream failed after tokens had already reached the sink."""

    code = "stream_interrupted"


class MalformedResponseError(GatewayError):
    """The backend answered, but without the expected ``response`` field."""

    code = "malformed_response"


# ── Terminal outcomes ───────────────────────────────────────────────────────


class GenerationCancelledError(GatewayError):
    """A cancellation was observed; the call will not be retried."""

    code = "cancelled"
    user_message = "生成はユーザーによってキャンセルされました。"

    def __init__(self, attempts: Sequence[GenerationAttempt] = ()) -> None:
        super().__init__(f"Generation cancelled after {len(attempts)} attempt(s).")
        self.attempts = tuple(attempts)


class ExhaustedRetriesError(GatewayError):
    """Every attempt failed; wraps the last underlying error."""

    code = "service_unavailable"
    user_message = "AIサービスが応答しません。しばらくしてから再度お試しください。"

    def __init__(
        self, attempts: Sequence[GenerationAttempt], last_error: GatewayError
    ) -> None:
        super().__init__(
            f"Generation failed after {len(attempts)} attempt(s): {last_error}"
        )
        self.attempts = tuple(attempts)
        self.last_error = last_error
