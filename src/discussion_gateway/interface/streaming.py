"""Queue-backed token sink that relays a streaming call as NDJSON lines."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from discussion_gateway.domain.entities import StreamToken
from discussion_gateway.domain.exceptions import GatewayError
from discussion_gateway.interface.schemas import StreamEvent

logger = logging.getLogger(__name__)


class QueueTokenSink:
    """Buffers tokens from the gateway until the HTTP response pulls them."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[StreamToken | None] = asyncio.Queue()

    async def send(self, token: StreamToken) -> None:
        await self._queue.put(token)

    async def relay(
        self, start: Callable[[QueueTokenSink], Awaitable[str]]
    ) -> AsyncIterator[bytes]:
        """Run ``start(self)`` and yield each token as an NDJSON line.

        A gateway failure becomes a final ``{"done": true, "error": ...}``
        line, since the HTTP status has already been sent.  If the client
        goes away the call is cancelled and awaited before the generator closes.
        """
        task = asyncio.ensure_future(start(self))
        task.add_done_callback(lambda _: self._queue.put_nowait(None))
        try:
            while (token := await self._queue.get()) is not None:
                yield StreamEvent.from_token(token).to_line()

            exc = None if task.cancelled() else task.exception()
            if isinstance(exc, GatewayError):
                logger.warning("Stream ended with %s: %s", type(exc).__name__, exc)
                yield StreamEvent(
                    done=True, error=exc.code, message=exc.user_message
                ).to_line()
            elif exc is not None:
                logger.error("Unhandled error in stream", exc_info=exc)
                yield StreamEvent(
                    done=True,
                    error=GatewayError.code,
                    message=GatewayError.user_message,
                ).to_line()
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
