"""Token sink port: receives streamed tokens for relay to a UI."""

from __future__ import annotations

from typing import Protocol

from discussion_gateway.domain.entities import StreamToken


class TokenSink(Protocol):
    """Receives each token in order, then one terminal token with the full text."""

    async def send(self, token: StreamToken) -> None:
        ...
