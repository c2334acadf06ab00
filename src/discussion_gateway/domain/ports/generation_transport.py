"""Generation transport port, defined by the domain and implemented by infrastructure."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from discussion_gateway.domain.entities import GenerationRequest


class GenerationTransport(Protocol):
    """Abstract contract for a single exchange with the inference backend."""

    async def generate(self, request: GenerationRequest) -> str:
        """POST a buffered request and return the ``response`` text."""
        ...

    def stream_generate(self, request: GenerationRequest) -> AsyncIterator[bytes]:
        """POST a streaming request and yield raw body chunks as they arrive."""
        ...

    async def ping(self) -> bool:
        """Return True when the backend answers at all."""
        ...
