"""Ollama REST adapter: implements the GenerationTransport port."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

import httpx

from discussion_gateway.domain.entities import GenerationRequest
from discussion_gateway.domain.exceptions import MalformedResponseError, TransportError

logger = logging.getLogger(__name__)

_GENERATE_PATH = "/api/generate"


class OllamaAdapter:
    """Concrete GenerationTransport backed by Ollama's ``/api/generate``.

    Performs exactly one exchange per call; retries, timeouts and
    cancellation belong to the caller.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def generate(self, request: GenerationRequest) -> str:
        """POST a buffered request → the ``response`` field of the body."""
        try:
            resp = await self._client.post(_GENERATE_PATH, json=request.to_payload())
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {_GENERATE_PATH} failed: {exc}") from exc

        try:
            data = resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedResponseError(
                f"Backend returned HTTP {resp.status_code} with a non-JSON body: {exc}"
            ) from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            detail = data.get("error") if isinstance(data, dict) else None
            raise MalformedResponseError(
                f"Backend returned HTTP {resp.status_code} without a 'response' field"
                + (f": {detail}" if detail else ".")
            )

        logger.debug("Received %d characters from %s", len(text), request.model)
        return text

    async def stream_generate(self, request: GenerationRequest) -> AsyncIterator[bytes]:
        """POST a streaming request and yield body chunks without buffering."""
        try:
            async with self._client.stream(
                "POST", _GENERATE_PATH, json=request.to_payload()
            ) as resp:
                if resp.status_code >= 400:
                    body = await resp.aread()
                    raise MalformedResponseError(
                        f"Backend refused the stream with HTTP {resp.status_code}: "
                        f"{body.decode('utf-8', errors='replace')[:200]}"
                    )
                async for chunk in resp.aiter_bytes():
                    yield chunk
        except httpx.HTTPError as exc:
            raise TransportError(f"Stream from {_GENERATE_PATH} failed: {exc}") from exc

    async def ping(self) -> bool:
        """GET the base URL; any HTTP response at all means reachable."""
        try:
            await self._client.get("/")
        except httpx.HTTPError as exc:
            logger.info("Backend unreachable: %s", exc)
            return False
        return True
