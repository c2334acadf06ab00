"""NDJSON stream framer.

Turns an incrementally arriving byte stream from ``/api/generate`` into
:class:`StreamToken` values.  Lines are only decoded once complete, so a
multi-byte character split across two chunks is reassembled correctly.

Each line is one of::

    {"response": "<token>"}
    {"done": true}

Unparsable lines are skipped.  A stream that ends without ``done`` is treated
as complete (see :meth:`StreamFramer.finish`).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from discussion_gateway.domain.entities import StreamToken

logger = logging.getLogger(__name__)

_DELIMITER = b"\n"


class StreamFramer:
    """Stateful splitter/decoder for one streaming attempt."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._parts: list[str] = []
        self._token_count = 0
        self._done = False

    @property
    def done(self) -> bool:
        """True once the terminal token has been produced."""
        return self._done

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> list[StreamToken]:
        """Append *chunk* and return the tokens completed by it, in order.

        The list ends with the terminal token if a ``done`` line was seen;
        input after that is ignored.
        """
        if self._done:
            return []
        self._buffer.extend(chunk)

        tokens: list[StreamToken] = []
        while not self._done:
            idx = self._buffer.find(_DELIMITER)
            if idx == -1:
                break
            line = bytes(self._buffer[:idx])
            del self._buffer[: idx + 1]
            tokens.extend(self._decode_line(line))
        return tokens

    def finish(self) -> list[StreamToken]:
        """Flush at end of stream and return the remaining tokens.

        A trailing line without a newline is decoded like any other.  If no
        ``done`` marker arrived, the accumulated text is returned as an
        implicit completion.
        """
        if self._done:
            return []
        tokens: list[StreamToken] = []
        if self._buffer:
            line = bytes(self._buffer)
            self._buffer.clear()
            tokens.extend(self._decode_line(line))
        if not self._done:
            logger.debug("Stream ended without a done marker; treating as complete")
            tokens.append(self._complete())
        return tokens

    # ── Internals ───────────────────────────────────────────────────────

    def _decode_line(self, raw: bytes) -> list[StreamToken]:
        line = raw.strip()
        if not line:
            return []
        try:
            event: Any = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("Skipping malformed stream line: %r", line[:80])
            return []
        if not isinstance(event, dict):
            return []

        tokens: list[StreamToken] = []
        piece = event.get("response")
        if isinstance(piece, str) and piece:
            self._parts.append(piece)
            self._token_count += 1
            tokens.append(StreamToken(text=piece))
        if event.get("done") is True:
            tokens.append(self._complete())
        return tokens

    def _complete(self) -> StreamToken:
        self._done = True
        self._buffer.clear()
        return StreamToken.terminal(self.text)
