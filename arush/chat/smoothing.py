"""Word-level re-chunking of text deltas."""

from __future__ import annotations

import re

WORD_CHUNK = re.compile(r"\s*\S+\s+")


class WordSmoother:
    """Buffers text and releases it one whole word (plus trailing whitespace) at a time."""

    def __init__(self, delay_ms: int = 10):
        self.delay = max(delay_ms, 0) / 1000.0
        self._buffer = ""

    def feed(self, text: str) -> list[str]:
        self._buffer += text
        chunks: list[str] = []
        while match := WORD_CHUNK.match(self._buffer):
            chunks.append(match.group(0))
            self._buffer = self._buffer[match.end() :]
        return chunks

    def flush(self) -> list[str]:
        rest, self._buffer = self._buffer, ""
        return [rest] if rest else []
