"""
Reasoning extraction.

Splits a model's raw text stream into visible text and a reasoning trace
wrapped in ``<tag>...</tag>``. Tags may arrive split across chunks.
"""

from __future__ import annotations

from typing import Literal

Segment = tuple[Literal["text", "reasoning"], str]


class ReasoningExtractor:
    def __init__(self, tag: str = "think"):
        self.open_tag = f"<{tag}>"
        self.close_tag = f"</{tag}>"
        self.in_reasoning = False
        self._buffer = ""

    def feed(self, chunk: str) -> list[Segment]:
        self._buffer += chunk
        segments: list[Segment] = []

        while True:
            tag = self.close_tag if self.in_reasoning else self.open_tag
            index = self._buffer.find(tag)
            if index == -1:
                keep = _partial_suffix(self._buffer, tag)
                self._emit(segments, self._buffer[: len(self._buffer) - keep])
                self._buffer = self._buffer[len(self._buffer) - keep :]
                return segments

            self._emit(segments, self._buffer[:index])
            self._buffer = self._buffer[index + len(tag) :]
            self.in_reasoning = not self.in_reasoning

    def flush(self) -> list[Segment]:
        """Release whatever is buffered at end of stream."""
        segments: list[Segment] = []
        self._emit(segments, self._buffer)
        self._buffer = ""
        return segments

    def _emit(self, segments: list[Segment], text: str) -> None:
        if not text:
            return
        kind: Literal["text", "reasoning"] = "reasoning" if self.in_reasoning else "text"
        if segments and segments[-1][0] == kind:
            segments[-1] = (kind, segments[-1][1] + text)
        else:
            segments.append((kind, text))


def _partial_suffix(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0
