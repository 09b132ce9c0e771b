"""
Output channel: turns the loop's text deltas into caller-facing frames.

Frames are append-only deltas tagged `reasoning-text` or `answer-text`,
followed by an optional `references` frame and the end-of-stream marker.
They come out in the same order as the deltas that produced them.
"""
from __future__ import annotations

import json
import re
from typing import Literal, Optional

from pydantic import BaseModel, Field

from toolrelay.agent.events import TextDelta

FrameKind = Literal["reasoning-text", "answer-text", "references", "end"]

_QUOTE_PREFIX = re.compile(r"^>\s?")


class OutputFrame(BaseModel):
    kind: FrameKind
    text: str = ""
    references: list[str] = Field(default_factory=list)

    def to_sse(self) -> str:
        if self.kind == "end":
            return "data: [DONE]\n\n"
        if self.kind == "references":
            payload = {"type": self.kind, "references": self.references}
        else:
            payload = {"type": self.kind, "text": self.text}
        return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


class OutputChannel:
    """
    Stateful frame encoder for one response.

    With a `reasoning_marker`, an answer that opens with that marker has its
    leading blockquote (up to the first blank line) sent as reasoning text.
    Only text that might still turn out to be the marker, or the unfinished
    line of such a block, is held back.
    """

    def __init__(self, reasoning_marker: Optional[str] = None):
        self._marker = reasoning_marker or None
        self._detecting = self._marker is not None
        self._in_block = False
        self._block_started = False
        self._buffer = ""

    def feed(self, delta: TextDelta) -> list[OutputFrame]:
        if not delta.text:
            return []
        if delta.reasoning:
            return [OutputFrame(kind="reasoning-text", text=delta.text)]
        if self._detecting:
            return self._detect(delta.text)
        if self._in_block:
            return self._feed_block(delta.text)
        return [OutputFrame(kind="answer-text", text=delta.text)]

    def finish(self, references: Optional[list[str]] = None) -> list[OutputFrame]:
        frames: list[OutputFrame] = []
        pending, self._buffer = self._buffer, ""
        if pending:
            if self._in_block:
                reasoning = _strip_quote(pending)
                if reasoning.strip():
                    frames.append(OutputFrame(kind="reasoning-text", text=reasoning))
            else:
                frames.append(OutputFrame(kind="answer-text", text=pending))
        self._detecting = self._in_block = False

        unique = list(dict.fromkeys(r for r in references or [] if r))
        if unique:
            frames.append(OutputFrame(kind="references", references=unique))
        frames.append(OutputFrame(kind="end"))
        return frames

    def _detect(self, text: str) -> list[OutputFrame]:
        self._buffer += text
        head = self._buffer.lstrip()
        if head.startswith(self._marker):
            self._detecting = False
            self._in_block = True
            rest, self._buffer = head[len(self._marker):], ""
            return self._feed_block(rest)
        if self._marker.startswith(head):
            return []
        self._detecting = False
        pending, self._buffer = self._buffer, ""
        return [OutputFrame(kind="answer-text", text=pending)]

    def _feed_block(self, text: str) -> list[OutputFrame]:
        frames: list[OutputFrame] = []
        self._buffer += text

        while self._in_block and "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if not line.strip():
                if self._block_started:
                    # Blank line closes the thinking block.
                    self._in_block = False
                continue
            self._block_started = True
            frames.append(OutputFrame(kind="reasoning-text", text=_strip_quote(line) + "\n"))

        if not self._in_block and self._buffer:
            pending, self._buffer = self._buffer, ""
            frames.append(OutputFrame(kind="answer-text", text=pending))
        return frames


def _strip_quote(text: str) -> str:
    return "\n".join(_QUOTE_PREFIX.sub("", line) for line in text.split("\n"))
