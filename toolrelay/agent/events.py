"""
Canonical stream events.

Every provider adapter translates its own chunk shapes into these three
events, so the agent loop never looks at provider payloads.
"""
from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class TextDelta(BaseModel):
    """A piece of model text. `reasoning` marks provider-flagged thinking."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text_delta"] = "text_delta"
    text: str
    reasoning: bool = False


class ToolCallFragment(BaseModel):
    """
    Part of a tool call, addressed by `index`.

    Several fragments may share an index; their `name` and `arguments`
    pieces are concatenated in arrival order, never replaced.
    `signature` is an opaque provider token echoed back on the next request.
    """

    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    type: Literal["tool_call_fragment"] = "tool_call_fragment"
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None
    signature: Optional[bytes] = None


class TurnEnd(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["turn_end"] = "turn_end"
    finish_reason: Optional[str] = None


CanonicalEvent = Union[TextDelta, ToolCallFragment, TurnEnd]
