"""
Conversation turns and the in-memory, append-only history for one request.
"""
from __future__ import annotations

from typing import Annotated, Any, Iterable, Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from toolrelay.tools.base import ToolOutcome


class TextPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ToolCallPart(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    type: Literal["tool_call"] = "tool_call"
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    provider_signature: Optional[bytes] = None


class ToolResultPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tool_result"] = "tool_result"
    call_id: str
    name: str
    result: Any = None
    error_message: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error_message is not None

    @classmethod
    def from_outcome(cls, call: ToolCallPart, outcome: ToolOutcome) -> "ToolResultPart":
        if outcome.ok:
            return cls(call_id=call.id, name=call.name, result=outcome.value)
        return cls(call_id=call.id, name=call.name, error_message=outcome.error)


Part = Annotated[Union[TextPart, ToolCallPart, ToolResultPart], Field(discriminator="type")]


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "tool"]
    parts: tuple[Part, ...] = ()

    @classmethod
    def user(cls, text: str) -> "Turn":
        return cls(role="user", parts=(TextPart(text=text),))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]


class ConversationHistory:
    """
    Turn-ordered log for the lifetime of one request.

    Turns are immutable and can only be appended; nothing is ever removed
    or rewritten. Persisting the log is the caller's job.
    """

    def __init__(self, turns: Iterable[Turn] = ()) -> None:
        self._turns: list[Turn] = list(turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]
