"""
Index-keyed accumulation of streamed tool-call fragments.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from toolrelay.agent.events import ToolCallFragment
from toolrelay.agent.history import ToolCallPart

logger = logging.getLogger(__name__)


@dataclass
class PendingToolCall:
    index: int
    id: Optional[str] = None
    name: str = ""
    arguments_json: str = ""
    signature: Optional[bytes] = None

    def absorb(self, fragment: ToolCallFragment) -> None:
        if fragment.id:
            self.id = fragment.id
        if fragment.name:
            self.name += fragment.name
        if fragment.arguments:
            self.arguments_json += fragment.arguments
        if fragment.signature is not None:
            self.signature = fragment.signature


@dataclass
class FinalizedToolCall:
    """A tool call ready for history; `error` is set when its arguments were unusable."""

    part: ToolCallPart
    error: Optional[str] = None


@dataclass
class ToolCallAccumulator:
    """Turn-scoped map of pending calls, in order of first appearance."""

    pending: dict[int, PendingToolCall] = field(default_factory=dict)

    def add(self, fragment: ToolCallFragment) -> None:
        call = self.pending.get(fragment.index)
        if call is None:
            call = self.pending[fragment.index] = PendingToolCall(index=fragment.index)
        call.absorb(fragment)

    def __len__(self) -> int:
        return len(self.pending)

    def __bool__(self) -> bool:
        return bool(self.pending)

    def finalize(self) -> list[FinalizedToolCall]:
        return [_finalize(call) for call in self.pending.values()]


def _finalize(call: PendingToolCall) -> FinalizedToolCall:
    name = call.name or "unknown_tool"
    call_id = call.id or f"call_{name}_{call.index}"
    error = None
    arguments: dict = {}

    if not call.name:
        error = "Tool call has no name"
    elif call.arguments_json.strip():
        try:
            parsed = json.loads(call.arguments_json)
        except json.JSONDecodeError as e:
            error = f"Invalid JSON arguments for '{name}': {e}"
        else:
            if isinstance(parsed, dict):
                arguments = parsed
            else:
                error = f"Arguments for '{name}' must be a JSON object"

    if error:
        logger.warning("Tool call %s rejected: %s", call_id, error)

    part = ToolCallPart(
        id=call_id,
        name=name,
        arguments=arguments,
        provider_signature=call.signature,
    )
    return FinalizedToolCall(part=part, error=error)
