"""
Agent execution loop.
Handles multi-turn tool use while the model's text streams out.

One request runs as a single task:
  REQUESTING -> STREAMING -> TURN_END_REACHED -> (tools) -> REQUESTING ... -> DONE
Text deltas are passed to the caller the moment they arrive; tool calls are
accumulated, executed concurrently at turn end and folded back into history
before the next request.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Literal, Optional

from toolrelay.agent.accumulator import FinalizedToolCall, ToolCallAccumulator
from toolrelay.agent.events import CanonicalEvent, TextDelta, ToolCallFragment, TurnEnd
from toolrelay.agent.history import ConversationHistory, TextPart, ToolResultPart, Turn
from toolrelay.config import AgentConfig
from toolrelay.models.base import BaseModelAdapter, ProviderError
from toolrelay.tools.base import ToolDescriptor, ToolOutcome
from toolrelay.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 5


@dataclass
class LoopOptions:
    """Options for the agent loop."""

    max_turns: int = DEFAULT_MAX_TURNS
    provider_timeout: float = 60.0
    max_attempts: int = 3
    initial_backoff: float = 1.0
    backoff_multiplier: float = 2.0
    on_argument_error: Literal["report", "abort"] = "report"
    system_prompt: str = ""

    @classmethod
    def from_config(cls, cfg: AgentConfig) -> "LoopOptions":
        return cls(
            max_turns=cfg.max_turns,
            provider_timeout=cfg.provider_timeout_seconds,
            max_attempts=cfg.retry.max_attempts,
            initial_backoff=cfg.retry.initial_backoff_seconds,
            backoff_multiplier=cfg.retry.backoff_multiplier,
            on_argument_error=cfg.on_argument_error,
            system_prompt=cfg.system_prompt,
        )


@dataclass
class LoopState:
    turn_count: int = 0
    done: bool = False


def failure_message(reason: str) -> str:
    return f"\n\nSorry, I could not finish this answer ({reason})."


async def stream_with_retry(
    adapter: BaseModelAdapter,
    turns: tuple[Turn, ...],
    tools: list[ToolDescriptor],
    opts: LoopOptions,
) -> AsyncIterator[CanonicalEvent]:
    """
    Stream one provider turn with a bound on every awaited chunk.

    Retryable failures are retried with exponential backoff, but only while
    nothing from this turn has been yielded yet; once output has gone out a
    retry would duplicate it.
    """
    backoff = opts.initial_backoff
    attempt = 0

    while True:
        attempt += 1
        emitted = False
        try:
            async with aclosing(adapter.stream_turn(turns, tools, opts.system_prompt)) as stream:
                while True:
                    try:
                        event = await asyncio.wait_for(anext(stream), timeout=opts.provider_timeout)
                    except StopAsyncIteration:
                        return
                    except asyncio.TimeoutError:
                        raise ProviderError(
                            f"no response from provider within {opts.provider_timeout}s",
                            retryable=True,
                        ) from None
                    emitted = True
                    yield event
        except ProviderError as e:
            if not e.retryable or emitted or attempt >= opts.max_attempts:
                raise
            logger.warning(
                "Provider error on attempt %d/%d, retrying in %.1fs: %s",
                attempt, opts.max_attempts, backoff, e,
            )
        await asyncio.sleep(backoff)
        backoff *= opts.backoff_multiplier


async def _execute(registry: ToolRegistry, call: FinalizedToolCall) -> ToolOutcome:
    if call.error is not None:
        return ToolOutcome.failure(call.error)
    return await registry.invoke(call.part.name, dict(call.part.arguments))


async def run_agent(
    history: ConversationHistory,
    adapter: BaseModelAdapter,
    registry: ToolRegistry,
    options: Optional[LoopOptions] = None,
    state: Optional[LoopState] = None,
) -> AsyncIterator[TextDelta]:
    """
    Run the agent loop over `history`, which must already end with the user turn.

    Yields every TextDelta for the caller, in order. New assistant and tool
    turns are appended to `history` as the loop progresses.
    """
    opts = options or LoopOptions()
    state = state or LoopState()
    tools = await registry.list_tools()

    while not state.done:
        accumulator = ToolCallAccumulator()
        answer: list[str] = []

        logger.info("Requesting %s (turn %d)", adapter.model_name, state.turn_count + 1)
        try:
            async with aclosing(stream_with_retry(adapter, history.turns, tools, opts)) as events:
                async for event in events:
                    if isinstance(event, TextDelta):
                        if not event.reasoning:
                            answer.append(event.text)
                        yield event
                    elif isinstance(event, ToolCallFragment):
                        accumulator.add(event)
                    elif isinstance(event, TurnEnd):
                        break
        except ProviderError as e:
            logger.error("Provider %s failed: %s", adapter.model_name, e)
            yield TextDelta(text=failure_message(str(e)))
            state.done = True
            break

        text = "".join(answer)

        if not accumulator:
            if text:
                history.append(Turn(role="assistant", parts=(TextPart(text=text),)))
            state.done = True
            break

        calls = accumulator.finalize()
        if opts.on_argument_error == "abort" and any(c.error for c in calls):
            reason = next(c.error for c in calls if c.error)
            yield TextDelta(text=failure_message(reason))
            state.done = True
            break

        assistant_parts = ([TextPart(text=text)] if text else []) + [c.part for c in calls]
        history.append(Turn(role="assistant", parts=tuple(assistant_parts)))

        logger.info("Executing %d tool call(s): %s", len(calls), [c.part.name for c in calls])
        # gather keeps the call order regardless of completion order
        outcomes = await asyncio.gather(*(_execute(registry, c) for c in calls))
        history.append(Turn(
            role="tool",
            parts=tuple(ToolResultPart.from_outcome(c.part, o) for c, o in zip(calls, outcomes)),
        ))

        state.turn_count += 1
        if state.turn_count >= opts.max_turns:
            logger.warning("Max turns (%d) reached, ending with the output so far", opts.max_turns)
            state.done = True
