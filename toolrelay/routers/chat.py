"""
Chat API router.
POST /chat: run one request through the agent loop (returns an SSE stream)

The caller owns persistence: it sends prior turns, the already-resolved
context block and the reference list, and receives frames back.
"""
from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from toolrelay.agent.history import ConversationHistory, Turn
from toolrelay.agent.loop import LoopOptions, run_agent
from toolrelay.agent.output import OutputChannel
from toolrelay.config import get_config
from toolrelay.models.registry import get_adapter
from toolrelay.tools.registry import ToolRegistry

router = APIRouter(prefix="/chat", tags=["chat"])


class ChatRequest(BaseModel):
    message: str
    history: list[Turn] = Field(default_factory=list)
    context: str = Field("", description="Prior-turn summary and retrieved document text")
    references: list[str] = Field(default_factory=list, description="Source identifiers for the context")
    model: str | None = None


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def compose_user_message(message: str, context: str) -> str:
    if not context.strip():
        return message
    return f"{context.strip()}\n\n{message}"


@router.post("")
async def chat(body: ChatRequest, registry: ToolRegistry = Depends(get_tool_registry)):
    cfg = get_config()
    try:
        adapter = get_adapter(body.model)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    history = ConversationHistory(body.history)
    history.append(Turn.user(compose_user_message(body.message, body.context)))
    options = LoopOptions.from_config(cfg.agent)

    async def event_stream() -> AsyncIterator[str]:
        channel = OutputChannel(cfg.output.reasoning_marker)
        async for delta in run_agent(history, adapter, registry, options):
            for frame in channel.feed(delta):
                yield frame.to_sse()
        for frame in channel.finish(body.references):
            yield frame.to_sse()

    return StreamingResponse(event_stream(), media_type="text/event-stream")
