"""
Abstract base model interface.
All adapters must implement `stream_turn`.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence

import httpx

from toolrelay.agent.events import CanonicalEvent
from toolrelay.agent.history import Turn
from toolrelay.tools.base import ToolDescriptor

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ProviderError(Exception):
    """A provider call failed. `retryable` marks rate limits and transient faults."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


# Raised by the SDKs' HTTP layer without their own wrapping, e.g. mid-stream reads.
TRANSPORT_ERRORS = (httpx.HTTPError, TimeoutError, asyncio.TimeoutError)


def transport_error(e: BaseException) -> ProviderError:
    return ProviderError(f"Connection error: {str(e) or type(e).__name__}", retryable=True)


def get_field(obj: Any, name: str, default: Any = None) -> Any:
    """Read `name` from an SDK object or a plain dict chunk."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class BaseModelAdapter(ABC):
    """Unified interface for all LLM providers."""

    model_name: str

    @abstractmethod
    def stream_turn(
        self,
        turns: Sequence[Turn],
        tools: list[ToolDescriptor],
        system: str,
    ) -> AsyncIterator[CanonicalEvent]:
        """
        Send one request built from `turns` and yield canonical events:
          - TextDelta for every piece of text, in order
          - ToolCallFragment for every piece of a tool call
          - TurnEnd once the provider stream is exhausted
        Raises ProviderError on failure.
        """
