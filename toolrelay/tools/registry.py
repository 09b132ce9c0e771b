"""
Tool registry facade.

One interface over every tool source (in-process tools, MCP servers). Names
shown to models are sanitized; the registry keeps the route from the
sanitized name back to the source and the original name. `invoke` never
raises: every failure comes back as `ToolOutcome.failure`.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any

from toolrelay.tools.base import ToolDescriptor, ToolOutcome, ToolSource

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
MAX_TOOL_NAME_LENGTH = 64


def sanitize_tool_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name)[:MAX_TOOL_NAME_LENGTH]


@dataclass(frozen=True)
class _Route:
    source: ToolSource
    original_name: str


class ToolRegistry:
    def __init__(self, sources: list[ToolSource], timeout: float = 30.0):
        self._sources = list(sources)
        self._timeout = timeout
        self._routes: dict[str, _Route] = {}

    async def list_tools(self) -> list[ToolDescriptor]:
        """List tools from all sources in order; the first source wins a name clash."""
        routes: dict[str, _Route] = {}
        descriptors: list[ToolDescriptor] = []

        for source in self._sources:
            try:
                tools = await source.list_tools()
            except Exception as e:
                logger.warning("Error listing tools for source %s: %s", source.name, e)
                continue

            for tool in tools:
                exposed = sanitize_tool_name(tool.name)
                if exposed in routes:
                    logger.warning(
                        "Tool %s from %s shadowed by an earlier source", tool.name, source.name
                    )
                    continue
                routes[exposed] = _Route(source=source, original_name=tool.name)
                descriptors.append(tool.model_copy(update={"name": exposed}))

        self._routes = routes
        return descriptors

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolOutcome:
        route = self._routes.get(name)
        if route is None:
            await self.list_tools()
            route = self._routes.get(name)
        if route is None:
            return ToolOutcome.failure(f"Unknown tool '{name}'")

        logger.debug("Invoking %s with %s", name, arguments)
        try:
            value = await asyncio.wait_for(
                route.source.call_tool(route.original_name, arguments),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %ss", name, self._timeout)
            return ToolOutcome.failure(f"Tool '{name}' timed out after {self._timeout}s")
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return ToolOutcome.failure(f"Tool '{name}' failed: {e}")

        logger.debug("Tool %s returned %r", name, value)
        return ToolOutcome.success(value)
