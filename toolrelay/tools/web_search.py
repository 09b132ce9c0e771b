"""
Web search tool using DuckDuckGo (no API key required).
"""
from __future__ import annotations

import asyncio
from typing import Any

from duckduckgo_search import DDGS

from toolrelay.config import get_config
from toolrelay.tools.base import BaseTool


def _search(query: str, limit: int) -> list[dict]:
    with DDGS() as ddgs:
        return list(ddgs.text(query, max_results=limit))


class WebSearchTool(BaseTool):
    name = "web_search"
    description = (
        "Search the web using DuckDuckGo and return a list of results with titles, "
        "URLs, and snippets. Use only when the provided context does not answer the question."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query"},
            "max_results": {
                "type": "integer",
                "description": "Maximum number of results to return (default: 5)",
                "default": 5,
            },
        },
        "required": ["query"],
    }

    async def run(self, query: str, max_results: int | None = None, **_: Any) -> str:
        cfg = get_config().tools.web_search
        limit = min(max_results or cfg.max_results, 10)

        # DDGS is synchronous; keep it off the event loop.
        results = await asyncio.to_thread(_search, query, limit)

        if not results:
            return f"No results found for: {query}"

        lines = [f"Search results for: {query}\n"]
        for i, r in enumerate(results, 1):
            title = r.get("title", "No title")
            url = r.get("href", "")
            body = r.get("body", "")[:200].replace("\n", " ")
            lines.append(f"{i}. {title}\n   URL: {url}\n   {body}\n")

        return "\n".join(lines)


def get_local_tools() -> list[BaseTool]:
    """Return the in-process tools enabled in config."""
    cfg = get_config()
    tools: list[BaseTool] = []
    if cfg.tools.web_search.enabled:
        tools.append(WebSearchTool())
    return tools
