"""
Remote tool source backed by an MCP server.

A connection is negotiated once (stdio subprocess or SSE endpoint, then the
MCP initialize handshake) and kept open for the life of the process. It is
shared by every request: tool calls may run concurrently, tool discovery is
serialized per connection.
"""
from __future__ import annotations

import asyncio
import logging
import os
from contextlib import AsyncExitStack
from typing import Any, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from toolrelay.config import McpServerConfig
from toolrelay.tools.base import ToolDescriptor

logger = logging.getLogger(__name__)

CLIENT_INFO = Implementation(name="toolrelay", version="0.1.0")
NO_OUTPUT = "Tool executed successfully with no output."


class McpToolError(Exception):
    """The server answered a tool call with an error result."""


class McpConnection:
    def __init__(self, config: McpServerConfig, session: Optional[ClientSession] = None):
        self.config = config
        self.name = config.name
        self._session = session
        self._stack: Optional[AsyncExitStack] = None
        self._list_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        if self._session is not None:
            logger.info("MCP server %s already connected", self.name)
            return

        logger.info("Connecting to MCP server %s (%s)", self.name, self.config.type)
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(self._open_transport())
            session = await stack.enter_async_context(
                ClientSession(read, write, client_info=CLIENT_INFO)
            )
            await session.initialize()
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._session = session
        logger.info("Connected to MCP server %s", self.name)

    def _open_transport(self):
        cfg = self.config
        if cfg.type == "stdio":
            if not cfg.command:
                raise ValueError(f"MCP server '{cfg.name}' has no command")
            params = StdioServerParameters(
                command=cfg.command,
                args=cfg.args,
                env={**os.environ, **cfg.env},
            )
            return stdio_client(params)
        if cfg.type == "sse":
            if not cfg.url:
                raise ValueError(f"MCP server '{cfg.name}' has no url")
            return sse_client(cfg.url, headers=cfg.headers or None)
        raise ValueError(f"Unsupported transport type: {cfg.type}")

    async def close(self) -> None:
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()
            logger.info("Disconnected from MCP server %s", self.name)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError(f"MCP server '{self.name}' is not connected")
        return self._session

    async def list_tools(self) -> list[ToolDescriptor]:
        session = self._require_session()
        async with self._list_lock:
            result = await session.list_tools()
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                parameters=tool.inputSchema or {"type": "object", "properties": {}},
            )
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        session = self._require_session()
        logger.info("Calling MCP tool %s on server %s", name, self.name)
        result = await session.call_tool(name, arguments=arguments)

        text = "\n".join(
            item.text for item in result.content or [] if getattr(item, "type", None) == "text"
        )
        if result.isError:
            raise McpToolError(text or f"Tool '{name}' returned an error")
        return text or NO_OUTPUT


async def connect_mcp_servers(configs: list[McpServerConfig]) -> list[McpConnection]:
    """Connect every configured server; servers that fail are logged and skipped."""
    connections: list[McpConnection] = []
    for cfg in configs:
        conn = McpConnection(cfg)
        try:
            await conn.connect()
        except Exception as e:
            logger.error("Failed to connect to MCP server %s: %s", cfg.name, e)
            continue
        connections.append(conn)
    return connections
