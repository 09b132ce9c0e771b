"""
ToolRelay FastAPI entrypoint.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

# Load .env before anything else
load_dotenv()

from toolrelay.config import get_settings, load_config
from toolrelay.routers.chat import router as chat_router
from toolrelay.routers.config import router as config_router
from toolrelay.tools.base import LocalToolSource
from toolrelay.tools.mcp import connect_mcp_servers
from toolrelay.tools.registry import ToolRegistry
from toolrelay.tools.web_search import get_local_tools

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = load_config()

    # MCP connections are negotiated once and shared by all requests.
    connections = await connect_mcp_servers(cfg.mcp_servers)
    logger.info("%d of %d MCP servers connected", len(connections), len(cfg.mcp_servers))
    sources = [LocalToolSource(get_local_tools()), *connections]
    app.state.tool_registry = ToolRegistry(sources, timeout=cfg.agent.tool_timeout_seconds)

    yield

    for conn in connections:
        try:
            await conn.close()
        except Exception as e:
            logger.warning("Error closing MCP server %s: %s", conn.name, e)


app = FastAPI(
    title="ToolRelay",
    description="Streaming LLM chat with multi-turn tool use",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(chat_router, prefix="/api")
app.include_router(config_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


def start():
    import uvicorn
    settings = get_settings()
    uvicorn.run("toolrelay.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    start()
