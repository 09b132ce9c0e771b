"""
Config API router.
GET /config: return current config (without secret keys)
GET /tools:  list the tools models can call, by exposed name
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from toolrelay.config import get_config
from toolrelay.routers.chat import get_tool_registry
from toolrelay.tools.registry import ToolRegistry

router = APIRouter(tags=["config"])


@router.get("/config")
async def read_config():
    cfg = get_config()
    safe_models = []
    for m in cfg.models:
        safe_models.append({
            "name": m.name,
            "display_name": m.display_name,
            "provider": m.provider,
            "has_api_key": bool(cfg.get_model_api_key(m)),
            "base_url": m.base_url,
            "streaming": m.streaming,
        })
    return {
        "version": cfg.version,
        "default_model": cfg.default_model,
        "models": safe_models,
        "tools": cfg.tools.model_dump(),
        "agent": cfg.agent.model_dump(),
        "mcp_servers": [{"id": s.id, "name": s.name, "type": s.type} for s in cfg.mcp_servers],
    }


@router.get("/tools")
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)):
    tools = await registry.list_tools()
    return [t.model_dump() for t in tools]
