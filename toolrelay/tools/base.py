"""
Tool primitives shared by in-process tools, remote tool sources and the
registry facade.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field


class ToolDescriptor(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolOutcome(BaseModel):
    """Either a result value (`ok`) or an error message. Never an exception."""

    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any) -> "ToolOutcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, message: str) -> "ToolOutcome":
        return cls(ok=False, error=message)


class ToolSource(Protocol):
    """Something that can list tools and call them by their original name."""

    name: str

    async def list_tools(self) -> list[ToolDescriptor]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any: ...


class BaseTool(ABC):
    name: str
    description: str
    parameters: dict  # JSON Schema object

    @abstractmethod
    async def run(self, **kwargs: Any) -> str:
        """Execute the tool and return a string result."""

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


class LocalToolSource:
    """Exposes in-process `BaseTool` instances as a tool source."""

    name = "local"

    def __init__(self, tools: list[BaseTool]):
        self._tools = {t.name: t for t in tools}

    async def list_tools(self) -> list[ToolDescriptor]:
        return [t.to_descriptor() for t in self._tools.values()]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(f"unknown tool '{name}'")
        return await tool.run(**arguments)
