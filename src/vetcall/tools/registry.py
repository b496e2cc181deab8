"""
Server-side tool registry.

One registry is built at process start (see main.create_app) and handed to
the webhook dispatcher; it is read-only afterwards.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ToolContext:
    """Call context passed to every tool handler."""

    call_id: str | None
    tool_call_id: str
    assistant_id: str | None = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    handler: ToolHandler
    description: str = ""


class ToolRegistry:
    """Name to handler mapping for mid-call tool invocations."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDefinition] = {}

    def register(self, name: str, handler: ToolHandler, description: str = "") -> None:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = ToolDefinition(name=name, handler=handler, description=description)

    def tool(self, name: str, description: str = "") -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(name, handler, description)
            return handler

        return decorator

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
