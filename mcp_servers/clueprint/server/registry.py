"""Tool name -> handler table, gated on a live browser connection."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .types import ToolResult

if TYPE_CHECKING:
    from ..bridge import SharedBridge

logger = logging.getLogger("mcp.clueprint.registry")

HandlerFunc = Callable[["SharedBridge", dict[str, Any]], ToolResult]

NOT_CONNECTED = (
    "Browser extension not connected. Please ensure:\n"
    "1. AI Browser DevTools extension is installed in Chrome\n"
    '2. The extension popup shows "MCP: Connected"\n'
    "3. Refresh the page if just installed"
)


class ToolRegistry:
    """Registry for tool handlers with a browser-connection gate."""

    def __init__(self) -> None:
        # name -> (handler, requires_extension)
        self._handlers: dict[str, tuple[HandlerFunc, bool]] = {}

    def register_many(self, handlers: dict[str, tuple[HandlerFunc, bool]]) -> None:
        self._handlers.update(handlers)

    def has(self, name: str) -> bool:
        return name in self._handlers

    def dispatch(self, name: str, bridge: SharedBridge, arguments: dict[str, Any]) -> ToolResult:
        """Run a tool; tools that need the browser get NOT_CONNECTED instead when it is absent.

        Raises KeyError for names that were never registered.
        """
        handler_info = self._handlers.get(name)
        if handler_info is None:
            raise KeyError(f"Unknown tool: {name}")

        handler, requires_extension = handler_info
        if requires_extension and not bridge.is_extension_connected():
            logger.info("tool=%s refused: extension not connected", name)
            return ToolResult.error(NOT_CONNECTED)
        return handler(bridge, arguments)


def create_default_registry() -> ToolRegistry:
    from .handlers import HANDLERS

    registry = ToolRegistry()
    registry.register_many(HANDLERS)
    return registry
