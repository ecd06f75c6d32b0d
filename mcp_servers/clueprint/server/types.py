"""Tool results as returned to the MCP client: text reports plus an optional screenshot."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")
SCREENSHOT_MIME = "image/jpeg"


def strip_data_url(screenshot: str) -> str:
    """Captures arrive as ``data:image/...;base64,`` URLs; MCP wants bare base64."""
    return _DATA_URL_PREFIX.sub("", screenshot)


@dataclass(slots=True)
class ToolContent:
    type: str
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None

    @classmethod
    def plain(cls, text: str) -> ToolContent:
        return cls(type="text", text=text or "")

    @classmethod
    def screenshot(cls, b64: str) -> ToolContent:
        return cls(type="image", data=b64, mime_type=SCREENSHOT_MIME)

    def to_dict(self) -> dict[str, Any]:
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}


@dataclass(slots=True)
class ToolResult:
    content: list[ToolContent] = field(default_factory=list)
    is_error: bool = False
    # Raw payload for in-process callers and tests; not part of the MCP wire format.
    data: Any | None = None

    @classmethod
    def text(cls, text: str, *, data: Any | None = None) -> ToolResult:
        return cls(content=[ToolContent.plain(text)], data=data)

    @classmethod
    def error(cls, message: str) -> ToolResult:
        return cls(content=[ToolContent.plain(f"Error: {message}")], is_error=True)

    @classmethod
    def with_image(cls, text: str, screenshot: str | None, *, data: Any | None = None) -> ToolResult:
        """Report text, followed by the capture's screenshot when there is one."""
        result = cls.text(text, data=data)
        if screenshot:
            result.content.append(ToolContent.screenshot(strip_data_url(screenshot)))
        return result

    def to_content_list(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.content]
