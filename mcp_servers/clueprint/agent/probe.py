"""Page-side collaborators of the session manager.

The real browser fills these in from the active tab (diagnostics scan, DOM
walk). ``StaticPageProbe`` serves fixed data so the agent can run headless.
"""

from __future__ import annotations

import itertools
import time
from typing import Any, Protocol


class PageProbe(Protocol):
    async def page_info(self) -> dict[str, Any] | None:
        """Return ``{"url", "title"}`` of the active page, or None."""

    async def diagnostics(self) -> dict[str, Any] | None: ...

    async def snapshot_dom(self, selector: str | None = None) -> dict[str, Any] | None: ...


class StaticPageProbe:
    def __init__(
        self,
        *,
        url: str = "about:blank",
        title: str = "",
        diagnostics: dict[str, Any] | None = None,
        elements: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self.url = url
        self.title = title
        self._diagnostics = diagnostics
        self.elements: dict[str, dict[str, Any]] = dict(elements or {})
        self._ids = itertools.count(1)

    async def page_info(self) -> dict[str, Any] | None:
        return {"url": self.url, "title": self.title}

    async def diagnostics(self) -> dict[str, Any] | None:
        if self._diagnostics is not None:
            return self._diagnostics
        return {
            "mode": "diagnostics",
            "url": self.url,
            "timestamp": int(time.time() * 1000),
            "errors": [],
            "networkFailures": [],
            "performance": {"cls": {"value": 0, "shifts": []}, "longTasks": []},
            "accessibility": {"missingAltText": 0, "lowContrast": 0, "missingLabels": 0},
            "warnings": [],
        }

    async def snapshot_dom(self, selector: str | None = None) -> dict[str, Any] | None:
        now = int(time.time() * 1000)
        if selector:
            elements = {k: v for k, v in self.elements.items() if k == selector or k.startswith(f"{selector} ")}
        else:
            elements = self.elements
        snapshot: dict[str, Any] = {
            "id": f"snap_{next(self._ids)}_{now}",
            "timestamp": now,
            "url": self.url,
            "elements": {
                sel: {
                    "selector": sel,
                    "classes": list(el.get("classes") or []),
                    "size": dict(el.get("size") or {"width": 0, "height": 0}),
                    "inlineStyles": str(el.get("inlineStyles") or ""),
                }
                for sel, el in elements.items()
            },
        }
        if selector:
            snapshot["selector"] = selector
        return snapshot


__all__ = ["PageProbe", "StaticPageProbe"]
