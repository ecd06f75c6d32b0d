"""Flow events and the analysis shared by recordings and the ring buffer.

A flow is an ordered list of ``{"time", "type", "data"}`` events. ``summarize``
counts them by category, ``diagnose`` looks for an error right after a click and
renders a short human-readable timeline.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

NO_ISSUES = "No obvious issues detected"

# An error counts as caused by a click only inside this window (exclusive).
CLICK_ERROR_WINDOW_MS = 1000
TIMELINE_LIMIT = 10

_EVENT_ICONS: dict[str, str] = {
    "refresh": "🔄",
    "navigation": "🔄",
    "click": "🖱️",
    "input": "⌨️",
    "scroll": "📜",
    "network_request": "📤",
    "network_response": "✅",
    "network_error": "❌",
    "console_log": "📝",
    "console_warn": "⚠️",
    "console_error": "❌",
    "dom_mutation": "🔀",
    "layout_shift": "📐",
    "element_select": "👆",
    "form_submit": "📋",
    "keypress": "⌨️",
    "mouse_move": "🔍",
}

_SUMMARY_BUCKETS: dict[str, tuple[str, ...]] = {
    "clicks": ("click",),
    "inputs": ("input",),
    "scrolls": ("scroll",),
    "navigations": ("navigation", "refresh"),
    "networkRequests": ("network_request", "network_response"),
    "networkErrors": ("network_error",),
    "consoleErrors": ("console_error",),
    "layoutShifts": ("layout_shift",),
}

_ERROR_TYPES = frozenset({"console_error", "network_error"})


def make_event(time_ms: int | float, event_type: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"time": time_ms, "type": str(event_type), "data": dict(data or {})}


def summarize(events: Iterable[dict[str, Any]]) -> dict[str, int]:
    items = list(events)
    summary: dict[str, int] = {"totalEvents": len(items)}
    for key, types in _SUMMARY_BUCKETS.items():
        summary[key] = sum(1 for e in items if e.get("type") in types)
    return summary


def diagnose(events: list[dict[str, Any]]) -> dict[str, Any]:
    errors = [e for e in events if e.get("type") in _ERROR_TYPES]
    clicks = [e for e in events if e.get("type") == "click"]

    suspected = NO_ISSUES
    root_cause: str | None = None
    for click in clicks:
        t0 = click.get("time") or 0
        after = [e for e in errors if t0 < (e.get("time") or 0) < t0 + CLICK_ERROR_WINDOW_MS]
        if after:
            target = (click.get("data") or {}).get("selector") or "element"
            suspected = f"Error occurred after clicking {target}"
            root_cause = (after[0].get("data") or {}).get("message")
            break

    out: dict[str, Any] = {"suspectedIssue": suspected, "timeline": render_timeline(events)}
    if root_cause is not None:
        out["rootCause"] = root_cause
    return out


def render_timeline(events: list[dict[str, Any]], *, limit: int = TIMELINE_LIMIT) -> str:
    lines = []
    for e in events[:limit]:
        seconds = float(e.get("time") or 0) / 1000.0
        lines.append(f"{seconds:.1f}s {event_icon(str(e.get('type') or ''))} {describe_event(e)}")
    return "\n".join(lines)


def event_icon(event_type: str) -> str:
    return _EVENT_ICONS.get(event_type, "•")


def _short_path(url: Any) -> Any:
    if not isinstance(url, str) or not url:
        return url
    tail = "/".join(url.split("?")[0].split("/")[-2:])
    return tail or url


def _clip(value: Any, n: int) -> str:
    return str(value if value is not None else "")[:n]


def describe_event(event: dict[str, Any]) -> str:
    etype = str(event.get("type") or "")
    d = event.get("data") if isinstance(event.get("data"), dict) else {}

    if etype == "click":
        text = f'"{_clip(d.get("text"), 40)}"' if d.get("text") else (d.get("selector") or "element")
        return f"CLICK {d.get('role') or ''} {text} at ({d.get('x')}, {d.get('y')})"
    if etype == "scroll":
        near = f' near "{_clip(d.get("nearSection"), 30)}"' if d.get("nearSection") else ""
        return f"SCROLL {d.get('direction') or ''} to {d.get('scrollPercent') or 0}%{near}"
    if etype == "input":
        label = d.get("label") or d.get("selector") or ""
        return f'INPUT {d.get("inputType") or "text"} "{label}" ({d.get("valueLength") or 0} chars)'
    if etype == "form_submit":
        return f"SUBMIT {d.get('method')} form → {d.get('action') or 'same page'} ({d.get('fieldCount')} fields)"
    if etype == "keypress":
        return f"KEY {d.get('combo') or d.get('key')} on {d.get('target') or 'page'}"
    if etype == "mouse_move":
        return f"HOVER {d.get('role') or ''} {d.get('target') or ''} at ({d.get('x')}, {d.get('y')})"
    if etype == "navigation":
        if d.get("event") == "recording_start":
            return f'START on "{d.get("title") or "page"}" ({d.get("url")})'
        return f"NAVIGATE → {d.get('url') or 'unknown'}"
    if etype == "refresh":
        return "REFRESH page"
    if etype == "network_response":
        return f"{d.get('method')} /{_short_path(d.get('url'))} → {d.get('status')}"
    if etype == "network_error":
        return f'{d.get("method")} /{_short_path(d.get("url"))} → {d.get("status")} FAILED: "{d.get("statusText")}"'
    if etype == "console_error":
        return f'ERROR: "{_clip(d.get("message"), 80)}"'
    if etype == "console_warn":
        return f'WARN: "{_clip(d.get("message"), 60)}"'
    return etype.upper()


def build_recording(
    events: list[dict[str, Any]],
    *,
    start_time: int,
    duration: int,
    final_selection: dict[str, Any] | None = None,
) -> dict[str, Any]:
    recording: dict[str, Any] = {
        "mode": "flow",
        "startTime": int(start_time),
        "duration": int(duration),
        "events": events,
        "summary": summarize(events),
        "diagnosis": diagnose(events),
    }
    if final_selection is not None:
        recording["finalSelection"] = final_selection
    return recording


__all__ = [
    "CLICK_ERROR_WINDOW_MS",
    "NO_ISSUES",
    "build_recording",
    "describe_event",
    "diagnose",
    "event_icon",
    "make_event",
    "render_timeline",
    "summarize",
]
