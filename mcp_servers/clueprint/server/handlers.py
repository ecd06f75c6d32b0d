"""Tool handlers: one bridge operation per tool, rendered as a text report."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from ..errors import BridgeError
from .format import (
    format_diagnostics_report,
    format_diff_report,
    format_element_report,
    format_flow_report,
    format_region_report,
)
from .types import ToolResult

if TYPE_CHECKING:
    from ..bridge import SharedBridge

STALE_SELECTION_MS = 60_000

NOTHING_SELECTED = (
    "Nothing selected. To select:\n"
    "1. Hold Option (Alt on Windows) and click any element, or\n"
    "2. Use Cmd+Shift+Drag to select a region\n"
    '3. Then say "clueprint inspect"'
)


def handle_inspect(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    """Report the current selection (element or region)."""
    selection = bridge.get_current_selection()
    if not selection:
        return ToolResult.error(NOTHING_SELECTED)

    if selection.get("mode") == "free-select":
        return ToolResult.with_image(format_region_report(selection), selection.get("screenshot"), data=selection)

    report = format_element_report(selection)
    try:
        age_ms = int(time.time() * 1000) - int(selection.get("timestamp") or 0)
    except (TypeError, ValueError):
        age_ms = 0
    if age_ms > STALE_SELECTION_MS:
        report += (
            f"\n\n⚠️ Selection is {round(age_ms / 1000)}s old. "
            "The page may have changed. Select again for fresh data."
        )
    screenshot = selection.get("screenshot") if args.get("includeScreenshot") else None
    return ToolResult.with_image(report, screenshot, data=selection)


def handle_audit(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    try:
        diagnostics = bridge.request_diagnostics()
    except BridgeError as exc:
        return ToolResult.error(f"Failed to get diagnostics: {exc}")
    report = format_diagnostics_report(
        diagnostics,
        include_warnings=bool(args.get("includeWarnings", False)),
        include_performance=bool(args.get("includePerformance", True)),
    )
    return ToolResult.text(report, data=diagnostics)


def handle_start_flow_recording(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    if bridge.is_recording_active():
        return ToolResult.error("Recording is already in progress. Stop it first with stop_flow_recording.")
    try:
        bridge.start_recording()
    except BridgeError as exc:
        return ToolResult.error(f"Failed to start recording: {exc}")
    return ToolResult.text(
        "Recording started! Now:\n"
        "1. Perform the actions you want to capture in the browser\n"
        "2. End by selecting the problem element (Option+Click)\n"
        '3. Tell me "stop recording" when done'
    )


def handle_stop_flow_recording(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    """Stop the active recording; without one, fall back to the last finished recording."""
    include_ok = bool(args.get("includeSuccessfulRequests", False))
    if not bridge.is_recording_active():
        existing = bridge.get_current_recording()
        if existing:
            return ToolResult.text(format_flow_report(existing, include_successful_requests=include_ok), data=existing)
        return ToolResult.error("No recording in progress. Start one with start_flow_recording.")

    try:
        recording = bridge.stop_recording()
    except BridgeError as exc:
        return ToolResult.error(f"Failed to stop recording: {exc}")
    if not recording:
        return ToolResult.error("The browser had no active recording to stop.")
    return ToolResult.text(format_flow_report(recording, include_successful_requests=include_ok), data=recording)


def handle_recording(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    recording = bridge.get_current_recording()
    if not recording:
        if bridge.is_recording_active():
            return ToolResult.error("Recording is still in progress. Stop it first with stop_flow_recording.")
        return ToolResult.error("No recording available. Start one with start_flow_recording.")
    return ToolResult.text(format_flow_report(recording), data=recording)


def handle_snapshot_dom(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    selector = args.get("selector") if isinstance(args.get("selector"), str) else None
    try:
        snapshot = bridge.request_snapshot(selector)
    except BridgeError as exc:
        return ToolResult.error(f"Failed to take snapshot: {exc}")
    if not snapshot.get("id"):
        return ToolResult.error("Failed to take snapshot: the page returned no snapshot")
    elements = snapshot.get("elements")
    count = len(elements) if isinstance(elements, (dict, list)) else 0
    return ToolResult.text(
        "DOM snapshot taken.\n"
        f"ID: {snapshot.get('id')}\n"
        f"Elements: {count}\n"
        f"URL: {snapshot.get('url')}\n\n"
        "Use this ID with diff_dom_snapshots to compare changes.",
        data=snapshot,
    )


def handle_diff_dom_snapshots(bridge: SharedBridge, args: dict[str, Any]) -> ToolResult:
    before = args.get("before")
    after = args.get("after")
    if not before or not after:
        return ToolResult.error('Both "before" and "after" snapshot IDs are required.')
    try:
        diff = bridge.request_diff(str(before), str(after))
    except BridgeError as exc:
        return ToolResult.error(f"Failed to diff snapshots: {exc}")
    if "error" in diff:
        return ToolResult.error(str(diff["error"]))
    return ToolResult.text(format_diff_report(diff), data=diff)


# name -> (handler, requires_extension)
HANDLERS: dict[str, tuple[Any, bool]] = {
    "inspect": (handle_inspect, True),
    "audit": (handle_audit, True),
    "start_flow_recording": (handle_start_flow_recording, True),
    "stop_flow_recording": (handle_stop_flow_recording, True),
    "recording": (handle_recording, True),
    "snapshot_dom": (handle_snapshot_dom, True),
    "diff_dom_snapshots": (handle_diff_dom_snapshots, True),
}
