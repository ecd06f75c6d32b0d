"""MCP tool and prompt definitions (JSON schema, descriptions, prompt text)."""

from __future__ import annotations

from typing import Any

TOOLS: list[dict[str, Any]] = [
    {
        "name": "inspect",
        "description": (
            "Get detailed information about what the user selected in the browser, either a single "
            "element (via Option+Click) or a region (via Cmd+Shift+Drag). Auto-detects the selection "
            'type. Call when the user says "clueprint inspect", mentions selecting/inspecting an '
            "element, or clicking on something in the browser."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "includeScreenshot": {
                    "type": "boolean",
                    "default": False,
                    "description": "Include a screenshot (always included for region selections)",
                },
                "cssDetail": {
                    "type": "number",
                    "enum": [0, 1, 2, 3],
                    "default": 1,
                    "description": (
                        "CSS detail level for element selections: 0=none, 1=layout+visual, "
                        "2=+typography, 3=full computed"
                    ),
                },
            },
        },
    },
    {
        "name": "audit",
        "description": (
            "Get current page diagnostics including console errors, network failures, performance "
            'metrics, and accessibility issues. Call when the user says "clueprint audit", asks '
            "what's wrong with the page, or wants a health/error check."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "includeWarnings": {
                    "type": "boolean",
                    "default": False,
                    "description": "Include warnings, not just errors",
                },
                "includePerformance": {
                    "type": "boolean",
                    "default": True,
                    "description": "Include performance metrics (LCP, CLS)",
                },
            },
        },
    },
    {
        "name": "start_flow_recording",
        "description": (
            "Start recording user actions, network requests, and errors in the browser. User will "
            "perform actions then stop recording. Call when user wants to show you a sequence of "
            "steps or reproduce a bug."
        ),
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "stop_flow_recording",
        "description": (
            "Stop the current flow recording and return the captured timeline of events, network "
            "requests, and errors."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "includeSuccessfulRequests": {
                    "type": "boolean",
                    "default": False,
                    "description": "Include successful (2xx) network requests",
                },
            },
        },
    },
    {
        "name": "recording",
        "description": (
            'Get the most recent flow recording. Call when the user says "clueprint recording" or '
            "asks about what was recorded."
        ),
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "snapshot_dom",
        "description": "Take a snapshot of the current DOM state for later comparison. Returns a snapshot ID.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "selector": {
                    "type": "string",
                    "description": "Optional CSS selector to snapshot a subtree instead of full page",
                },
            },
        },
    },
    {
        "name": "diff_dom_snapshots",
        "description": (
            "Compare two DOM snapshots to see what changed (classes, sizes, styles). Useful for "
            "debugging dynamic content."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "before": {"type": "string", "description": 'ID of the "before" snapshot'},
                "after": {"type": "string", "description": 'ID of the "after" snapshot'},
            },
            "required": ["before", "after"],
        },
    },
]

PROMPTS: list[dict[str, Any]] = [
    {
        "name": "inspect",
        "description": "Analyze the element or region selected in the browser",
        "text": (
            "I selected something in the browser. Use the inspect tool to get details about my "
            "selection (it auto-detects element vs region). Describe what was selected and any "
            "issues you notice."
        ),
    },
    {
        "name": "audit",
        "description": "Check the current page for errors, network failures, and performance issues",
        "text": (
            "Run a page audit using the audit tool (include warnings). Report any console errors, "
            "network failures, performance issues, or accessibility problems found on the current page."
        ),
    },
    {
        "name": "recording",
        "description": "Get and analyze the most recent flow recording from the browser",
        "text": (
            "Get the most recent flow recording using the recording tool and analyze it. Summarize "
            "what actions were captured, any errors that occurred, and highlight anything notable."
        ),
    },
]


def get_prompt(name: str) -> dict[str, Any] | None:
    for prompt in PROMPTS:
        if prompt["name"] == name:
            return {
                "description": prompt["description"],
                "messages": [{"role": "user", "content": {"type": "text", "text": prompt["text"]}}],
            }
    return None
