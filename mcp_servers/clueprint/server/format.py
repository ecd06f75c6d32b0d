"""Token-efficient text reports for captures, recordings and diagnostics."""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import urlsplit

from ..agent.flow import event_icon

HEAVY_RULE = "━"
LIGHT_RULE = "─"

_IMPORTANT_ATTRS = {"role", "href", "src", "type", "name", "value", "placeholder", "title", "alt"}

_IMPLICIT_ROLES: dict[str, str] = {
    "a": "link",
    "button": "button",
    "input": "textbox",
    "select": "combobox",
    "textarea": "textbox",
    "img": "img",
    "nav": "navigation",
    "main": "main",
    "header": "banner",
    "footer": "contentinfo",
    "aside": "complementary",
    "article": "article",
    "section": "region",
    "form": "form",
    "table": "table",
    "ul": "list",
    "ol": "list",
    "li": "listitem",
    **{f"h{i}": "heading" for i in range(1, 7)},
}


def _d(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _l(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _secs(ms: Any) -> str:
    try:
        return f"{float(ms) / 1000.0:.1f}"
    except (TypeError, ValueError):
        return "0.0"


def _url_tail(url: Any, parts: int) -> str:
    return "/".join(str(url or "").split("?")[0].split("/")[-parts:])


def _style_note(prop: str, value: str) -> str | None:
    if prop == "border-radius" and value in {"0px", "0"}:
        return "sharp (recommend 4-8px)"
    if prop == "padding":
        digits = ""
        for ch in value.strip():
            if not ch.isdigit():
                break
            digits += ch
        if digits and int(digits) < 8:
            return "cramped (recommend 12px+)"
    if prop == "background" and value in {"#cccccc", "rgb(204, 204, 204)"}:
        return "bland gray"
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Selections
# ─────────────────────────────────────────────────────────────────────────────


def format_element_report(capture: dict[str, Any]) -> str:
    lines: list[str] = []
    el = _d(capture.get("element"))
    tag = str(el.get("tag") or "element")
    classes = [str(c) for c in _l(el.get("classes"))]
    attrs = {str(k): str(v) for k, v in _d(el.get("attributes")).items()}
    rect = _d(el.get("rect"))

    head = tag + (f"#{el['id']}" if el.get("id") else "") + ("." + ".".join(classes[:2]) if classes else "")
    lines.append(f"ELEMENT: {head}")
    lines.append(HEAVY_RULE * 56)
    lines.append("")

    lines.append(f"SELECTOR: {el.get('selector')}")
    lines.append(f"SIZE: {rect.get('width')}×{rect.get('height')}px")
    if classes:
        lines.append(f"CLASSES: {', '.join(classes)}")
    lines.append(f'TEXT: "{el.get("text") or "(empty)"}"')

    important = [
        (k, v) for k, v in attrs.items() if k.startswith("data-") or k.startswith("aria-") or k in _IMPORTANT_ATTRS
    ]
    if important:
        lines.append("ATTRIBUTES:")
        for key, value in important[:10]:
            shown = value[:50] + "..." if len(value) > 50 else value
            lines.append(f"  {key}: {shown}")

    role = attrs.get("role") or _IMPLICIT_ROLES.get(tag)
    label = attrs.get("aria-label")
    described = attrs.get("aria-describedby")
    if role or label:
        line = f'ACCESSIBILITY: role="{role or "none"}"'
        if label:
            line += f', label="{label}"'
        if described:
            line += f', describedby="{described}"'
        lines.append(line)
    lines.append("")

    styles = _d(el.get("styles"))
    layout, visual, spacing = _d(styles.get("layout")), _d(styles.get("visual")), _d(styles.get("spacing"))
    candidates = [
        ("display", layout.get("display")),
        ("position", layout.get("position")),
        ("background", visual.get("background") or visual.get("backgroundColor")),
        ("padding", spacing.get("padding")),
        ("border-radius", visual.get("borderRadius")),
    ]
    lines.append("STYLES:")
    for prop, value in candidates:
        if not value or value in {"none", "static"}:
            continue
        note = _style_note(prop, str(value))
        lines.append(f"  {prop}: {value}" + (f" ← {note}" if note else ""))
    lines.append("")

    parent = _d(capture.get("parent"))
    pstyles = _d(parent.get("styles"))
    gap = f", gap: {pstyles['gap']}" if pstyles.get("gap") else ""
    lines.append(f"PARENT: {parent.get('selector')} ({pstyles.get('display') or 'block'}{gap})")
    lines.append("")

    siblings = _l(capture.get("siblings"))
    if len(siblings) > 1:
        lines.append(f"SIBLINGS ({len(siblings)} {tag}s):")
        for sib in siblings[:5]:
            sib = _d(sib)
            size = _d(sib.get("size"))
            marker = " ⚠️ ← SELECTED" if sib.get("isSelected") else " ✓"
            anomaly = f" ({sib['anomaly']})" if sib.get("anomaly") else ""
            lines.append(f"  {sib.get('selector')}: {size.get('width')}×{size.get('height')}px{marker}{anomaly}")
        lines.append("")

    rules = _l(capture.get("cssRules"))
    if rules:
        lines.append("CSS RULES:")
        for rule in rules[-5:]:
            rule = _d(rule)
            props = "; ".join(f"{k}: {v}" for k, v in list(_d(rule.get("properties")).items())[:3])
            override = " ⚠️ OVERRIDING" if rule.get("isOverriding") else ""
            lines.append(f"  {rule.get('selector')} {{ {props} }} → {rule.get('source')}{override}")
        lines.append("")

    context = _d(capture.get("browserContext"))
    errors, failures = _l(context.get("errors")), _l(context.get("networkFailures"))
    if errors or failures:
        lines.append("BROWSER CONTEXT:")
        for err in errors[:3]:
            err = _d(err)
            src = f" ({err['source']})" if err.get("source") else ""
            lines.append(f"  ❌ {str(err.get('message') or '')[:80]}{src}")
        for fail in failures[:3]:
            fail = _d(fail)
            lines.append(
                f"  ❌ {fail.get('method')} {str(fail.get('url') or '')[:50]} → {fail.get('status')} {fail.get('statusText')}"
            )
        lines.append("")

    diagnosis = _d(capture.get("diagnosis"))
    items = _l(diagnosis.get("suspected")) + _l(diagnosis.get("unusual")) + _l(diagnosis.get("relatedErrors"))
    if items:
        lines.append("DIAGNOSIS:")
        lines.extend(f"  • {item}" for item in items)
        lines.append("")

    related = _l(diagnosis.get("relatedErrors"))
    if related:
        first = str(related[0])
        start, end = first.find("("), first.find(")")
        if 0 <= start < end:
            lines.append(f"SUGGESTED FIX: {first[start + 1:end]}")

    return "\n".join(lines)


def format_region_report(capture: dict[str, Any]) -> str:
    lines: list[str] = []
    region = _d(capture.get("region"))
    lines.append(f"REGION: {region.get('width')}×{region.get('height')}px")
    lines.append(HEAVY_RULE * 56)
    lines.append("")

    lines.append(f"INTENT: {str(capture.get('intent') or 'unknown').upper()}")
    lines.append("")

    elements = _l(capture.get("elements"))
    lines.append(f"ELEMENTS ({len(elements)}):")
    for el in elements[:10]:
        el = _d(el)
        text = f' "{str(el["text"])[:30]}"' if el.get("text") else ""
        last_class = str(el.get("selector") or "").split(".")[-1]
        lines.append(f"  • {el.get('tag')}.{last_class}{text} [{el.get('role')}]")
    lines.append("")

    structure = capture.get("structure")
    if structure:
        lines.append("STRUCTURE:")
        lines.append("\n".join(f"  {ln}" for ln in str(structure).split("\n")))
        lines.append("")

    aesthetic = _d(capture.get("aestheticAnalysis"))
    if aesthetic:
        issues, suggestions = _l(aesthetic.get("issues")), _l(aesthetic.get("suggestions"))
        palette = _l(aesthetic.get("colorPalette"))
        if issues:
            lines.append("ISSUES:")
            lines.extend(f"  ⚠️ {issue}" for issue in issues)
            lines.append("")
        if suggestions:
            lines.append("SUGGESTIONS:")
            lines.extend(f"  💡 {s}" for s in suggestions)
            lines.append("")
        if palette:
            lines.append(f"COLORS: {', '.join(str(c) for c in palette[:5])}")
            lines.append("")

    errors = _l(_d(capture.get("browserContext")).get("errors"))
    if errors:
        lines.append("ERRORS:")
        for err in errors[:3]:
            lines.append(f"  ❌ {str(_d(err).get('message') or '')[:80]}")
        lines.append("")

    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Flow recordings
# ─────────────────────────────────────────────────────────────────────────────


def describe_event_verbose(event: dict[str, Any]) -> str:
    etype = str(event.get("type") or "")
    d = _d(event.get("data"))

    if etype == "click":
        text = f'"{str(d["text"])[:50]}"' if d.get("text") else ""
        role = f"[{d['role']}]" if d.get("role") else ""
        selector = str(d["selector"])[:60] if d.get("selector") else "element"
        href = f" → {d['href']}" if d.get("href") else ""
        nearby = f" | nearby: {', '.join(map(str, _l(d.get('nearbyClickables'))[:2]))}" if d.get("nearbyClickables") else ""
        return f"CLICK {role} {text or selector} at ({d.get('x')}, {d.get('y')}){href}{nearby}"
    if etype == "scroll":
        section = f'"{str(d["nearSection"])[:40]}"' if d.get("nearSection") else ""
        delta = f" delta={d['delta']}px" if d.get("delta") else ""
        near = f"near {section}" if section else ""
        return f"SCROLL {d.get('direction') or ''} to {d.get('scrollPercent') or 0}% y={d.get('scrollY')}px{delta} {near}"
    if etype == "input":
        label = d.get("label") or d.get("selector") or "field"
        return f'INPUT [{d.get("inputType") or "text"}] "{label}" typed {d.get("valueLength") or 0} chars'
    if etype == "form_submit":
        return (
            f"SUBMIT {d.get('method') or 'POST'} form → {d.get('action') or 'same page'} "
            f"({d.get('fieldCount') or 0} fields)"
        )
    if etype == "keypress":
        return f"KEYPRESS {d.get('combo') or d.get('key')} on {d.get('target') or 'page'}"
    if etype == "mouse_move":
        role = f"[{d['role']}]" if d.get("role") else ""
        return f"HOVER {role} {d.get('target') or ''} at ({d.get('x')}, {d.get('y')})"
    if etype == "navigation":
        if d.get("event") == "recording_start":
            return f'RECORDING START on "{d.get("title") or "page"}" | URL: {d.get("url")}'
        return f"NAVIGATE → {d.get('url') or 'unknown'}"
    if etype == "refresh":
        return "PAGE REFRESH"
    if etype == "network_response":
        duration = f" ({d['duration']}ms)" if d.get("duration") else ""
        return f"{d.get('method')} /{_url_tail(d.get('url'), 3)} → {d.get('status')}{duration}"
    if etype == "network_error":
        return f'{d.get("method")} /{_url_tail(d.get("url"), 3)} → ❌ {d.get("status")} "{d.get("statusText")}"'
    if etype == "console_error":
        src = f" ({d['source']})" if d.get("source") else ""
        return f'ERROR: "{str(d.get("message") or "")[:100]}"{src}'
    if etype == "console_warn":
        return f'WARN: "{str(d.get("message") or "")[:80]}"'
    if etype == "element_select":
        return f"SELECTED: {d.get('selector')}"
    return f"{etype.upper()} {json.dumps(d, ensure_ascii=False)[:80]}"


def format_flow_report(recording: dict[str, Any], *, include_successful_requests: bool = True) -> str:
    lines: list[str] = []
    summary = _d(recording.get("summary"))
    events = [_d(e) for e in _l(recording.get("events"))]
    duration = _secs(recording.get("duration"))

    lines.append(f"FLOW RECORDING ({duration}s, {summary.get('totalEvents', len(events))} events)")
    lines.append(HEAVY_RULE * 70)
    lines.append("")

    lines.append("SUMMARY:")
    lines.append(f"  Duration: {duration}s")
    lines.append(
        f"  Clicks: {summary.get('clicks', 0)} | Inputs: {summary.get('inputs', 0)} | Scrolls: {summary.get('scrolls', 0)}"
    )
    lines.append(
        f"  Navigations: {summary.get('navigations', 0)} | Network: {summary.get('networkRequests', 0)} req, "
        f"{summary.get('networkErrors', 0)} errors"
    )
    lines.append(
        f"  Console errors: {summary.get('consoleErrors', 0)} | Layout shifts: {summary.get('layoutShifts', 0)}"
    )
    lines.append("")

    scrolls = [_d(e.get("data")) for e in events if e.get("type") == "scroll"]
    if scrolls:
        depth = max((s.get("scrollPercent") or 0) for s in scrolls)
        down = sum(1 for s in scrolls if s.get("direction") == "down")
        up = sum(1 for s in scrolls if s.get("direction") == "up")
        lines.append("SCROLL BEHAVIOR:")
        lines.append(f"  Max scroll depth: {depth}% | Down: {down}x | Up: {up}x")
        last = scrolls[-1]
        lines.append(f"  Page height: {last.get('pageHeight')}px | Viewport: {last.get('viewportHeight')}px")
        lines.append("")

    clicks = [e for e in events if e.get("type") == "click"]
    if clicks:
        lines.append("CLICK TARGETS:")
        for click in clicks[:10]:
            d = _d(click.get("data"))
            text = f'"{str(d["text"])[:50]}"' if d.get("text") else ""
            role = f"[{d['role']}]" if d.get("role") else ""
            nearby = f" nearby: {', '.join(map(str, _l(d.get('nearbyClickables'))))}" if d.get("nearbyClickables") else ""
            lines.append(
                f"  {_secs(click.get('time'))}s {role} {text or d.get('selector')} at ({d.get('x')}, {d.get('y')}){nearby}"
            )
        if len(clicks) > 10:
            lines.append(f"  ... {len(clicks) - 10} more clicks")
        lines.append("")

    inputs = [e for e in events if e.get("type") == "input"]
    if inputs:
        lines.append("INPUT EVENTS:")
        for inp in inputs[:5]:
            d = _d(inp.get("data"))
            lines.append(
                f'  {_secs(inp.get("time"))}s {d.get("inputType") or "text"} "{d.get("label") or d.get("selector")}" '
                f"({d.get('valueLength')} chars)"
            )
        lines.append("")

    shown_types = {"network_response", "network_error"} if include_successful_requests else {"network_error"}
    network = [e for e in events if e.get("type") in shown_types]
    if network:
        lines.append("NETWORK ACTIVITY:")
        for net in network[:10]:
            d = _d(net.get("data"))
            if net.get("type") == "network_error":
                status = f"❌ {d.get('status')} {d.get('statusText')}"
            else:
                status = f"{d.get('status')}"
            duration_ms = f" ({d['duration']}ms)" if d.get("duration") else ""
            lines.append(
                f"  {_secs(net.get('time'))}s {d.get('method')} /{_url_tail(d.get('url'), 3)} → {status}{duration_ms}"
            )
        if len(network) > 10:
            lines.append(f"  ... {len(network) - 10} more requests")
        lines.append("")

    console_errors = [e for e in events if e.get("type") == "console_error"]
    if console_errors:
        lines.append("CONSOLE ERRORS:")
        for err in console_errors[:5]:
            d = _d(err.get("data"))
            lines.append(f"  {_secs(err.get('time'))}s ❌ {str(d.get('message') or '')[:100]}")
            if d.get("source"):
                lines.append(f"       → {d['source']}")
        lines.append("")

    lines.append("FULL TIMELINE:")
    lines.append(LIGHT_RULE * 70)
    for event in events[:50]:
        lines.append(f"{_secs(event.get('time')):>6}s  {event_icon(str(event.get('type') or ''))} {describe_event_verbose(event)}")
    if len(events) > 50:
        lines.append(f"  ... {len(events) - 50} more events")
    lines.append("")

    diagnosis = _d(recording.get("diagnosis"))
    lines.append(LIGHT_RULE * 70)
    lines.append("DIAGNOSIS:")
    lines.append(f"  {diagnosis.get('suspectedIssue')}")
    if diagnosis.get("rootCause"):
        lines.append(f"  Root cause: {diagnosis['rootCause']}")
    if diagnosis.get("timeline"):
        lines.append(f"  Timeline: {diagnosis['timeline']}")

    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Diagnostics / DOM diff
# ─────────────────────────────────────────────────────────────────────────────


def _rating(value: float, good: float, fair: float) -> str:
    if value < good:
        return "← Good"
    if value < fair:
        return "⚠️ Needs improvement"
    return "❌ Poor"


def format_diagnostics_report(
    diagnostics: dict[str, Any],
    *,
    include_warnings: bool = True,
    include_performance: bool = True,
) -> str:
    lines: list[str] = []
    url = urlsplit(str(diagnostics.get("url") or ""))
    lines.append(f"PAGE DIAGNOSTICS: {url.netloc}{url.path}")
    lines.append(HEAVY_RULE * 56)
    lines.append("")

    errors = _l(diagnostics.get("errors"))
    if errors:
        lines.append(f"ERRORS ({len(errors)}):")
        for err in errors[:5]:
            err = _d(err)
            count = err.get("count") or 0
            suffix = f" (×{count})" if isinstance(count, int) and count > 1 else ""
            lines.append(f"  ❌ {str(err.get('message') or '')[:60]}")
            lines.append(f"     → {err.get('source')}{suffix}")
        lines.append("")

    failures = _l(diagnostics.get("networkFailures"))
    if failures:
        lines.append(f"NETWORK FAILURES ({len(failures)}):")
        for fail in failures[:5]:
            fail = _d(fail)
            path = urlsplit(str(fail.get("url") or "")).path
            lines.append(f"  ❌ {fail.get('method')} {path[:40]} → {fail.get('status')} {fail.get('statusText')}")
        lines.append("")

    if include_performance:
        lines.extend(_performance_lines(_d(diagnostics.get("performance"))))

    a11y = _d(diagnostics.get("accessibility"))
    missing_alt = int(a11y.get("missingAltText") or 0)
    missing_labels = int(a11y.get("missingLabels") or 0)
    if missing_alt + missing_labels + int(a11y.get("lowContrast") or 0) > 0:
        lines.append("ACCESSIBILITY:")
        if missing_alt:
            lines.append(f"  ⚠️ {missing_alt} images missing alt text")
        if missing_labels:
            lines.append(f"  ⚠️ {missing_labels} form inputs missing labels")
        lines.append("")

    warnings = _l(diagnostics.get("warnings"))
    if include_warnings and warnings:
        lines.append("WARNINGS:")
        lines.extend(f"  ⚠️ {w}" for w in warnings)

    return "\n".join(lines)


def _performance_lines(perf: dict[str, Any]) -> list[str]:
    lines = ["PERFORMANCE:"]
    lcp = _d(perf.get("lcp"))
    if lcp:
        value = float(lcp.get("value") or 0)
        lines.append(f"  LCP: {value / 1000.0:.1f}s ({lcp.get('element')}) {_rating(value, 2500, 4000)}")
    cls = _d(perf.get("cls"))
    cls_value = float(cls.get("value") or 0)
    lines.append(f"  CLS: {cls_value:.3f} {_rating(cls_value, 0.1, 0.25)}")
    for shift in _l(cls.get("shifts"))[:2]:
        shift = _d(shift)
        lines.append(f"      ({shift.get('element')} shifted {float(shift.get('delta') or 0):.3f})")
    long_tasks = [_d(t) for t in _l(perf.get("longTasks"))]
    if long_tasks:
        longest = max((t.get("duration") or 0) for t in long_tasks)
        lines.append(f"  Long tasks: {len(long_tasks)} (longest: {longest}ms)")
    lines.append("")
    return lines


def format_diff_report(diff: dict[str, Any]) -> str:
    changes = [_d(c) for c in _l(diff.get("changes"))]
    lines = [f"DOM DIFF: {diff.get('before')} → {diff.get('after')}", HEAVY_RULE * 40, f"Changes: {len(changes)}", ""]
    icons = {"added": "➕", "removed": "➖"}
    for change in changes[:20]:
        ctype = str(change.get("type") or "")
        lines.append(f"{icons.get(ctype, '🔄')} {ctype.upper()}: {change.get('selector')}")
        detail = _d(change.get("changes"))
        classes = _d(detail.get("classes"))
        if _l(classes.get("added")):
            lines.append(f"   + classes: {', '.join(map(str, classes['added']))}")
        if _l(classes.get("removed")):
            lines.append(f"   - classes: {', '.join(map(str, classes['removed']))}")
        size = _d(detail.get("size"))
        if size:
            before, after = _d(size.get("before")), _d(size.get("after"))
            lines.append(
                f"   size: {before.get('width')}×{before.get('height')} → {after.get('width')}×{after.get('height')}"
            )
    return "\n".join(lines)


__all__ = [
    "describe_event_verbose",
    "format_diagnostics_report",
    "format_diff_report",
    "format_element_report",
    "format_flow_report",
    "format_region_report",
]
