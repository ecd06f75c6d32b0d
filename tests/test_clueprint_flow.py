from __future__ import annotations


class _Clock:
    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def test_ring_buffer_sweep_keeps_only_age_window() -> None:
    from mcp_servers.clueprint.agent.ring_buffer import RingBuffer

    clock = _Clock(100_000)
    buf = RingBuffer(clock=clock)
    for t in (100_000, 110_000, 120_000, 130_000):
        clock.now = t
        buf.append("click", {"selector": f"#b{t}"})

    clock.now = 145_000
    # cutoff = 115_000: the two oldest entries go, the boundary is inclusive.
    assert buf.sweep() == 2
    assert [e["time"] for e in buf.snapshot()] == [120_000, 130_000]

    clock.now = 150_000
    assert [e["time"] for e in buf.snapshot()] == [120_000, 130_000]
    clock.now = 150_001
    assert [e["time"] for e in buf.snapshot()] == [130_000]


def test_ring_buffer_overflow_triggers_sweep() -> None:
    from mcp_servers.clueprint.agent.ring_buffer import RingBuffer

    clock = _Clock(0)
    buf = RingBuffer(clock=clock)
    for _ in range(5_000):
        buf.append("mouse_move")
    assert len(buf) == 5_000

    clock.now = 40_000
    buf.append("click")
    assert len(buf) == 1


def test_ring_buffer_toggle_clears_and_disables_capture() -> None:
    from mcp_servers.clueprint.agent.ring_buffer import RingBuffer

    buf = RingBuffer(clock=_Clock(1_000))
    buf.append("click")
    assert buf.toggle() is False
    assert len(buf) == 0
    assert buf.append("click") is False
    assert buf.as_recording() is None

    assert buf.toggle() is True
    assert len(buf) == 0
    assert buf.append("input") is True


def test_ring_buffer_recording_uses_relative_times() -> None:
    from mcp_servers.clueprint.agent.ring_buffer import RingBuffer

    clock = _Clock(50_000)
    buf = RingBuffer(clock=clock)
    buf.append("click", {"selector": "#go"})
    clock.now = 50_400
    buf.append("console_error", {"message": "boom"})
    clock.now = 52_000
    buf.append("scroll", {"direction": "down", "scrollPercent": 40})

    rec = buf.as_recording()
    assert rec is not None
    assert rec["mode"] == "flow"
    assert rec["startTime"] == 50_000
    assert rec["duration"] == 2_000
    assert [e["time"] for e in rec["events"]] == [0, 400, 2_000]
    assert rec["diagnosis"]["suspectedIssue"] == "Error occurred after clicking #go"
    assert rec["diagnosis"]["rootCause"] == "boom"
    # Reads never rewrite the stored absolute times.
    assert [e["time"] for e in buf.snapshot()] == [50_000, 50_400, 52_000]


def test_recorder_totals_include_synthetic_start_event() -> None:
    from mcp_servers.clueprint.agent.recorder import FlowRecorder, RecordingState

    clock = _Clock(10_000)
    rec = FlowRecorder(clock=clock)
    assert rec.record("click") is False
    assert rec.stop() is None

    rec.start(url="http://localhost:3000/cart", title="Cart")
    assert rec.state is RecordingState.RECORDING
    for i in range(3):
        clock.now += 100
        rec.record("click", {"selector": f"#item{i}"})
    clock.now += 200
    rec.record("network_response", {"method": "GET", "url": "http://localhost:3000/api/cart", "status": 200})
    clock.now = 12_000

    out = rec.stop(final_selection={"mode": "inspect"})
    assert out is not None
    assert rec.is_recording is False
    assert out["duration"] == 2_000
    assert out["startTime"] == 10_000
    assert out["summary"]["totalEvents"] == 5
    assert out["summary"]["clicks"] == 3
    assert out["summary"]["navigations"] == 1
    assert out["summary"]["networkRequests"] == 1
    assert out["finalSelection"] == {"mode": "inspect"}
    assert out["events"][0]["data"]["event"] == "recording_start"
    assert [e["time"] for e in out["events"]] == [0, 100, 200, 300, 500]


def test_diagnosis_links_error_to_preceding_click() -> None:
    from mcp_servers.clueprint.agent.flow import diagnose, make_event

    events = [
        make_event(0, "navigation", {"url": "http://x/", "title": "X", "event": "recording_start"}),
        make_event(1_000, "click", {"selector": "#submit", "x": 10, "y": 20}),
        make_event(1_300, "console_error", {"message": "X is null"}),
    ]
    out = diagnose(events)
    assert out["suspectedIssue"] == "Error occurred after clicking #submit"
    assert out["rootCause"] == "X is null"


def test_diagnosis_ignores_errors_outside_click_window() -> None:
    from mcp_servers.clueprint.agent.flow import NO_ISSUES, diagnose, make_event

    late = [make_event(1_000, "click", {"selector": "#a"}), make_event(2_500, "console_error", {"message": "late"})]
    out = diagnose(late)
    assert out["suspectedIssue"] == NO_ISSUES
    assert "rootCause" not in out

    edge = [make_event(1_000, "click", {"selector": "#a"}), make_event(2_000, "network_error", {"status": 500})]
    assert diagnose(edge)["suspectedIssue"] == NO_ISSUES

    unnamed = [make_event(1_000, "click", {}), make_event(1_001, "network_error", {"status": 500})]
    assert diagnose(unnamed)["suspectedIssue"] == "Error occurred after clicking element"


def test_timeline_lines_and_limit() -> None:
    from mcp_servers.clueprint.agent.flow import make_event, render_timeline

    events = [make_event(0, "navigation", {"url": "http://app/", "title": "App", "event": "recording_start"})]
    events += [make_event(1_000 + i * 300, "scroll", {"direction": "down", "scrollPercent": i}) for i in range(12)]
    lines = render_timeline(events).splitlines()
    assert len(lines) == 10
    assert lines[0] == '0.0s 🔄 START on "App" (http://app/)'
    assert lines[1] == "1.0s 📜 SCROLL down to 0%"
    assert lines[2] == "1.3s 📜 SCROLL down to 1%"


def test_describe_network_error_uses_short_path() -> None:
    from mcp_servers.clueprint.agent.flow import describe_event, make_event

    ev = make_event(
        0,
        "network_error",
        {"method": "POST", "url": "http://api.local/v1/orders/42?x=1", "status": 500, "statusText": "Server Error"},
    )
    assert describe_event(ev) == 'POST /orders/42 → 500 FAILED: "Server Error"'
    assert describe_event(make_event(0, "dom_mutation")) == "DOM_MUTATION"
