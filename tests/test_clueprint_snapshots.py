from __future__ import annotations


def _snap(sid: str, elements: dict) -> dict:
    return {"id": sid, "timestamp": 0, "url": "http://app/", "elements": elements}


def test_diff_reports_removed_changed_and_added() -> None:
    from mcp_servers.clueprint.agent.snapshots import SnapshotStore

    store = SnapshotStore()
    store.add(
        _snap(
            "s1",
            {
                "#gone": {"classes": ["a"], "size": {"width": 1, "height": 1}},
                "#cls": {"classes": ["btn", "idle"], "size": {"width": 10, "height": 10}},
                "#same": {"classes": ["x"], "size": {"width": 5, "height": 5}},
                "#grow": {"classes": [], "size": {"width": 10, "height": 10}},
            },
        )
    )
    store.add(
        _snap(
            "s2",
            {
                "#cls": {"classes": ["btn", "busy"], "size": {"width": 10, "height": 10}},
                "#same": {"classes": ["x"], "size": {"width": 5, "height": 5}},
                "#grow": {"classes": [], "size": {"width": 10, "height": 40}},
                "#new": {"classes": [], "size": {"width": 1, "height": 1}},
            },
        )
    )

    out = store.diff("s1", "s2")
    assert out["before"] == "s1" and out["after"] == "s2"
    by_selector = {c["selector"]: c for c in out["changes"]}
    assert set(by_selector) == {"#gone", "#cls", "#grow", "#new"}
    assert by_selector["#gone"]["type"] == "removed"
    assert by_selector["#new"]["type"] == "added"
    assert by_selector["#cls"]["changes"] == {"classes": {"added": ["busy"], "removed": ["idle"]}}
    assert by_selector["#grow"]["changes"] == {
        "size": {"before": {"width": 10, "height": 10}, "after": {"width": 10, "height": 40}}
    }
    assert out["changes"][-1]["selector"] == "#new"


def test_diff_with_unknown_snapshot_is_an_error_value() -> None:
    from mcp_servers.clueprint.agent.snapshots import SnapshotStore

    store = SnapshotStore()
    store.add(_snap("s1", {}))
    assert store.diff("s1", "missing") == {"error": "Snapshot not found"}
    assert store.diff("missing", "s1") == {"error": "Snapshot not found"}


def test_store_evicts_oldest_snapshots() -> None:
    from mcp_servers.clueprint.agent.snapshots import SnapshotStore

    store = SnapshotStore(max_snapshots=2)
    for sid in ("a", "b", "c"):
        store.add(_snap(sid, {}))
    assert "a" not in store
    assert len(store) == 2
    assert store.get("c") is not None
