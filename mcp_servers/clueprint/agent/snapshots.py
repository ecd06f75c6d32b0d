from __future__ import annotations

from collections import OrderedDict
from typing import Any

SNAPSHOT_NOT_FOUND = "Snapshot not found"


def _diff_lists(before: list[Any], after: list[Any]) -> dict[str, list[Any]]:
    b = set(before)
    a = set(after)
    return {"added": [x for x in after if x not in b], "removed": [x for x in before if x not in a]}


def _size(el: dict[str, Any]) -> dict[str, Any]:
    size = el.get("size")
    return size if isinstance(size, dict) else {}


class SnapshotStore:
    """DOM snapshots taken in this session, keyed by snapshot id.

    Oldest snapshots are evicted beyond ``max_snapshots``.
    """

    def __init__(self, *, max_snapshots: int = 50) -> None:
        self.max_snapshots = max(1, int(max_snapshots))
        self._items: OrderedDict[str, dict[str, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, snapshot_id: object) -> bool:
        return snapshot_id in self._items

    def add(self, snapshot: dict[str, Any]) -> None:
        sid = str(snapshot.get("id") or "")
        if not sid:
            return
        self._items[sid] = snapshot
        self._items.move_to_end(sid)
        while len(self._items) > self.max_snapshots:
            self._items.popitem(last=False)

    def get(self, snapshot_id: str) -> dict[str, Any] | None:
        return self._items.get(snapshot_id)

    def diff(self, before_id: str, after_id: str) -> dict[str, Any]:
        before = self.get(before_id)
        after = self.get(after_id)
        if before is None or after is None:
            return {"error": SNAPSHOT_NOT_FOUND}

        before_els: dict[str, Any] = before.get("elements") or {}
        after_els: dict[str, Any] = after.get("elements") or {}
        changes: list[dict[str, Any]] = []

        for selector, b_el in before_els.items():
            a_el = after_els.get(selector)
            if a_el is None:
                changes.append({"selector": selector, "type": "removed"})
                continue

            classes = _diff_lists(list(b_el.get("classes") or []), list(a_el.get("classes") or []))
            b_size, a_size = _size(b_el), _size(a_el)
            size_changed = b_size.get("width") != a_size.get("width") or b_size.get("height") != a_size.get("height")
            class_changed = bool(classes["added"] or classes["removed"])
            if not (class_changed or size_changed):
                continue

            detail: dict[str, Any] = {}
            if class_changed:
                detail["classes"] = classes
            if size_changed:
                detail["size"] = {"before": b_size, "after": a_size}
            changes.append({"selector": selector, "type": "changed", "changes": detail})

        for selector in after_els:
            if selector not in before_els:
                changes.append({"selector": selector, "type": "added"})

        return {"before": before_id, "after": after_id, "changes": changes}


__all__ = ["SNAPSHOT_NOT_FOUND", "SnapshotStore"]
