"""Task lifecycle rules.

Pure functions that decide what a write should change on a task document.
The store applies the returned ``$set`` fields with a compare-and-set on the
document's ``version``; ``None`` means "leave the document alone".
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})

CANCELLED_BY_USER = "Task manually cancelled by user"

# A worker may only claim a task nobody has started.
CLAIMABLE_STATUSES = frozenset({"pending", "queued"})

# Forward moves only; failed/cancelled are reachable from every non-terminal state.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"queued", "processing", "failed", "cancelled"}),
    "queued": frozenset({"queued", "processing", "failed", "cancelled"}),
    "processing": frozenset({"processing", "completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str | None, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current or "pending", frozenset())


def merge_progress(stored: dict[str, Any] | None, incoming: dict[str, Any], now: datetime) -> dict[str, Any]:
    """Merge a progress update so counters never go backwards.

    ``completed``, ``total`` and every ``counters`` entry keep the larger of the
    stored and incoming values. ``phase`` and ``details`` take the incoming
    value when one is given.
    """
    stored = stored or {}
    counters = dict(stored.get("counters") or {})
    for key, value in (incoming.get("counters") or {}).items():
        counters[key] = max(int(counters.get(key, 0)), int(value))

    return {
        "phase": incoming.get("phase") or stored.get("phase") or "",
        "completed": max(int(stored.get("completed", 0)), int(incoming.get("completed", 0))),
        "total": max(int(stored.get("total", 0)), int(incoming.get("total", 0))),
        "details": incoming.get("details") or stored.get("details") or "",
        "counters": counters,
        "updated_at": now,
    }


def plan_transition(
    doc: dict[str, Any],
    target: str,
    now: datetime,
    *,
    expected_status: str | None = None,
    fields: dict[str, Any] | None = None,
    progress: dict[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Fields to ``$set`` for moving ``doc`` to ``target``, or ``None`` for a no-op."""
    current = doc.get("status")
    if expected_status is not None and current != expected_status:
        return None
    if not can_transition(current, target):
        return None

    changes: dict[str, Any] = {"status": target, "updated_at": now}
    if target == "processing" and not doc.get("started_at"):
        changes["started_at"] = now
    if target in TERMINAL_STATUSES:
        changes["finished_at"] = now
    if progress is not None:
        changes["progress"] = merge_progress(doc.get("progress"), progress, now)
    if fields:
        changes.update(fields)
    return changes


def plan_progress(doc: dict[str, Any], progress: dict[str, Any], now: datetime) -> dict[str, Any] | None:
    if is_terminal(doc.get("status")):
        return None
    return {"progress": merge_progress(doc.get("progress"), progress, now), "updated_at": now}
