"""
Auto-save policy.

The trigger is a pure function of the session counters and the node lists
before and after a mutation, so it can be tested without any backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

REASON_VALIDATION_THRESHOLD = "validation_threshold"
REASON_NODES_CHANGED = "nodes_changed"


@dataclass(frozen=True)
class AutoSaveDecision:
    """Outcome of the auto-save policy for one mutation."""

    triggered: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.triggered


def workflow_nodes(state: dict[str, Any]) -> Any:
    """The draft's node list (``state["workflow"]["nodes"]``), or None."""
    workflow = state.get("workflow")
    if not isinstance(workflow, dict):
        return None
    return workflow.get("nodes")


def nodes_changed(before: dict[str, Any], after: dict[str, Any]) -> bool:
    """True when a mutation added, removed or altered workflow nodes."""
    return workflow_nodes(before) != workflow_nodes(after)


def should_auto_save(
    validation_count: int,
    last_autosave_count: int,
    every_n: int,
    *,
    nodes_did_change: bool = False,
) -> AutoSaveDecision:
    """Decide whether a mutation triggers an auto-save.

    Args:
        validation_count: Validation count after the mutation
        last_autosave_count: Validation count at the previous auto-save
        every_n: Validations between auto-saves
        nodes_did_change: Whether the mutation changed workflow nodes

    Returns:
        AutoSaveDecision; the validation threshold wins when both apply
    """
    if every_n < 1:
        raise ValueError(f"every_n must be >= 1, got {every_n}")

    if validation_count - last_autosave_count >= every_n:
        return AutoSaveDecision(True, REASON_VALIDATION_THRESHOLD)
    if nodes_did_change:
        return AutoSaveDecision(True, REASON_NODES_CHANGED)
    return AutoSaveDecision(False)
