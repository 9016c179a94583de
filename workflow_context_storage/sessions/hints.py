"""Next-step hints for resumed sessions."""

from __future__ import annotations

from typing import Any

from ..protocol import NextStepHint, SessionRecord
from .autosave import workflow_nodes

PRIORITY_HIGH = "high"
PRIORITY_MEDIUM = "medium"
PRIORITY_LOW = "low"

# (name fragments, action, description) checked in order against the session name
_CREATION_SUGGESTIONS: list[tuple[tuple[str, ...], str, str]] = [
    (
        ("slack",),
        "configure_slack_node",
        "Start by adding a Slack node and configuring credentials",
    ),
    (("api", "http"), "configure_http_node", "Begin with an HTTP Request node to call your API"),
    (
        ("data", "process"),
        "define_data_schema",
        "First define your data structure and validation rules",
    ),
]


def outstanding_issues(state: dict[str, Any]) -> list[dict[str, Any]]:
    """Issues from the most recent validation stored in ``state["validation"]``."""
    validation = state.get("validation")
    if not isinstance(validation, dict):
        return []
    issues = validation.get("issues")
    if not isinstance(issues, list):
        return []
    return [i for i in issues if isinstance(i, dict)]


def _creation_hint(record: SessionRecord) -> tuple[str, str]:
    name = record.name.lower()
    for fragments, action, description in _CREATION_SUGGESTIONS:
        if any(fragment in name for fragment in fragments):
            return action, description
    return "add_first_node", "Add your first workflow node"


def build_next_step_hint(record: SessionRecord) -> NextStepHint:
    """Derive the single most useful next action for a session.

    Rules, first match wins:
    1. Outstanding validation issues: fix them
    2. No nodes yet: a creation suggestion based on the session name
    3. One node: add more nodes
    4. Several nodes without connections: connect them
    5. Every estimated step done: test the workflow
    6. Otherwise: continue with the next step
    """
    progress = record.progress
    issues = outstanding_issues(record.state)
    if issues:
        return NextStepHint(
            action="fix_issues",
            description=f"Fix {len(issues)} validation issues",
            priority=PRIORITY_HIGH,
            progress=progress,
            outstanding_issues=len(issues),
        )

    nodes = workflow_nodes(record.state)
    node_count = len(nodes) if isinstance(nodes, list) else 0
    if node_count == 0:
        action, description = _creation_hint(record)
        return NextStepHint(action, description, PRIORITY_HIGH, progress)
    if node_count == 1:
        return NextStepHint(
            "add_more_nodes",
            "Add additional nodes to build workflow logic",
            PRIORITY_MEDIUM,
            progress,
        )

    workflow = record.state.get("workflow") or {}
    if not workflow.get("connections"):
        return NextStepHint(
            "connect_nodes", "Connect nodes to define workflow flow", PRIORITY_HIGH, progress
        )

    if record.estimated_steps > 0 and record.step_index >= record.estimated_steps:
        return NextStepHint(
            "test_workflow", "Test workflow with sample data", PRIORITY_MEDIUM, progress
        )

    next_step = record.step_index + 1
    if record.estimated_steps > 0:
        description = f"Continue with step {next_step} of {record.estimated_steps}"
    else:
        description = f"Continue with step {next_step}"
    return NextStepHint("continue_step", description, PRIORITY_LOW, progress)
