"""Tests for the auto-save policy."""

import pytest

from workflow_context_storage.sessions.autosave import (
    REASON_NODES_CHANGED,
    REASON_VALIDATION_THRESHOLD,
    nodes_changed,
    should_auto_save,
    workflow_nodes,
)


class TestShouldAutoSave:
    """Tests for the counter-threshold trigger."""

    @pytest.mark.parametrize("count", [0, 1, 2])
    def test_below_threshold(self, count):
        decision = should_auto_save(count, 0, 3)
        assert not decision
        assert decision.reason is None

    def test_threshold_reached(self):
        decision = should_auto_save(3, 0, 3)
        assert decision
        assert decision.reason == REASON_VALIDATION_THRESHOLD

    def test_threshold_counts_from_last_autosave(self):
        assert not should_auto_save(5, 3, 3)
        assert should_auto_save(6, 3, 3)

    def test_nodes_changed(self):
        decision = should_auto_save(1, 0, 3, nodes_did_change=True)
        assert decision.triggered
        assert decision.reason == REASON_NODES_CHANGED

    def test_threshold_wins_over_nodes(self):
        decision = should_auto_save(3, 0, 3, nodes_did_change=True)
        assert decision.reason == REASON_VALIDATION_THRESHOLD

    def test_every_n_must_be_positive(self):
        with pytest.raises(ValueError):
            should_auto_save(1, 0, 0)


class TestNodesChanged:
    """Tests for workflow node change detection."""

    def test_added_node(self):
        assert nodes_changed({}, {"workflow": {"nodes": [{"name": "Slack"}]}})

    def test_changed_node(self):
        before = {"workflow": {"nodes": [{"name": "Slack", "channel": "#a"}]}}
        after = {"workflow": {"nodes": [{"name": "Slack", "channel": "#b"}]}}
        assert nodes_changed(before, after)

    def test_same_nodes(self):
        state = {"workflow": {"nodes": [{"name": "Slack"}]}}
        assert not nodes_changed(state, {"workflow": {"nodes": [{"name": "Slack"}]}})

    def test_other_keys_ignored(self):
        assert not nodes_changed({"notes": "a"}, {"notes": "b"})

    def test_workflow_nodes_missing(self):
        assert workflow_nodes({"workflow": "not a dict"}) is None
        assert workflow_nodes({}) is None
