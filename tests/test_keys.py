"""Tests for key layout and identifier validation."""

import re

import pytest

from workflow_context_storage.exceptions import SessionValidationError
from workflow_context_storage.keys import (
    cache_entry_key,
    cache_key_from_entry_key,
    key_from_pending_marker,
    make_session_key,
    namespace_of,
    parse_session_key,
    pending_marker_key,
    session_key_from_record_key,
    session_prefix,
    session_record_key,
    slugify,
    validate_cache_key,
    validate_tenant_id,
)


class TestSessionKeys:
    """Tests for session key generation and parsing."""

    def test_make_session_key(self):
        assert make_session_key("t1", "wf1") == "t1__wf1"

    def test_name_is_slugified(self):
        key = make_session_key("t1", "  Slack Alerts: v2! ")
        assert re.fullmatch(r"t1__slack-alerts-v2--[0-9a-f]{10}", key)
        assert parse_session_key(key)[0] == "t1"

    def test_canonical_name_has_no_suffix(self):
        assert slugify("slack-alerts-v2") == "slack-alerts-v2"

    def test_default_tenant(self):
        assert make_session_key(None, "wf1") == "default__wf1"

    def test_same_pair_same_key(self):
        """Keys are stable for a (tenant, name) pair."""
        assert make_session_key("t1", "My Flow") == make_session_key("t1", "My Flow")

    @pytest.mark.parametrize(
        "names", [("My WF", "my_wf"), ("My Flow", "my flow"), ("wf-1", "WF-1"), ("a b", "a-b")]
    )
    def test_distinct_names_distinct_keys(self, names):
        first, second = (make_session_key("t1", name) for name in names)
        assert first != second
        assert parse_session_key(first)[0] == parse_session_key(second)[0] == "t1"

    def test_unusable_name_rejected(self):
        with pytest.raises(SessionValidationError) as exc_info:
            slugify("!!!")
        assert exc_info.value.field == "name"

    @pytest.mark.parametrize("tenant", ["", "bad/tenant", "-lead", "a" * 65, "t 1"])
    def test_invalid_tenant(self, tenant):
        with pytest.raises(SessionValidationError):
            validate_tenant_id(tenant)

    def test_parse_session_key(self):
        assert parse_session_key("t1__slack-alerts") == ("t1", "slack-alerts")

    @pytest.mark.parametrize(
        "key", ["nosep", "t1__", "__wf", "t1__Bad Slug", "t/1__wf", "t1__wf--abc"]
    )
    def test_parse_malformed(self, key):
        with pytest.raises(SessionValidationError):
            parse_session_key(key)


class TestPhysicalKeys:
    """Tests for physical key layout."""

    def test_session_record_key(self):
        assert session_record_key("t1__wf1") == "session/t1/t1__wf1.record"

    def test_session_record_key_roundtrip(self):
        assert session_key_from_record_key(session_record_key("t1__wf1")) == "t1__wf1"

    def test_session_key_from_other_key(self):
        assert session_key_from_record_key("cache/nodes-base.slack.entry") is None
        assert session_key_from_record_key("session/t1/t1__wf1.json") is None

    def test_session_prefix(self):
        assert session_prefix("t1") == "session/t1/"

    def test_cache_entry_key(self):
        assert cache_entry_key("nodes-base.slack") == "cache/nodes-base.slack.entry"
        assert cache_key_from_entry_key("cache/nodes-base.slack.entry") == "nodes-base.slack"
        assert cache_key_from_entry_key("session/t1/x.record") is None

    @pytest.mark.parametrize("key", ["", "../etc", "a/b", ".hidden", "x" * 201])
    def test_invalid_cache_key(self, key):
        with pytest.raises(SessionValidationError):
            validate_cache_key(key)

    def test_pending_marker_roundtrip(self):
        marker = pending_marker_key("session/t1/t1__wf1.record")
        assert marker == "pending-sync/session/t1/t1__wf1.record"
        assert key_from_pending_marker(marker) == "session/t1/t1__wf1.record"

    def test_namespace_of(self):
        assert namespace_of("session/t1/t1__wf1.record") == "session"
        assert namespace_of("cache/nodes-base.slack.entry") == "cache"
