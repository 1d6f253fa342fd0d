# tests/test_context.py
"""
Tests for the execution context.
"""
from unittest.mock import MagicMock, patch

from planflow.context.manager import ExecutionContext
from planflow.utils.paths import MISSING


def test_history_is_bounded():
    """History never exceeds its limit and keeps the newest runs."""
    context = ExecutionContext()
    for index in range(15):
        context.add_to_history(f"query {index}", {"step": index})

    assert len(context.history) == 10
    assert context.history[0].query == "query 5"
    assert context.last_query() == "query 14"


def test_history_copies_results():
    context = ExecutionContext()
    outputs = {"fetch": {"users": ["u1"]}}

    context.add_to_history("fetch users", outputs)
    outputs["fetch"]["users"].append("u2")

    assert context.history[-1].results == {"fetch": {"users": ["u1"]}}


def test_update_references_from_mappings_and_lists():
    context = ExecutionContext()

    context.update_references({
        "scan": {"affectedUsers": ["u1", "u2"], "channels": "general"},
        "list": [{"user_id": "u7"}, {"userId": "u8"}, {"name": "no id"}],
        "empty": None,
    })

    # The list result is scanned after the mapping and wins the users bucket
    assert context.last_referenced["users"] == ["u7", "u8"]
    assert context.last_referenced["channels"] == ["general"]


def test_resolve_reference_phrases():
    context = ExecutionContext()
    context.last_referenced.update({"users": ["u1"], "messages": ["m1"], "channels": ["c1"]})

    assert context.resolve_reference("ban them") == ["u1"]
    assert context.resolve_reference("delete those messages") == ["m1"]
    assert context.resolve_reference("lock that channel") == ["c1"]
    assert context.resolve_reference("it") == ["u1"]
    assert context.resolve_reference("something else") is None


def test_conversation_summary_uses_recent_entries():
    context = ExecutionContext()
    assert context.conversation_summary() == "No previous conversation"

    for query in ("one", "two", "three", "four"):
        context.add_to_history(query, {})

    summary = context.conversation_summary()
    assert "\"one\"" not in summary
    assert summary.splitlines()[0].startswith("1. \"two\"")
    assert len(summary.splitlines()) == 3


def test_search_history():
    context = ExecutionContext()
    context.add_to_history("Ban spammers", {})
    context.add_to_history("list channels", {})

    assert [entry.query for entry in context.search_history("ban")] == ["Ban spammers"]


def test_resolve_field_paths():
    context = ExecutionContext(services={"guild": MagicMock(name_attr="g")})
    context.set_step_output("check", {"score": 12, "flags": ["a", "b"]})
    context.set_variable("limit", 5)

    assert context.resolve_field("step_outputs.check.score") == 12
    assert context.resolve_field("stepResults.check.flags.1") == "b"
    assert context.resolve_field("variables.limit") == 5
    assert context.resolve_field("variables.nope") is MISSING
    assert context.resolve_field("unknown_root.value") is MISSING
    assert context.resolve_field("") is MISSING


def test_cache_expires():
    context = ExecutionContext(cache_ttl=10)

    with patch("planflow.context.manager.time.monotonic", return_value=100.0):
        context.set_cache("key", "value")
    with patch("planflow.context.manager.time.monotonic", return_value=105.0):
        assert context.get_cache("key") == "value"
    with patch("planflow.context.manager.time.monotonic", return_value=111.0):
        assert context.get_cache("key") is None

    context.set_cache("other", 1)
    context.clear_cache()
    assert context.get_cache("other") is None


def test_clone_isolates_state_but_shares_services():
    service = MagicMock()
    context = ExecutionContext(services={"api": service})
    context.set_variable("items", [1])
    context.add_to_history("q", {"a": 1})

    cloned = context.clone()
    cloned.variables["items"].append(2)
    cloned.set_step_output("new", True)

    assert context.variables["items"] == [1]
    assert not context.has_step_output("new")
    assert cloned.services["api"] is service
    assert len(cloned.history) == 1


def test_snapshot():
    context = ExecutionContext(services={"api": object()})
    context.set_variable("x", 1)
    context.set_step_output("s", {})

    snapshot = context.snapshot()

    assert snapshot["variables"] == {"x": 1}
    assert snapshot["step_outputs"] == 1
    assert snapshot["services"] == ["api"]
    assert snapshot["current_plan"] is None
