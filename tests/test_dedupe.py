"""Tests for merging prioritized action lists."""
from __future__ import annotations

from copilot_runtime.actions.dedupe import flatten_tool_calls_no_duplicates
from copilot_runtime.core.models import Action, ActionInput


def test_first_occurrence_wins_and_order_is_kept() -> None:
    server = [ActionInput(name="search", description="server"), ActionInput(name="summarize")]
    client = [ActionInput(name="search", description="client"), ActionInput(name="navigate")]

    merged = flatten_tool_calls_no_duplicates([*server, *client])

    assert [action.name for action in merged] == ["search", "summarize", "navigate"]
    assert merged[0].description == "server"


def test_accepts_any_named_items() -> None:
    actions = [Action(name="a"), Action(name="b"), Action(name="a", description="shadowed")]

    merged = flatten_tool_calls_no_duplicates(actions)

    assert merged == actions[:2]


def test_empty_input() -> None:
    assert flatten_tool_calls_no_duplicates([]) == []
