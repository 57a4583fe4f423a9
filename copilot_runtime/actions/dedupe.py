"""Merge prioritized action lists by name."""
from __future__ import annotations

from typing import Iterable, List, Protocol, Set, TypeVar


class _Named(Protocol):
    name: str


T = TypeVar("T", bound=_Named)


def flatten_tool_calls_no_duplicates(tools_by_priority: Iterable[T]) -> List[T]:
    """Keep the first occurrence of every action name, preserving order.

    Priority is expressed through input order: pass higher-priority sources
    first.
    """
    seen: Set[str] = set()
    result: List[T] = []
    for tool in tools_by_priority:
        if tool.name in seen:
            continue
        seen.add(tool.name)
        result.append(tool)
    return result
