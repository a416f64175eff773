"""Explicit group-shape predicates and the bounded structural walk over parsed JSON.

Every object the walk visits is tested against four shapes. Each shape has its
own predicate so they can be exercised in isolation:

``typed``
    ``{"__typename": "Group", "id": ..., "name": "..."}``
``heuristic``
    ``{"id": ..., "name": "...", "group_id": ...}`` or an ``url`` containing
    ``/groups/``
``nested``
    ``{"group": {"id": ..., "name": ...}}``
``node``
    ``{"node": {"__typename": "Group", "id": ..., "name": ...}}``
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

DEFAULT_MAX_DEPTH = 20
GROUP_TYPENAME = "Group"


class ShapeKind(str, Enum):
    TYPED = "typed"
    HEURISTIC = "heuristic"
    NESTED = "nested"
    NODE = "node"


@dataclass(frozen=True)
class GroupShape:
    kind: ShapeKind
    id: str
    name: str


def match_typed(obj: Mapping[str, Any]) -> GroupShape | None:
    if obj.get("__typename") != GROUP_TYPENAME:
        return None
    return _shape_from(ShapeKind.TYPED, obj)


def match_heuristic(obj: Mapping[str, Any]) -> GroupShape | None:
    if not isinstance(obj.get("name"), str):
        return None
    url = obj.get("url")
    has_group_url = isinstance(url, str) and "/groups/" in url
    if not obj.get("group_id") and not has_group_url:
        return None
    return _shape_from(ShapeKind.HEURISTIC, obj)


def match_nested(obj: Mapping[str, Any]) -> GroupShape | None:
    group = obj.get("group")
    if not isinstance(group, Mapping):
        return None
    return _shape_from(ShapeKind.NESTED, group)


def match_node(obj: Mapping[str, Any]) -> GroupShape | None:
    node = obj.get("node")
    if not isinstance(node, Mapping) or node.get("__typename") != GROUP_TYPENAME:
        return None
    return _shape_from(ShapeKind.NODE, node)


SHAPE_PREDICATES = (match_typed, match_heuristic, match_nested, match_node)


def classify(obj: Mapping[str, Any]) -> tuple[GroupShape, ...]:
    """Return every shape the object satisfies, in predicate order."""
    shapes: list[GroupShape] = []
    for predicate in SHAPE_PREDICATES:
        shape = predicate(obj)
        if shape is not None:
            shapes.append(shape)
    return tuple(shapes)


def walk_group_shapes(value: Any, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Iterator[GroupShape]:
    """Yield group shapes found anywhere in ``value`` without descending past ``max_depth``."""
    stack: list[tuple[Any, int]] = [(value, 0)]
    while stack:
        current, depth = stack.pop()
        if depth > max_depth:
            continue
        if isinstance(current, Mapping):
            yield from classify(current)
            children = list(current.values())
        elif isinstance(current, list):
            children = current
        else:
            continue
        # reversed so siblings are visited in document order
        for child in reversed(children):
            if isinstance(child, Mapping | list):
                stack.append((child, depth + 1))


def _shape_from(kind: ShapeKind, obj: Mapping[str, Any]) -> GroupShape | None:
    raw_id = obj.get("id")
    name = obj.get("name")
    if isinstance(raw_id, bool) or not isinstance(raw_id, str | int) or not isinstance(name, str):
        return None
    group_id = str(raw_id).strip()
    cleaned = name.strip()
    if not group_id or not cleaned:
        return None
    return GroupShape(kind=kind, id=group_id, name=cleaned)
