"""Derived views over an enumerated key set.

Two views are offered: flat groups in the fixed type order, and a namespace
tree built by splitting key names on a delimiter. Both are pure functions of
their input. Collapse state lives in :class:`CollapseState`, keyed by path,
so it survives tree rebuilds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Literal, Mapping, Optional, Union

from .models import TYPE_ORDER, KeyType

PATH_SEPARATOR = "/"


@dataclass(frozen=True, slots=True)
class TypeGroup:
    """Keys sharing one type tag."""

    type: KeyType
    keys: tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.keys)


def classify_by_type(
    keys: Iterable[str],
    types: Mapping[str, Union[KeyType, str, None]],
    *,
    include_empty: bool = False,
) -> list[TypeGroup]:
    """Group ``keys`` by type in the fixed display order.

    Args:
        keys: Key names; duplicates are kept in their group.
        types: Resolved types by key name. Missing entries and unrecognized
            names are grouped under ``unknown``.
        include_empty: Emit groups that received no keys.

    Returns:
        list[TypeGroup]: Groups ordered string, hash, list, set, zset, json,
        stream, none, unknown.
    """
    buckets: dict[KeyType, list[str]] = {key_type: [] for key_type in TYPE_ORDER}
    for key in keys:
        raw = types.get(key)
        key_type = raw if isinstance(raw, KeyType) else KeyType.parse(raw)
        buckets[key_type].append(key)
    return [
        TypeGroup(type=key_type, keys=tuple(buckets[key_type]))
        for key_type in TYPE_ORDER
        if include_empty or buckets[key_type]
    ]


@dataclass
class NamespaceNode:
    """One namespace segment with its terminal keys and child segments.

    Attributes:
        name: Segment name (empty for the root).
        path: Segments from the root joined with ``/`` (empty for the root).
        keys: Full key names that terminate at this node.
        children: Child nodes keyed by segment, in first-seen order.
    """

    name: str = ""
    path: str = ""
    keys: list[str] = field(default_factory=list)
    children: dict[str, "NamespaceNode"] = field(default_factory=dict)

    @property
    def count(self) -> int:
        """Number of keys at or below this node."""
        return len(self.keys) + sum(child.count for child in self.children.values())

    def child(self, segment: str) -> "NamespaceNode":
        node = self.children.get(segment)
        if node is None:
            path = f"{self.path}{PATH_SEPARATOR}{segment}" if self.path else segment
            node = NamespaceNode(name=segment, path=path)
            self.children[segment] = node
        return node

    def find(self, path: str) -> Optional["NamespaceNode"]:
        """Return the descendant at ``path`` or ``None``."""
        if not path:
            return self
        node: Optional[NamespaceNode] = self
        for segment in path.split(PATH_SEPARATOR):
            node = node.children.get(segment) if node is not None else None
        return node

    def walk(self) -> Iterator["NamespaceNode"]:
        """Yield this node and every descendant depth-first."""
        yield self
        for child in self.children.values():
            yield from child.walk()

    def all_keys(self) -> list[str]:
        """Return every terminal key at or below this node, with multiplicity."""
        return [key for node in self.walk() for key in node.keys]


def build_tree(keys: Iterable[str], delimiter: str = ":") -> NamespaceNode:
    """Build a namespace tree from ``keys``.

    A key without the delimiter is a leaf of the root. ``"a:b:c"`` creates or
    reuses ``a`` and ``a/b`` and is attached to ``a/b``. An empty delimiter
    disables splitting entirely.
    """
    root = NamespaceNode()
    for key in keys:
        segments = key.split(delimiter) if delimiter else [key]
        node = root
        for segment in segments[:-1]:
            node = node.child(segment)
        node.keys.append(key)
    return root


def key_path(key: str, delimiter: str = ":") -> str:
    """Return the ``/``-joined segment path of ``key``."""
    if not delimiter:
        return key
    return PATH_SEPARATOR.join(key.split(delimiter))


class CollapseState:
    """Path-keyed set of collapsed entries, independent of any tree instance."""

    def __init__(self, collapsed: Iterable[str] = ()) -> None:
        self._collapsed: set[str] = set(collapsed)

    @property
    def collapsed(self) -> frozenset[str]:
        return frozenset(self._collapsed)

    def is_collapsed(self, path: str) -> bool:
        return path in self._collapsed

    def collapse(self, path: str) -> None:
        self._collapsed.add(path)

    def expand(self, path: str) -> None:
        self._collapsed.discard(path)

    def toggle(self, path: str) -> bool:
        """Flip ``path`` and return whether it is now collapsed."""
        if path in self._collapsed:
            self._collapsed.discard(path)
            return False
        self._collapsed.add(path)
        return True

    def ensure_expanded_by_path(self, path: str) -> None:
        """Expand every ancestor of ``path`` so the entry it names is visible."""
        segments = path.split(PATH_SEPARATOR)
        for end in range(1, len(segments)):
            self._collapsed.discard(PATH_SEPARATOR.join(segments[:end]))


@dataclass(frozen=True, slots=True)
class TreeRow:
    """One display row of a flattened namespace tree."""

    kind: Literal["branch", "key"]
    depth: int
    label: str
    path: str
    count: int = 1
    collapsed: bool = False


def visible_rows(tree: NamespaceNode, collapse: CollapseState) -> list[TreeRow]:
    """Flatten ``tree`` into display rows, hiding everything under collapsed branches.

    Each node lists its own keys before its child branches.
    """
    rows: list[TreeRow] = []

    def _emit(node: NamespaceNode, depth: int) -> None:
        for key in node.keys:
            rows.append(TreeRow(kind="key", depth=depth, label=key, path=node.path))
        for child in node.children.values():
            collapsed = collapse.is_collapsed(child.path)
            rows.append(
                TreeRow(
                    kind="branch",
                    depth=depth,
                    label=child.name,
                    path=child.path,
                    count=child.count,
                    collapsed=collapsed,
                )
            )
            if not collapsed:
                _emit(child, depth + 1)

    _emit(tree, 0)
    return rows


__all__ = [
    "CollapseState",
    "NamespaceNode",
    "PATH_SEPARATOR",
    "TreeRow",
    "TypeGroup",
    "build_tree",
    "classify_by_type",
    "key_path",
    "visible_rows",
]
