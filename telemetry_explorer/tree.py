"""Span tree reconstruction.

Spans reference their parent by ``parent_span_id`` only. The builder keeps
them in a flat arena with an id -> position index and per-node child index
lists, so no pointer graph is built until a caller asks for ``TraceNode``
trees.

Rules
-----
- Every unique span id appears exactly once in the result.
- A span whose parent is absent from the input (pruned by a filter, truncated
  fetch) becomes a root.
- Children keep input order. Pre-sort with :func:`sort_spans` for temporal
  order.
- Duplicate span ids: the last record wins, at the first record's position.
- Parent cycles never crash the build. Each cycle is cut once: the first
  cycle member reached from an unreached span (in input order) becomes a root,
  and spans hanging below the cycle keep their parents.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .models import Span, TraceNode

logger = logging.getLogger(__name__)

SpanLike = Union[Span, Mapping[str, Any]]


def _coerce(span: SpanLike) -> Span:
    if isinstance(span, Span):
        return span
    return Span.model_validate(span)


class SpanForest:
    """Arena representation of the call tree(s) of one trace.

    Attributes
    ----------
    spans : List[Span]
        One entry per unique span id, in first-seen order.
    children : List[List[int]]
        ``children[i]`` holds arena positions of the children of ``spans[i]``.
    roots : List[int]
        Arena positions of the forest roots.
    """

    def __init__(
        self,
        spans: List[Span],
        children: List[List[int]],
        roots: List[int],
    ):
        self.spans = spans
        self.children = children
        self.roots = roots

    @classmethod
    def build(cls, spans: Iterable[SpanLike]) -> "SpanForest":
        """Link a flat span collection into a forest.

        Parameters
        ----------
        spans : Iterable[Span or dict]
            All spans of one trace, in any order.

        Returns
        -------
        SpanForest
        """
        index: Dict[str, int] = {}
        arena: List[Span] = []

        for raw in spans:
            span = _coerce(raw)
            pos = index.get(span.span_id)
            if pos is None:
                index[span.span_id] = len(arena)
                arena.append(span)
            else:
                logger.debug(f"Duplicate span_id {span.span_id}, keeping the later record")
                arena[pos] = span

        children: List[List[int]] = [[] for _ in arena]
        parents: List[Optional[int]] = [None] * len(arena)
        roots: List[int] = []

        for pos, span in enumerate(arena):
            parent = index.get(span.parent_span_id) if span.parent_span_id else None
            if parent is None:
                roots.append(pos)
            else:
                children[parent].append(pos)
                parents[pos] = parent

        reached = [False] * len(arena)
        for root in roots:
            _mark_reachable(root, children, reached)

        for pos in range(len(arena)):
            if reached[pos]:
                continue
            # Unreached spans hang below a cycle; cut the cycle, not the tail.
            member = _cycle_member(pos, parents)
            logger.warning(
                f"Span {arena[member].span_id} is part of a parent cycle, promoting it to root"
            )
            children[parents[member]].remove(member)
            parents[member] = None
            roots.append(member)
            _mark_reachable(member, children, reached)

        return cls(arena, children, roots)

    def __len__(self) -> int:
        return len(self.spans)

    @property
    def root_spans(self) -> List[Span]:
        return [self.spans[pos] for pos in self.roots]

    def children_of(self, span_id: str) -> List[Span]:
        """Return the direct children of a span, empty if unknown."""
        for pos, span in enumerate(self.spans):
            if span.span_id == span_id:
                return [self.spans[c] for c in self.children[pos]]
        return []

    def walk(self) -> Iterator[Tuple[int, Span]]:
        """Yield ``(depth, span)`` depth-first, roots and children in order."""
        stack: List[Tuple[int, int]] = [(0, pos) for pos in reversed(self.roots)]
        while stack:
            depth, pos = stack.pop()
            yield depth, self.spans[pos]
            for child in reversed(self.children[pos]):
                stack.append((depth + 1, child))

    def _preorder(self) -> List[int]:
        order: List[int] = []
        stack = list(reversed(self.roots))
        while stack:
            pos = stack.pop()
            order.append(pos)
            stack.extend(reversed(self.children[pos]))
        return order

    def to_nodes(self) -> List[TraceNode]:
        """Materialize nested :class:`TraceNode` trees, one per root."""
        built: Dict[int, TraceNode] = {}
        # Reverse pre-order visits every child before its parent.
        for pos in reversed(self._preorder()):
            built[pos] = TraceNode(
                **self.spans[pos].model_dump(),
                children=[built[c] for c in self.children[pos]],
            )
        return [built[pos] for pos in self.roots]


def _mark_reachable(start: int, children: List[List[int]], reached: List[bool]) -> None:
    stack = [start]
    while stack:
        pos = stack.pop()
        if reached[pos]:
            continue
        reached[pos] = True
        stack.extend(children[pos])


def _cycle_member(start: int, parents: List[Optional[int]]) -> int:
    """Follow parent links from an unreached span to the first repeated position."""
    seen = set()
    pos = start
    while pos not in seen:
        seen.add(pos)
        pos = parents[pos]
    return pos


def build_forest(spans: Iterable[SpanLike]) -> List[TraceNode]:
    """Convert the flat spans of one trace into a forest of nodes.

    Examples
    --------
    >>> forest = build_forest([
    ...     {"trace_id": "t", "span_id": "1"},
    ...     {"trace_id": "t", "span_id": "2", "parent_span_id": "1"},
    ...     {"trace_id": "t", "span_id": "3", "parent_span_id": "99"},
    ... ])
    >>> [(n.span_id, [c.span_id for c in n.children]) for n in forest]
    [('1', ['2']), ('3', [])]
    """
    return SpanForest.build(spans).to_nodes()


def iter_nodes(forest: Sequence[TraceNode]) -> Iterator[Tuple[int, TraceNode]]:
    """Yield ``(depth, node)`` for every node of a forest, depth-first."""
    stack: List[Tuple[int, TraceNode]] = [(0, node) for node in reversed(forest)]
    while stack:
        depth, node = stack.pop()
        yield depth, node
        for child in reversed(node.children):
            stack.append((depth + 1, child))


def count_nodes(forest: Sequence[TraceNode]) -> int:
    """Count all nodes in a forest, nested descendants included."""
    return sum(1 for _ in iter_nodes(forest))


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _timestamp_key(span: Span) -> Tuple[int, datetime, str]:
    """Parsed timestamps in UTC order first, then unparseable ones as text."""
    ts = span.timestamp
    if isinstance(ts, datetime):
        # Naive timestamps are taken as UTC.
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return (0, ts.astimezone(timezone.utc), "")
    return (1, _EPOCH, ts or "")


def sort_spans(spans: Iterable[SpanLike], key: str = "timestamp") -> List[Span]:
    """Return spans sorted by ``timestamp`` or ``duration_ms`` (stable).

    Build the forest from the result to get time-ordered children.
    """
    coerced = [_coerce(s) for s in spans]
    if key == "timestamp":
        return sorted(coerced, key=_timestamp_key)
    if key == "duration_ms":
        return sorted(coerced, key=lambda s: s.duration_ms)
    raise ValueError(f"Unsupported sort key: {key}")
