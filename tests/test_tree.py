"""Tests for span tree reconstruction."""

import random

import pytest
from pydantic import ValidationError

from telemetry_explorer.models import Span, TraceNode
from telemetry_explorer.tree import (
    SpanForest,
    build_forest,
    count_nodes,
    iter_nodes,
    sort_spans,
)

from conftest import make_span


def all_ids(forest):
    return [node.span_id for _, node in iter_nodes(forest)]


class TestBuildForest:
    """Tests for build_forest."""

    def test_empty_input_gives_empty_forest(self):
        assert build_forest([]) == []

    def test_orphan_becomes_root(self, sample_spans):
        """Span 3 references parent 99, which is absent."""
        forest = build_forest(sample_spans)

        assert [n.span_id for n in forest] == ["1", "3"]
        assert [c.span_id for c in forest[0].children] == ["2"]
        assert forest[1].children == []

    def test_builds_deep_hierarchy(self):
        spans = [
            make_span("root"),
            make_span("child", parent="root"),
            make_span("grandchild", parent="child"),
        ]

        forest = build_forest(spans)

        assert len(forest) == 1
        child = forest[0].children[0]
        assert child.span_id == "child"
        assert child.children[0].span_id == "grandchild"

    def test_children_keep_input_order(self):
        spans = [
            make_span("p"),
            make_span("c", parent="p"),
            make_span("a", parent="p"),
            make_span("b", parent="p"),
        ]

        forest = build_forest(spans)

        assert [c.span_id for c in forest[0].children] == ["c", "a", "b"]

    def test_child_listed_before_parent(self):
        spans = [make_span("child", parent="root"), make_span("root")]

        forest = build_forest(spans)

        assert [n.span_id for n in forest] == ["root"]
        assert forest[0].children[0].span_id == "child"

    def test_blank_parent_is_root(self):
        forest = build_forest([make_span("a", parent="")])
        assert [n.span_id for n in forest] == ["a"]

    def test_accepts_span_models(self):
        spans = [Span.model_validate(make_span("a")), Span.model_validate(make_span("b", parent="a"))]

        forest = build_forest(spans)

        assert isinstance(forest[0], TraceNode)
        assert forest[0].children[0].span_id == "b"

    def test_nodes_keep_span_fields(self, sample_spans):
        forest = build_forest(sample_spans)
        child = forest[0].children[0]

        assert child.status == "error"
        assert child.cost_usd == 0.002
        assert child.parent_span_id == "1"

    def test_nodes_are_frozen(self, sample_spans):
        forest = build_forest(sample_spans)
        with pytest.raises(ValidationError):
            forest[0].operation_name = "changed"

    def test_duplicate_span_id_last_record_wins(self):
        spans = [
            make_span("a", operation_name="first"),
            make_span("b", parent="a"),
            make_span("a", operation_name="second"),
        ]

        forest = build_forest(spans)

        assert count_nodes(forest) == 2
        assert forest[0].operation_name == "second"
        assert forest[0].children[0].span_id == "b"


class TestCycles:
    """Parent cycles must never hang or crash the build."""

    def test_two_node_cycle(self):
        spans = [make_span("a", parent="b"), make_span("b", parent="a")]

        forest = build_forest(spans)

        assert count_nodes(forest) == 2
        assert forest[0].span_id == "a"
        assert forest[0].children[0].span_id == "b"

    def test_self_parent(self):
        forest = build_forest([make_span("a", parent="a")])

        assert len(forest) == 1
        assert forest[0].children == []

    def test_cycle_with_tail(self):
        spans = [
            make_span("root"),
            make_span("x", parent="y"),
            make_span("y", parent="x"),
            make_span("z", parent="y"),
        ]

        forest = build_forest(spans)

        assert [n.span_id for n in forest] == ["root", "x"]
        assert sorted(all_ids(forest)) == ["root", "x", "y", "z"]

    def test_descendant_listed_before_cycle_keeps_parent(self):
        spans = [
            make_span("c", parent="a"),
            make_span("a", parent="b"),
            make_span("b", parent="a"),
        ]

        forest = build_forest(spans)

        assert [n.span_id for n in forest] == ["a"]
        assert sorted(c.span_id for c in forest[0].children) == ["b", "c"]
        assert count_nodes(forest) == 3

    def test_only_one_link_per_cycle_is_cut(self):
        spans = [
            make_span("leaf", parent="mid"),
            make_span("mid", parent="x"),
            make_span("x", parent="y"),
            make_span("y", parent="x"),
        ]

        forest = SpanForest.build(spans)

        assert [s.span_id for s in forest.root_spans] == ["x"]
        assert [s.span_id for s in forest.children_of("mid")] == ["leaf"]
        assert [s.span_id for s in forest.children_of("x")] == ["mid", "y"]

    def test_long_chain_does_not_recurse(self):
        spans = [make_span("0")] + [make_span(str(i), parent=str(i - 1)) for i in range(1, 5000)]

        forest = build_forest(spans)

        assert count_nodes(forest) == 5000


class TestForestProperties:
    """Totality and uniqueness over random span sets."""

    @pytest.mark.parametrize("seed", range(20))
    def test_totality_and_no_duplication(self, seed):
        rng = random.Random(seed)
        n = rng.randint(0, 60)
        ids = [f"s{i}" for i in range(n)]
        spans = [
            make_span(span_id, parent=rng.choice(ids + ["missing", None]) if ids else None)
            for span_id in ids
        ]
        rng.shuffle(spans)

        forest = build_forest(spans)
        seen = all_ids(forest)

        assert count_nodes(forest) == n
        assert len(seen) == len(set(seen))
        assert set(seen) == set(ids)

    @pytest.mark.parametrize("seed", range(10))
    def test_orphans_are_roots(self, seed):
        rng = random.Random(seed)
        spans = [make_span(f"s{i}", parent=rng.choice([None, f"gone{i}", "s0"])) for i in range(30)]

        roots = {n.span_id for n in build_forest(spans)}

        for span in spans:
            if span["parent_span_id"] not in {s["span_id"] for s in spans}:
                assert span["span_id"] in roots


class TestSpanForest:
    """Tests for the arena representation."""

    def test_walk_yields_depths(self, sample_spans):
        forest = SpanForest.build(sample_spans)

        walked = [(depth, span.span_id) for depth, span in forest.walk()]

        assert walked == [(0, "1"), (1, "2"), (0, "3")]

    def test_len_and_roots(self, sample_spans):
        forest = SpanForest.build(sample_spans)

        assert len(forest) == 3
        assert [s.span_id for s in forest.root_spans] == ["1", "3"]

    def test_children_of(self, sample_spans):
        forest = SpanForest.build(sample_spans)

        assert [s.span_id for s in forest.children_of("1")] == ["2"]
        assert forest.children_of("unknown") == []


class TestSortSpans:
    """Tests for sort_spans."""

    def test_sorts_by_timestamp(self):
        spans = [
            make_span("late", timestamp="2025-01-15T14:30:47Z"),
            make_span("early", timestamp="2025-01-15T14:30:45Z"),
        ]

        assert [s.span_id for s in sort_spans(spans)] == ["early", "late"]

    def test_sorts_across_utc_offsets(self):
        spans = [
            make_span("utc", timestamp="2025-01-15T14:00:00Z"),
            make_span("berlin", timestamp="2025-01-15T14:30:00+01:00"),
            make_span("new-york", timestamp="2025-01-15T09:30:00-05:00"),
        ]

        assert [s.span_id for s in sort_spans(spans)] == ["berlin", "utc", "new-york"]

    def test_unparseable_timestamps_sort_last(self):
        spans = [
            make_span("bad", timestamp="yesterday"),
            make_span("missing", timestamp=None),
            make_span("ok", timestamp="2025-01-15T14:00:00Z"),
        ]

        assert [s.span_id for s in sort_spans(spans)] == ["ok", "missing", "bad"]

    def test_sorts_by_duration(self):
        spans = [make_span("slow", duration_ms=50), make_span("fast", duration_ms=5)]

        assert [s.span_id for s in sort_spans(spans, key="duration_ms")] == ["fast", "slow"]

    def test_presorted_input_orders_children(self):
        spans = [
            make_span("p", timestamp="2025-01-15T14:30:40Z"),
            make_span("b", parent="p", timestamp="2025-01-15T14:30:47Z"),
            make_span("a", parent="p", timestamp="2025-01-15T14:30:45Z"),
        ]

        forest = build_forest(sort_spans(spans))

        assert [c.span_id for c in forest[0].children] == ["a", "b"]

    def test_rejects_unknown_key(self):
        with pytest.raises(ValueError):
            sort_spans([], key="cost")
