"""Tests for formatting helpers and view projections."""

from datetime import datetime, timedelta, timezone

import pytest

from telemetry_explorer.models import (
    DashboardSnapshot,
    DependencyEdge,
    MetricsSnapshot,
    Pagination,
    ServiceNode,
    Span,
    SpanPage,
    TraceSummary,
    Trend,
)
from telemetry_explorer.presentation import (
    PLACEHOLDER,
    cost_view,
    dashboard_view,
    format_cost,
    format_count,
    format_duration,
    format_model_label,
    format_relative_time,
    format_timestamp,
    pagination_view,
    search_view,
    span_row,
    trace_view,
    trend_label,
)
from telemetry_explorer.tree import build_forest

from conftest import make_span


class TestFormatting:
    """Tests for formatting helpers."""

    @pytest.mark.parametrize("value,expected", [
        (None, PLACEHOLDER),
        (0, "0.0ms"),
        (12.5, "12.5ms"),
        (999.94, "999.9ms"),
        (1234, "1.23s"),
        ("250", "250.0ms"),
    ])
    def test_format_duration(self, value, expected):
        assert format_duration(value) == expected

    def test_format_cost(self):
        assert format_cost(0.00123) == "$0.0012"
        assert format_cost(0) == PLACEHOLDER
        assert format_cost(None) == PLACEHOLDER
        assert format_cost(1.5, precision=2) == "$1.50"

    def test_format_count(self):
        assert format_count(999) == "999"
        assert format_count(1500) == "1.5K"
        assert format_count(2_500_000) == "2.5M"

    def test_format_timestamp(self):
        assert format_timestamp("2025-01-15T14:30:45Z") == "Jan 15, 2025 at 02:30:45 PM"
        assert format_timestamp(None) == PLACEHOLDER

    def test_format_relative_time(self):
        now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

        assert format_relative_time(None) == "--"
        assert format_relative_time(now - timedelta(seconds=30), now=now) == "< 1m ago"
        assert format_relative_time(now - timedelta(minutes=5), now=now) == "5m ago"
        assert format_relative_time(now - timedelta(hours=2), now=now) == "2h ago"
        assert format_relative_time(now - timedelta(days=3), now=now) == "3d ago"
        assert format_relative_time("not a timestamp at all", now=now) == "not a timestamp "

    def test_format_model_label(self):
        assert format_model_label("openai/gpt-4o") == "gpt-4o"
        assert format_model_label(None) == "Unknown Model"
        assert format_model_label("a" * 28) == "a" * 28
        assert format_model_label("b" * 29) == "b" * 25 + "…"

    def test_trend_label(self):
        assert trend_label(Trend(direction="up", percentage=12.5)) == "↑ 12.5%"
        assert trend_label(Trend(direction="down", percentage=50)) == "↓ 50.0%"
        assert trend_label(Trend(direction="flat", percentage=0)) == "→ 0.0%"


class TestSpanRow:
    def test_flags(self):
        span = Span.model_validate(make_span("a", status="error", cost_usd=0.01, operation_name=""))

        row = span_row(span, depth=2)

        assert row.has_error
        assert row.has_cost
        assert row.depth == 2
        assert row.operation_name == "Unnamed"


class TestTraceView:
    """Tests for trace_view."""

    def test_depths_follow_tree(self, sample_spans):
        forest = build_forest(sample_spans)
        summary = TraceSummary(trace_id="trace-1", total_spans=3, error_count=1)

        view = trace_view(summary, forest)

        assert [(row.span_id, row.depth, row.has_children) for row in view.nodes] == [
            ("1", 0, True),
            ("2", 1, False),
            ("3", 0, False),
        ]
        assert not view.is_empty

    def test_empty(self):
        view = trace_view(TraceSummary(trace_id="t"), [])

        assert view.is_empty
        assert view.empty_message == "No spans found"
        assert view.cost_formatted == PLACEHOLDER


class TestSearchView:
    """Tests for search and pagination projections."""

    def test_middle_page(self):
        view = pagination_view(page=2, limit=20, total=45, total_pages=3)

        assert view.first_item == 21
        assert view.last_item == 40
        assert view.has_next
        assert view.has_previous

    def test_last_page(self):
        view = pagination_view(page=3, limit=20, total=45, total_pages=3)

        assert view.last_item == 45
        assert not view.has_next

    def test_no_results(self):
        view = search_view(SpanPage(data=[], pagination=Pagination()))

        assert view.is_empty
        assert view.pagination.first_item == 0
        assert view.pagination.last_item == 0
        assert not view.pagination.has_next


class TestDashboardViews:
    """Tests for cost and dashboard projections."""

    def test_cost_view(self):
        metrics = MetricsSnapshot(
            timeframe="24h",
            cost_by_model=[
                {"model": "anthropic/claude-3-5-sonnet-20241022-extended", "total_cost": 1.0},
                {"model_name": "gpt-4o", "total_cost_usd": 0.5, "request_count": 2},
            ],
        )

        view = cost_view(metrics)

        assert view.rows[0].display_name == "claude-3-5-sonnet-2024102…"
        assert view.rows[1].request_count == 2
        assert view.total_cost_formatted == "$1.5000"

    def test_empty_cost_view(self):
        assert cost_view(MetricsSnapshot()).is_empty

    def test_dashboard_view(self):
        snapshot = DashboardSnapshot(
            recent_errors=[Span.model_validate(make_span("e", status="error"))],
            services=[ServiceNode(id="api", name="API"), ServiceNode(id="db")],
            dependencies=[DependencyEdge(source="api", target="db", call_count=7, error_rate=0.08)],
        )

        view = dashboard_view(snapshot)

        assert view.recent_errors[0].has_error
        assert [(s.name, s.request_count) for s in view.services] == [("API", 7), ("db", 0)]
        assert view.dependencies[0].health == "degraded"
