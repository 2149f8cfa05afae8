"""View models for rendering explorer results.

Pure projections of already-computed data into flat, render-ready records.
No fetching and no business logic happen here; every value a renderer needs
(formatted strings, boolean flags, depth) is precomputed so the consumer
never has to inspect raw spans.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .metrics import cost_by_model, edge_health, service_request_counts, total_cost
from .models import (
    DashboardSnapshot,
    EnrichmentStats,
    MetricsSnapshot,
    Span,
    SpanPage,
    TraceNode,
    TraceSummary,
    Trend,
)
from .tree import iter_nodes

# Default placeholder for missing values
PLACEHOLDER = "—"

NO_SPANS_MESSAGE = "No spans found"

TREND_ARROWS = {"up": "↑", "down": "↓", "flat": "→"}


# =============================================================================
# FORMATTING HELPERS
# =============================================================================

def safe_int(val: Any) -> int:
    """Safely convert value to int (handles str, None, etc).

    Returns
    -------
    int
        Integer value, or 0 if conversion fails.
    """
    if val is None:
        return 0
    try:
        return int(val)
    except (ValueError, TypeError):
        return 0


def safe_float(val: Any) -> float:
    """Safely convert value to float (handles str, None, etc).

    Returns
    -------
    float
        Float value, or 0.0 if conversion fails.
    """
    if val is None:
        return 0.0
    try:
        return float(val)
    except (ValueError, TypeError):
        return 0.0


def format_duration(duration_ms: Any) -> str:
    """Format duration in milliseconds to human-readable string.

    Returns
    -------
    str
        Formatted duration (e.g., "12.5ms", "1.23s") or placeholder.
    """
    if duration_ms is None:
        return PLACEHOLDER
    ms = safe_float(duration_ms)
    if ms < 1000:
        return f"{ms:.1f}ms"
    return f"{ms / 1000:.2f}s"


def format_cost(cost: Any, precision: int = 4) -> str:
    """Format cost as USD currency string, placeholder for zero or None."""
    c = safe_float(cost)
    if c == 0:
        return PLACEHOLDER
    return f"${c:.{precision}f}"


def format_count(value: int) -> str:
    """Format a count with K/M suffix (e.g. "1.5M", "250.0K", "999")."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    elif value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return str(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def format_timestamp(value: Any) -> str:
    """Format a timestamp as e.g. "Jan 15, 2025 at 02:30:45 PM"."""
    dt = _to_datetime(value)
    if dt is None:
        return str(value) if value else PLACEHOLDER
    return dt.strftime("%b %d, %Y at %I:%M:%S %p")


def format_relative_time(value: Any, now: Optional[datetime] = None) -> str:
    """Format a timestamp as relative time ("5m ago", "2h ago", "3d ago").

    Returns "--" for missing values and a truncated string for values that
    do not parse.
    """
    if not value:
        return "--"
    dt = _to_datetime(value)
    if dt is None:
        return str(value)[:16]

    now = now or datetime.now(dt.tzinfo)
    seconds = (now - dt).total_seconds()
    if seconds < 60:
        return "< 1m ago"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    elif seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    return f"{int(seconds // 86400)}d ago"


def format_model_label(name: Optional[str]) -> str:
    """Shorten model names: last path segment, at most 28 characters."""
    if not name:
        return "Unknown Model"
    if "/" in name:
        name = name.rsplit("/", 1)[-1] or name
    return name[:25] + "…" if len(name) > 28 else name


def trend_label(trend: Trend) -> str:
    """Render a trend as arrow plus absolute percentage, e.g. "↑ 12.5%"."""
    return f"{TREND_ARROWS[trend.direction]} {trend.percentage:.1f}%"


# =============================================================================
# VIEW MODELS
# =============================================================================

class SpanRow(BaseModel):
    """One span, flattened for a list or tree table."""

    span_id: str
    trace_id: str
    parent_span_id: Optional[str] = None
    operation_name: str
    service_name: Optional[str] = None
    status: str
    depth: int = 0
    duration_ms: float
    duration_formatted: str
    cost_formatted: str
    timestamp_formatted: str
    relative_time: str
    has_error: bool
    has_cost: bool
    has_children: bool = False
    is_enriched: bool = False
    insights: Optional[str] = None


class PaginationView(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_previous: bool
    first_item: int
    last_item: int


class TraceView(BaseModel):
    """Everything a trace detail screen renders."""

    trace_id: str
    total_spans: int
    error_count: int
    duration_formatted: str
    cost_formatted: str
    has_errors: bool
    is_empty: bool
    empty_message: str = ""
    nodes: List[SpanRow] = Field(default_factory=list)


class SearchView(BaseModel):
    """One page of search results plus pagination metadata."""

    rows: List[SpanRow] = Field(default_factory=list)
    pagination: PaginationView
    is_empty: bool
    empty_message: str = ""


class EnrichmentView(BaseModel):
    total_spans: int
    enriched_spans: int
    cache_hit_spans: int
    routing_decisions: int
    enrichment_rate: float
    enrichment_rate_formatted: str


class ModelCostRow(BaseModel):
    display_name: str
    model_name: str
    total_cost_usd: float
    cost_formatted: str
    request_count: int


class CostView(BaseModel):
    timeframe: Optional[str] = None
    rows: List[ModelCostRow] = Field(default_factory=list)
    total_cost_formatted: str
    is_empty: bool


class ServiceRow(BaseModel):
    id: str
    name: str
    request_count: int


class DependencyRow(BaseModel):
    source: str
    target: str
    call_count: int
    error_rate: float
    health: str


class DashboardView(BaseModel):
    recent_errors: List[SpanRow] = Field(default_factory=list)
    services: List[ServiceRow] = Field(default_factory=list)
    dependencies: List[DependencyRow] = Field(default_factory=list)


# =============================================================================
# PROJECTIONS
# =============================================================================

def span_row(span: Span, depth: int = 0, has_children: bool = False) -> SpanRow:
    """Project one span into a display row."""
    return SpanRow(
        span_id=span.span_id,
        trace_id=span.trace_id,
        parent_span_id=span.parent_span_id,
        operation_name=span.operation_name or "Unnamed",
        service_name=span.service_name,
        status=span.status,
        depth=depth,
        duration_ms=span.duration_ms,
        duration_formatted=format_duration(span.duration_ms),
        cost_formatted=format_cost(span.cost_usd),
        timestamp_formatted=format_timestamp(span.timestamp),
        relative_time=format_relative_time(span.timestamp),
        has_error=span.is_error,
        has_cost=safe_float(span.cost_usd) > 0,
        has_children=has_children,
        is_enriched=span.is_enriched,
        insights=span.insights,
    )


def trace_view(summary: TraceSummary, forest: Sequence[TraceNode]) -> TraceView:
    """Project a trace summary and its span forest.

    Nodes are flattened depth-first; ``depth`` carries the nesting level.
    """
    nodes = [
        span_row(node, depth=depth, has_children=bool(node.children))
        for depth, node in iter_nodes(forest)
    ]
    is_empty = summary.total_spans == 0 and not nodes
    return TraceView(
        trace_id=summary.trace_id,
        total_spans=summary.total_spans,
        error_count=summary.error_count,
        duration_formatted=format_duration(summary.total_duration_ms),
        cost_formatted=format_cost(summary.total_cost_usd),
        has_errors=summary.error_count > 0,
        is_empty=is_empty,
        empty_message=NO_SPANS_MESSAGE if is_empty else "",
        nodes=nodes,
    )


def pagination_view(page: int, limit: int, total: int, total_pages: int) -> PaginationView:
    first_item = (page - 1) * limit + 1 if total else 0
    return PaginationView(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_previous=page > 1,
        first_item=min(first_item, total),
        last_item=min(page * limit, total),
    )


def search_view(result: SpanPage) -> SearchView:
    """Project a page of search results."""
    p = result.pagination
    rows = [span_row(span) for span in result.data]
    return SearchView(
        rows=rows,
        pagination=pagination_view(p.page, p.limit, p.total, p.total_pages),
        is_empty=not rows,
        empty_message=NO_SPANS_MESSAGE if not rows else "",
    )


def enrichment_view(stats: EnrichmentStats) -> EnrichmentView:
    return EnrichmentView(
        total_spans=stats.total_spans,
        enriched_spans=stats.enriched_spans,
        cache_hit_spans=stats.cache_hit_spans,
        routing_decisions=stats.routing_decisions,
        enrichment_rate=stats.enrichment_rate,
        enrichment_rate_formatted=f"{stats.enrichment_rate:.1f}%",
    )


def cost_view(metrics: MetricsSnapshot) -> CostView:
    """Project the cost-by-model breakdown of a metrics snapshot."""
    costs = cost_by_model(metrics.cost_by_model)
    rows = [
        ModelCostRow(
            display_name=format_model_label(c.model_name),
            model_name=c.model_name,
            total_cost_usd=c.total_cost_usd,
            cost_formatted=format_cost(c.total_cost_usd),
            request_count=c.request_count,
        )
        for c in costs
    ]
    return CostView(
        timeframe=metrics.timeframe,
        rows=rows,
        total_cost_formatted=format_cost(total_cost(costs)),
        is_empty=not rows,
    )


def dashboard_view(snapshot: DashboardSnapshot) -> DashboardView:
    """Project recent errors and the service dependency graph."""
    counts: Dict[str, int] = service_request_counts(snapshot.services, snapshot.dependencies)
    return DashboardView(
        recent_errors=[span_row(span) for span in snapshot.recent_errors],
        services=[
            ServiceRow(id=s.id, name=s.name or s.id, request_count=counts.get(s.id, 0))
            for s in snapshot.services
        ],
        dependencies=[
            DependencyRow(
                source=d.source,
                target=d.target,
                call_count=d.call_count,
                error_rate=d.error_rate,
                health=edge_health(d.error_rate),
            )
            for d in snapshot.dependencies
        ],
    )
