"""Derived metrics over already-fetched telemetry.

Everything here is a pure function. Percentiles, costs and enrichment
classification come precomputed from the backend; this module only
combines them into ratios, trends and totals.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .models import (
    DependencyEdge,
    EnrichmentStats,
    ModelCost,
    ServiceNode,
    Span,
    TraceSummary,
    Trend,
)

# Stand-in for a zero previous reading, so percent change stays finite.
EPSILON = 0.0001

# Percent change beyond which a trend is reported as up or down.
TREND_THRESHOLD = 10.0


def trend_of(current: float, previous: float) -> Trend:
    """Compare two readings.

    Parameters
    ----------
    current : float
        Latest value.
    previous : float
        Value of the comparison period. Zero is replaced by ``EPSILON``.

    Returns
    -------
    Trend
        ``up`` above +10 %, ``down`` below -10 %, otherwise ``flat``.
        ``percentage`` is always the absolute change.
    """
    base = previous if previous != 0 else EPSILON
    change = (current - previous) / base * 100
    if change > TREND_THRESHOLD:
        direction = "up"
    elif change < -TREND_THRESHOLD:
        direction = "down"
    else:
        direction = "flat"
    return Trend(direction=direction, percentage=abs(change))


def enrichment_rate(total: int, enriched: int) -> float:
    """Share of enriched spans in percent; 0 when there are no spans."""
    if total == 0:
        return 0.0
    return enriched / total * 100


def enrichment_stats(
    total_spans: int,
    enriched_spans: int,
    cache_hit_spans: int = 0,
    routing_decisions: int = 0,
) -> EnrichmentStats:
    """Build :class:`EnrichmentStats` from raw counters."""
    return EnrichmentStats(
        total_spans=total_spans,
        enriched_spans=enriched_spans,
        enrichment_rate=enrichment_rate(total_spans, enriched_spans),
        cache_hit_spans=cache_hit_spans,
        routing_decisions=routing_decisions,
    )


def enrichment_stats_from_spans(spans: Iterable[Span]) -> EnrichmentStats:
    """Count enrichment markers over a span listing."""
    total = enriched = cache_hits = routed = 0
    for span in spans:
        total += 1
        if span.is_enriched:
            enriched += 1
        if span.cache_hit:
            cache_hits += 1
        if span.routing_decision:
            routed += 1
    return enrichment_stats(total, enriched, cache_hits, routed)


def summarize_trace(trace_id: str, spans: Sequence[Union[Span, Mapping[str, Any]]]) -> TraceSummary:
    """Aggregate a trace's spans without looking at the tree shape.

    Used when the store returns spans without a summary.
    """
    coerced = [s if isinstance(s, Span) else Span.model_validate(s) for s in spans]
    return TraceSummary(
        trace_id=trace_id,
        total_spans=len(coerced),
        total_duration_ms=sum(s.duration_ms for s in coerced),
        total_cost_usd=sum(s.cost_usd or 0.0 for s in coerced),
        error_count=sum(1 for s in coerced if s.is_error),
    )


def error_rate(spans: Sequence[Span]) -> float:
    """Percentage of spans with status ``error``; 0 for no spans."""
    if not spans:
        return 0.0
    return sum(1 for s in spans if s.is_error) / len(spans) * 100


def cost_by_model(rows: Optional[Iterable[Mapping[str, Any]]]) -> List[ModelCost]:
    """Normalize the backend's cost-by-model rows.

    Rows may name the model ``model`` or ``model_name`` and the cost
    ``total_cost`` or ``total_cost_usd``. Missing values become
    "Unknown Model" and zero.
    """
    result: List[ModelCost] = []
    for row in rows or []:
        cost = row.get("total_cost_usd", row.get("total_cost"))
        result.append(
            ModelCost(
                model_name=row.get("model_name") or row.get("model") or "Unknown Model",
                total_cost_usd=float(cost or 0.0),
                request_count=int(row.get("request_count") or 0),
            )
        )
    return result


def total_cost(costs: Iterable[ModelCost]) -> float:
    return sum(c.total_cost_usd for c in costs)


def service_request_counts(
    services: Iterable[ServiceNode],
    dependencies: Iterable[DependencyEdge],
) -> Dict[str, int]:
    """Outgoing call volume per service id, zero for services with no edges."""
    counts: Dict[str, int] = {service.id: 0 for service in services}
    for edge in dependencies:
        if edge.source in counts:
            counts[edge.source] += edge.call_count
    return counts


def edge_health(rate: float) -> str:
    """Classify a dependency edge by its error rate (a 0..1 fraction)."""
    if rate > 0.1:
        return "critical"
    if rate > 0.05:
        return "degraded"
    return "healthy"
