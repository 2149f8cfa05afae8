"""Data models for the telemetry explorer"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SpanStatus = Literal["success", "error", "unset"]
SortOrder = Literal["asc", "desc"]
TrendDirection = Literal["up", "down", "flat"]


def parse_timestamp(v: Any) -> Any:
    """Parse an ISO-8601 string to datetime, keeping unparseable input as-is."""
    if v is None or isinstance(v, datetime):
        return v
    if isinstance(v, str):
        try:
            # "2025-12-13T01:04:27Z" -> "2025-12-13T01:04:27+00:00"
            return datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            return v
    return v


class Span(BaseModel):
    """One timed operation within a trace, as delivered by the store."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    trace_id: str
    span_id: str
    parent_span_id: Optional[str] = None
    operation_name: str = ""
    duration_ms: float = Field(default=0, ge=0)
    status: SpanStatus = "unset"
    timestamp: Optional[Union[datetime, str]] = None
    cost_usd: Optional[float] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    # Request context
    service_name: Optional[str] = None
    http_method: Optional[str] = None
    http_route: Optional[str] = None
    http_status_code: Optional[int] = None
    gen_ai_model: Optional[str] = None

    # Backend enrichment (opaque here, only counted)
    insights: Optional[str] = None
    routing_decision: Optional[str] = None
    cache_hit: Optional[bool] = None
    processing_type: Optional[str] = None
    request_priority: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_datetime(cls, v):
        """Parse datetime from string if needed."""
        return parse_timestamp(v)

    @field_validator("parent_span_id", mode="before")
    @classmethod
    def blank_parent_is_root(cls, v):
        """Treat an empty parent id the same as a missing one."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("attributes", mode="before")
    @classmethod
    def default_attributes(cls, v):
        return v or {}

    @property
    def is_error(self) -> bool:
        return self.status == "error"

    @property
    def is_enriched(self) -> bool:
        """Whether the backend attached any derived insight to this span."""
        return bool(self.insights) or bool(self.routing_decision) or self.cache_hit is not None


class TraceNode(Span):
    """A span with its child nodes, in discovery order. Immutable."""

    model_config = ConfigDict(frozen=True)

    children: List["TraceNode"] = Field(default_factory=list)


class TraceSummary(BaseModel):
    """Aggregate over all spans in a trace, independent of tree shape."""

    trace_id: str
    total_spans: int = Field(default=0, ge=0)
    total_duration_ms: float = Field(default=0, ge=0)
    total_cost_usd: float = 0.0
    error_count: int = Field(default=0, ge=0)


class TraceDetail(BaseModel):
    """Response of a single trace fetch."""

    summary: TraceSummary
    spans: List[Span] = Field(default_factory=list)


class Pagination(BaseModel):
    """Pagination metadata of a multi-trace search."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    total: int = Field(default=0, ge=0)
    total_pages: int = Field(default=0, ge=0)


class SpanPage(BaseModel):
    """One page of search results."""

    data: List[Span] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)


class QueryFilters(BaseModel):
    """Query parameters for the paginated span search.

    Every predicate is optional; ``None`` means "not filtered".
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_name: Optional[str] = None
    operation_name: Optional[str] = None
    status: Optional[SpanStatus] = None
    http_method: Optional[str] = None
    http_route: Optional[str] = None
    http_status_code: Optional[int] = Field(None, ge=100, le=599)
    gen_ai_model: Optional[str] = None
    min_duration: Optional[float] = Field(None, ge=0)
    max_duration: Optional[float] = Field(None, ge=0)
    min_cost: Optional[float] = Field(None, ge=0)
    max_cost: Optional[float] = Field(None, ge=0)
    start_time: Optional[Union[datetime, str]] = None
    end_time: Optional[Union[datetime, str]] = None

    limit: int = Field(default=20, ge=1, le=1000)
    page: int = Field(default=1, ge=1)
    sort_by: str = Field(default="timestamp", min_length=1)
    sort_order: SortOrder = "desc"

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_datetime(cls, v):
        """Parse datetime from string if needed."""
        return parse_timestamp(v)


class EnrichmentStats(BaseModel):
    """Counts of backend-enriched spans."""

    total_spans: int = Field(default=0, ge=0)
    enriched_spans: int = Field(default=0, ge=0)
    enrichment_rate: float = 0.0
    cache_hit_spans: int = Field(default=0, ge=0)
    routing_decisions: int = Field(default=0, ge=0)


class Trend(BaseModel):
    """Direction and absolute size of a change between two readings."""

    direction: TrendDirection
    percentage: float = Field(ge=0)


class ModelCost(BaseModel):
    """Cost attributed to one model."""

    model_config = ConfigDict(protected_namespaces=())

    model_name: str
    total_cost_usd: float = 0.0
    request_count: int = 0


class MetricsSnapshot(BaseModel):
    """Backend-computed metrics for a timeframe, kept as opaque values.

    Known keys are typed loosely; anything else the backend sends is kept
    as extra fields and passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    timeframe: Optional[str] = None
    p50_latency_ms: Optional[float] = None
    p95_latency_ms: Optional[float] = None
    p99_latency_ms: Optional[float] = None
    error_rate: Optional[float] = None
    total_cost_usd: Optional[float] = None
    cost_by_model: List[Dict[str, Any]] = Field(default_factory=list)
    top_operations: List[Dict[str, Any]] = Field(default_factory=list)
    top_errors: List[Dict[str, Any]] = Field(default_factory=list)


class ServiceNode(BaseModel):
    """A service in the dependency graph."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None


class DependencyEdge(BaseModel):
    """Observed calls from one service to another."""

    source: str
    target: str
    call_count: int = Field(default=0, ge=0)
    error_rate: float = Field(default=0.0, ge=0)


class DashboardSnapshot(BaseModel):
    """Current metrics, recent error spans and service dependency edges."""

    metrics: MetricsSnapshot = Field(default_factory=MetricsSnapshot)
    recent_errors: List[Span] = Field(default_factory=list)
    services: List[ServiceNode] = Field(default_factory=list)
    dependencies: List[DependencyEdge] = Field(default_factory=list)


TraceNode.model_rebuild()
