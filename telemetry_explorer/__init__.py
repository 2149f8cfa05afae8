"""Telemetry Explorer - span tree, search and enrichment stats over a telemetry store"""

from .client import TelemetryClient
from .errors import (
    TelemetryError,
    InvalidArgument,
    NetworkError,
    NotFound,
    UpstreamError,
)
from .explorer import TraceExplorer, LoadResult
from .filters import DEFAULT_FILTERS, normalize, to_query_params
from .metrics import enrichment_rate, trend_of
from .models import (
    Span,
    TraceNode,
    TraceSummary,
    TraceDetail,
    QueryFilters,
    SpanPage,
    EnrichmentStats,
)
from .tree import SpanForest, build_forest

__all__ = [
    "TelemetryClient",
    "TraceExplorer",
    "LoadResult",
    "TelemetryError",
    "InvalidArgument",
    "NetworkError",
    "NotFound",
    "UpstreamError",
    "DEFAULT_FILTERS",
    "normalize",
    "to_query_params",
    "enrichment_rate",
    "trend_of",
    "Span",
    "TraceNode",
    "TraceSummary",
    "TraceDetail",
    "QueryFilters",
    "SpanPage",
    "EnrichmentStats",
    "SpanForest",
    "build_forest",
]

__version__ = "0.1.0"
