"""Async client for the telemetry store REST API.

Design Principles:
- Read-only: every endpoint used here is a GET.
- Typed failures: transport, 404 and non-2xx responses raise the matching
  :mod:`~telemetry_explorer.errors` class; nothing is swallowed into an
  empty result.
- No automatic retries. Retrying is the caller's decision (``refetch=True``).
- Cached: responses are cached per ``(operation, params)`` for a staleness
  window, and identical concurrent requests share one network call.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from . import config
from .cache import QueryCache, make_key
from .errors import InvalidArgument, NetworkError, NotFound, UpstreamError
from .filters import DEFAULT_FILTERS, to_query_params
from .metrics import enrichment_stats, summarize_trace
from .models import (
    DashboardSnapshot,
    EnrichmentStats,
    MetricsSnapshot,
    QueryFilters,
    Span,
    SpanPage,
    TraceDetail,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _error_message(response: httpx.Response) -> str:
    """Pull the backend's own message out of an error response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            if payload.get(key):
                return str(payload[key])
    return response.text or f"HTTP {response.status_code}"


class TelemetryClient:
    """Async client for the telemetry store.

    Configuration
    -------------
    (via environment variables or constructor)
    - TELEMETRY_API_URL: Base URL of the API (default: http://localhost:8000/api).
    - TELEMETRY_API_KEY: Bearer token, sent when set.
    - TELEMETRY_TIMEOUT: Request timeout in seconds (default: 30).
    - TELEMETRY_STALE_SECONDS: Default cache staleness window (default: 30).

    Examples
    --------
    ```python
    async with TelemetryClient(base_url="http://localhost:8000/api") as client:
        page = await client.search(normalize(None, {"status": "error"}))
        detail = await client.fetch_trace(page.data[0].trace_id)
    ```
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[QueryCache] = None,
        stale_seconds: Optional[Mapping[str, float]] = None,
    ):
        """Initialize the client.

        Parameters
        ----------
        base_url : Optional[str]
            API base URL. (default: from TELEMETRY_API_URL env var)
        api_key : Optional[str]
            Bearer token. (default: from TELEMETRY_API_KEY env var)
        timeout : Optional[float]
            Request timeout in seconds. (default: from TELEMETRY_TIMEOUT)
        cache : Optional[QueryCache]
            Cache to use; a private one is created when omitted.
        stale_seconds : Optional[Mapping[str, float]]
            Per-operation staleness overrides, e.g. ``{"search": 5}``.
        """
        self.base_url = (base_url or config.API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.API_KEY
        self.timeout = timeout if timeout is not None else config.DEFAULT_TIMEOUT
        self.cache = cache if cache is not None else QueryCache(config.DEFAULT_STALE_SECONDS)
        self.stale_seconds: Dict[str, float] = {
            **config.STALE_SECONDS_BY_OPERATION,
            **(stale_seconds or {}),
        }

        self._client = httpx.AsyncClient(timeout=self.timeout)
        logger.info(f"TelemetryClient initialized: {self.base_url}")

    def _get_headers(self) -> Dict[str, str]:
        """Get headers with the bearer token, if any."""
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    async def _get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        resource_id: Optional[str] = None,
    ) -> Any:
        """Issue one GET and map failures to the error taxonomy."""
        logger.debug(f"GET {path} {dict(params or {})}")
        try:
            response = await self._client.get(
                f"{self.base_url}{path}",
                params=params,
                headers=self._get_headers(),
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {path} timed out: {e}")
            raise NetworkError(f"Request to {path} timed out", timeout=True) from e
        except httpx.RequestError as e:
            logger.warning(f"Request to {path} failed: {e}")
            raise NetworkError(f"Request to {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFound(_error_message(response), resource_id=resource_id)
        if response.is_error:
            raise UpstreamError(_error_message(response), status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON from {path}", status_code=response.status_code
            ) from e

        if isinstance(payload, dict) and payload.get("success") is False:
            raise UpstreamError(_error_message(response), status_code=response.status_code)
        return payload

    async def _cached(
        self,
        operation: str,
        params: Mapping[str, Any],
        loader: Callable[[], Awaitable[T]],
        refetch: bool = False,
    ) -> T:
        return await self.cache.fetch(
            make_key(operation, params),
            loader,
            stale_after=self.stale_seconds.get(operation),
            refetch=refetch,
        )

    @staticmethod
    def _validate(model: Callable[..., T], payload: Any, what: str) -> T:
        try:
            return model(payload)
        except ValidationError as e:
            raise UpstreamError(f"Malformed {what} response: {e}") from e

    @staticmethod
    def _unwrap(payload: Any, envelope: str) -> Dict[str, Any]:
        """Return ``payload[envelope]``, or the bare object when there is no envelope."""
        body = payload
        if isinstance(payload, dict) and envelope in payload:
            body = payload[envelope]
        if not isinstance(body, dict):
            raise UpstreamError(f"Malformed {envelope} response")
        return body

    # =========================================================================
    # SEARCH & TRACE DETAIL
    # =========================================================================

    async def search(
        self,
        filters: Optional[QueryFilters] = None,
        refetch: bool = False,
    ) -> SpanPage:
        """Fetch one page of spans matching the filters.

        Parameters
        ----------
        filters : Optional[QueryFilters]
            Normalized filters (see :func:`~telemetry_explorer.filters.normalize`).
        refetch : bool
            Ignore a fresh cached page.

        Returns
        -------
        SpanPage
            Spans plus pagination metadata.
        """
        filters = filters or DEFAULT_FILTERS
        params = to_query_params(filters)

        async def load() -> SpanPage:
            payload = await self._get("/telemetry", params)
            if not isinstance(payload, dict):
                raise UpstreamError("Malformed search response")
            reported = payload.get("pagination") or {}
            if not isinstance(reported, dict):
                raise UpstreamError("Malformed search response")
            pagination = {"page": filters.page, "limit": filters.limit, **reported}
            return self._validate(
                SpanPage.model_validate,
                {"data": payload.get("data") or [], "pagination": pagination},
                "search",
            )

        return await self._cached("search", params, load, refetch)

    async def fetch_trace(self, trace_id: Optional[str], refetch: bool = False) -> TraceDetail:
        """Fetch a single trace with all its spans.

        A trace that exists but has no spans is returned as-is.

        Raises
        ------
        InvalidArgument
            If ``trace_id`` is empty; no request is made.
        NotFound
            If the store does not know the trace.
        """
        trace_id = (trace_id or "").strip()
        if not trace_id:
            raise InvalidArgument("trace_id is required")

        async def load() -> TraceDetail:
            payload = await self._get(
                f"/telemetry/traces/{quote(trace_id, safe='')}",
                resource_id=trace_id,
            )
            if not isinstance(payload, dict):
                raise UpstreamError("Malformed trace response")
            spans = payload.get("spans") or []
            summary = payload.get("summary")
            if summary is None:
                summary = self._validate(
                    lambda s: summarize_trace(trace_id, s), spans, "trace"
                )
            return self._validate(
                TraceDetail.model_validate,
                {"summary": summary, "spans": spans},
                "trace",
            )

        return await self._cached("trace", {"trace_id": trace_id}, load, refetch)

    # =========================================================================
    # METRICS, DASHBOARD & ENRICHMENT
    # =========================================================================

    async def get_metrics(self, timeframe: str = "24h", refetch: bool = False) -> MetricsSnapshot:
        """Fetch backend-computed metrics for a timeframe (1h, 24h, 7d, 30d)."""
        if timeframe not in config.TIMEFRAMES:
            raise InvalidArgument(
                f"timeframe must be one of {', '.join(config.TIMEFRAMES)}, got {timeframe!r}"
            )
        params = {"timeframe": timeframe}

        async def load() -> MetricsSnapshot:
            payload = await self._get("/telemetry/metrics", params)
            metrics = self._unwrap(payload, "metrics")
            metrics = {key: value for key, value in metrics.items() if key != "success"}
            metrics.setdefault("timeframe", timeframe)
            return self._validate(MetricsSnapshot.model_validate, metrics, "metrics")

        return await self._cached("metrics", params, load, refetch)

    async def get_dashboard(self, refetch: bool = False) -> DashboardSnapshot:
        """Fetch current metrics, recent error spans and service dependencies."""

        async def load() -> DashboardSnapshot:
            payload = await self._get("/telemetry/dashboard")
            dashboard = self._unwrap(payload, "dashboard")
            graph = dashboard.get("service_dependencies") or {}
            if not isinstance(graph, dict):
                raise UpstreamError("Malformed dashboard response")
            return self._validate(
                DashboardSnapshot.model_validate,
                {
                    "metrics": dashboard.get("metrics") or dashboard.get("current_metrics") or {},
                    "recent_errors": dashboard.get("recent_errors") or [],
                    "services": dashboard.get("services") or graph.get("services") or [],
                    "dependencies": dashboard.get("dependencies") or graph.get("dependencies") or [],
                },
                "dashboard",
            )

        return await self._cached("dashboard", {}, load, refetch)

    async def get_enriched_spans(
        self,
        timeframe: str = "1h",
        status: Optional[str] = None,
        limit: int = 100,
        tenant_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        refetch: bool = False,
    ) -> List[Span]:
        """Fetch spans annotated by the backend's enrichment pass."""
        params: Dict[str, Any] = {"timeframe": timeframe, "limit": str(limit)}
        if status and status != "all":
            params["status"] = status
        if tenant_id:
            params["tenant_id"] = tenant_id
        if workspace_id:
            params["workspace_id"] = workspace_id

        async def load() -> List[Span]:
            payload = await self._get("/telemetry/enrichment/spans", params)
            rows = (payload.get("enriched_spans") or []) if isinstance(payload, dict) else []
            return self._validate(
                lambda items: [Span.model_validate(item) for item in items],
                rows,
                "enriched spans",
            )

        return await self._cached("enriched_spans", params, load, refetch)

    async def get_enrichment_stats(
        self,
        timeframe: str = "1h",
        refetch: bool = False,
    ) -> EnrichmentStats:
        """Fetch enrichment counters; the rate is recomputed from them."""
        params = {"timeframe": timeframe}

        async def load() -> EnrichmentStats:
            payload = await self._get("/telemetry/enrichment/stats", params)
            raw = self._unwrap(payload, "enrichment_stats")
            try:
                return enrichment_stats(
                    total_spans=int(raw.get("total_spans") or 0),
                    enriched_spans=int(raw.get("enriched_spans") or 0),
                    cache_hit_spans=int(raw.get("cache_hit_spans") or 0),
                    routing_decisions=int(raw.get("routing_decisions") or 0),
                )
            except (TypeError, ValueError, ValidationError) as e:
                raise UpstreamError(f"Malformed enrichment stats response: {e}") from e

        return await self._cached("enrichment_stats", params, load, refetch)

    def invalidate(self, operation: Optional[str] = None) -> int:
        """Drop cached responses for one operation, or all of them."""
        return self.cache.invalidate(operation)

    async def close(self) -> None:
        """Close the HTTP client; call it when done."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
