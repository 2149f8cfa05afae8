"""Explorer session state.

:class:`TraceExplorer` ties the pieces together for one consumer (a page, a
CLI invocation): it keeps the current filters, runs queries through the
client, rebuilds span trees and exposes render-ready views.

The state is organized into logical sections:
    - Base State: filters, committed results and errors per view
    - Data Loading Methods: async methods that fetch and commit
    - Views: presentation projections of the committed state
    - Lifecycle: polling and teardown

Every load runs in a named slot ("search", "trace", ...). A newer load in a
slot supersedes older ones still in flight; their responses are dropped
instead of committed. After :meth:`TraceExplorer.close` nothing is committed.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, NamedTuple, Optional, Set

from . import config
from .cache import RequestSequencer
from .client import TelemetryClient
from .errors import InvalidArgument, TelemetryError
from .filters import DEFAULT_FILTERS, normalize, search_spans, with_page
from .metrics import enrichment_stats_from_spans
from .models import (
    DashboardSnapshot,
    EnrichmentStats,
    MetricsSnapshot,
    QueryFilters,
    Span,
    SpanPage,
    TraceDetail,
    TraceNode,
)
from .polling import CancellationToken, Poller
from .presentation import (
    CostView,
    DashboardView,
    EnrichmentView,
    SearchView,
    SpanRow,
    TraceView,
    cost_view,
    dashboard_view,
    enrichment_view,
    search_view,
    span_row,
    trace_view,
)
from .tree import build_forest

logger = logging.getLogger(__name__)


class LoadResult(NamedTuple):
    """Outcome of one load, returned instead of raising.

    ``status`` is one of ``ok``, ``error``, ``stale`` (a newer load in the
    same slot won) or ``cancelled`` (the explorer was closed).
    """

    status: str
    value: Any = None
    error: Optional[TelemetryError] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class TraceExplorer:
    """Stateful session over a :class:`TelemetryClient`.

    Attributes
    ----------
    filters : QueryFilters
        Filters of the span search.
    search_result : Optional[SpanPage]
        Last committed search page.
    search_error : Optional[TelemetryError]
        Failure of the last search, cleared by the next success.
    selected_trace : Optional[TraceDetail]
        Last committed trace detail.
    selected_forest : List[TraceNode]
        Span tree of ``selected_trace``.
    trace_error : Optional[TelemetryError]
        Failure of the last trace load.
    loading : Set[str]
        Slots with a load in flight.
    """

    def __init__(
        self,
        client: TelemetryClient,
        filters: Optional[QueryFilters] = None,
    ):
        self.client = client
        self.filters = filters or DEFAULT_FILTERS

        # ---------------------------------------------------------------------
        # Base State: search
        # ---------------------------------------------------------------------
        self.search_result: Optional[SpanPage] = None
        self.search_error: Optional[TelemetryError] = None

        # ---------------------------------------------------------------------
        # Base State: selected trace
        # ---------------------------------------------------------------------
        self.selected_trace: Optional[TraceDetail] = None
        self.selected_forest: List[TraceNode] = []
        self.trace_error: Optional[TelemetryError] = None

        # ---------------------------------------------------------------------
        # Base State: dashboard widgets
        # ---------------------------------------------------------------------
        self.dashboard: Optional[DashboardSnapshot] = None
        self.metrics: Optional[MetricsSnapshot] = None
        self.enriched_spans: List[Span] = []
        self.enrichment_stats: Optional[EnrichmentStats] = None
        self.errors: Dict[str, TelemetryError] = {}

        # ---------------------------------------------------------------------
        # Bookkeeping
        # ---------------------------------------------------------------------
        self.loading: Set[str] = set()
        self.closed = False
        self._sequencer = RequestSequencer()
        self._tasks: Set["asyncio.Future[Any]"] = set()
        self._pollers: List[Poller] = []

    # =========================================================================
    # DATA LOADING METHODS
    # =========================================================================

    async def _load(
        self,
        slot: str,
        fetch: Callable[[], Awaitable[Any]],
        commit: Callable[[Any], None],
        fail: Callable[[TelemetryError], None],
    ) -> LoadResult:
        """Run ``fetch`` in ``slot`` and commit only if still the latest."""
        if self.closed:
            return LoadResult("cancelled")

        ticket = self._sequencer.issue(slot)
        self.loading.add(slot)
        task = asyncio.ensure_future(fetch())
        self._tasks.add(task)
        try:
            value = await task
        except asyncio.CancelledError:
            if not self.closed:
                raise
            return LoadResult("cancelled")
        except TelemetryError as e:
            if not self._can_commit(slot, ticket):
                logger.debug(f"Dropping stale {slot} error #{ticket}: {e}")
                return LoadResult("stale", error=e)
            logger.warning(f"{slot} load failed: {e}")
            fail(e)
            return LoadResult("error", error=e)
        finally:
            self._tasks.discard(task)
            if self._sequencer.is_current(slot, ticket):
                self.loading.discard(slot)

        if not self._can_commit(slot, ticket):
            logger.debug(f"Dropping stale {slot} response #{ticket}")
            return LoadResult("stale", value=value)
        commit(value)
        return LoadResult("ok", value=value)

    def _can_commit(self, slot: str, ticket: int) -> bool:
        return not self.closed and self._sequencer.is_current(slot, ticket)

    def _record_error(self, key: str) -> Callable[[TelemetryError], None]:
        def fail(error: TelemetryError) -> None:
            self.errors[key] = error
        return fail

    async def load_search(self, refetch: bool = False) -> LoadResult:
        """Run the span search with the current filters."""
        filters = self.filters

        def commit(page: SpanPage) -> None:
            self.search_result = page
            self.search_error = None

        def fail(error: TelemetryError) -> None:
            self.search_error = error

        return await self._load(
            "search",
            lambda: self.client.search(filters, refetch=refetch),
            commit,
            fail,
        )

    async def apply_filters(self, patch: Optional[Mapping[str, Any]] = None, **fields: Any) -> LoadResult:
        """Merge filter changes (page resets to 1) and search again.

        Examples
        --------
            ```python
            await explorer.apply_filters(status="error", service_name="api")
            ```
        """
        try:
            self.filters = normalize(self.filters, {**(patch or {}), **fields})
        except InvalidArgument as e:
            self.search_error = e
            return LoadResult("error", error=e)
        return await self.load_search()

    async def go_to_page(self, page: int) -> LoadResult:
        """Move the search to another page."""
        try:
            self.filters = with_page(self.filters, page)
        except InvalidArgument as e:
            self.search_error = e
            return LoadResult("error", error=e)
        return await self.load_search()

    async def retry_search(self) -> LoadResult:
        """User-initiated retry: bypasses the cache."""
        return await self.load_search(refetch=True)

    async def load_trace(self, trace_id: Optional[str], refetch: bool = False) -> LoadResult:
        """Load one trace and rebuild its span tree."""

        def commit(detail: TraceDetail) -> None:
            self.selected_trace = detail
            self.selected_forest = build_forest(detail.spans)
            self.trace_error = None

        def fail(error: TelemetryError) -> None:
            self.selected_trace = None
            self.selected_forest = []
            self.trace_error = error

        return await self._load(
            "trace",
            lambda: self.client.fetch_trace(trace_id, refetch=refetch),
            commit,
            fail,
        )

    async def refetch_trace(self) -> LoadResult:
        """Reload the selected trace, bypassing the cache."""
        trace_id = self.selected_trace.summary.trace_id if self.selected_trace else None
        return await self.load_trace(trace_id, refetch=True)

    async def load_dashboard(self, refetch: bool = False) -> LoadResult:
        """Load recent errors, metrics and service dependencies."""

        def commit(snapshot: DashboardSnapshot) -> None:
            self.dashboard = snapshot
            self.errors.pop("dashboard", None)

        return await self._load(
            "dashboard",
            lambda: self.client.get_dashboard(refetch=refetch),
            commit,
            self._record_error("dashboard"),
        )

    async def load_metrics(self, timeframe: str = "24h", refetch: bool = False) -> LoadResult:
        """Load backend metrics for a timeframe."""

        def commit(metrics: MetricsSnapshot) -> None:
            self.metrics = metrics
            self.errors.pop("metrics", None)

        return await self._load(
            "metrics",
            lambda: self.client.get_metrics(timeframe, refetch=refetch),
            commit,
            self._record_error("metrics"),
        )

    async def load_enrichment(
        self,
        timeframe: str = "1h",
        status: Optional[str] = None,
        refetch: bool = False,
    ) -> LoadResult:
        """Load enriched spans and enrichment stats together."""

        async def fetch():
            spans, stats = await asyncio.gather(
                self.client.get_enriched_spans(timeframe, status=status, refetch=refetch),
                self.client.get_enrichment_stats(timeframe, refetch=refetch),
            )
            return spans, stats

        def commit(value) -> None:
            spans, stats = value
            self.enriched_spans = spans
            # Fall back to counting the listing when the backend has no stats yet.
            self.enrichment_stats = stats if stats.total_spans else enrichment_stats_from_spans(spans)
            self.errors.pop("enrichment", None)

        return await self._load(
            "enrichment",
            fetch,
            commit,
            self._record_error("enrichment"),
        )

    # =========================================================================
    # VIEWS
    # =========================================================================

    @property
    def can_retry_search(self) -> bool:
        """Whether to offer a retry for the failed search."""
        return self.search_error is not None and not isinstance(self.search_error, InvalidArgument)

    @property
    def trace_error_message(self) -> str:
        """Upstream error message for the trace view, verbatim."""
        return self.trace_error.message if self.trace_error else ""

    def search_view(self) -> Optional[SearchView]:
        if self.search_result is None:
            return None
        return search_view(self.search_result)

    def trace_view(self) -> Optional[TraceView]:
        if self.selected_trace is None:
            return None
        return trace_view(self.selected_trace.summary, self.selected_forest)

    def enrichment_view(self) -> Optional[EnrichmentView]:
        if self.enrichment_stats is None:
            return None
        return enrichment_view(self.enrichment_stats)

    def cost_view(self) -> Optional[CostView]:
        if self.metrics is None:
            return None
        return cost_view(self.metrics)

    def dashboard_view(self) -> Optional[DashboardView]:
        if self.dashboard is None:
            return None
        return dashboard_view(self.dashboard)

    def find_loaded(self, term: str) -> List[SpanRow]:
        """Free-text filter over the current search page and enriched spans."""
        loaded = list(self.search_result.data) if self.search_result else []
        loaded.extend(self.enriched_spans)
        return [span_row(span) for span in search_spans(loaded, term)]

    def clear_selection(self) -> None:
        """Clear the selected trace; an in-flight trace load is dropped."""
        self._sequencer.supersede("trace")
        self.loading.discard("trace")
        self.selected_trace = None
        self.selected_forest = []
        self.trace_error = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start_polling(self, interval: Optional[float] = None) -> Poller:
        """Refresh the dashboard snapshot every ``interval`` seconds."""

        async def tick(token: CancellationToken) -> None:
            if not token.is_cancelled:
                await self.load_dashboard(refetch=True)

        poller = Poller(
            tick,
            interval or config.DEFAULT_POLL_SECONDS,
            name="dashboard poll",
        )
        self._pollers.append(poller)
        poller.start()
        return poller

    async def close(self) -> None:
        """Stop polling and cancel in-flight loads; nothing commits after."""
        if self.closed:
            return
        self.closed = True
        for poller in self._pollers:
            await poller.stop()
        self._pollers.clear()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.loading.clear()
        logger.info(f"Explorer closed, {len(tasks)} in-flight load(s) cancelled")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
