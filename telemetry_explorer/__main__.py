#!/usr/bin/env python3
"""Inspect a telemetry store from the command line.

Examples
--------
    python -m telemetry_explorer trace 4bf92f3577b34da6
    python -m telemetry_explorer search --status error --service api
    python -m telemetry_explorer enrichment --timeframe 24h
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from . import config
from .client import TelemetryClient
from .errors import TelemetryError
from .explorer import TraceExplorer
from .filters import normalize, with_page
from .presentation import EnrichmentView, SearchView, TraceView


def print_trace(view: TraceView) -> None:
    print(f"Trace {view.trace_id}")
    print(
        f"  spans: {view.total_spans}  errors: {view.error_count}  "
        f"duration: {view.duration_formatted}  cost: {view.cost_formatted}"
    )
    if view.is_empty:
        print(f"  {view.empty_message}")
        return
    for row in view.nodes:
        marker = "!" if row.has_error else "-"
        indent = "  " * (row.depth + 1)
        print(f"{indent}{marker} {row.operation_name} [{row.span_id}] {row.duration_formatted}")


def print_search(view: SearchView) -> None:
    if view.is_empty:
        print(view.empty_message)
    for row in view.rows:
        print(
            f"{row.timestamp_formatted}  {row.status:<7}  {row.operation_name}  "
            f"{row.duration_formatted}  trace={row.trace_id}"
        )
    p = view.pagination
    print(f"Page {p.page}/{max(p.total_pages, 1)} ({p.first_item}-{p.last_item} of {p.total})")


def print_enrichment(view: EnrichmentView) -> None:
    print(f"Total spans:       {view.total_spans}")
    print(f"Enriched:          {view.enriched_spans} ({view.enrichment_rate_formatted})")
    print(f"Cache hits:        {view.cache_hit_spans}")
    print(f"Routing decisions: {view.routing_decisions}")


async def run(args: argparse.Namespace) -> int:
    client = TelemetryClient(base_url=args.url, api_key=args.api_key, timeout=args.timeout)
    async with client, TraceExplorer(client) as explorer:
        if args.command == "trace":
            result = await explorer.load_trace(args.trace_id)
            if result.ok:
                print_trace(explorer.trace_view())
        elif args.command == "search":
            filters = normalize(explorer.filters, {
                "service_name": args.service,
                "operation_name": args.operation,
                "status": args.status,
                "gen_ai_model": args.model,
                "limit": args.limit,
            })
            explorer.filters = with_page(filters, args.page)
            result = await explorer.load_search()
            if result.ok:
                print_search(explorer.search_view())
        else:
            result = await explorer.load_enrichment(args.timeframe)
            if result.ok:
                print_enrichment(explorer.enrichment_view())

    if result.error is not None:
        print(f"Error: {result.error.message}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="telemetry_explorer",
        description="Explore spans and traces in a telemetry store",
    )
    parser.add_argument("--url", default=None, help="API base URL (default: TELEMETRY_API_URL)")
    parser.add_argument("--api-key", default=None, help="Bearer token (default: TELEMETRY_API_KEY)")
    parser.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Logging level")

    commands = parser.add_subparsers(dest="command", required=True)

    trace = commands.add_parser("trace", help="Print a trace as a span tree")
    trace.add_argument("trace_id")

    search = commands.add_parser("search", help="Search spans")
    search.add_argument("--service", default=None)
    search.add_argument("--operation", default=None)
    search.add_argument("--status", choices=["success", "error", "unset"], default=None)
    search.add_argument("--model", default=None)
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--limit", type=int, default=20)

    enrichment = commands.add_parser("enrichment", help="Print enrichment stats")
    enrichment.add_argument("--timeframe", choices=list(config.TIMEFRAMES), default="1h")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    try:
        return asyncio.run(run(args))
    except TelemetryError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
