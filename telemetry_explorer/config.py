"""Environment configuration for the telemetry explorer.

Values are read once at import time from the process environment, after
loading the nearest ``.env`` file. Constructor arguments of
:class:`~telemetry_explorer.client.TelemetryClient` take precedence.
"""

import os

from dotenv import load_dotenv, find_dotenv

load_dotenv(find_dotenv(usecwd=True), override=False)

API_URL = os.getenv("TELEMETRY_API_URL", "http://localhost:8000/api")
API_KEY = os.getenv("TELEMETRY_API_KEY", "")

# Default timeout for API requests (seconds)
DEFAULT_TIMEOUT = float(os.getenv("TELEMETRY_TIMEOUT", "30"))

# How long a cached response is served without a new request (seconds)
DEFAULT_STALE_SECONDS = float(os.getenv("TELEMETRY_STALE_SECONDS", "30"))

# Dashboard polling interval (seconds)
DEFAULT_POLL_SECONDS = float(os.getenv("TELEMETRY_POLL_SECONDS", "30"))

LOG_LEVEL = os.getenv("TELEMETRY_LOG_LEVEL", "INFO")

# Per-operation staleness windows, mirroring how often each view refreshes.
STALE_SECONDS_BY_OPERATION = {
    "search": DEFAULT_STALE_SECONDS,
    "trace": 60.0,
    "metrics": 60.0,
    "dashboard": 10.0,
    "enriched_spans": DEFAULT_STALE_SECONDS,
    "enrichment_stats": DEFAULT_STALE_SECONDS,
}

TIMEFRAMES = ("1h", "24h", "7d", "30d")
