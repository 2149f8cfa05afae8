"""Pytest configuration and fixtures for explorer tests."""

import pytest
import respx

BASE_URL = "http://telemetry.test/api"


def make_span(span_id, parent=None, trace_id="trace-1", **fields):
    """Build a raw span record as the store returns it."""
    record = {
        "trace_id": trace_id,
        "span_id": span_id,
        "parent_span_id": parent,
        "operation_name": fields.pop("operation_name", f"op-{span_id}"),
        "duration_ms": fields.pop("duration_ms", 10),
        "status": fields.pop("status", "success"),
        "timestamp": fields.pop("timestamp", "2025-01-15T14:30:45Z"),
    }
    record.update(fields)
    return record


@pytest.fixture
def respx_mock():
    """Fixture that provides a respx mock router.

    Configuration:
        - assert_all_mocked=True: No request may reach a real server.
        - assert_all_called=True: Ensures every mock defined is actually used.
          Catches typos in mock URLs and dead mocks.
    """
    with respx.mock(assert_all_mocked=True, assert_all_called=True) as mock:
        yield mock


@pytest.fixture
def sample_spans():
    """Three spans of one trace: a root, its child and an orphan."""
    return [
        make_span("1"),
        make_span("2", parent="1", status="error", cost_usd=0.002),
        make_span("3", parent="99", duration_ms=30),
    ]
