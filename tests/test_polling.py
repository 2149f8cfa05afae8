"""Tests for interval polling."""

import asyncio

import pytest

from telemetry_explorer.polling import CancellationToken, Poller


class TestCancellationToken:
    def test_cancel_sets_reason(self):
        token = CancellationToken()
        assert not token.is_cancelled

        token.cancel("page closed")

        assert token.is_cancelled
        assert token.reason == "page closed"

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self):
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        token.cancel()

        await asyncio.wait_for(waiter, timeout=1)


class TestPoller:
    """Tests for Poller."""

    def test_rejects_non_positive_interval(self):
        async def tick(token):
            pass

        with pytest.raises(ValueError):
            Poller(tick, interval=0)

    @pytest.mark.asyncio
    async def test_runs_repeatedly_until_stopped(self):
        seen = asyncio.Event()
        calls = []

        async def tick(token):
            calls.append(token)
            if len(calls) >= 3:
                seen.set()

        poller = Poller(tick, interval=0.01)
        token = poller.start()
        await asyncio.wait_for(seen.wait(), timeout=2)
        await poller.stop()

        assert token.is_cancelled
        assert not poller.running
        count = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == count

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_polling(self):
        seen = asyncio.Event()
        calls = []

        async def tick(token):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            seen.set()

        poller = Poller(tick, interval=0.01)
        poller.start()
        await asyncio.wait_for(seen.wait(), timeout=2)
        await poller.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_delayed_first_tick(self):
        calls = []

        async def tick(token):
            calls.append(1)

        poller = Poller(tick, interval=10, run_immediately=False)
        poller.start()
        await asyncio.sleep(0.01)
        await poller.stop()

        assert calls == []

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_token(self):
        async def tick(token):
            pass

        poller = Poller(tick, interval=10)
        assert poller.start() is poller.start()
        await poller.stop()
