"""Interval polling with deterministic cancellation."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag shared between a poller and the work it schedules.

    Work should check :attr:`is_cancelled` after every await and before
    committing any result.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason = ""

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation."""
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        """Wait until cancellation is signalled."""
        await self._event.wait()


class Poller:
    """Run an async callback every ``interval`` seconds until stopped.

    A failing tick is logged and the loop goes on; errors still reach the
    callback's own error handling first.

    Parameters
    ----------
    callback : Callable[[CancellationToken], Awaitable[Any]]
        Work for one tick. Receives the poller's token.
    interval : float
        Seconds between the end of one tick and the start of the next.
    name : str
        Used in log messages.
    run_immediately : bool
        Run the first tick on start instead of after one interval.

    Examples
    --------
    ```python
    poller = Poller(lambda token: explorer.load_dashboard(), interval=10)
    poller.start()
    ...
    await poller.stop()  # no tick runs or commits after this returns
    ```
    """

    def __init__(
        self,
        callback: Callable[[CancellationToken], Awaitable[Any]],
        interval: float,
        name: str = "poller",
        run_immediately: bool = True,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self.interval = interval
        self.name = name
        self.run_immediately = run_immediately
        self.ticks = 0
        self._token: Optional[CancellationToken] = None
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def token(self) -> Optional[CancellationToken]:
        return self._token

    def start(self) -> CancellationToken:
        """Start polling; calling it on a running poller is a no-op."""
        if self.running:
            return self._token
        self._token = CancellationToken()
        self._task = asyncio.ensure_future(self._run(self._token))
        logger.info(f"Started {self.name} every {self.interval}s")
        return self._token

    async def stop(self) -> None:
        """Cancel the token and the loop, and wait for it to finish."""
        if self._token is not None:
            self._token.cancel(f"{self.name} stopped")
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Stopped {self.name} after {self.ticks} tick(s)")

    async def _run(self, token: CancellationToken) -> None:
        if not self.run_immediately and await self._sleep(token):
            return
        while not token.is_cancelled:
            try:
                await self._callback(token)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{self.name} tick failed: {e}")
            self.ticks += 1
            if await self._sleep(token):
                return

    async def _sleep(self, token: CancellationToken) -> bool:
        """Wait one interval; True when cancelled meanwhile."""
        try:
            await asyncio.wait_for(token.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            return token.is_cancelled
        return True
