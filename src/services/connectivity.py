"""Network reachability tracking.

The platform (or the optional probe loop) reports observations through
:meth:`ConnectivityMonitor.set_reachable`.  Subscribers are notified only when
the observed value actually changes, so a burst of identical reports never
produces duplicate events.

Callbacks receive the new reachability.  Plain callables run inline;
coroutine functions are scheduled as tasks on the running loop.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable

import httpx
import structlog

logger = structlog.get_logger(__name__)

ConnectivityCallback = Callable[[bool], Awaitable[None] | None]
Unsubscribe = Callable[[], None]


class ConnectivityMonitor:
    """Boolean reachability plus transition notifications.

    Parameters
    ----------
    initially_reachable:
        Assumed state before the first observation.
    probe_url:
        URL hit by the background probe loop (see :meth:`start`).
    poll_interval:
        Seconds between probes.
    probe_timeout:
        Timeout of a single probe request.
    """

    def __init__(
        self,
        *,
        initially_reachable: bool = True,
        probe_url: str | None = None,
        poll_interval: float = 15.0,
        probe_timeout: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._reachable = initially_reachable
        self._subscribers: list[ConnectivityCallback] = []
        self._pending: set[asyncio.Task] = set()  # type: ignore[type-arg]
        self._probe_url = probe_url
        self._poll_interval = poll_interval
        self._probe_timeout = probe_timeout
        self._http = http_client
        self._owns_http = http_client is None
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    @property
    def is_running(self) -> bool:
        return self._running

    def set_reachable(self, reachable: bool) -> bool:
        """Record an observation; returns ``True`` if it was a transition."""
        if reachable == self._reachable:
            return False
        self._reachable = reachable
        logger.info("connectivity.changed", reachable=reachable)
        for callback in list(self._subscribers):
            self._dispatch(callback, reachable)
        return True

    def subscribe(self, callback: ConnectivityCallback) -> Unsubscribe:
        """Register *callback* for transitions; returns the unsubscribe handle."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _dispatch(self, callback: ConnectivityCallback, reachable: bool) -> None:
        try:
            result = callback(reachable)
        except Exception:
            logger.error("connectivity.callback_failed", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:  # type: ignore[type-arg]
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("connectivity.callback_failed", exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Wait until every scheduled async callback has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Probe loop
    # ------------------------------------------------------------------

    async def probe(self) -> bool:
        """Issue one HEAD request to the probe URL and record the outcome."""
        if self._probe_url is None:
            return self._reachable
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._probe_timeout)
        try:
            await self._http.head(self._probe_url, timeout=self._probe_timeout)
            reachable = True
        except httpx.TransportError:
            reachable = False
        self.set_reachable(reachable)
        return reachable

    def start(self) -> None:
        """Start the background probe loop if a probe URL is configured."""
        if self._probe_url is None or self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        logger.info("connectivity.probe_started", url=self._probe_url)
        try:
            while self._running:
                await self.probe()
                await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            logger.info("connectivity.probe_cancelled")
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop probing, drain pending callbacks and release the HTTP client."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            self._task = None
        await self.wait_idle()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        logger.info("connectivity.stopped")
