"""Real-time dashboard subscription.

Re-runs the dashboard aggregation whenever the submission collection changes
and pushes the fresh ``DashboardStats`` to a callback. Unsubscribing detaches
the listener; an aggregation already running is allowed to finish.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Set, Union

from clinicalforge.schemas.dashboard import DashboardStats
from clinicalforge.services.dashboard import DashboardService
from clinicalforge.services.notifier import ChangeEvent, ChangeNotifier

logger = logging.getLogger(__name__)

StatsCallback = Callable[[DashboardStats], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[BaseException], Any]


class DashboardSubscription:
    def __init__(self, notifier: ChangeNotifier, dashboard: DashboardService) -> None:
        self.notifier = notifier
        self.dashboard = dashboard
        self._tasks: Set[asyncio.Task] = set()

    async def _refresh(self, callback: StatsCallback, on_error: Optional[ErrorCallback]) -> None:
        stats = await self.dashboard.get_dashboard_stats()
        try:
            result = callback(stats)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.exception("Dashboard subscriber failed")
            if on_error is not None:
                on_error(exc)

    def _spawn(self, callback: StatsCallback, on_error: Optional[ErrorCallback]) -> None:
        task = asyncio.get_running_loop().create_task(self._refresh(callback, on_error))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def subscribe(
        self, callback: StatsCallback, on_error: Optional[ErrorCallback] = None
    ) -> Callable[[], None]:
        """Push current stats now and after every change. Must run inside the event loop.

        Returns the unsubscribe function.
        """

        loop = asyncio.get_running_loop()
        active = True

        def on_change(event: ChangeEvent) -> None:
            if not active:
                return
            logger.debug("Refreshing dashboard after %s of %s", event.kind, event.submission_id)
            loop.call_soon_threadsafe(self._spawn, callback, on_error)

        detach = self.notifier.subscribe(on_change)
        self._spawn(callback, on_error)

        def unsubscribe() -> None:
            nonlocal active
            active = False
            detach()

        return unsubscribe

    async def drain(self) -> None:
        """Wait for in-flight refreshes, including ones scheduled but not yet started."""

        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)
