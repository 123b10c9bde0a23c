"""Periodic monitor scheduler.

Every tick dispatches the configured monitors one after another, in
configuration order, each awaited to completion before the next starts.
Ticks are spaced ``monitor_period`` seconds apart measured from the start
of the previous tick. A tick that overruns the period delays the next one;
ticks never overlap and missed ticks are not replayed.

``run_tick`` is the containment point for dispatch failures: a failing
monitor is logged, counted in ``github_exporter_dispatch_errors_total`` and
skipped for this tick, and the remaining monitors still run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .config.models import AnyMonitor, Config
from .github.client import GitHubClient
from .monitors.dispatcher import MonitorDispatcher
from .monitors.exceptions import MonitorError, UnsupportedMonitorError

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"


@dataclass
class TickResult:
    """Outcome of one pass over the configured monitors."""

    started_at: datetime
    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when every monitor was dispatched successfully."""
        return not self.failed


class MonitorScheduler:
    """Drives the fixed-period dispatch loop."""

    def __init__(
        self,
        config: Config,
        client: GitHubClient,
        dispatcher: MonitorDispatcher,
    ) -> None:
        """Initialize the scheduler.

        Args:
            config: Loaded configuration, shared read-only
            client: Authenticated primary GitHub client
            dispatcher: Dispatcher writing into the metric registry
        """
        self.config = config
        self.client = client
        self.dispatcher = dispatcher
        self.shutdown_event = asyncio.Event()
        self.running = False

        self.stats: dict[str, Any] = {
            "total_ticks": 0,
            "total_dispatches": 0,
            "successful_dispatches": 0,
            "failed_dispatches": 0,
            "last_tick_at": None,
        }

    async def _dispatch(self, monitor: AnyMonitor) -> None:
        dispatch = self.dispatcher.dispatch(
            self.client, self.config.default_repo, monitor
        )
        if self.config.monitor_timeout is None:
            await dispatch
        else:
            await asyncio.wait_for(dispatch, timeout=self.config.monitor_timeout)

    async def run_tick(self) -> TickResult:
        """Dispatch every monitor once, sequentially.

        Returns:
            Which monitors succeeded and which failed, with the reason
        """
        result = TickResult(started_at=datetime.now(UTC))
        self.stats["total_ticks"] += 1
        self.stats["last_tick_at"] = result.started_at

        for monitor in self.config.monitoring:
            description = monitor.describe()
            self.stats["total_dispatches"] += 1
            try:
                await self._dispatch(monitor)
            except UnsupportedMonitorError as e:
                logger.error(
                    f"Monitor {description} uses an unsupported feature and was "
                    f"skipped: {e}"
                )
                self._record_failure(result, description, e.reason)
            except TimeoutError:
                logger.warning(
                    f"Monitor {description} did not finish within "
                    f"{self.config.monitor_timeout}s and was cancelled"
                )
                self._record_failure(result, description, TIMEOUT_REASON)
            except MonitorError as e:
                logger.error(f"Monitor {description} failed: {e}")
                self._record_failure(result, description, e.reason)
            else:
                self.stats["successful_dispatches"] += 1
                result.succeeded.append(description)

        logger.info(
            f"Tick completed: {len(result.succeeded)} succeeded, "
            f"{len(result.failed)} failed"
        )
        return result

    def _record_failure(self, result: TickResult, description: str, reason: str) -> None:
        self.stats["failed_dispatches"] += 1
        result.failed.append((description, reason))
        self.dispatcher.registry.record_dispatch_error(description, reason)

    async def run(self) -> None:
        """Tick every ``monitor_period`` seconds until ``stop`` is called."""
        loop = asyncio.get_running_loop()
        period = self.config.monitor_period
        self.running = True

        logger.info(
            f"Starting monitor loop (interval: {period}s, "
            f"{len(self.config.monitoring)} monitors)"
        )

        try:
            while not self.shutdown_event.is_set():
                tick_start = loop.time()
                await self.run_tick()

                delay = tick_start + period - loop.time()
                if delay <= 0:
                    logger.warning(
                        f"Tick took {period - delay:.1f}s, longer than the "
                        f"{period}s period; starting next tick now"
                    )
                    continue

                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=delay)
                except TimeoutError:
                    continue
        finally:
            self.running = False
            logger.info("Monitor loop stopped")

    def stop(self) -> None:
        """Ask the loop to exit after the current tick."""
        self.shutdown_event.set()
