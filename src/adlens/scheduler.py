# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Scan scheduler: debounce + throttle + mutex over one cooperative loop.

DOM mutations, the periodic reconciliation sweep and scroll-settle all
request scans through here:

- **Debounce**: ``schedule()`` replaces any pending timer, so a burst of
  requests collapses into one trailing ``request_scan()``.
- **Throttle**: a scan *starts* only if none is running and at least
  ``throttle_s`` elapsed since the last start. Throttled requests are
  dropped, not queued.
- **Mutex**: ``ScanState.in_progress`` is checked and set with no await in
  between, and released in ``finally``.
- **Mutation budget**: observer callbacks beyond
  ``max_mutations_per_window`` inside one window are ignored until the
  window resets.
- **Force**: ``force_scan()`` clears ``last_start``. If a scan is running
  it queues exactly one re-run.

Clock: ``time.monotonic()`` (injectable for tests).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from dataclasses import dataclass
from typing import Any

from .config import ScannerConfig
from .events import MutationRecord

logger = logging.getLogger(__name__)


@dataclass
class ScanState:
    """Process-wide scan mutex + throttle bookkeeping."""

    in_progress: bool = False
    last_start: float | None = None
    pending: asyncio.TimerHandle | None = None  # debounce timer


@dataclass
class MutationBudget:
    """Observer callbacks counted inside the current window."""

    count: int = 0
    reset_handle: asyncio.TimerHandle | None = None


class ScanScheduler:
    """Serializes scan requests from every trigger source."""

    def __init__(
        self,
        scan: Callable[[], Awaitable[Any]],
        *,
        count_unprocessed: Callable[[], Awaitable[int]] | None = None,
        cleanup: Callable[[], Awaitable[Any]] | None = None,
        config: ScannerConfig | None = None,
        state: ScanState | None = None,
        budget: MutationBudget | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._scan = scan
        self._count_unprocessed = count_unprocessed
        self._cleanup = cleanup
        self.config = config or ScannerConfig()
        self.state = state if state is not None else ScanState()
        self.budget = budget if budget is not None else MutationBudget()
        self._clock = clock
        self._rerun = False
        self._tasks: set[asyncio.Task] = set()
        self._timers: list[asyncio.TimerHandle] = []
        self._scroll_handle: asyncio.TimerHandle | None = None
        self._reconcile_task: asyncio.Task | None = None
        self.scans_started = 0
        self.scans_failed = 0

    # -- debounce ---------------------------------------------------------

    def schedule(self, delay: float | None = None) -> None:
        """Request a scan after *delay* seconds (default: debounce window)."""
        loop = asyncio.get_running_loop()
        if self.state.pending is not None:
            self.state.pending.cancel()
        wait = self.config.debounce_s if delay is None else delay
        self.state.pending = loop.call_later(wait, self._on_debounce_settled)

    def _on_debounce_settled(self) -> None:
        self.state.pending = None
        self._spawn(self.request_scan())

    # -- throttle + mutex -------------------------------------------------

    def can_start(self) -> bool:
        if self.state.in_progress:
            return False
        last = self.state.last_start
        return last is None or (self._clock() - last) >= self.config.throttle_s

    async def request_scan(self) -> bool:
        """Start a scan now if the mutex and throttle allow it. Returns True if one ran."""
        if not self.can_start():
            logger.debug("Scan throttled (in_progress=%s)", self.state.in_progress)
            return False
        self.state.in_progress = True
        self.state.last_start = self._clock()
        self.scans_started += 1
        try:
            await self._scan()
        except Exception:
            self.scans_failed += 1
            logger.exception("Scan failed")
        finally:
            self.state.in_progress = False
        if self._rerun:
            self._rerun = False
            self.force_scan()
        return True

    def force_scan(self) -> asyncio.Task | None:
        """Bypass debounce and throttle. Never runs two scans at once."""
        self.state.last_start = None
        if self.state.in_progress:
            self._rerun = True
            return None
        return self._spawn(self.request_scan())

    # -- trigger sources --------------------------------------------------

    def on_mutation(self, records: Sequence[MutationRecord]) -> bool:
        """Observer callback. Returns True if it led to a schedule() call."""
        budget = self.budget
        budget.count += 1
        if budget.count > self.config.max_mutations_per_window:
            return False
        if budget.reset_handle is None:
            loop = asyncio.get_running_loop()
            budget.reset_handle = loop.call_later(self.config.mutation_window_s, self._reset_budget)
        if any(r.has_new_content for r in records):
            self.schedule()
            return True
        return False

    def _reset_budget(self) -> None:
        self.budget.count = 0
        self.budget.reset_handle = None

    def on_scroll(self) -> None:
        loop = asyncio.get_running_loop()
        if self._scroll_handle is not None:
            self._scroll_handle.cancel()
        self._scroll_handle = loop.call_later(self.config.scroll_settle_s, self._on_scroll_settled)

    def _on_scroll_settled(self) -> None:
        self._scroll_handle = None
        if self._cleanup is not None and not self.state.in_progress:
            self._spawn(self._run_cleanup())
        self.schedule(self.config.scroll_rescan_delay_s)

    async def _run_cleanup(self) -> None:
        try:
            await self._cleanup()
        except Exception:
            logger.warning("Duplicate cleanup failed", exc_info=True)

    async def reconcile_once(self) -> int:
        """One sweep: force a scan when detector-visible cards lack controls."""
        if self._count_unprocessed is None or self.state.in_progress:
            return 0
        try:
            count = await self._count_unprocessed()
        except Exception:
            logger.warning("Reconciliation sweep failed", exc_info=True)
            return 0
        if count > 0:
            logger.info("Found %d unprocessed cards, forcing scan", count)
            self.force_scan()
        return count

    async def _reconcile_forever(self) -> None:
        while True:
            await asyncio.sleep(self.config.reconcile_interval_s)
            await self.reconcile_once()

    # -- lifecycle --------------------------------------------------------

    def start(self) -> None:
        """Arm warm-up scans and the reconciliation sweep."""
        loop = asyncio.get_running_loop()
        for delay in self.config.warmup_delays_s:
            self._timers.append(loop.call_later(delay, self._warmup))
        if self._count_unprocessed is not None and self._reconcile_task is None:
            self._reconcile_task = loop.create_task(self._reconcile_forever())
        logger.info("Scan scheduler started")

    def _warmup(self) -> None:
        self._spawn(self.request_scan())

    async def stop(self) -> None:
        for handle in (*self._timers, self.state.pending, self._scroll_handle, self.budget.reset_handle):
            if handle is not None:
                handle.cancel()
        self._timers.clear()
        self.state.pending = None
        self._scroll_handle = None
        self.budget.reset_handle = None
        self.budget.count = 0
        tasks = list(self._tasks)
        if self._reconcile_task is not None:
            tasks.append(self._reconcile_task)
            self._reconcile_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        logger.info("Scan scheduler stopped (scans=%d, failed=%d)", self.scans_started, self.scans_failed)

    async def drain(self) -> None:
        """Wait for spawned scan/cleanup tasks (tests, CLI one-shot)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
