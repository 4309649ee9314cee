# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Cancellable background scheduler for periodic key rotation."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from croniter import croniter

from gateway_logging import Logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RotationScheduler:
    """Runs a callback on a fixed interval or a cron schedule.

    Exactly one of ``interval_seconds`` and ``cron_expression`` drives the
    schedule; a cron expression wins when both are given. Cron expressions
    use the standard five-field syntax and are evaluated in UTC.

    The callback runs on the scheduler's own daemon thread. ``stop`` wakes
    the thread immediately instead of waiting for the next run.
    """

    def __init__(
        self,
        callback: Callable[[], object],
        interval_seconds: float | None = None,
        cron_expression: str | None = None,
        logger: Logger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the scheduler.

        Args:
            callback: Function invoked on every run
            interval_seconds: Seconds between runs
            cron_expression: Five-field cron expression (UTC)
            logger: Logger instance
            clock: Returns the current aware datetime; injectable for tests

        Raises:
            ValueError: If neither schedule is given, the interval is not
                positive, or the cron expression is invalid
        """
        if cron_expression:
            if not croniter.is_valid(cron_expression):
                raise ValueError(f"Invalid cron expression: {cron_expression}")
        elif interval_seconds is None or interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive when no cron expression is given")

        self.callback = callback
        self.interval_seconds = interval_seconds
        self.cron_expression = cron_expression or None
        self.logger = logger
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False
        self.next_run: datetime | None = None

    def next_run_after(self, moment: datetime) -> datetime:
        """Return the first scheduled run strictly after ``moment``."""
        if self.cron_expression:
            return croniter(self.cron_expression, moment).get_next(datetime)
        return moment + timedelta(seconds=self.interval_seconds)

    def start(self):
        """Start the scheduler in a background thread."""
        if self._running:
            if self.logger:
                self.logger.warning("Rotation scheduler already running")
            return

        self._stop_event.clear()
        self.next_run = self.next_run_after(self._clock())
        self._thread = threading.Thread(target=self._run_loop, name="key-rotation-scheduler", daemon=True)
        self._running = True
        self._thread.start()

        if self.logger:
            self.logger.info(
                "Rotation scheduler started",
                interval_seconds=self.interval_seconds,
                cron_expression=self.cron_expression,
                next_run=self.next_run.isoformat(),
            )

    def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return

        self._stop_event.set()

        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=10)

        self._running = False
        self.next_run = None

        if self.logger:
            self.logger.info("Rotation scheduler stopped")

    def _run_loop(self):
        """Main scheduler loop."""
        while not self._stop_event.is_set():
            next_run = self.next_run or self.next_run_after(self._clock())
            delay = max(0.0, (next_run - self._clock()).total_seconds())
            if self._stop_event.wait(delay):
                break

            try:
                self.callback()
            except Exception as e:
                if self.logger:
                    self.logger.error(
                        "Error in scheduled key rotation",
                        error=str(e),
                        exc_info=True,
                    )

            self.next_run = self.next_run_after(self._clock())

    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
