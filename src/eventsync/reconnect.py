"""
Reconnection Scheduler for the eventsync system.

Computes exponential backoff with jitter and owns the single timer that
drives the next reconnection attempt of a session.

delay(n) = min(base * 2^n, cap) + uniform(0, max_jitter)

The attempt counter increases with every scheduled retry and goes back to
zero after a successful connection, so a fresh failure always starts from
the attempt-0 delay again.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .config import ReconnectConfig
from .enums import LogLevel


class ReconnectionScheduler:
    """
    Backoff calculator plus a single cancellable retry timer.

    The sleep primitive and the jitter source are injectable so timers can be
    driven deterministically.
    """

    def __init__(
        self,
        config: ReconnectConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            config: Backoff base, cap, jitter range and attempt budget
            sleep: Coroutine used to wait out a delay
            rng: Random source for jitter
            logger: Optional audit logger
        """
        self._config = config
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._logger = logger
        self._attempt = 0
        self._task: Optional[asyncio.Task[None]] = None
        self._last_delay: Optional[float] = None

    @property
    def config(self) -> ReconnectConfig:
        return self._config

    @property
    def attempt(self) -> int:
        """Number of retries scheduled since the last successful connection."""
        return self._attempt

    @property
    def last_delay(self) -> Optional[float]:
        """Delay chosen by the most recent schedule() call."""
        return self._last_delay

    @property
    def exhausted(self) -> bool:
        return self._attempt >= self._config.max_attempts

    @property
    def pending(self) -> bool:
        """True while a retry timer is outstanding."""
        return self._task is not None and not self._task.done()

    def base_delay(self, attempt: int) -> float:
        """
        Backoff without jitter for a 0-indexed attempt, capped at max_delay.

        Args:
            attempt: The attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        # 2 ** attempt overflows float conversion for very large attempts
        exponent = min(attempt, 62)
        delay = self._config.base_delay_seconds * (2 ** exponent)
        return min(delay, self._config.max_delay_seconds)

    def compute_delay(self, attempt: int) -> float:
        """Backoff for a 0-indexed attempt plus uniform jitter in [0, max_jitter)."""
        jitter = self._rng.random() * self._config.max_jitter_seconds
        return self.base_delay(attempt) + jitter

    def schedule(self, callback: Callable[[], Awaitable[None]]) -> Optional[float]:
        """
        Arm the retry timer, replacing any outstanding one.

        Args:
            callback: Coroutine function run once the delay has elapsed

        Returns:
            The chosen delay in seconds, or None when the attempt budget is spent
        """
        if self.exhausted:
            return None

        self.cancel()
        delay = self.compute_delay(self._attempt)
        self._attempt += 1
        self._last_delay = delay
        self._task = asyncio.create_task(
            self._fire(delay, callback),
            name=f"eventsync-reconnect-{self._attempt}",
        )

        if self._logger is not None:
            self._logger.log(
                LogLevel.INFO,
                "ReconnectionScheduler",
                f"Scheduling reconnection in {delay:.2f}s",
                {"attempt": self._attempt, "max_attempts": self._config.max_attempts},
            )
        return delay

    def cancel(self) -> bool:
        """
        Cancel the outstanding timer, if any.

        Returns:
            True if a pending timer was cancelled
        """
        task = self._task
        self._task = None
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            # The timer already fired and is running its callback
            return False
        task.cancel()
        return True

    def reset(self) -> None:
        """Restart the backoff curve at attempt 0."""
        self._attempt = 0
        self._last_delay = None

    async def _fire(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        await self._sleep(delay)
        if self._task is asyncio.current_task():
            self._task = None
        await callback()
