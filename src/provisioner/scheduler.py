"""Time-of-day aware retry scheduling with jitter.

Two cadences are configured: the standard one, and an optional peak one
that applies while the local hour falls inside a window. The window is
inclusive on both ends and wraps past midnight when start > end, so
22-2 covers 22, 23, 0, 1 and 2.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .events import Event
from .models import RetrySection

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


class ProfileLabel(str, Enum):
    STANDARD = "standard"
    PEAK = "peak"


@dataclass(frozen=True)
class RetryProfile:
    """Cadence in force for one wait."""

    interval_seconds: int
    jitter_seconds: int
    label: ProfileLabel


def in_peak_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """True if ``hour`` lies in the inclusive, wrap-aware window."""
    if start_hour <= end_hour:
        return start_hour <= hour <= end_hour
    return hour >= start_hour or hour <= end_hour


def local_now() -> datetime:
    return datetime.now().astimezone()


class RetryScheduler:
    """Chooses the retry profile and performs the jittered wait."""

    def __init__(
        self,
        settings: RetrySection,
        sleeper: Sleeper,
        *,
        rng: random.Random | None = None,
        clock: Clock = local_now,
    ) -> None:
        self._settings = settings
        self._sleep = sleeper
        self._rng = rng or random.Random()
        self._clock = clock

    @property
    def standard(self) -> RetryProfile:
        return RetryProfile(
            interval_seconds=self._settings.interval_seconds,
            jitter_seconds=self._settings.jitter_seconds,
            label=ProfileLabel.STANDARD,
        )

    @property
    def peak(self) -> RetryProfile:
        peak = self._settings.peak_hours
        return RetryProfile(
            interval_seconds=peak.interval_seconds,
            jitter_seconds=peak.jitter_seconds,
            label=ProfileLabel.PEAK,
        )

    def current_profile(self, now: datetime | None = None) -> RetryProfile:
        """Profile for the given local time (defaults to the injected clock)."""
        peak = self._settings.peak_hours
        hour = (now or self._clock()).hour
        if peak.enabled and in_peak_window(hour, peak.start_hour, peak.end_hour):
            return self.peak
        return self.standard

    def compute_delay(self, profile: RetryProfile) -> int:
        """Whole seconds to wait: interval plus 0..jitter inclusive."""
        jitter = self._rng.randint(0, profile.jitter_seconds) if profile.jitter_seconds > 0 else 0
        return profile.interval_seconds + jitter

    def log_profile_change(
        self, profile: RetryProfile, previous_label: ProfileLabel | None
    ) -> ProfileLabel:
        """Log the profile when its label differs from the previous wait."""
        if profile.label != previous_label:
            logger.info(
                f"Using {profile.label.value} retry profile: "
                f"{profile.interval_seconds}s + 0..{profile.jitter_seconds}s jitter",
                extra={
                    "event": Event.RETRY_PROFILE,
                    "profile": profile.label.value,
                    "interval_seconds": profile.interval_seconds,
                    "jitter_seconds": profile.jitter_seconds,
                },
            )
        return profile.label

    async def wait(self, profile: RetryProfile) -> int:
        """Sleep for a jittered delay and return the realized seconds."""
        delay = self.compute_delay(profile)
        logger.info(
            f"Sleeping {delay}s before next attempt",
            extra={"event": Event.RETRY_SLEEP, "delay_seconds": delay, "profile": profile.label.value},
        )
        await self._sleep(delay)
        return delay
