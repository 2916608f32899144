"""Market-hours gate and the daily market-close refresh timer."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone

from .errors import PortfolioError

logger = logging.getLogger(__name__)

# NSE trades on India Standard Time, which has no DST
IST = timezone(timedelta(hours=5, minutes=30), "IST")
MARKET_OPEN = time(9, 15)
MARKET_CLOSE = time(15, 30)


def to_ist(now: datetime) -> datetime:
    """Convert to IST; naive datetimes are taken as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(IST)


def is_market_open(now: datetime) -> bool:
    """Mon-Fri, 09:15 to 15:30 IST inclusive, at minute resolution."""
    local = to_ist(now)
    if local.weekday() >= 5:
        return False
    minutes = local.hour * 60 + local.minute
    opens = MARKET_OPEN.hour * 60 + MARKET_OPEN.minute
    closes = MARKET_CLOSE.hour * 60 + MARKET_CLOSE.minute
    return opens <= minutes <= closes


def should_fetch_live(now: datetime, forced: bool = False) -> bool:
    """Whether a refresh should hit the quote providers at `now`."""
    return forced or is_market_open(now)


def next_market_close(now: datetime) -> datetime:
    """The next 15:30 IST strictly after `now`, weekends included."""
    local = to_ist(now)
    target = local.replace(
        hour=MARKET_CLOSE.hour, minute=MARKET_CLOSE.minute, second=0, microsecond=0
    )
    if target <= local:
        target += timedelta(days=1)
    return target


@dataclass
class ScheduleStatus:
    """Status of the daily refresh timer."""

    enabled: bool
    next_run: str | None
    runs: int


class RefreshScheduler:
    """Runs a job at every market close until cancelled.

    The timer is a one-shot ``TimerHandle``; each run re-arms it for the
    following close, so a slow job never overlaps the next one.
    """

    def __init__(
        self,
        job: Callable[[], Awaitable[object]],
        clock: Callable[[], datetime] | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.job = job
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self.next_run: datetime | None = None
        self.runs = 0

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    def schedule(self) -> asyncio.TimerHandle:
        """Arm the timer for the next market close, replacing any pending one."""
        if self._handle is not None:
            self._handle.cancel()

        now = self.clock()
        self.next_run = next_market_close(now)
        delay = max(0.0, (self.next_run - to_ist(now)).total_seconds())
        self._handle = self.loop.call_later(delay, self._fire)
        logger.info(
            "Daily refresh scheduled for %s (in %.0f min)",
            self.next_run.strftime("%Y-%m-%d %H:%M %Z"),
            delay / 60,
        )
        return self._handle

    def _fire(self) -> None:
        self._handle = None
        self._task = self.loop.create_task(self._run())

    async def _run(self) -> None:
        logger.info("Running daily market-close refresh")
        try:
            await self.job()
            self.runs += 1
        except PortfolioError as e:
            logger.error("Daily refresh failed: %s", e)
        except Exception:
            # Keep the timer alive; cancellation still propagates
            logger.exception("Daily refresh crashed")
        finally:
            self._task = None
        self.schedule()

    def cancel(self) -> None:
        """Clear the timer and stop a run that is in flight."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.next_run = None
        logger.debug("Daily refresh timer cancelled")

    def status(self) -> ScheduleStatus:
        return ScheduleStatus(
            enabled=self.is_scheduled,
            next_run=self.next_run.strftime("%Y-%m-%d %H:%M:%S %Z") if self.next_run else None,
            runs=self.runs,
        )
