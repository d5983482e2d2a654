"""
APScheduler jobs that drive a tracking session's clocks.

Two interval jobs publish events onto the session queue:
  metrics_tick  (1 Hz)  → MetricsTick: advance duration, refresh running stats
  checkpoint    (5 s)   → CheckpointTick: persist an activity snapshot

The jobs only publish; the session's consumer does the work, so a tick can
never interleave with a GPS or BLE update. Job functions are coroutines so
AsyncIOScheduler runs them on the event loop thread rather than a worker thread.
"""
import logging
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from runtracker.tracking.events import CheckpointTick, MetricsTick

logger = logging.getLogger(__name__)

Publish = Callable[[object], None]


def build_scheduler(
    publish: Publish,
    tick_seconds: float = 1.0,
    checkpoint_seconds: float = 5.0,
) -> AsyncIOScheduler:
    """
    Create and configure the tracking scheduler.

    Args:
        publish: session.publish (enqueues an event, never blocks).
        tick_seconds: metrics refresh interval.
        checkpoint_seconds: persistence checkpoint interval.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _publish_event,
        trigger="interval",
        seconds=tick_seconds,
        id="metrics_tick",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        kwargs={"publish": publish, "event": MetricsTick()},
    )
    scheduler.add_job(
        _publish_event,
        trigger="interval",
        seconds=checkpoint_seconds,
        id="checkpoint",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        kwargs={"publish": publish, "event": CheckpointTick()},
    )

    return scheduler


async def _publish_event(publish: Publish, event) -> None:
    publish(event)


class TrackerTimers:
    """
    Start/stop wrapper around one scheduler per tracking run.

    start() and stop() are idempotent: end, discard and shutdown may all call
    stop() on the same run.
    """

    def __init__(self, publish: Publish, tick_seconds: float = 1.0, checkpoint_seconds: float = 5.0):
        self._publish = publish
        self.tick_seconds = tick_seconds
        self.checkpoint_seconds = checkpoint_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = build_scheduler(
            self._publish, self.tick_seconds, self.checkpoint_seconds
        )
        self._scheduler.start()
        logger.debug(
            "Timers started (tick %.1fs, checkpoint %.1fs)",
            self.tick_seconds,
            self.checkpoint_seconds,
        )

    def stop(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        scheduler.shutdown(wait=False)
        logger.debug("Timers stopped")


class NullTimers:
    """Timers for replays and tests, where the caller publishes ticks itself."""

    running = False

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False
