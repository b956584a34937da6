"""
Cycle scheduler.

Fires a collection cycle every ``interval`` seconds (plus an optional
random jitter). At most one cycle runs at a time: a tick that arrives
while a cycle is still running is skipped and logged.
"""
import random
import threading
from typing import Optional

from keyvault_exporter.common.correlation import set_component
from keyvault_exporter.common.exceptions import CycleAbortedError
from keyvault_exporter.common.logging_config import get_logger

logger = get_logger(__name__)


class Scheduler:
    """
    Drives an orchestrator on a timer.

    Args:
        orchestrator: Object providing ``run_cycle()``
        interval: Seconds between ticks
        jitter: Upper bound of a random delay added to every interval
        run_immediately: Fire the first tick at start instead of after one interval
        metrics: Optional ``ExporterMetrics`` for skipped-tick counting
    """

    def __init__(
        self,
        orchestrator,
        interval: float,
        jitter: float = 0.0,
        run_immediately: bool = True,
        metrics=None,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if jitter < 0:
            raise ValueError(f"jitter must not be negative, got {jitter}")

        self.orchestrator = orchestrator
        self.interval = interval
        self.jitter = jitter
        self.run_immediately = run_immediately
        self.metrics = metrics

        self._stop_event = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._cycle_thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def next_delay(self) -> float:
        """Seconds until the next tick."""
        if self.jitter:
            return self.interval + random.uniform(0, self.jitter)
        return self.interval

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._thread.start()
        logger.info(
            f"Scheduler started (interval={self.interval}s, jitter={self.jitter}s, "
            f"run_immediately={self.run_immediately})"
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop ticking and wait for a running cycle.

        Returns:
            True if no cycle is left running
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

        finished = self.wait_for_cycle(timeout)
        if not finished:
            logger.warning("Collection cycle still running after scheduler stop")
        logger.info("Scheduler stopped")
        return finished

    def wait_for_cycle(self, timeout: Optional[float] = None) -> bool:
        """Block until the current cycle (if any) finishes."""
        cycle_thread = self._cycle_thread
        if cycle_thread is None:
            return True
        cycle_thread.join(timeout)
        return not cycle_thread.is_alive()

    def tick(self) -> bool:
        """
        Start a cycle unless one is already running.

        Returns:
            True if a cycle was started, False if the tick was skipped
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Previous collection cycle still running, skipping tick")
            if self.metrics is not None:
                self.metrics.inc_ticks_skipped()
            return False

        try:
            self._cycle_thread = threading.Thread(
                target=self._run_cycle, name="collection-cycle", daemon=True
            )
            self._cycle_thread.start()
        except RuntimeError:
            self._cycle_lock.release()
            raise
        return True

    def _loop(self) -> None:
        set_component("scheduler")

        if not self.run_immediately and self._stop_event.wait(self.next_delay()):
            return

        while not self._stop_event.is_set():
            self.tick()
            if self._stop_event.wait(self.next_delay()):
                return

    def _run_cycle(self) -> None:
        set_component("collector")
        try:
            self.orchestrator.run_cycle()
        except CycleAbortedError:
            # Already logged and counted by the orchestrator
            logger.debug("Cycle ended without publishing")
        except Exception:
            logger.exception("Collection cycle failed unexpectedly")
        finally:
            self._cycle_lock.release()
