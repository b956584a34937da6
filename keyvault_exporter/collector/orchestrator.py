"""
Collection orchestrator.

Runs one collection cycle: walk the vaults, collect each vault on a
bounded worker pool, wait for every task, then publish the aggregated
observations to the registry in one step.

Cycle phases: IDLE -> WALKING -> COLLECTING -> PUBLISHING -> IDLE

Tasks never touch the registry. They put a ``TaskResult`` on a queue
owned by the cycle; only the orchestrator thread reads it, and only after
the join barrier. A cycle that misses its deadline is not published, so
the previous snapshot stays visible.
"""
import contextlib
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import AbstractSet, Callable, List, Optional, Sequence

from keyvault_exporter.collector.builder import ObservationBuilder
from keyvault_exporter.collector.models import ResourceInstance, Subscription, TaskResult
from keyvault_exporter.collector.walker import ResourceWalker
from keyvault_exporter.common.correlation import CycleContext, run_in_context
from keyvault_exporter.common.exceptions import (
    CycleAbortedError,
    CycleTimeoutError,
    FilterResolutionError,
    SubscriptionListError,
)
from keyvault_exporter.common.logging_config import get_logger
from keyvault_exporter.monitoring.metrics import ExporterMetrics
from keyvault_exporter.monitoring.registry import MetricRegistry, MetricSnapshot, build_snapshot

logger = get_logger(__name__)

SubscriptionSource = Callable[[], Sequence[Subscription]]
FilterResolver = Callable[[Sequence[Subscription]], AbstractSet[str]]


class CyclePhase(Enum):
    IDLE = "idle"
    WALKING = "walking"
    COLLECTING = "collecting"
    PUBLISHING = "publishing"


class CollectionOrchestrator:
    """
    Coordinates walker, builder and registry for one cycle at a time.

    Args:
        walker: Vault source
        builder: Per-vault observation builder
        registry: Publish target
        subscription_source: Returns the subscriptions for a cycle; may
            raise ``SubscriptionListError``
        filter_resolver: Optional; returns the lower-case resource IDs to
            include for the cycle's subscriptions
        concurrency: Maximum vaults collected at once
        cycle_timeout: Seconds before an unfinished cycle is abandoned
        metrics: Optional self-metrics
    """

    def __init__(
        self,
        walker: ResourceWalker,
        builder: ObservationBuilder,
        registry: MetricRegistry,
        subscription_source: SubscriptionSource,
        filter_resolver: Optional[FilterResolver] = None,
        concurrency: int = 10,
        cycle_timeout: float = 300.0,
        metrics: Optional[ExporterMetrics] = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if cycle_timeout <= 0:
            raise ValueError(f"cycle_timeout must be positive, got {cycle_timeout}")

        self.walker = walker
        self.builder = builder
        self.registry = registry
        self.subscription_source = subscription_source
        self.filter_resolver = filter_resolver
        self.concurrency = concurrency
        self.cycle_timeout = cycle_timeout
        self.metrics = metrics

        self._phase = CyclePhase.IDLE
        self._phase_lock = threading.Lock()

    @property
    def phase(self) -> CyclePhase:
        with self._phase_lock:
            return self._phase

    def _set_phase(self, phase: CyclePhase) -> None:
        with self._phase_lock:
            self._phase = phase

    def run_cycle(self) -> MetricSnapshot:
        """
        Run one complete cycle.

        Returns:
            The published snapshot

        Raises:
            CycleAbortedError: subscriptions or the filter could not be
                resolved; nothing was published
            CycleTimeoutError: the deadline passed before every vault was
                collected; nothing was published
        """
        timer = self.metrics.cycle_timer() if self.metrics else contextlib.nullcontext()

        with CycleContext() as ctx, timer:
            started = time.monotonic()
            logger.info("Collection cycle started")
            try:
                snapshot = self._run(ctx.cycle_id, started + self.cycle_timeout)
            except CycleTimeoutError as e:
                logger.error(f"Collection cycle timed out, keeping previous snapshot: {e}")
                self._record("timeout")
                raise
            except CycleAbortedError as e:
                logger.error(f"Collection cycle aborted: {e}")
                self._record("aborted")
                raise
            finally:
                self._set_phase(CyclePhase.IDLE)

            logger.info(
                f"Collection cycle published {snapshot.sample_count} samples "
                f"in {time.monotonic() - started:.2f}s"
            )
            return snapshot

    def _run(self, cycle_id: str, deadline: float) -> MetricSnapshot:
        self._set_phase(CyclePhase.WALKING)
        subscriptions = self._resolve_subscriptions()
        inclusion = self._resolve_filter(subscriptions)

        results: "queue.Queue[TaskResult]" = queue.Queue()
        cancel_event = threading.Event()
        slots = threading.BoundedSemaphore(self.concurrency)
        futures: List[Future] = []

        executor = ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix=f"collect-{cycle_id}",
        )
        completed = False
        try:
            self._set_phase(CyclePhase.COLLECTING)
            for instance in self.walker.walk(subscriptions, inclusion, cancel_event):
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not slots.acquire(timeout=remaining):
                    raise CycleTimeoutError(self.cycle_timeout, _unfinished(futures))

                future = executor.submit(
                    run_in_context(self._collect_vault), instance, results, cancel_event
                )
                future.add_done_callback(lambda _f: slots.release())
                futures.append(future)

            _, pending = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
            if pending:
                raise CycleTimeoutError(self.cycle_timeout, len(pending))
            completed = True
        finally:
            if not completed:
                cancel_event.set()
            executor.shutdown(wait=completed, cancel_futures=not completed)

        self._set_phase(CyclePhase.PUBLISHING)
        task_results = _drain(results)
        snapshot = build_snapshot(
            (obs for result in task_results for obs in result.observations),
            self.registry.specs,
            cycle_id,
        )
        self.registry.publish(snapshot)
        self._record("success", vaults=len(task_results), observations=snapshot.sample_count)
        return snapshot

    def _resolve_subscriptions(self) -> Sequence[Subscription]:
        try:
            subscriptions = list(self.subscription_source())
        except SubscriptionListError as e:
            raise CycleAbortedError(str(e)) from e
        logger.info(f"Collecting {len(subscriptions)} subscription(s)")
        return subscriptions

    def _resolve_filter(self, subscriptions: Sequence[Subscription]) -> Optional[AbstractSet[str]]:
        if self.filter_resolver is None:
            return None
        try:
            inclusion = self.filter_resolver(subscriptions)
        except FilterResolutionError as e:
            raise CycleAbortedError(str(e)) from e
        return {resource_id.lower() for resource_id in inclusion}

    def _collect_vault(
        self,
        instance: ResourceInstance,
        results: "queue.Queue[TaskResult]",
        cancel_event: threading.Event,
    ) -> None:
        if cancel_event.is_set():
            return
        try:
            observations = self.builder.build(instance, cancel_event)
        except Exception:
            # One broken vault must not cost the whole cycle
            logger.exception(
                f"Unexpected error collecting vault {instance.name}",
                extra={"vault": instance.name},
            )
            if self.metrics is not None:
                self.metrics.inc_resource_failure("vault")
            return
        results.put(TaskResult(instance.resource_id, observations))

    def _record(self, result: str, vaults: int = 0, observations: int = 0) -> None:
        if self.metrics is not None:
            self.metrics.record_cycle(result, vaults=vaults, observations=observations)


def _unfinished(futures: List[Future]) -> int:
    return sum(1 for f in futures if not f.done())


def _drain(results: "queue.Queue[TaskResult]") -> List[TaskResult]:
    drained = []
    while True:
        try:
            drained.append(results.get_nowait())
        except queue.Empty:
            return drained
