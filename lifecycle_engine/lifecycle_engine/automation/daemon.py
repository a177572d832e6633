"""In-process scheduler that fires due automations.

Runs as an ``asyncio`` background task, polling the automation registry
every ``poll_interval`` seconds.  Due automations of different deployments
run concurrently; automations of the same deployment run one after another
because they share the deployment lock.  Pipelines are blocking, so each
one executes in a worker thread bounded by ``task_timeout``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime

from lifecycle_engine.automation.runner import AutomationRunner
from lifecycle_engine.errors import LifecycleError
from lifecycle_engine.models.automation import AutomationConfig, ExecutionRecord
from lifecycle_engine.state.automation_registry import AutomationRegistry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AutomationDaemon:
    """AsyncIO background task for scheduled automations.

    Parameters
    ----------
    runner:
        Executes individual pipelines.
    automations:
        Registry queried for due configs.
    poll_interval:
        Seconds between registry polls.
    task_timeout:
        Seconds a single pipeline may run before the daemon stops waiting.
    clock:
        Returns the current time (timezone-aware).
    """

    def __init__(
        self,
        runner: AutomationRunner,
        automations: AutomationRegistry,
        poll_interval: float = 60.0,
        task_timeout: float = 3600.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._runner = runner
        self._automations = automations
        self._poll_interval = poll_interval
        self._task_timeout = task_timeout
        self._clock = clock
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._in_flight: set[str] = set()

    @property
    def running(self) -> bool:
        """Whether the daemon loop is active."""
        return self._running

    async def start(self) -> None:
        """Start the daemon background task."""
        if self._running:
            logger.warning("AutomationDaemon already running; ignoring start()")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("AutomationDaemon started (poll every %.0fs)", self._poll_interval)

    async def stop(self) -> None:
        """Stop the daemon; pipelines already in worker threads finish on their own."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("AutomationDaemon stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except LifecycleError as exc:
                logger.error("AutomationDaemon poll failed: %s", exc, exc_info=True)
            except Exception as exc:
                logger.critical("AutomationDaemon unexpected error: %s", exc, exc_info=True)
            await asyncio.sleep(self._poll_interval)

    async def run_once(self, now: datetime | None = None) -> list[ExecutionRecord]:
        """Run every automation due at *now* and return the execution records."""
        now = now or self._clock()
        due = await asyncio.to_thread(self._automations.list_due, now)
        if not due:
            return []

        by_deployment: dict[str, list[AutomationConfig]] = defaultdict(list)
        for config in due:
            if config.automation_id in self._in_flight:
                logger.debug("Automation %s still running; not starting again", config.automation_id)
                continue
            by_deployment[config.deployment_id].append(config)

        logger.info(
            "%d automation(s) due across %d deployment(s)",
            sum(len(v) for v in by_deployment.values()),
            len(by_deployment),
        )
        batches = await asyncio.gather(*(self._run_sequence(configs) for configs in by_deployment.values()))
        return [record for batch in batches for record in batch]

    async def _run_sequence(self, configs: list[AutomationConfig]) -> list[ExecutionRecord]:
        records: list[ExecutionRecord] = []
        for config in configs:
            record = await self._run_one(config.automation_id)
            if record is not None:
                records.append(record)
        return records

    async def _run_one(self, automation_id: str) -> ExecutionRecord | None:
        # The worker thread cannot be cancelled, so the automation stays
        # in flight until the thread itself returns, even after a timeout.
        task = asyncio.ensure_future(asyncio.to_thread(self._runner.run, automation_id))
        self._in_flight.add(automation_id)
        task.add_done_callback(lambda t: self._finished(automation_id, t))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self._task_timeout)
        except TimeoutError:
            logger.error(
                "Automation %s exceeded %.0fs; its result is recorded when the pipeline ends",
                automation_id,
                self._task_timeout,
            )
        except LifecycleError as exc:
            # Typically stopped between the poll and the run.
            logger.info("Automation %s not run: %s", automation_id, exc)
        return None

    def _finished(self, automation_id: str, task: asyncio.Future[ExecutionRecord]) -> None:
        self._in_flight.discard(automation_id)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, LifecycleError):
            logger.error("Automation %s crashed: %s", automation_id, exc, exc_info=exc)
