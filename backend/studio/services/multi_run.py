"""Sequential batch runs of one workflow with cancellation and quota checks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from studio.config import get_settings
from studio.errors import StudioError
from studio.models.execution import ExecutionResult
from studio.models.run import BatchReport, BatchState, UsageSnapshot
from studio.services.usage_cache import UsageCache

if TYPE_CHECKING:
    from studio.client.sdk import StudioClient

logger = logging.getLogger(__name__)

# Quota is re-checked after the first run, every Nth run and the last run
USAGE_CHECK_INTERVAL = 5

USAGE_CACHE_KEY = "usage"

RunWorkflow = Callable[[str], Awaitable[ExecutionResult]]
ProgressCallback = Callable[[int, int], None]


class CancellationToken:
    """Advisory cancel flag shared between a batch and its caller.

    Cancelling never interrupts a run in flight; the batch stops before
    starting the next one.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


class MultiRunController:
    """Runs a workflow N times in sequence.

    Usage is checked with a forced refresh before the batch and after the
    first run, then after every fifth run and the last run (served from the
    cache when fresh). A batch that hits the quota before its final run stops with
    ``quota_exceeded``. Completed batches report their run count in the
    background; that report never delays or fails the batch.

    Example:
        controller = MultiRunController(client)
        token = CancellationToken()
        report = await controller.run_batch("wf-123", 10, token)
        print(report.state, report.completed_runs)
    """

    def __init__(
        self,
        client: StudioClient,
        run_workflow: RunWorkflow | None = None,
        usage_cache: UsageCache | None = None,
        cache_ttl: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            client: API client used for usage lookups and run statistics
            run_workflow: Coroutine running the workflow once; defaults to
                remote execution through ``client``
            usage_cache: Cache for usage snapshots
            cache_ttl: Seconds a usage snapshot stays fresh
            on_progress: Called with (completed, requested) after each run
        """
        self.client = client
        self.run_workflow = run_workflow or (lambda workflow_id: client.execute(workflow_id))
        self.usage_cache = usage_cache or UsageCache()
        self.cache_ttl = (
            cache_ttl if cache_ttl is not None else get_settings().usage_cache_ttl_seconds
        )
        self.on_progress = on_progress
        self._background_tasks: set[asyncio.Task[Any]] = set()

    async def run_batch(
        self,
        workflow_id: str,
        runs: int,
        token: CancellationToken | None = None,
    ) -> BatchReport:
        """Run the workflow ``runs`` times and report how the batch ended.

        Raises:
            ValueError: If ``runs`` is less than 1
        """
        if runs < 1:
            raise ValueError("runs must be at least 1")
        token = token or CancellationToken()
        report = BatchReport(workflow_id=workflow_id, requested_runs=runs)

        usage = await self.check_usage(force_refresh=True)
        report.usage = usage
        if usage is not None and usage.is_exceeded:
            logger.warning(f"Usage limit exceeded; not starting batch for workflow {workflow_id}")
            report.state = BatchState.QUOTA_EXCEEDED
            return report

        report.state = BatchState.RUNNING
        logger.info(f"Starting batch of {runs} runs for workflow {workflow_id}")

        for i in range(runs):
            if token.is_cancelled:
                logger.info(f"Batch for workflow {workflow_id} cancelled after {i} runs")
                report.state = BatchState.CANCELLED
                return report

            try:
                result = await self.run_workflow(workflow_id)
            except StudioError as e:
                logger.error(f"Run {i + 1}/{runs} of workflow {workflow_id} failed: {e}")
                report.error = str(e)
                report.state = BatchState.FAILED
                return report

            report.completed_runs = i + 1
            if not result.success:
                report.failed_runs += 1
            if self.on_progress is not None:
                self.on_progress(report.completed_runs, runs)

            is_last = i == runs - 1
            if i == 0 or (i + 1) % USAGE_CHECK_INTERVAL == 0 or is_last:
                usage = await self.check_usage(force_refresh=i == 0)
                if usage is not None:
                    report.usage = usage
                if usage is not None and usage.is_exceeded and not is_last:
                    logger.warning(f"Usage limit reached after {report.completed_runs} runs")
                    report.state = BatchState.QUOTA_EXCEEDED
                    self._record_stats(workflow_id, report.completed_runs)
                    return report

        report.state = BatchState.COMPLETED
        self._record_stats(workflow_id, report.completed_runs)
        logger.info(
            f"Batch for workflow {workflow_id} completed: {report.completed_runs} runs, "
            f"{report.failed_runs} failed"
        )
        return report

    async def check_usage(self, force_refresh: bool = False) -> UsageSnapshot | None:
        """Current usage, from the cache unless stale or forced.

        Lookup failures are logged and reported as ``None`` (no data).
        """
        if not force_refresh:
            cached = self.usage_cache.get(USAGE_CACHE_KEY)
            if cached is not None:
                logger.debug("Using cached usage data")
                return cached

        try:
            usage = await self.client.get_usage()
        except StudioError as e:
            logger.error(f"Error checking usage limits: {e}")
            return None

        self.usage_cache.set(USAGE_CACHE_KEY, usage, self.cache_ttl)
        return usage

    def _record_stats(self, workflow_id: str, runs: int) -> None:
        """Report the run count without waiting for the response."""
        if runs < 1:
            return
        task = asyncio.create_task(self._send_stats(workflow_id, runs))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _send_stats(self, workflow_id: str, runs: int) -> None:
        try:
            await self.client.record_run_stats(workflow_id, runs)
        except StudioError as e:
            logger.error(f"Error updating workflow stats for {workflow_id}: {e}")

    async def drain(self) -> None:
        """Wait for pending background stats reports."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)
