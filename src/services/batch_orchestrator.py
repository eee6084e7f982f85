"""Batch Orchestrator - runs many generation requests one after another.

One asyncio task drives each batch. Items run strictly in submission order,
never two at once, with a short delay between them. Callers steer a running
batch through its BatchHandle (pause, resume, cancel); the driver honours
those signals between items only, so an item in flight always finishes.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional

from models.batch import BatchJob, BatchState
from models.generation import GenerationRequest, ItemStatus, PipelineResult, StepName
from services.cancellation import CancellationToken
from services.item_pipeline import ItemPipeline
from utils.config import PipelineConfig
from utils.logging import (
    clear_job_context,
    get_logger,
    reset_item_context,
    set_item_context,
    set_job_context,
)

logger = get_logger(__name__)

ProgressListener = Callable[[BatchJob], Awaitable[None]]


class BatchValidationError(Exception):
    """Raised when a submitted batch is rejected."""

    pass


class BatchStateError(Exception):
    """Raised when an operation does not fit the batch's current state."""

    pass


class BatchHandle:
    """Caller-side control of one submitted batch."""

    def __init__(
        self,
        orchestrator: "BatchOrchestrator",
        job: BatchJob,
        token: CancellationToken,
    ):
        self._orchestrator = orchestrator
        self.job = job
        self.token = token
        self._task: Optional[asyncio.Task] = None
        self._retry_lock = asyncio.Lock()

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_retrying(self) -> bool:
        return self._retry_lock.locked()

    def pause(self) -> None:
        """Stop before the next item. The item in flight finishes."""
        if not self.is_running:
            raise BatchStateError(f"Batch {self.job_id} is not running")
        self.token.pause()
        if self.job.state == BatchState.RUNNING:
            self.job.state = BatchState.PAUSED
        logger.info("batch_pause_requested", job_id=self.job_id)

    def resume(self) -> None:
        if not self.is_running:
            raise BatchStateError(f"Batch {self.job_id} is not running")
        self.token.resume()
        if self.job.state == BatchState.PAUSED:
            self.job.state = BatchState.RUNNING
        logger.info("batch_resume_requested", job_id=self.job_id)

    def cancel(self) -> None:
        """Stop the batch; items not yet started stay pending."""
        self.token.cancel()
        logger.info("batch_cancel_requested", job_id=self.job_id)

    def get_progress(self):
        return self.job.progress()

    async def wait(self) -> BatchJob:
        """Wait for the driver task to finish and return the job."""
        if self._task is not None:
            await self._task
        return self.job

    async def retry_item(self, index: int) -> PipelineResult:
        """Run one failed item again once the batch has stopped.

        The failed result is kept in job.previous_attempts[index]. Only one
        retry runs per batch at a time.

        Raises:
            BatchStateError: If the batch is still running, another retry is in
                flight, or the item did not fail
            IndexError: If index is out of range
        """
        if self.is_running:
            raise BatchStateError(f"Batch {self.job_id} is still running")
        if not 0 <= index < self.job.total:
            raise IndexError(f"Batch {self.job_id} has no item {index}")
        if self._retry_lock.locked():
            raise BatchStateError(f"Batch {self.job_id} is already retrying an item")
        async with self._retry_lock:
            return await self._orchestrator.retry_item(self.job, index)


class BatchOrchestrator:
    """Submits batches and drives them through an ItemPipeline."""

    def __init__(
        self,
        pipeline: ItemPipeline,
        config: PipelineConfig,
        listeners: Optional[Iterable[ProgressListener]] = None,
    ):
        self.pipeline = pipeline
        self.config = config
        self.listeners: list[ProgressListener] = list(listeners or [])
        self._handles: dict[str, BatchHandle] = {}

    def add_listener(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def get_handle(self, job_id: str) -> Optional[BatchHandle]:
        return self._handles.get(job_id)

    def list_handles(self) -> list[BatchHandle]:
        return list(self._handles.values())

    def discard(self, job_id: str) -> BatchHandle:
        """Forget a finished batch so its job and results can be released.

        Raises:
            KeyError: If no batch has this id
            BatchStateError: If the batch is still running or retrying an item
        """
        handle = self._handles[job_id]
        if handle.is_running or handle.is_retrying:
            raise BatchStateError(f"Batch {job_id} is still running")
        del self._handles[job_id]
        logger.info("batch_discarded", job_id=job_id)
        return handle

    def submit(
        self,
        requests: list[GenerationRequest],
        job_id: Optional[str] = None,
    ) -> BatchHandle:
        """Validate and start a batch.

        Args:
            requests: Ordered requests
            job_id: Optional caller-chosen id

        Returns:
            Handle for the running batch

        Raises:
            BatchValidationError: If the batch is empty, too large, or the id is taken
        """
        if not requests:
            raise BatchValidationError("A batch needs at least one request")
        if len(requests) > self.config.max_batch_items:
            raise BatchValidationError(
                f"Batch has {len(requests)} items; the limit is {self.config.max_batch_items}"
            )
        job_id = job_id or str(uuid.uuid4())
        if job_id in self._handles:
            raise BatchValidationError(f"Batch {job_id} already exists")

        job = BatchJob(job_id=job_id, requests=list(requests))
        handle = BatchHandle(self, job, CancellationToken())
        self._handles[job_id] = handle
        handle._task = asyncio.create_task(self._drive(job, handle.token))
        logger.info("batch_submitted", job_id=job_id, items=job.total)
        return handle

    async def _notify(self, job: BatchJob) -> None:
        for listener in self.listeners:
            try:
                await listener(job)
            except Exception as e:
                logger.warning("progress_listener_failed", error=str(e))

    async def _run_item(self, job: BatchJob, index: int, token: Optional[CancellationToken]) -> PipelineResult:
        result = job.results[index]

        async def on_update(_result: PipelineResult) -> None:
            await self._notify(job)

        item_token = set_item_context(index)
        try:
            await self.pipeline.run(job.requests[index], result, token=token, on_update=on_update)
        except Exception as e:
            logger.exception("item_crashed", index=index, error=str(e))
            if not result.frozen:
                if result.status == ItemStatus.PENDING:
                    result.start()
                result.finish(error=f"unexpected error: {e}")
        finally:
            reset_item_context(item_token)
        return result

    async def _drive(self, job: BatchJob, token: CancellationToken) -> None:
        context_token = set_job_context(job.job_id)
        log = logger.bind(job_id=job.job_id)
        job.state = BatchState.RUNNING
        await self._notify(job)
        log.info("batch_started", items=job.total)

        failure_step: Optional[StepName] = None
        failure_streak = 0
        last_index = job.total - 1
        stopped_early = True

        try:
            for index in range(job.total):
                if token.is_cancelled:
                    break
                if token.is_paused:
                    job.state = BatchState.PAUSED
                    await self._notify(job)
                    log.info("batch_paused", next_index=index)
                    if not await token.wait_if_paused(self.config.pause_poll_seconds):
                        break
                    job.state = BatchState.RUNNING
                    await self._notify(job)
                    log.info("batch_resumed", next_index=index)

                job.current_index = index
                result = await self._run_item(job, index, token)
                job.current_index = None
                await self._notify(job)
                log.info(
                    "item_finished",
                    index=index,
                    status=result.status.value,
                    error=result.error,
                    completed=job.completed_count,
                    total=job.total,
                )

                if result.status == ItemStatus.ERROR:
                    if result.failed_step is not None and result.failed_step == failure_step:
                        failure_streak += 1
                    else:
                        failure_step = result.failed_step
                        failure_streak = 1
                    threshold = self.config.circuit_breaker_threshold
                    if threshold and failure_streak >= threshold:
                        step_name = failure_step.value if failure_step else "unknown"
                        job.halt_reason = (
                            f"{failure_streak} consecutive failures at step {step_name}"
                        )
                        log.error("batch_halted", reason=job.halt_reason)
                        token.cancel()
                        break
                else:
                    failure_step = None
                    failure_streak = 0

                if index < last_index and not token.is_cancelled:
                    await asyncio.sleep(self.config.item_delay_seconds)
            else:
                stopped_early = False
        except asyncio.CancelledError:
            token.cancel()
            raise
        finally:
            job.current_index = None
            # A cancel that lands during the last item still leaves every item finished
            job.state = BatchState.CANCELLED if stopped_early else BatchState.COMPLETED
            job.completed_at = datetime.now()
            log.info(
                "batch_finished",
                state=job.state.value,
                succeeded=job.success_count,
                failed=job.failed_count,
                pending=job.total - job.completed_count,
            )
            await self._notify(job)
            clear_job_context(context_token)

    async def retry_item(self, job: BatchJob, index: int) -> PipelineResult:
        """Re-run a failed item in a fresh result slot."""
        previous = job.results[index]
        if previous.status != ItemStatus.ERROR:
            raise BatchStateError(
                f"Item {index} of batch {job.job_id} is {previous.status.value}, not error"
            )

        job.previous_attempts.setdefault(index, []).append(previous)
        job.results[index] = PipelineResult(index=index, request=job.requests[index])
        logger.info("item_retry", job_id=job.job_id, index=index)

        context_token = set_job_context(job.job_id)
        try:
            job.current_index = index
            result = await self._run_item(job, index, None)
        finally:
            job.current_index = None
            clear_job_context(context_token)
        await self._notify(job)
        return result
