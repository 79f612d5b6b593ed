from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .errors import ConfigurationError, StageError
from .job_queue import JobLocks, SubmissionQueue
from .models import AssessmentJobRecord, AssessmentResult, JobStatus
from .repository import AssessmentRepository
from .stages import EstimationStage, GenerationStage
from .steps import StepRegistry

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Stage interrupted by worker shutdown before it finished; resume to retry."


class AssessmentWorker:
    """
    Drives one assessment job through generation -> estimation -> finalisation.
    The record's status decides what runs next, so a job picked up after a
    crash or a resume continues from its last committed checkpoint. Every
    transition is a single whole-record write.
    """

    def __init__(
        self,
        repository: AssessmentRepository,
        registry: StepRegistry,
        generation: GenerationStage,
        estimation: EstimationStage,
        locks: Optional[JobLocks] = None,
    ):
        self.repo = repository
        self.registry = registry
        self.generation = generation
        self.estimation = estimation
        self.locks = locks or JobLocks()

    async def run_job(self, job_id: str) -> Optional[JobStatus]:
        """
        Run `job_id` until it reaches a terminal status. Returns that status,
        or None when the job does not exist (or was deleted mid-run).
        """
        async with self.locks.hold(job_id):
            job = await asyncio.to_thread(self.repo.get_job, job_id)
            if job is None:
                logger.info("Assessment job %s no longer exists; skipping", job_id)
                return None
            while job is not None:
                status = job.status
                if self.registry.is_terminal(status):
                    return status
                if status == JobStatus.PENDING:
                    job = await self._run_generation(job)
                elif status == JobStatus.GENERATION_IN_PROGRESS:
                    logger.warning("Job %s was left in %s; re-running generation from the start", job_id, status.value)
                    job = await self._run_generation(job)
                elif status == JobStatus.GENERATION_COMPLETE:
                    job = await self._run_estimation(job)
                elif status == JobStatus.ESTIMATION_IN_PROGRESS:
                    logger.warning("Job %s was left in %s; re-running estimation from the start", job_id, status.value)
                    job = await self._run_estimation(job)
                elif status == JobStatus.ESTIMATION_COMPLETE:
                    job = await self._finalize(job)
                else:
                    raise ConfigurationError(f"No pipeline handler for status {status}")
            return None

    async def _run_generation(self, job: AssessmentJobRecord) -> Optional[AssessmentJobRecord]:
        self.registry.apply(job, JobStatus.GENERATION_IN_PROGRESS)
        job.last_error = None
        if not await self._save(job):
            return None
        logger.info("Generation started for job %s", job.id)

        try:
            outcome = await self.generation.run(job)
        except asyncio.CancelledError:
            self._fail_now(job, JobStatus.FAILED_GENERATION)
            raise
        except ConfigurationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raw = exc.raw_response if isinstance(exc, StageError) else None
            if raw is not None:
                job.raw_generation_response = raw
            job.generated_items = None
            return await self._fail(job, JobStatus.FAILED_GENERATION, exc)

        job.raw_generation_response = outcome.raw_response
        job.generated_items = outcome.payload
        self.registry.apply(job, JobStatus.GENERATION_COMPLETE)
        if not await self._save(job):
            return None
        logger.info("Generation complete for job %s (%d items)", job.id, len(outcome.payload))
        return job

    async def _run_estimation(self, job: AssessmentJobRecord) -> Optional[AssessmentJobRecord]:
        self.registry.apply(job, JobStatus.ESTIMATION_IN_PROGRESS)
        job.last_error = None
        if not await self._save(job):
            return None
        logger.info("Estimation started for job %s", job.id)

        try:
            outcome = await self.estimation.run(job)
        except asyncio.CancelledError:
            self._fail_now(job, JobStatus.FAILED_ESTIMATION)
            raise
        except ConfigurationError:
            raise
        except Exception as exc:  # noqa: BLE001
            raw = exc.raw_response if isinstance(exc, StageError) else None
            if raw is not None:
                job.raw_estimation_response = raw
            return await self._fail(job, JobStatus.FAILED_ESTIMATION, exc)

        job.raw_estimation_response = outcome.raw_response
        job.final_analysis = outcome.payload
        self.registry.apply(job, JobStatus.ESTIMATION_COMPLETE)
        if not await self._save(job):
            return None
        logger.info("Estimation complete for job %s", job.id)
        return job

    async def _finalize(self, job: AssessmentJobRecord) -> Optional[AssessmentJobRecord]:
        if not job.raw_estimation_response or not job.final_analysis:
            return await self._fail(
                job,
                JobStatus.FAILED_ESTIMATION,
                StageError(f"Job {job.id} reached {job.status.value} without estimation output"),
            )
        result = AssessmentResult.from_dict(job.final_analysis)
        self.registry.apply(job, JobStatus.COMPLETE)
        if not await self._save(job):
            return None
        logger.info(
            "Assessment job %s complete: %d items, %.2f total hours",
            job.id,
            result.item_count,
            result.total_hours,
        )
        return job

    async def _fail(
        self, job: AssessmentJobRecord, status: JobStatus, exc: Exception
    ) -> Optional[AssessmentJobRecord]:
        job.last_error = exc.describe() if isinstance(exc, StageError) else str(exc)
        self.registry.apply(job, status)
        logger.warning("Assessment job %s moved to %s: %s", job.id, status.value, exc)
        if not await self._save(job):
            return None
        return job

    def _fail_now(self, job: AssessmentJobRecord, status: JobStatus) -> None:
        # Runs on the event loop thread; a cancelled task must not await.
        job.last_error = INTERRUPTED_MESSAGE
        self.registry.apply(job, status)
        self.repo.update_job(job)
        logger.warning("Assessment job %s interrupted; recorded %s", job.id, status.value)

    async def _save(self, job: AssessmentJobRecord) -> bool:
        saved = await asyncio.to_thread(self.repo.update_job, job)
        if not saved:
            logger.info("Assessment job %s was deleted while running; stopping", job.id)
        return saved


class WorkerPool:
    """
    Fixed number of worker loops draining the submission queue. The pool size
    bounds how many collaborator calls are in flight at once.
    """

    def __init__(
        self,
        worker: AssessmentWorker,
        queue: SubmissionQueue,
        worker_count: int = 2,
        store_retry_limit: int = 3,
        store_retry_backoff_seconds: float = 1.0,
        shutdown_grace_seconds: float = 30.0,
    ):
        if worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")
        self.worker = worker
        self.queue = queue
        self.worker_count = worker_count
        self.store_retry_limit = store_retry_limit
        self.store_retry_backoff_seconds = store_retry_backoff_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> List[str]:
        """Re-enqueue unfinished jobs, then spawn the worker loops. Returns the recovered ids."""
        recovered = await self.recover()
        for index in range(self.worker_count):
            self._tasks.append(asyncio.create_task(self._loop(index), name=f"assessment-worker-{index}"))
        logger.info("Started %d assessment worker loops", self.worker_count)
        return recovered

    async def recover(self) -> List[str]:
        repo = self.worker.repo
        statuses = self.worker.registry.non_terminal_statuses()
        jobs = await asyncio.to_thread(repo.list_jobs, statuses)
        jobs.sort(key=lambda job: job.created_at)
        for job in jobs:
            self.queue.enqueue(job.id)
        if jobs:
            logger.info("Recovery sweep re-enqueued %d unfinished assessment jobs", len(jobs))
        return [job.id for job in jobs]

    async def join(self) -> None:
        await self.queue.join()

    async def stop(self) -> None:
        self.queue.close()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_grace_seconds)
        if pending:
            logger.warning("Cancelling %d assessment worker loops after %.1fs grace", len(pending), self.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []
        logger.info("Assessment worker pool stopped")

    async def _loop(self, index: int) -> None:
        while True:
            job_id = await self.queue.dequeue()
            if job_id is None:
                logger.debug("Worker loop %d exiting", index)
                return
            try:
                await self._process(job_id)
            finally:
                self.queue.task_done()

    async def _process(self, job_id: str) -> None:
        attempt = 0
        while True:
            try:
                status = await self.worker.run_job(job_id)
                logger.debug("Assessment job %s settled at %s", job_id, status.value if status else None)
                return
            except ConfigurationError:
                logger.exception("Configuration error while processing assessment job %s", job_id)
                return
            except Exception as exc:  # noqa: BLE001
                attempt += 1
                if attempt > self.store_retry_limit:
                    logger.error(
                        "Giving up on assessment job %s after %d attempts: %s. It will be retried by the next recovery sweep.",
                        job_id,
                        attempt,
                        exc,
                    )
                    return
                delay = self.store_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "Store error while processing assessment job %s (attempt %d/%d): %s; retrying in %.1fs",
                    job_id,
                    attempt,
                    self.store_retry_limit,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
