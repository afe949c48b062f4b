"""
Job orchestration: submission, the worker loop, and resume after approval.

A single worker drains the BoundedJobQueue and owns each job from dequeue to a
terminal or suspended state. Resume does not run the pipeline itself; it
re-admits the job through the same queue starting at the fan-out stage.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .context import ContextKey, JobContext
from .db import Database
from .errors import (
    ChannelInactiveError,
    ChannelNotFoundError,
    InvalidJobStateError,
    JobInterruptedError,
    JobNotFoundError,
    QueueCancelledError,
    QueueClosedError,
    describe_error,
)
from .events import (
    JOB_COMPLETED,
    JOB_CREATED,
    JOB_FAILED,
    JOB_RESUMED,
    STAGE_COMPLETED,
    STAGE_STARTED,
    EventLogger,
)
from .job_queue import BoundedJobQueue, WorkItem
from .models import ChannelConfig, JobRecord, JobStatus, Stage, utcnow
from .stages import COMPLETED_CHECKPOINT, FAILED_STAGE_NAME, QUEUED, StageRunner

logger = logging.getLogger(__name__)

PIPELINE: List[Stage] = [
    Stage.RESEARCH,
    Stage.SCRIPT,
    Stage.APPROVAL,
    Stage.FAN_OUT,
    Stage.ASSEMBLY,
]


class Orchestrator:
    """Drives submitted jobs through the pipeline, one job at a time"""

    def __init__(
        self,
        db: Database,
        stage_runner: StageRunner,
        queue: BoundedJobQueue,
        events: EventLogger,
        idle_backoff_seconds: float = 1.0,
    ):
        self.db = db
        self.stage_runner = stage_runner
        self.queue = queue
        self.events = events
        self.idle_backoff_seconds = idle_backoff_seconds
        self.current_job_id: Optional[int] = None
        logger.info(f"[orchestrator] Initialized with single-lane execution (queue capacity {queue.capacity})")

    # -------------------------------------------------------------- submission

    async def submit(self, channel_id: int) -> int:
        """Create a Pending job for an active channel and enqueue it"""
        channel = self.db.get_channel(channel_id)
        if channel is None:
            raise ChannelNotFoundError(channel_id)
        if not channel.is_active:
            raise ChannelInactiveError(channel_id)

        stage_name, progress = QUEUED
        job = self.db.create_job(
            JobRecord(channel_id=channel_id, current_stage=stage_name, progress=progress)
        )
        self.events.emit(job.id, JOB_CREATED, message=f"Job created for channel {channel.name}")

        try:
            await self.queue.submit(WorkItem(job.id, Stage.RESEARCH))
        except QueueClosedError as e:
            self._fail(job, e)
            raise
        logger.info(f"[orchestrator] Submitted job {job.id} for channel {channel_id} ({channel.name})")
        return job.id

    async def resume(self, job_id: int, edited_script: Optional[str] = None) -> JobRecord:
        """Re-admit a job suspended for approval, optionally with an edited script"""
        job = self.db.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.WAITING_FOR_APPROVAL:
            raise InvalidJobStateError(job_id, job.status.value, JobStatus.WAITING_FOR_APPROVAL.value)

        previous_script = job.script
        if edited_script is not None and edited_script.strip():
            job.script = edited_script
        if not job.script or not job.script.strip():
            raise InvalidJobStateError(job_id, "WaitingForApproval without a script", "a saved script")

        job.transition_to(JobStatus.PROCESSING)
        job.append_log("Approved; resuming at parallel processing")
        self.db.update_job(job)

        try:
            await self.queue.submit(WorkItem(job.id, Stage.FAN_OUT))
        except QueueClosedError:
            job.status = JobStatus.WAITING_FOR_APPROVAL
            job.script = previous_script
            self.db.update_job(job)
            raise

        self.events.emit(
            job.id,
            JOB_RESUMED,
            stage=Stage.FAN_OUT.value,
            message="Approved",
            payload={"script_edited": job.script != previous_script},
        )
        logger.info(f"[orchestrator] Job {job_id} approved and re-queued at {Stage.FAN_OUT.value}")
        return job

    def requeue_pending(self) -> List[int]:
        """Enqueue Pending jobs left by a previous process (startup only)"""
        requeued = []
        for job in self.db.list_jobs_by_status(JobStatus.PENDING):
            if not self.queue.try_submit(WorkItem(job.id, Stage.RESEARCH)):
                logger.warning(f"[orchestrator] Queue full; job {job.id} and later Pending jobs stay unqueued")
                break
            requeued.append(job.id)
        if requeued:
            logger.info(f"[orchestrator] Re-queued {len(requeued)} pending job(s): {requeued}")
        return requeued

    def recover_interrupted(self) -> List[int]:
        """Pick up jobs a previous process left running (startup only)

        A Processing job with a saved script re-enters at fan-out if it was
        already approved, otherwise at the approval gate. Jobs without a script,
        or caught mid fan-out, are marked Failed.
        """
        for job in self.db.list_jobs_by_status(JobStatus.PROCESSING_FAN_OUT):
            self._fail(job, JobInterruptedError(job.id, job.status.value))

        requeued = []
        for job in self.db.list_jobs_by_status(JobStatus.PROCESSING):
            if not job.script or not job.script.strip():
                self._fail(job, JobInterruptedError(job.id, job.current_stage))
                continue

            approved = any(e.event_type == JOB_RESUMED for e in self.db.get_job_events(job.id, limit=1000))
            start_stage = Stage.FAN_OUT if approved else Stage.APPROVAL
            if not self.queue.try_submit(WorkItem(job.id, start_stage)):
                logger.warning(f"[orchestrator] Queue full; interrupted job {job.id} stays unqueued")
                break
            job.append_log(f"Recovered after restart; resuming at {start_stage.value}")
            self.db.update_job(job)
            requeued.append(job.id)

        if requeued:
            logger.info(f"[orchestrator] Recovered {len(requeued)} interrupted job(s): {requeued}")
        return requeued

    # ------------------------------------------------------------- worker loop

    async def run(self, shutdown: asyncio.Event) -> None:
        """Worker loop: take a job, process it, repeat until shutdown"""
        logger.info("[worker] Worker started")
        while not shutdown.is_set():
            try:
                item = await self.queue.take(shutdown)
            except QueueCancelledError:
                break
            except Exception as e:
                logger.error(f"[worker] Error waiting for work: {e}; retrying in {self.idle_backoff_seconds}s")
                await asyncio.sleep(self.idle_backoff_seconds)
                continue

            try:
                await self.process(item)
            except Exception as e:
                logger.error(f"[worker] Error processing job {item.job_id}: {e}")
        logger.info("[worker] Worker stopping")

    async def process(self, item: WorkItem) -> Optional[JobRecord]:
        """Run one work item end to end; never raises for job-level failures"""
        job = self.db.get_job(item.job_id)
        if job is None:
            logger.warning(f"[worker] Job {item.job_id} no longer exists; skipping")
            return None

        expected = JobStatus.PROCESSING if item.is_resume else JobStatus.PENDING
        if job.status != expected:
            logger.warning(
                f"[worker] Job {job.id} is {job.status.value}, expected {expected.value}; skipping"
            )
            return job

        self.current_job_id = job.id
        try:
            channel = self.db.get_channel(job.channel_id)
            if channel is None:
                self._fail(job, ChannelNotFoundError(job.channel_id))
                return job

            if not item.is_resume:
                job.transition_to(JobStatus.PROCESSING)
                job.started_at = utcnow()
                self.db.update_job(job)
            logger.info(f"[worker] Processing job {job.id} for channel {channel.id} from {item.start_stage.value}")

            try:
                video_url = await self._run_job(job, channel, item.start_stage)
            except Exception as e:
                self._fail(job, e)
                return job

            if video_url is not None:
                self._complete(job, video_url)
            return job
        finally:
            self.current_job_id = None

    async def _run_job(self, job: JobRecord, channel: ChannelConfig, start_stage: Stage) -> Optional[str]:
        """Run pipeline stages from start_stage; returns the URL, or None if suspended"""
        ctx = JobContext(job, channel)
        if start_stage != Stage.RESEARCH:
            ctx.set(ContextKey.SCRIPT, job.script or "")

        handlers: Dict[Stage, Callable[[JobContext], Awaitable]] = {
            Stage.RESEARCH: self.stage_runner.run_research,
            Stage.SCRIPT: self.stage_runner.run_script,
            Stage.APPROVAL: self.stage_runner.run_approval_gate,
            Stage.FAN_OUT: self.stage_runner.run_fan_out,
            Stage.ASSEMBLY: self.stage_runner.run_assembly,
        }

        video_url = None
        try:
            for stage in PIPELINE[PIPELINE.index(start_stage):]:
                self.events.emit(job.id, STAGE_STARTED, stage=stage.value)
                result = await handlers[stage](ctx)

                if stage == Stage.APPROVAL and result:
                    logger.info(f"[worker] Job {job.id} suspended for approval")
                    return None
                if stage == Stage.ASSEMBLY:
                    video_url = result

                self.events.emit(job.id, STAGE_COMPLETED, stage=stage.value)
            return video_url
        finally:
            ctx.clear()

    def _complete(self, job: JobRecord, video_url: str) -> None:
        stage_name, progress = COMPLETED_CHECKPOINT
        job.transition_to(JobStatus.COMPLETED)
        job.advance(stage_name, progress)
        job.video_url = video_url
        job.completed_at = utcnow()
        job.append_log(f"Completed: {video_url}")
        self.db.update_job(job)
        self.events.emit(job.id, JOB_COMPLETED, message=video_url, payload={"video_url": video_url})
        logger.info(f"[worker] Job {job.id} completed: {video_url}")

    def _fail(self, job: JobRecord, error: BaseException) -> None:
        logger.error(f"[worker] Job {job.id} failed: {type(error).__name__}: {error}")
        job.transition_to(JobStatus.FAILED)
        job.current_stage = FAILED_STAGE_NAME
        job.video_url = None
        job.completed_at = utcnow()
        job.append_log(f"Error: {describe_error(error)}")
        self.db.update_job(job)
        self.events.emit(
            job.id,
            JOB_FAILED,
            message=str(error),
            payload={"error_type": type(error).__name__},
        )


def build_orchestrator(config) -> Orchestrator:
    """Wire the orchestrator and its collaborators from configuration"""
    from .media import build_media_assembler, build_speech_synthesizer
    from .providers import build_text_provider
    from .retry import RetryExecutor, RetryPolicy
    from .sources import build_news_source
    from .storage import StorageManager

    db = Database(config.get("storage.db_path", "jobs.db"))
    storage = StorageManager(config.get("storage.runs_dir", "runs"))
    events = EventLogger(db, storage)
    stage_runner = StageRunner(
        text_provider=build_text_provider(config),
        news_source=build_news_source(config),
        speech=build_speech_synthesizer(config, storage),
        assembler=build_media_assembler(config, storage),
        db=db,
        retry=RetryExecutor(RetryPolicy.from_config(config)),
        events=events,
        news_count=int(config.get("news.count", 5)),
        default_topic=config.get("news.default_topic", "General"),
    )
    return Orchestrator(
        db=db,
        stage_runner=stage_runner,
        queue=BoundedJobQueue(int(config.get("queue.capacity", 100))),
        events=events,
        idle_backoff_seconds=float(config.get("worker.idle_backoff_seconds", 1.0)),
    )


_orchestrator_singleton: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator; built from the global config on first use"""
    global _orchestrator_singleton
    if _orchestrator_singleton is None:
        from .config import get_config

        _orchestrator_singleton = build_orchestrator(get_config())
    return _orchestrator_singleton
