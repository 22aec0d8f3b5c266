"""Athlete-side job lifecycle: submit, track, poll, materialize."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .artifacts import PENDING_QUERY, ArtifactIndex, VaultLayout, pending_marker, safe_name
from .clients.queue import QueueClient
from .errors import DomainError, FlipmodeError, SubmissionFailed
from .linker import ArtifactLinker
from .materialize import ResearchMaterializer
from .models import JobResult, JobStatus, TrackedJob
from .scheduler import CancellationHandle, Scheduler
from .store.base import DocumentStore, join

logger = logging.getLogger(__name__)

Notify = Callable[[str], None]


def log_notice(message: str) -> None:
    logger.info(message)


class JobRepository:
    """Jobs submitted by this athlete that have not been materialized yet."""

    def __init__(self):
        self.jobs: Dict[str, TrackedJob] = {}

    def add(self, job: TrackedJob) -> None:
        self.jobs[job.job_id] = job

    def get(self, job_id: str) -> Optional[TrackedJob]:
        return self.jobs.get(job_id)

    def pop(self, job_id: str) -> Optional[TrackedJob]:
        """Remove and return a job; None if someone else already removed it."""
        return self.jobs.pop(job_id, None)

    def active(self) -> List[TrackedJob]:
        """Non-terminal jobs in submission order."""
        return [job for job in self.jobs.values() if not job.status.is_terminal]

    def __contains__(self, job_id: str) -> bool:
        return job_id in self.jobs

    def __len__(self) -> int:
        return len(self.jobs)

    def get_stats(self) -> Dict[str, int]:
        return {
            "tracked": len(self.jobs),
            "pending": sum(1 for j in self.jobs.values() if j.status is JobStatus.PENDING),
            "processing": sum(1 for j in self.jobs.values() if j.status is JobStatus.PROCESSING),
        }


@dataclass
class PollReport:
    """What one poll cycle did."""

    checked: int = 0
    materialized: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


class JobLifecycleManager:
    """Owns this athlete's in-flight jobs and drives them to completion."""

    def __init__(
        self,
        client: QueueClient,
        store: DocumentStore,
        layout: VaultLayout,
        index: ArtifactIndex,
        linker: ArtifactLinker,
        repository: Optional[JobRepository] = None,
        notify: Notify = log_notice,
        poll_interval: float = 10.0,
    ):
        self.client = client
        self.store = store
        self.layout = layout
        self.index = index
        self.linker = linker
        self.repository = repository if repository is not None else JobRepository()
        self.notify = notify
        self.poll_interval = poll_interval
        self.materializer = ResearchMaterializer(store, layout, index, linker)
        self._handle: Optional[CancellationHandle] = None

    async def submit(self, query: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Submit a query and track it. Raises SubmissionFailed if nothing was queued."""
        query = query.strip()
        if not query:
            raise DomainError("Please enter a query")

        try:
            job_id = await self.client.submit_query(query, context)
        except FlipmodeError as e:
            logger.error(f"Failed to submit query: {e} ({e.detail})")
            self.notify(f"Failed to send query to coach. {e}")
            raise SubmissionFailed(f"Failed to send query to coach. {e}", cause=e)

        job = TrackedJob(job_id=job_id, query=query)
        self.repository.add(job)
        logger.info(f"Submitted job {job_id}")

        try:
            job.marker_path = await self._write_marker(job)
        except (FlipmodeError, OSError) as e:
            logger.error(f"Job {job_id} submitted but pending note not written: {e}")
            self.notify("Query sent, but the pending note could not be saved.")
            return job_id

        self.notify("Query sent to coach! You'll be notified when ready.")
        return job_id

    async def _write_marker(self, job: TrackedJob) -> str:
        await self.store.ensure_folder(self.layout.pending)
        date = job.submitted_at.strftime("%Y-%m-%d")
        path = join(self.layout.pending, f"{date} - {safe_name(job.query, 40)}.md")
        path = await self.store.available_path(path)
        await self.store.create(path, pending_marker(job.job_id, job.query, job.submitted_at).render())
        return path

    async def restore(self) -> int:
        """Re-track jobs whose pending notes are still open, e.g. after a restart."""
        restored = 0
        for path in await self.store.list_folder(self.layout.pending):
            try:
                document = await self.store.read_document(path)
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Skipping unreadable pending note {path}: {e}")
                continue
            if document.type != PENDING_QUERY or not document.job_id:
                continue
            if document.status not in ("pending", "processing") or document.job_id in self.repository:
                continue
            submitted = _parse_timestamp(document.get("submitted"))
            self.repository.add(
                TrackedJob(
                    job_id=document.job_id,
                    query=str(document.get("query") or ""),
                    submitted_at=submitted,
                    status=JobStatus.parse(document.status),
                    marker_path=path,
                )
            )
            restored += 1
        if restored:
            logger.info(f"Restored {restored} pending job(s)")
        return restored

    async def poll(self) -> PollReport:
        """Check every tracked job once. One job's failure never stops the others."""
        report = PollReport()
        jobs = self.repository.active()
        if not jobs:
            return report

        outcomes = await asyncio.gather(
            *(self.poll_job(job) for job in jobs), return_exceptions=True
        )
        for job, outcome in zip(jobs, outcomes):
            report.checked += 1
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning(f"Polling job {job.job_id} failed: {outcome}")
                report.errors[job.job_id] = str(outcome)
            elif outcome == JobStatus.ERROR.value:
                report.failed.append(job.job_id)
            elif outcome and outcome.endswith(".md"):
                report.materialized.append(outcome)
        return report

    async def poll_job(self, job: TrackedJob) -> Optional[str]:
        """Advance one job. Returns an artifact path, a status value, or None."""
        status = (await self.client.check_status(job.job_id)).status

        if status is JobStatus.COMPLETE:
            # A failure here leaves the job tracked; the next cycle retries.
            result = await self.client.get_result(job.job_id)
            if result.error or result.status is JobStatus.ERROR:
                return await self._fail(job, result.error or "Unknown error")
            if not result.article.strip():
                logger.warning(f"Job {job.job_id} reported complete but has no article yet")
                return None
            return await self._materialize(job, result)

        if status is JobStatus.ERROR:
            return await self._fail(job, await self._error_message(job.job_id))

        if job.advance(status):
            logger.info(f"Job {job.job_id} is {status.value}")
        return status.value

    async def _error_message(self, job_id: str) -> str:
        try:
            result = await self.client.get_result(job_id)
        except FlipmodeError as e:
            logger.debug(f"No error detail for job {job_id}: {e}")
            return "Unknown error"
        return result.error or "Unknown error"

    async def _fail(self, job: TrackedJob, message: str) -> Optional[str]:
        if self.repository.pop(job.job_id) is None:
            return None
        job.advance(JobStatus.ERROR)
        logger.error(f"Job {job.job_id} failed: {message}")
        self.notify(f"Query failed: {message}")
        if job.marker_path:
            try:
                await self.linker.set_status(job.marker_path, JobStatus.ERROR.value)
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Could not mark {job.marker_path} as failed: {e}")
        return JobStatus.ERROR.value

    async def _materialize(self, job: TrackedJob, result: JobResult) -> Optional[str]:
        # Drop tracking before the first suspension point so an overlapping
        # cycle cannot materialize the same job.
        if self.repository.pop(job.job_id) is None:
            return None
        job.advance(JobStatus.COMPLETE)

        try:
            path = await self.materializer.materialize(
                job.job_id, job.query, result, source_path=job.marker_path
            )
        except (FlipmodeError, OSError):
            self.notify("Research arrived but could not be saved. Run sync to retry.")
            raise
        if path:
            self.notify(f"Research ready! Saved to {path}")
        return path

    def start(self, scheduler: Scheduler) -> CancellationHandle:
        self.stop()
        self._handle = scheduler.schedule_repeating(self.poll_interval, self.poll)
        logger.info(f"Polling every {self.poll_interval}s")
        return self._handle

    def stop(self):
        if self._handle:
            self._handle.cancel()
            self._handle = None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if value:
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            pass
    return None
