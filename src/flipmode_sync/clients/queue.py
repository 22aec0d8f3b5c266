"""Athlete-side client for the shared queue service."""

import logging
from typing import Any, Dict, List, Optional

from ..errors import TransportError
from ..models import Concept, Job, JobResult, JobStatus, JobStatusReport
from .base import ServiceClient

logger = logging.getLogger(__name__)


class QueueClient(ServiceClient):
    """Submits queries and fetches results for one athlete."""

    service_name = "queue service"

    async def submit_query(self, query: str, therapy_context: Optional[Dict[str, Any]] = None) -> str:
        data = await self._request(
            "POST",
            "/api/queue/submit",
            {"query_text": query, "therapy_context": therapy_context},
        )
        job_id = data.get("job_id")
        if not job_id:
            raise TransportError("The queue service did not return a job id")
        return str(job_id)

    async def check_status(self, job_id: str) -> JobStatusReport:
        data = await self._request("GET", f"/api/queue/status/{job_id}")
        return JobStatusReport(
            status=JobStatus.parse(data.get("status")),
            progress="Processing..." if data.get("started_at") else "Queued",
        )

    async def get_result(self, job_id: str) -> JobResult:
        data = await self._request("GET", f"/api/queue/result/{job_id}")
        status = JobStatus.parse(data.get("status"))
        error = data.get("error")
        if status is JobStatus.ERROR:
            error = error or "Unknown error"
        return JobResult(
            status=status,
            article=data.get("result_article") or "",
            sources=data.get("result_sources") or [],
            rlm_session_id=data.get("rlm_session_id"),
            error=str(error) if error else None,
        )

    async def list_jobs(self) -> List[Job]:
        data = await self._request("GET", "/api/queue/jobs")
        return [Job.from_dict(j) for j in data.get("jobs") or []]

    async def sync_graph(self, graph: Dict[str, Any]) -> None:
        await self._request("POST", "/api/queue/graph/sync", graph)

    async def get_concepts(self) -> List[Concept]:
        data = await self._request("GET", "/api/queue/concepts")
        return [Concept.from_dict(c) for c in data.get("concepts") or [] if c.get("name")]
