"""Coach-side client for roster management and job completion."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..models import AthleteRosterEntry, Concept, Job
from .base import ServiceClient

logger = logging.getLogger(__name__)


class CoachClient(ServiceClient):
    """Claims and completes jobs, manages the roster, pushes concepts."""

    service_name = "queue service"

    async def get_athletes(self) -> List[AthleteRosterEntry]:
        data = await self._request("GET", "/api/coach/roster")
        return [AthleteRosterEntry.from_dict(a) for a in data.get("athletes") or []]

    async def add_athlete(self, discord_id: str, display_name: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "POST", "/api/coach/roster", {"discord_id": discord_id, "display_name": display_name}
        )

    async def get_pending_jobs(self) -> List[Job]:
        data = await self._request("GET", "/api/queue/pending")
        return [Job.from_dict(j) for j in data.get("jobs") or []]

    async def get_athlete_graph(self, athlete_id: Any) -> Dict[str, Any]:
        """Graph snapshot for one athlete; empty lists when none was synced."""
        data = await self._request("GET", f"/api/queue/graph/{athlete_id}")
        graph = data.get("graph_data") or {}
        return {
            "sessions": graph.get("sessions") or [],
            "queries": graph.get("queries") or [],
            "topics": graph.get("topics") or [],
        }

    async def claim_job(self, job_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/queue/claim/{job_id}")

    async def complete_job(self, job_id: str, article: str, sources: List[Any]) -> None:
        await self._request(
            "POST",
            f"/api/queue/complete/{job_id}",
            {
                "result_article": article,
                "result_sources": sources,
                "rlm_session_id": f"coach_{job_id}",
            },
        )

    async def push_concepts(self, athlete_id: Any, concepts: List[Concept]) -> Tuple[int, int]:
        data = await self._request(
            "POST",
            "/api/queue/concepts/push",
            {"athlete_id": athlete_id, "concepts": [c.to_dict() for c in concepts]},
        )
        return int(data.get("created") or 0), int(data.get("updated") or 0)

    async def get_stats(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/coach/stats")
