"""Bulk, idempotent synchronization between the vault and the queue service."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from .artifacts import (
    CONCEPT,
    PENDING_QUERY,
    RESEARCH,
    RESEARCH_TYPES,
    TRAINING_SESSION,
    ArtifactIndex,
    VaultLayout,
    athlete_summary,
    concept_note,
    inbox_query,
    parse_concept,
)
from .clients.coach import CoachClient
from .clients.queue import QueueClient
from .errors import DomainError, FlipmodeError
from .frontmatter import parse_wikilink
from .jobs import JobRepository
from .linker import ArtifactLinker
from .materialize import ResearchMaterializer
from .models import AthleteRosterEntry, Concept, Job, JobStatus
from .store.base import DocumentStore, basename, dirname

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Aggregate outcome of one reconciliation run."""

    athletes: int = 0
    pending_created: int = 0
    pending_skipped: int = 0
    articles_created: int = 0
    articles_skipped: int = 0
    concepts_created: int = 0
    concepts_skipped: int = 0
    failures: int = 0

    @property
    def created(self) -> int:
        return self.pending_created + self.articles_created + self.concepts_created

    def summary(self) -> str:
        parts = []
        if self.athletes:
            parts.append(f"{self.athletes} athlete(s)")
        if self.pending_created:
            parts.append(f"{self.pending_created} pending query note(s)")
        if self.articles_created:
            parts.append(f"{self.articles_created} research article(s)")
        if self.concepts_created:
            parts.append(f"{self.concepts_created} concept(s)")
        text = f"Synced {' and '.join(parts)}" if parts else "Everything already synced"
        if self.failures:
            text += f" ({self.failures} item(s) failed, see log)"
        return text


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class ReconciliationEngine:
    """Check-then-create sync in both directions.

    Nothing is ever blindly overwritten except the per-athlete summary, which
    is a derived view regenerated on every coach pull.
    """

    def __init__(
        self,
        store: DocumentStore,
        layout: VaultLayout,
        index: ArtifactIndex,
        linker: ArtifactLinker,
        queue: Optional[QueueClient] = None,
        coach: Optional[CoachClient] = None,
        repository: Optional[JobRepository] = None,
    ):
        self.store = store
        self.layout = layout
        self.index = index
        self.linker = linker
        self.queue = queue
        self.coach = coach
        self.repository = repository
        self.materializer = ResearchMaterializer(store, layout, index, linker)

    def _require_queue(self) -> QueueClient:
        if self.queue is None:
            raise DomainError("Remote mode not configured - set athlete_token")
        return self.queue

    def _require_coach(self) -> CoachClient:
        if self.coach is None:
            raise DomainError("Coach mode not configured - set coach_token")
        return self.coach

    # Coach side

    async def coach_pull(self) -> SyncReport:
        """Refresh athlete summaries and pull pending jobs into the inbox."""
        coach = self._require_coach()
        report = SyncReport()

        for athlete in await coach.get_athletes():
            try:
                await self._sync_athlete(coach, athlete)
                report.athletes += 1
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Skipping athlete {athlete.name}: {e}")
                report.failures += 1

        pending = await coach.get_pending_jobs()
        known = await self.index.job_ids()
        await self.store.ensure_folder(self.layout.inbox)
        for job in pending:
            try:
                if await self._pull_pending(job, known):
                    report.pending_created += 1
                else:
                    report.pending_skipped += 1
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Skipping pending job {job.job_id}: {e}")
                report.failures += 1

        logger.info(
            f"Coach sync: {report.athletes} athletes, {report.pending_created} new, "
            f"{report.pending_skipped} already present"
        )
        return report

    async def _sync_athlete(self, coach: CoachClient, athlete: AthleteRosterEntry):
        graph = await coach.get_athlete_graph(athlete.athlete_id)
        path = self.layout.summary_path(athlete)
        await self.store.ensure_folder(dirname(path))
        await self.store.save(path, athlete_summary(athlete, graph).render())
        logger.debug(f"Refreshed summary for {athlete.name}")

    async def _pull_pending(self, job: Job, known: Set[str]) -> bool:
        key = f"pending:{job.job_id}"
        if job.job_id in known or not self.index.reserve(key):
            logger.debug(f"Pending job {job.job_id} already in the vault")
            return False
        try:
            path = await self.store.available_path(self.layout.inbox_path(job))
            await self.store.create(path, inbox_query(job).render())
        except (FlipmodeError, OSError):
            self.index.release(key)
            raise
        known.add(job.job_id)
        logger.info(f"Pulled pending job {job.job_id} into {path}")
        return True

    # Athlete side

    async def athlete_pull(self) -> SyncReport:
        """Materialize completed research and new concepts from the coach."""
        queue = self._require_queue()
        report = SyncReport()

        jobs = await queue.list_jobs()
        completed = [job for job in jobs if job.status is JobStatus.COMPLETE]
        synced = await self.index.job_ids(RESEARCH_TYPES)
        for job in completed:
            if job.job_id in synced:
                logger.debug(f"Already synced: {job.job_id}")
                report.articles_skipped += 1
                continue
            try:
                if await self._pull_result(queue, job):
                    report.articles_created += 1
                else:
                    report.articles_skipped += 1
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Could not sync job {job.job_id}: {e}")
                report.failures += 1

        try:
            concepts = await queue.get_concepts()
        except FlipmodeError as e:
            logger.warning(f"Could not fetch concepts: {e}")
            report.failures += 1
            concepts = []
        await self._pull_concepts(concepts, report)

        logger.info(report.summary())
        return report

    async def _pull_result(self, queue: QueueClient, job: Job) -> bool:
        result = await queue.get_result(job.job_id)
        if result.error:
            logger.warning(f"Job {job.job_id} completed with an error, not saving: {result.error}")
            return False
        if not result.article.strip():
            logger.debug(f"Job {job.job_id} has no article yet")
            return False
        path = await self.materializer.materialize(job.job_id, job.display_query, result)
        if path and self.repository is not None:
            self.repository.pop(job.job_id)
        return path is not None

    async def _pull_concepts(self, concepts: List[Concept], report: SyncReport):
        if not concepts:
            return
        await self.store.ensure_folder(self.layout.concepts)
        for concept in concepts:
            try:
                if await self.create_concept(concept):
                    report.concepts_created += 1
                else:
                    report.concepts_skipped += 1
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Could not save concept {concept.name}: {e}")
                report.failures += 1

    async def create_concept(self, concept: Concept) -> bool:
        """Create the concept note unless one with that name exists."""
        path = self.layout.concept_path(concept.name)
        if basename(path) == "":
            raise DomainError(f"Concept name {concept.name!r} has no usable characters")
        key = f"concept:{path}"
        if await self.store.exists(path) or not self.index.reserve(key):
            logger.debug(f"Concept {concept.name} already exists")
            return False
        try:
            await self.store.create(path, concept_note(concept).render())
        except FileExistsError:
            return False
        finally:
            self.index.release(key)
        return True

    async def push_graph(self) -> Dict[str, Any]:
        """Send this athlete's sessions, queries and topics to the coach."""
        queue = self._require_queue()
        snapshot: Dict[str, Any] = {"sessions": [], "queries": [], "topics": []}

        for path in await self.store.list_folder(self.layout.sync_folder):
            try:
                document = await self.store.read_document(path)
            except (FlipmodeError, OSError) as e:
                logger.debug(f"Skipping {path} in graph snapshot: {e}")
                continue
            kind = document.type
            if kind == TRAINING_SESSION:
                snapshot["sessions"].append(
                    {"date": _jsonable(document.get("date")), "tags": document.get("tags") or []}
                )
            elif kind in RESEARCH_TYPES or kind == RESEARCH:
                topic = parse_wikilink(document.get("topic")) or document.get("query")
                if topic:
                    when = document.get("date") or document.get("received")
                    snapshot["queries"].append({"topic": topic, "date": _jsonable(when)})
                    snapshot["topics"].append(topic)
            elif kind == PENDING_QUERY:
                topic = document.get("query") or document.get("query_text") or basename(path)
                snapshot["queries"].append(
                    {"topic": topic, "date": _jsonable(document.get("submitted")), "pending": True}
                )

        snapshot["topics"] = list(dict.fromkeys(snapshot["topics"]))
        await queue.sync_graph(snapshot)
        logger.info(
            f"Synced graph: {len(snapshot['sessions'])} sessions, {len(snapshot['queries'])} queries"
        )
        return snapshot

    async def collect_concepts(self) -> List[Concept]:
        concepts = []
        for path in await self.store.list_folder(self.layout.concepts):
            name = basename(path)
            if name.startswith("_"):
                continue
            try:
                document = await self.store.read_document(path)
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Skipping concept note {path}: {e}")
                continue
            if not document.frontmatter or document.type not in (None, CONCEPT):
                continue
            concepts.append(parse_concept(name, document))
        return concepts

    async def push_concepts(self, athlete_id: Any) -> Tuple[int, int]:
        """Push every local concept to one athlete. Returns (created, updated)."""
        coach = self._require_coach()
        concepts = await self.collect_concepts()
        if not concepts:
            raise DomainError("No concepts found in the Concepts folder")
        created, updated = await coach.push_concepts(athlete_id, concepts)
        logger.info(f"Pushed {len(concepts)} concepts to athlete {athlete_id}: {created} new, {updated} updated")
        return created, updated
