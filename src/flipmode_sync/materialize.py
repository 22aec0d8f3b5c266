"""Turning a completed job into a research artifact, at most once."""

import logging
from typing import Optional

from .artifacts import (
    PENDING_QUERY,
    RESEARCH_TYPES,
    ArtifactIndex,
    VaultLayout,
    research_article,
    research_path,
)
from .errors import FlipmodeError
from .linker import ArtifactLinker
from .models import JobResult
from .store.base import DocumentStore, basename

logger = logging.getLogger(__name__)

RESEARCH_SECTION = "Research"


class ResearchMaterializer:
    """Writes ``coach-research`` artifacts and links them to their pending marker.

    Shared by the poll loop and the reconciliation engine so both honour the
    same reservation in the index.
    """

    def __init__(
        self,
        store: DocumentStore,
        layout: VaultLayout,
        index: ArtifactIndex,
        linker: ArtifactLinker,
    ):
        self.store = store
        self.layout = layout
        self.index = index
        self.linker = linker

    async def materialize(
        self,
        job_id: str,
        query: str,
        result: JobResult,
        source_path: Optional[str] = None,
    ) -> Optional[str]:
        """Create the artifact. Returns its path, or None if it already exists."""
        key = f"research:{job_id}"
        if not self.index.reserve(key):
            logger.debug(f"Job {job_id} is already being materialized")
            return None

        try:
            existing = await self.index.find_by_job_id(job_id, RESEARCH_TYPES)
            if existing:
                logger.debug(f"Job {job_id} already materialized at {existing}")
                return None

            if source_path is None:
                source_path = await self.index.find_by_job_id(job_id, {PENDING_QUERY})

            await self.store.ensure_folder(self.layout.research)
            path = await self.store.available_path(research_path(self.layout, query))
            document = research_article(
                job_id,
                query,
                result.article,
                rlm_session_id=result.rlm_session_id,
                source=basename(source_path) if source_path else None,
            )
            await self.store.create(path, document.render())
        except (FlipmodeError, OSError):
            self.index.release(key)
            raise

        logger.info(f"Materialized job {job_id} at {path}")

        if source_path:
            try:
                await self.linker.link_child(source_path, basename(path), RESEARCH_SECTION)
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Could not link {path} into {source_path}: {e}")
            await self.linker.propagate_status(path, "complete", parent_path=source_path)
        return path
