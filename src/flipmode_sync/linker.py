"""Lineage links between source notes and the artifacts derived from them."""

import logging
from dataclasses import dataclass
from typing import Optional

from .artifacts import ArtifactIndex
from .errors import ConsistencyError, FlipmodeError, PartialCompletionError
from .frontmatter import add_to_section, wikilink
from .store.base import DocumentStore

logger = logging.getLogger(__name__)

# Status order along one lineage edge. A parent never moves backwards.
STATUS_RANK = {
    "pending": 0,
    "processing": 1,
    "draft": 1,
    "complete": 2,
    "error": 2,
    "published": 2,
    "synced": 3,
}

PROPAGATED_STATUSES = ("complete", "error", "published", "synced")


def status_rank(status: Optional[str]) -> int:
    return STATUS_RANK.get(status or "", -1)


@dataclass
class PropagationResult:
    """Outcome of a child-then-parent status write."""

    child_path: str
    status: str
    parent_path: Optional[str] = None
    parent_updated: bool = False
    error: Optional[PartialCompletionError] = None


class ArtifactLinker:
    """Keeps both ends of source/child links consistent."""

    def __init__(self, store: DocumentStore, index: ArtifactIndex):
        self.store = store
        self.index = index

    async def link_child(self, parent_path: str, child_name: str, section: str) -> bool:
        """Add ``[[child_name]]`` under ``## section`` of the parent. No-op if present."""
        document = await self.store.read_document(parent_path)
        link = wikilink(child_name)
        if link in document.body:
            return False
        document.body = add_to_section(document.body, section, f"- {link}")
        await self.store.write_document(parent_path, document)
        logger.debug(f"Linked {child_name} into {parent_path} ({section})")
        return True

    async def resolve_source(self, path: str) -> Optional[str]:
        """One hop: the artifact named by ``path``'s source link, if it exists."""
        document = await self.store.read_document(path)
        name = document.source
        if not name:
            return None
        resolved = await self.index.find_by_name(name, near=path)
        if resolved is None:
            logger.debug(f"Source [[{name}]] of {path} not found")
        return resolved

    async def require_source(self, path: str) -> str:
        resolved = await self.resolve_source(path)
        if resolved is None:
            raise ConsistencyError("Cannot find the source note linked from this artifact")
        return resolved

    async def set_status(self, path: str, status: str, force: bool = False) -> bool:
        """Write ``status`` if it moves the artifact forward. Returns True on write."""
        document = await self.store.read_document(path)
        current = document.status
        if current == status:
            return False
        if not force and current is not None and status_rank(status) <= status_rank(current):
            logger.debug(f"Not moving {path} from {current} to {status}")
            return False
        document.frontmatter["status"] = status
        await self.store.write_document(path, document)
        logger.info(f"{path}: status {current} -> {status}")
        return True

    async def propagate_status(
        self,
        child_path: str,
        status: str,
        parent_path: Optional[str] = None,
        force_child: bool = False,
    ) -> PropagationResult:
        """Set the child's status, then best-effort the parent's.

        A failure on the child propagates. A failure on the parent is logged
        and reported in the result; ``repair`` can re-derive it later.
        """
        await self.set_status(child_path, status, force=force_child)
        result = PropagationResult(child_path=child_path, status=status)

        try:
            result.parent_path = parent_path or await self.resolve_source(child_path)
            if result.parent_path:
                result.parent_updated = await self.set_status(result.parent_path, status)
        except (FlipmodeError, OSError) as e:
            result.error = PartialCompletionError(
                "Updated the artifact but not its source note", detail=str(e)
            )
            logger.warning(f"Status propagation from {child_path} failed: {e}")
        return result

    async def repair(self) -> int:
        """Re-derive every source's status from its children. Returns writes made."""
        repaired = 0
        for path in await self.store.list_files():
            try:
                document = await self.store.read_document(path)
                if document.status not in PROPAGATED_STATUSES or not document.source:
                    continue
                parent = await self.resolve_source(path)
                if parent and await self.set_status(parent, document.status):
                    repaired += 1
            except (FlipmodeError, OSError) as e:
                logger.warning(f"Repair skipped {path}: {e}")
        if repaired:
            logger.info(f"Repaired status on {repaired} source note(s)")
        return repaired
