"""Coach-side authoring: generate, review, publish and push articles."""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from .artifacts import (
    ARTICLE_PLACEHOLDER,
    TRAINING_REVIEW,
    ArtifactIndex,
    VaultLayout,
    review_name,
    skill_dev_name,
    skill_development,
    training_review,
)
from .clients.coach import CoachClient
from .clients.research import ResearchBackend
from .errors import ConsistencyError, DomainError, FlipmodeError, PartialCompletionError
from .frontmatter import get_section, remove_section
from .jobs import Notify, log_notice
from .linker import ArtifactLinker, PropagationResult
from .store.base import DocumentStore, basename, dirname, join

logger = logging.getLogger(__name__)

REVIEWS_SECTION = "Training Reviews"
SKILL_DEV_SECTION = "Skill Development"

_HTTP_LINK = re.compile(r"\[([^\]]+)\]\(http[^)]+\)")
_SYNCED_SUFFIX = " [synced]"


def strip_callout(body: str, kind: str) -> str:
    """Drop every ``> [!kind]`` callout block from ``body``."""
    out: List[str] = []
    skipping = False
    for line in body.split("\n"):
        if line.startswith(f"> [!{kind}]"):
            skipping = True
            continue
        if skipping and line.startswith(">"):
            continue
        if skipping and not line.strip():
            skipping = False
            continue
        skipping = False
        out.append(line)
    return "\n".join(out)


def review_article_text(body: str) -> str:
    """The part of a training review the athlete receives."""
    text = strip_callout(body, "warning")
    for heading in ("Listen to Review", "Deep Dive", "Links"):
        text = remove_section(text, heading)
    text = text.strip()
    while text.endswith("---"):
        text = text[:-3].rstrip()
    return text


class CoachWorkflow:
    """What the coach does with a single note.

    Every step re-reads the note right before writing it: the coach may be
    editing the same file by hand.
    """

    def __init__(
        self,
        store: DocumentStore,
        layout: VaultLayout,
        index: ArtifactIndex,
        linker: ArtifactLinker,
        coach: CoachClient,
        research: Optional[ResearchBackend] = None,
        season: int = 1,
        episode: int = 1,
        notify: Notify = log_notice,
    ):
        self.store = store
        self.layout = layout
        self.index = index
        self.linker = linker
        self.coach = coach
        self.research = research
        self.season = season
        self.episode = episode
        self.notify = notify

    async def _claim(self, job_id: str) -> Optional[PartialCompletionError]:
        # The job may already be processing; completion is authoritative.
        try:
            await self.coach.claim_job(job_id)
            logger.info(f"Claimed job {job_id}")
            return None
        except FlipmodeError as e:
            logger.warning(f"Claim of {job_id} skipped: {e}")
            return PartialCompletionError("Could not claim the job", detail=str(e))

    async def _move(self, path: str, folder: str, name: str) -> str:
        target = join(folder, name)
        if target == path:
            return path
        await self.store.ensure_folder(folder)
        target = await self.store.available_path(target)
        await self.store.rename(path, target)
        return target

    async def generate_article(self, path: str) -> str:
        """Claim, research, fill the article section, move to Drafts."""
        if self.research is None:
            raise DomainError("No research backend configured - set server_url")

        document = await self.store.read_document(path)
        job_id = document.job_id
        if not job_id:
            raise ConsistencyError("Not a pending query note (no job_id in frontmatter)")
        query = document.get("query_text") or get_section(document.body, "Question", stop_at_rule=True)
        if not query:
            raise ConsistencyError("Could not find query text")

        self.notify("Claiming job and generating article...")
        await self._claim(job_id)
        article, sources = await self.research.research(str(query))

        document = await self.store.read_document(path)
        if ARTICLE_PLACEHOLDER in document.body:
            document.body = document.body.replace(ARTICLE_PLACEHOLDER, article, 1)
        else:
            document.body = f"{document.body.rstrip()}\n\n{article}\n"
        if document.status in (None, "pending"):
            document.frontmatter["status"] = "draft"
        if sources:
            document.frontmatter["sources"] = sources
        await self.store.write_document(path, document)

        new_path = await self._move(path, self.layout.drafts, f"{basename(path)}.md")
        logger.info(f"Generated article for {job_id} at {new_path}")
        self.notify("Article generated! Edit and then push to athlete.")
        return new_path

    async def push_article(self, path: str) -> str:
        """Complete the job with this note's article. Returns the note's new path."""
        document = await self.store.read_document(path)
        job_id = document.job_id
        athlete = document.get("athlete_name")
        source_path = await self.linker.resolve_source(path) if document.source else None

        if document.type == TRAINING_REVIEW and not job_id and source_path:
            source = await self.store.read_document(source_path)
            job_id = source.job_id
            athlete = athlete or source.get("athlete_name")
        if not job_id:
            raise ConsistencyError("Cannot push: no job_id found (check source query link)")

        if document.type == TRAINING_REVIEW:
            article = review_article_text(document.body)
        else:
            article = get_section(document.body, "Generated Article") or ""
        if not article or ARTICLE_PLACEHOLDER in article:
            raise DomainError("No article content to push")

        self.notify("Pushing to athlete...")
        await self._claim(job_id)
        await self.coach.complete_job(job_id, article, document.get("sources") or [])
        logger.info(f"Completed job {job_id} ({len(article)} chars)")

        await self.linker.set_status(path, "synced")
        name = basename(path)
        if name.endswith(_SYNCED_SUFFIX):
            name = name[: -len(_SYNCED_SUFFIX)]
        new_path = await self._move(path, self.layout.sent, f"{name}{_SYNCED_SUFFIX}.md")

        result = await self.linker.propagate_status(new_path, "synced", parent_path=source_path)
        if result.error:
            self.notify(f"Pushed, but the source note was not updated: {result.error}")
        self.notify(f"Pushed to {athlete or 'athlete'}!")
        return new_path

    async def create_review(
        self,
        source_path: str,
        topic: str,
        query: str,
        article: str,
        when: Optional[datetime] = None,
    ) -> str:
        """Write a draft training review next to its source and link it back."""
        source = await self.store.read_document(source_path)
        season = int(source.get("season") or self.season)
        episode = int(source.get("episode") or self.episode)

        folder = dirname(source_path) or self.layout.sync_folder
        path = await self.store.available_path(join(folder, f"{review_name(query, when)}.md"))
        review = training_review(basename(source_path), topic, query, article, season, episode, when)
        await self.store.create(path, review.render())

        await self.linker.link_child(source_path, basename(path), REVIEWS_SECTION)
        logger.info(f"Training review saved: {path}")
        return path

    async def publish_review(self, path: str, when: Optional[datetime] = None) -> PropagationResult:
        """``draft`` → ``published``, then the same status on the source note."""
        document = await self.store.read_document(path)
        if document.type != TRAINING_REVIEW:
            raise ConsistencyError("This command only works on Training Review files")
        if document.status == "published":
            raise DomainError("This review is already published")

        tags = [t for t in document.get("tags") or [] if t != "draft"]
        document.frontmatter["tags"] = tags + ["published"]
        document.frontmatter["status"] = "published"
        document.body = _publish_body(document.body, when or datetime.now())
        await self.store.write_document(path, document)

        result = await self.linker.propagate_status(path, "published")
        self.notify("Training Review published to athlete!")
        return result

    async def create_skill_development(
        self,
        review_path: str,
        topic: str,
        sessions: List[Dict[str, Any]],
        when: Optional[datetime] = None,
    ) -> List[str]:
        """Write the SkillDev chain; only the first session links to the review."""
        if not sessions:
            raise DomainError("No skill development sessions to create")

        folder = dirname(review_path) or self.layout.sync_folder
        names = [skill_dev_name(i, topic, when) for i in range(1, len(sessions) + 1)]
        paths = []
        for i, session in enumerate(sessions):
            document = skill_development(
                topic,
                session,
                i + 1,
                previous=names[i - 1] if i > 0 else None,
                following=names[i + 1] if i + 1 < len(names) else None,
                source=basename(review_path) if i == 0 else None,
                when=when,
            )
            path = join(folder, f"{names[i]}.md")
            await self.store.save(path, document.render())
            paths.append(path)

        await self.linker.link_child(review_path, names[0], SKILL_DEV_SECTION)
        logger.info(f"Created {len(paths)} skill development sessions for {topic}")
        return paths


def _publish_body(body: str, when: datetime) -> str:
    body = strip_callout(body, "warning")
    body = _HTTP_LINK.sub(r"\1", body)
    notice = f"> [!success] Published {when.strftime('%Y-%m-%d')}\n\n"
    marker = "# Training Review:"
    if marker in body:
        return body.replace(marker, notice + marker, 1)
    return notice + body
