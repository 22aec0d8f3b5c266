"""Artifact layout, renderers, and the identity index over the document store."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from .errors import ConsistencyError
from .frontmatter import Document, extract_links, get_section, parse_wikilink, wikilink
from .models import AthleteRosterEntry, Concept, Job
from .store.base import DocumentStore, basename, dirname, join

logger = logging.getLogger(__name__)

PENDING_QUERY = "pending-query"
COACH_RESEARCH = "coach-research"
RESEARCH = "research"
CONCEPT = "concept"
ATHLETE_SUMMARY = "athlete-summary"
TRAINING_REVIEW = "training-review"
TRAINING_SESSION = "training-session"
SKILL_DEVELOPMENT = "skill-development"
VOICE_NOTE = "voice-note"

# Artifact types that count as "this job's result is already here"
RESEARCH_TYPES = frozenset({COACH_RESEARCH})

ARTICLE_PLACEHOLDER = '*Run "Coach: Generate article" to populate this section*'

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')
_NON_WORD = re.compile(r"[^\w\s-]")


def safe_name(text: str, limit: Optional[int] = None, replacement: str = "-") -> str:
    """Strip characters the vault cannot hold in a file name."""
    text = text[:limit] if limit else text
    return _UNSAFE_CHARS.sub(replacement, text).strip()


def plain_name(text: str, limit: Optional[int] = None) -> str:
    text = text[:limit] if limit else text
    return _NON_WORD.sub("", text).strip()


@dataclass
class VaultLayout:
    """Folder names under the sync folder."""

    sync_folder: str = "Flipmode"

    def folder(self, name: str) -> str:
        return join(self.sync_folder, name)

    @property
    def pending(self) -> str:
        return self.folder("Pending")

    @property
    def research(self) -> str:
        return self.folder("Research")

    @property
    def concepts(self) -> str:
        return self.folder("Concepts")

    @property
    def athletes(self) -> str:
        return self.folder("Athletes")

    @property
    def inbox(self) -> str:
        return self.folder("Inbox")

    @property
    def drafts(self) -> str:
        return self.folder("Drafts")

    @property
    def sent(self) -> str:
        return self.folder("Sent")

    @property
    def voice_notes(self) -> str:
        return self.folder("VoiceNotes")

    def inbox_path(self, job: Job) -> str:
        return join(self.inbox, f"{job.job_id[:8]} - {safe_name(job.athlete_name or 'Unknown', replacement='_')}.md")

    def concept_path(self, name: str) -> str:
        return join(self.concepts, f"{plain_name(name)}.md")

    def summary_path(self, athlete: AthleteRosterEntry) -> str:
        return join(self.athletes, safe_name(athlete.name, replacement="_"), "summary.md")


def pending_marker(job_id: str, query: str, submitted: datetime) -> Document:
    stamp = submitted.strftime("%Y-%m-%d %H:%M:%S")
    body = (
        "# Pending Query\n\n"
        f"**Submitted:** {stamp}\n\n"
        f"**Query:** {query}\n\n"
        "---\n\n"
        "*Waiting for coach to process...*\n\n"
        "This note will be updated when results are ready.\n"
    )
    return Document(
        {
            "type": PENDING_QUERY,
            "job_id": job_id,
            "query": query,
            "submitted": stamp,
            "status": "pending",
        },
        body,
    )


def research_article(
    job_id: str,
    query: str,
    article: str,
    rlm_session_id: Optional[str] = None,
    source: Optional[str] = None,
    received: Optional[datetime] = None,
) -> Document:
    """A completed job's article; the body is the article text verbatim."""
    frontmatter = {
        "type": COACH_RESEARCH,
        "job_id": job_id,
        "query": query,
        "received": (received or datetime.now()).isoformat(timespec="seconds"),
        "rlm_session_id": rlm_session_id or "",
        "status": "complete",
    }
    if source:
        frontmatter["source"] = wikilink(source)
    frontmatter["tags"] = ["bjj", "research", "from-coach"]
    return Document(frontmatter, article)


def research_path(layout: VaultLayout, query: str, when: Optional[datetime] = None) -> str:
    date = (when or datetime.now()).strftime("%Y-%m-%d")
    short = plain_name(query or "Research", 50) or "Research"
    return join(layout.research, f"{date} - {short}.md")


_STOP_WORDS = frozenset({"when", "from", "with", "that", "this", "what", "how"})


def topic_keywords(topic: str, limit: int = 5) -> List[str]:
    words = [_NON_WORD.sub("", w) for w in topic.lower().split()]
    return [w for w in words if len(w) > 3 and w not in _STOP_WORDS][:limit]


def local_research(
    topic: str,
    article: str,
    sources: Optional[List[Any]] = None,
    when: Optional[datetime] = None,
) -> Document:
    """Research the athlete ran without a coach. Tags come from the topic words."""
    date = (when or datetime.now()).strftime("%Y-%m-%d")
    clean = safe_name(topic, 50)
    body = (
        f"{article.strip()}\n\n"
        "---\n"
        "## Related\n"
        f"- Topic: {wikilink(clean)}\n"
        f"- Training Plan: {wikilink(f'{date} - {clean} Plan')}\n\n"
        "*Generated by Flipmode*\n"
    )
    frontmatter: Dict[str, Any] = {"type": RESEARCH, "topic": wikilink(clean), "date": date}
    if sources:
        frontmatter["sources"] = sources
    frontmatter["tags"] = ["bjj", "flipmode"] + topic_keywords(topic)
    return Document(frontmatter, body)


def local_research_path(layout: VaultLayout, topic: str, when: Optional[datetime] = None) -> str:
    date = (when or datetime.now()).strftime("%Y-%m-%d")
    return join(layout.research, f"{date} - {safe_name(topic, 50)}.md")


def inbox_query(job: Job) -> Document:
    name = job.athlete_name or "Unknown"
    body = (
        f"# Query from {name}\n\n"
        f"**Submitted:** {job.submitted_at}\n\n"
        "## Question\n\n"
        f"{job.display_query}\n\n"
        "---\n\n"
        "## Actions\n\n"
        "1. Run command: **Coach: Generate article for current query**\n"
        "2. Edit the generated article below\n"
        "3. Run command: **Coach: Push article to athlete**\n\n"
        "---\n\n"
        "## Generated Article\n\n"
        f"{ARTICLE_PLACEHOLDER}\n"
    )
    return Document(
        {
            "type": PENDING_QUERY,
            "job_id": job.job_id,
            "athlete_id": job.athlete_id,
            "athlete_name": name,
            "submitted": job.submitted_at,
            "query_text": job.display_query,
            "status": "pending",
        },
        body,
    )


def athlete_summary(athlete: AthleteRosterEntry, graph: Dict[str, Any], today: Optional[str] = None) -> Document:
    sessions = graph.get("sessions") or []
    queries = graph.get("queries") or []
    topics = graph.get("topics") or []

    lines = [
        f"# {athlete.name}",
        "",
        "## Overview",
        "",
        f"- **Sessions:** {len(sessions)}",
        f"- **Queries:** {len(queries)}",
        f"- **Topics:** {len(topics)}",
        "",
        "## Topics Explored",
        "",
    ]
    lines.extend([f"- {t}" for t in topics] or ["*No topics yet*"])
    lines += ["", "## Recent Queries", ""]

    recent_queries = sorted(queries, key=lambda q: str(q.get("date") or ""), reverse=True)[:10]
    for q in recent_queries:
        mark = "⏳" if q.get("pending") else "✓"
        lines.append(f"- [{mark}] {q.get('topic') or 'Unknown'} ({q.get('date') or 'N/A'})")

    lines += ["", "## Recent Sessions", ""]
    recent_sessions = sorted(sessions, key=lambda s: str(s.get("date") or ""), reverse=True)[:10]
    for s in recent_sessions:
        tags = ", ".join(str(t) for t in s.get("tags") or [])
        lines.append(f"- {s.get('date') or 'Unknown'} - {tags or 'No tags'}")

    return Document(
        {
            "type": ATHLETE_SUMMARY,
            "athlete_id": athlete.athlete_id,
            "discord_id": athlete.discord_id,
            "updated": today or datetime.now().strftime("%Y-%m-%d"),
        },
        "\n".join(lines) + "\n",
    )


def _link_list(names: Iterable[str]) -> str:
    return "\n".join(f"- {wikilink(n)}" for n in names) or "- None"


def concept_note(concept: Concept) -> Document:
    parent_link = wikilink(concept.parent) if concept.parent else "Root concept"
    category = concept.category or "technique"
    body = (
        f"# {concept.name}\n\n"
        f"**Category:** {category}\n"
        f"**Parent:** {parent_link}\n\n"
        f"## Summary\n\n{concept.summary or 'No summary available.'}\n\n"
        f"## Prerequisites\n\n{_link_list(concept.prerequisites)}\n\n"
        f"## Leads To\n\n{_link_list(concept.leads_to)}\n\n"
        f"## Counters\n\n{_link_list(concept.counters)}\n\n"
        f"## Related Concepts\n\n{_link_list(concept.related)}\n"
    )
    return Document(
        {
            "type": CONCEPT,
            "parent": concept.parent or "",
            "category": category.lower(),
            "tags": ["concept", "bjj", category.lower()],
        },
        body,
    )


def parse_concept(name: str, document: Document) -> Concept:
    """Read a concept note back into a Concept."""
    category = document.get("category")
    if not category:
        tags = document.get("tags") or []
        category = tags[-1] if len(tags) > 2 else "technique"
    summary = get_section(document.body, "Summary") or ""
    if summary == "No summary available.":
        summary = ""
    return Concept(
        name=name,
        category=str(category),
        parent=parse_wikilink(document.get("parent")) or None,
        summary=summary,
        prerequisites=extract_links(get_section(document.body, "Prerequisites")),
        leads_to=extract_links(get_section(document.body, "Leads To")),
        counters=extract_links(get_section(document.body, "Counters")),
        related=extract_links(get_section(document.body, "Related Concepts")),
    )


def voice_note(transcript: str, query: Optional[str], when: Optional[datetime] = None) -> Document:
    when = when or datetime.now()
    body = f"# Voice Note - {when.strftime('%Y-%m-%d')}\n\n{transcript}\n"
    if query and query != transcript:
        body += f"\n---\n\n**Research Query:** {query}\n"
    return Document(
        {"type": VOICE_NOTE, "date": when.strftime("%Y-%m-%d"), "tags": ["bjj", "voice-note"]},
        body,
    )


class ArtifactIndex:
    """Finds artifacts by their embedded identity rather than their path.

    ``reserve`` is synchronous: between two suspension points only one
    caller in the process can win a given key, which is what keeps the poll
    loop and the reconciliation engine from materializing the same job twice.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self._reserved: Set[str] = set()

    def reserve(self, key: str) -> bool:
        if key in self._reserved:
            return False
        self._reserved.add(key)
        return True

    def release(self, key: str) -> None:
        self._reserved.discard(key)

    async def _frontmatter(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.store.get_frontmatter(path)
        except (ConsistencyError, OSError) as e:
            logger.debug(f"Skipping unreadable artifact {path}: {e}")
            return None

    async def find_by_job_id(self, job_id: str, types: Optional[Iterable[str]] = None) -> Optional[str]:
        types = set(types) if types else None
        for path in await self.store.list_files():
            fm = await self._frontmatter(path)
            if not fm or fm.get("job_id") is None or str(fm["job_id"]) != job_id:
                continue
            if types is None or fm.get("type") in types:
                return path
        return None

    async def job_ids(self, types: Optional[Iterable[str]] = None) -> Set[str]:
        """Every job id carried by an artifact, in one pass over the store."""
        types = set(types) if types else None
        found = set()
        for path in await self.store.list_files():
            fm = await self._frontmatter(path)
            if not fm or fm.get("job_id") in (None, ""):
                continue
            if types is None or fm.get("type") in types:
                found.add(str(fm["job_id"]))
        return found

    async def find_by_name(self, name: str, near: Optional[str] = None) -> Optional[str]:
        """Resolve a link target by file name, preferring the folder of ``near``."""
        name = name[:-3] if name.endswith(".md") else name
        matches: List[str] = []
        for path in await self.store.list_files():
            if basename(path) == name or path == f"{name}.md":
                matches.append(path)
        if not matches:
            return None
        if near is not None:
            folder = dirname(near)
            for path in matches:
                if dirname(path) == folder:
                    return path
        return matches[0]


_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]+")

DRAFT_CALLOUT = (
    "> [!warning] DRAFT - Review and edit before publishing\n"
    '> Use command "coach publish" when ready to send to athlete.\n'
)


def slug(text: str, limit: int) -> str:
    """``Knee slice!`` -> ``Knee_slice_``, as used in generated file names."""
    return _NON_ALNUM.sub("_", text[:limit])


def review_name(query: str, when: Optional[datetime] = None) -> str:
    return f"TrainingReview-{(when or datetime.now()).strftime('%Y-%m-%d')}-{slug(query, 40)}"


def training_review(
    source: str,
    topic: str,
    query: str,
    article: str,
    season: int,
    episode: int,
    when: Optional[datetime] = None,
) -> Document:
    """A draft review derived from ``source``; published with ``coach publish``."""
    date = (when or datetime.now()).strftime("%Y-%m-%d")
    body = (
        f"# Training Review: {topic}\n"
        f"{DRAFT_CALLOUT}\n"
        f"> **Query:** {query}\n\n"
        f"{article.strip()}\n\n"
        "---\n"
        "## Links\n"
        f"- Source: {wikilink(source)}\n"
    )
    return Document(
        {
            "type": TRAINING_REVIEW,
            "status": "draft",
            "season": season,
            "episode": episode,
            "date": date,
            "query": query,
            "topic": topic,
            "source_file": wikilink(source),
            "tags": ["bjj", "training-review", f"season-{season}", "research", "draft"],
        },
        body,
    )


def skill_dev_name(number: int, topic: str, when: Optional[datetime] = None) -> str:
    return f"SkillDev{number}-{(when or datetime.now()).strftime('%Y-%m-%d')}-{slug(topic, 25)}"


def _rounds(session: Dict[str, Any]) -> str:
    if session.get("rounds_text"):
        return str(session["rounds_text"]).strip()
    lines = []
    for i, r in enumerate(session.get("rounds") or [], 1):
        line = f"- **Round {r.get('round', i)}:** {r.get('description') or 'Positional sparring'}"
        if r.get("reasoning"):
            line += f" ({r['reasoning']})"
        lines.append(line)
    return "\n".join(lines) or "See source research for round details."


def skill_development(
    topic: str,
    session: Dict[str, Any],
    number: int,
    previous: Optional[str] = None,
    following: Optional[str] = None,
    source: Optional[str] = None,
    when: Optional[datetime] = None,
) -> Document:
    """One session of a linear SkillDev chain. Only the first names a source."""
    resistance = session.get("resistance_level") or "50%"
    goals = session.get("goals") or ["Complete all 5 rounds", "Note what worked"]
    nav = " | ".join(
        part
        for part in (
            f"Previous: {wikilink(previous)}" if previous else "",
            f"Next: {wikilink(following)}" if following else "",
        )
        if part
    )
    body = (
        f"# SkillDev {number}: {session.get('title') or f'Session {number}'}\n\n"
        f"**Resistance:** {resistance}\n"
        f"**Focus:** {session.get('focus') or 'Skill development'}\n\n"
        f"{nav}\n\n"
        f"## Positional Sparring Rounds\n\n{_rounds(session)}\n\n"
        "## Goals\n\n" + "\n".join(f"- [ ] {g}" for g in goals) + "\n\n"
        "## Post-Session Notes\n\n**What worked:**\n\n\n**What to adjust:**\n\n\n**Key insight:**\n"
    )
    if source:
        body += f"\n---\n\n- Source: {wikilink(source)}\n"

    frontmatter: Dict[str, Any] = {
        "type": SKILL_DEVELOPMENT,
        "methodology": "CLA",
        "session": number,
        "topic": topic,
        "date": (when or datetime.now()).strftime("%Y-%m-%d"),
        "resistance": resistance,
        "status": "pending",
    }
    if source:
        frontmatter["source"] = wikilink(source)
    frontmatter["tags"] = ["bjj", "skill-dev", "cla", f"session-{number}"]
    return Document(frontmatter, body)
