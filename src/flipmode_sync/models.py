"""Data models for Flipmode sync."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(Enum):
    """Job processing status as reported by the queue service."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def rank(self) -> int:
        # complete and error are both terminal and share a rank
        return {"pending": 0, "processing": 1, "complete": 2, "error": 2}[self.value]

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR)

    @classmethod
    def parse(cls, value: Optional[str]) -> "JobStatus":
        """Map a service status string onto the local view.

        ``claimed`` is folded into ``processing``; anything unknown is pending.
        """
        if value == "claimed":
            return cls.PROCESSING
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


@dataclass
class Job:
    """A unit of work exchanged between athlete and coach."""

    job_id: str
    query_text: str
    status: JobStatus = JobStatus.PENDING
    submitted_at: Optional[str] = None
    athlete_id: Optional[Any] = None
    athlete_name: Optional[str] = None
    enriched_query: Optional[str] = None
    started_at: Optional[str] = None

    @property
    def display_query(self) -> str:
        return self.enriched_query or self.query_text or ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=str(data["job_id"]),
            query_text=data.get("query_text") or "",
            status=JobStatus.parse(data.get("status")),
            submitted_at=data.get("submitted_at"),
            athlete_id=data.get("athlete_id"),
            athlete_name=data.get("athlete_name"),
            enriched_query=data.get("enriched_query"),
            started_at=data.get("started_at"),
        )


@dataclass
class JobStatusReport:
    """Answer of the status endpoint."""

    status: JobStatus
    progress: str


@dataclass
class JobResult:
    """Full result of a job."""

    status: JobStatus
    article: str = ""
    sources: List[Any] = field(default_factory=list)
    rlm_session_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TrackedJob:
    """Local bookkeeping for a job this athlete submitted."""

    job_id: str
    query: str
    submitted_at: datetime = None
    status: JobStatus = JobStatus.PENDING
    marker_path: Optional[str] = None
    history: List[JobStatus] = field(default_factory=list)

    def __post_init__(self):
        if self.submitted_at is None:
            self.submitted_at = datetime.now()
        if not self.history:
            self.history.append(self.status)

    def advance(self, status: JobStatus) -> bool:
        """Move to ``status`` if it is not a regression. Returns True on change."""
        if self.status.is_terminal or status.rank <= self.status.rank:
            return False
        self.status = status
        self.history.append(status)
        return True


class TherapyState(Enum):
    """State of a clarification dialogue."""

    STARTED = "started"
    CLARIFYING = "clarifying"
    READY = "ready"


@dataclass
class TherapySession:
    """Ephemeral multi-turn clarification state for one capture."""

    transcript: str
    state: TherapyState = TherapyState.STARTED
    session_id: Optional[str] = None
    question: Optional[str] = None
    enriched_query: Optional[str] = None
    answers: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def rounds(self) -> int:
        return len(self.answers)

    def context(self) -> Dict[str, Any]:
        """Context attached to the submitted job."""
        return {
            "original_transcript": self.transcript,
            "therapy_session_id": self.session_id,
        }


@dataclass
class Concept:
    """A node in the technique knowledge graph."""

    name: str
    category: str = "technique"
    parent: Optional[str] = None
    summary: str = ""
    prerequisites: List[str] = field(default_factory=list)
    leads_to: List[str] = field(default_factory=list)
    counters: List[str] = field(default_factory=list)
    related: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "parent": self.parent,
            "summary": self.summary,
            "prerequisites": list(self.prerequisites),
            "leads_to": list(self.leads_to),
            "counters": list(self.counters),
            "related": list(self.related),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Concept":
        return cls(
            name=data["name"],
            category=data.get("category") or "technique",
            parent=data.get("parent") or None,
            summary=data.get("summary") or "",
            prerequisites=list(data.get("prerequisites") or []),
            leads_to=list(data.get("leads_to") or []),
            counters=list(data.get("counters") or []),
            related=list(data.get("related") or []),
        )


@dataclass
class AthleteRosterEntry:
    """An athlete on the coach's roster."""

    athlete_id: Any
    discord_id: Optional[str] = None
    display_name: Optional[str] = None
    discord_username: Optional[str] = None

    @property
    def name(self) -> str:
        return self.display_name or self.discord_username or f"Athlete_{self.athlete_id}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AthleteRosterEntry":
        return cls(
            athlete_id=data.get("id"),
            discord_id=data.get("discord_id"),
            display_name=data.get("display_name"),
            discord_username=data.get("discord_username"),
        )
