"""Wires the sync engine together from a config dict."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .artifacts import ArtifactIndex, VaultLayout
from .clients import CoachClient, DialogueClient, QueueClient, ResearchBackend
from .coach import CoachWorkflow
from .config import DEFAULTS
from .errors import DomainError
from .jobs import JobLifecycleManager, JobRepository, Notify, log_notice
from .linker import ArtifactLinker
from .local import LocalResearcher
from .reconcile import ReconciliationEngine
from .store import FileSystemStore
from .therapy import CaptureFlow, TherapyDialogue

logger = logging.getLogger(__name__)


class FlipmodeApp:
    """One party's view of the system: a vault plus the clients it is allowed to use.

    The athlete clients exist only when ``athlete_token`` is set, the coach
    client only when ``coach_token`` is set.
    """

    def __init__(self, config: Dict[str, Any], notify: Notify = log_notice):
        self.config = {**DEFAULTS, **(config or {})}
        self.notify = notify

        timeout = float(self.config["request_timeout"])
        queue_url = self.config["queue_url"]
        athlete_token = self.config.get("athlete_token") or ""
        coach_token = self.config.get("coach_token") or ""

        self.store = FileSystemStore(Path(self.config["vault"]))
        self.layout = VaultLayout(self.config["sync_folder"])
        self.index = ArtifactIndex(self.store)
        self.linker = ArtifactLinker(self.store, self.index)
        self.repository = JobRepository()
        self._manager: Optional[JobLifecycleManager] = None

        self.queue: Optional[QueueClient] = (
            QueueClient(queue_url, athlete_token, timeout) if athlete_token else None
        )
        self.dialogue: Optional[DialogueClient] = (
            DialogueClient(queue_url, athlete_token, timeout) if athlete_token else None
        )
        self.coach: Optional[CoachClient] = (
            CoachClient(queue_url, coach_token, timeout) if coach_token else None
        )
        self.research = ResearchBackend(self.config["server_url"], timeout=timeout)

        self.engine = ReconciliationEngine(
            self.store,
            self.layout,
            self.index,
            self.linker,
            queue=self.queue,
            coach=self.coach,
            repository=self.repository,
        )

    def require_queue(self) -> QueueClient:
        if self.queue is None:
            raise DomainError("Remote mode not configured - set athlete_token")
        return self.queue

    def require_dialogue(self) -> DialogueClient:
        if self.dialogue is None:
            raise DomainError("Remote mode not configured - set athlete_token")
        return self.dialogue

    def require_coach(self) -> CoachClient:
        if self.coach is None:
            raise DomainError("Coach mode not configured - set coach_token")
        return self.coach

    def health_client(self) -> QueueClient:
        return QueueClient(self.config["queue_url"], timeout=float(self.config["request_timeout"]))

    @property
    def manager(self) -> JobLifecycleManager:
        if self._manager is None:
            self._manager = JobLifecycleManager(
                self.require_queue(),
                self.store,
                self.layout,
                self.index,
                self.linker,
                repository=self.repository,
                notify=self.notify,
                poll_interval=float(self.config["poll_interval"]),
            )
        return self._manager

    @property
    def capture(self) -> CaptureFlow:
        return CaptureFlow(
            TherapyDialogue(self.require_dialogue()), self.manager, self.store, self.layout, notify=self.notify
        )

    @property
    def local_research(self) -> LocalResearcher:
        return LocalResearcher(
            self.research,
            self.store,
            self.layout,
            user_id=str(self.config["athlete_name"]),
            notify=self.notify,
        )

    @property
    def workflow(self) -> CoachWorkflow:
        return CoachWorkflow(
            self.store,
            self.layout,
            self.index,
            self.linker,
            self.require_coach(),
            research=self.research,
            season=int(self.config["current_season"]),
            episode=int(self.config["current_episode"]),
            notify=self.notify,
        )

    def note_path(self, note: str) -> str:
        """Vault-relative POSIX path for a note given on the command line."""
        path = Path(note)
        if path.is_absolute():
            path = path.resolve().relative_to(self.store.root.resolve())
        text = path.as_posix()
        return text if text.endswith(".md") else f"{text}.md"
