"""Athlete-side research that goes straight to the research backend."""

import logging
from datetime import datetime
from typing import Optional

from .artifacts import VaultLayout, local_research, local_research_path
from .clients.research import ResearchBackend
from .errors import DomainError
from .jobs import Notify, log_notice
from .store.base import DocumentStore

logger = logging.getLogger(__name__)


class LocalResearcher:
    """Answers a query without a coach and saves the article in ``Research/``."""

    def __init__(
        self,
        backend: ResearchBackend,
        store: DocumentStore,
        layout: VaultLayout,
        user_id: str = "Athlete",
        notify: Notify = log_notice,
    ):
        self.backend = backend
        self.store = store
        self.layout = layout
        self.user_id = user_id
        self.notify = notify

    async def research(self, topic: str, when: Optional[datetime] = None) -> str:
        """Run the research and return the saved artifact's path."""
        topic = topic.strip()
        if not topic:
            raise DomainError("Please enter a technique to research")

        self.notify("Researching...")
        article, sources = await self.backend.research(topic, user_id=self.user_id)

        await self.store.ensure_folder(self.layout.research)
        path = await self.store.available_path(local_research_path(self.layout, topic, when))
        await self.store.create(path, local_research(topic, article, sources, when).render())

        logger.info(f"Local research for {topic!r} saved at {path} ({len(sources)} sources)")
        self.notify(f"Research saved to {path}")
        return path
