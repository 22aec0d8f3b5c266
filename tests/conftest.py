"""Shared fixtures: a temporary vault, client fakes and a manual scheduler."""

from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from flipmode_sync.artifacts import ArtifactIndex, VaultLayout
from flipmode_sync.clients import CoachClient, DialogueClient, QueueClient, ResearchBackend
from flipmode_sync.jobs import JobLifecycleManager, JobRepository
from flipmode_sync.linker import ArtifactLinker
from flipmode_sync.reconcile import ReconciliationEngine
from flipmode_sync.scheduler import CancellationHandle, Scheduler
from flipmode_sync.store import FileSystemStore


class ManualScheduler(Scheduler):
    """Runs scheduled functions only when the test calls ``tick``."""

    def __init__(self):
        self.entries: List[Dict[str, Any]] = []

    def schedule_repeating(self, interval, fn):
        entry = {"interval": interval, "fn": fn, "active": True}
        self.entries.append(entry)

        def cancel():
            entry["active"] = False

        return CancellationHandle(cancel)

    async def tick(self):
        for entry in list(self.entries):
            if entry["active"]:
                await entry["fn"]()


@pytest.fixture
def store(tmp_path):
    """Empty vault on disk."""
    return FileSystemStore(tmp_path / "vault")


@pytest.fixture
def layout():
    return VaultLayout("Flipmode")


@pytest.fixture
def index(store):
    return ArtifactIndex(store)


@pytest.fixture
def linker(store, index):
    return ArtifactLinker(store, index)


@pytest.fixture
def notices():
    """Collected user-visible notices."""
    return []


@pytest.fixture
def queue_client():
    return AsyncMock(spec=QueueClient)


@pytest.fixture
def coach_client():
    return AsyncMock(spec=CoachClient)


@pytest.fixture
def dialogue_client():
    return AsyncMock(spec=DialogueClient)


@pytest.fixture
def research_backend():
    return AsyncMock(spec=ResearchBackend)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def repository():
    return JobRepository()


@pytest.fixture
def manager(queue_client, store, layout, index, linker, repository, notices):
    return JobLifecycleManager(
        queue_client,
        store,
        layout,
        index,
        linker,
        repository=repository,
        notify=notices.append,
    )


@pytest.fixture
def engine(store, layout, index, linker, queue_client, coach_client, repository):
    return ReconciliationEngine(
        store,
        layout,
        index,
        linker,
        queue=queue_client,
        coach=coach_client,
        repository=repository,
    )


@pytest.fixture
def artifacts_of_type(store):
    """Coroutine returning (path, Document) pairs for every artifact of a type."""

    async def find(kind):
        found = []
        for path in await store.list_files():
            document = await store.read_document(path)
            if document.type == kind:
                found.append((path, document))
        return found

    return find
