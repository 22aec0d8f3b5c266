"""Tests for two-way reconciliation."""

from datetime import datetime

import pytest

from flipmode_sync.artifacts import concept_note, pending_marker
from flipmode_sync.errors import DomainError, TransportError
from flipmode_sync.frontmatter import Document
from flipmode_sync.models import AthleteRosterEntry, Concept, Job, JobResult, JobStatus, TrackedJob
from flipmode_sync.reconcile import ReconciliationEngine, SyncReport


def pending_job(job_id, name="Sam"):
    return Job(job_id=job_id, query_text=f"question {job_id}", athlete_name=name, athlete_id=1)


class TestCoachPull:
    """Test the coach pulling athlete state."""

    @pytest.mark.asyncio
    async def test_only_missing_pending_jobs_are_created(self, engine, coach_client, store):
        """Test only missing pending jobs are created."""
        coach_client.get_athletes.return_value = []
        coach_client.get_pending_jobs.return_value = [
            pending_job("aaaaaaaa-1"),
            pending_job("bbbbbbbb-2"),
            pending_job("cccccccc-3"),
        ]
        # Two are already in the vault, one of them moved out of the inbox.
        await store.create(
            "Flipmode/Inbox/aaaaaaaa - Sam.md",
            Document({"type": "pending-query", "job_id": "aaaaaaaa-1", "status": "pending"}, "q").render(),
        )
        await store.create(
            "Flipmode/Drafts/bbbbbbbb - Sam.md",
            Document({"type": "pending-query", "job_id": "bbbbbbbb-2", "status": "draft"}, "q").render(),
        )

        report = await engine.coach_pull()

        assert report.pending_created == 1
        assert report.pending_skipped == 2
        created = await store.read_document("Flipmode/Inbox/cccccccc - Sam.md")
        assert created.job_id == "cccccccc-3"
        assert created.status == "pending"
        assert created.get("query_text") == "question cccccccc-3"

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self, engine, coach_client, store):
        """Test a second run creates nothing."""
        coach_client.get_athletes.return_value = [AthleteRosterEntry(athlete_id=1, display_name="Sam")]
        coach_client.get_athlete_graph.return_value = {"sessions": [], "queries": [], "topics": []}
        coach_client.get_pending_jobs.return_value = [pending_job("aaaaaaaa-1"), pending_job("bbbbbbbb-2")]

        await engine.coach_pull()
        files = await store.list_files()
        again = await engine.coach_pull()

        assert again.pending_created == 0
        assert await store.list_files() == files

    @pytest.mark.asyncio
    async def test_same_prefix_jobs_get_distinct_notes(self, engine, coach_client, store):
        """Test jobs with the same name prefix get distinct notes."""
        coach_client.get_athletes.return_value = []
        coach_client.get_pending_jobs.return_value = [pending_job("aaaaaaaa-1"), pending_job("aaaaaaaa-2")]

        report = await engine.coach_pull()

        assert report.pending_created == 2
        assert len(await store.list_folder("Flipmode/Inbox")) == 2

    @pytest.mark.asyncio
    async def test_summary_is_regenerated(self, engine, coach_client, store):
        """Test athlete summaries are regenerated."""
        athlete = AthleteRosterEntry(athlete_id=7, discord_id="d7", display_name="Sam")
        coach_client.get_athletes.return_value = [athlete]
        coach_client.get_pending_jobs.return_value = []
        coach_client.get_athlete_graph.side_effect = [
            {"sessions": [], "queries": [], "topics": ["guard"]},
            {"sessions": [], "queries": [], "topics": ["mount escapes"]},
        ]

        await engine.coach_pull()
        report = await engine.coach_pull()

        assert report.athletes == 1
        summary = await store.read_document("Flipmode/Athletes/Sam/summary.md")
        assert summary.type == "athlete-summary"
        assert summary.get("athlete_id") == 7
        assert "mount escapes" in summary.body
        assert "- guard" not in summary.body

    @pytest.mark.asyncio
    async def test_one_bad_athlete_is_skipped(self, engine, coach_client, store):
        """Test one failing athlete is skipped."""
        coach_client.get_athletes.return_value = [
            AthleteRosterEntry(athlete_id=1, display_name="Broken"),
            AthleteRosterEntry(athlete_id=2, display_name="Fine"),
        ]
        coach_client.get_athlete_graph.side_effect = [
            TransportError("timeout"),
            {"sessions": [], "queries": [], "topics": []},
        ]
        coach_client.get_pending_jobs.return_value = []

        report = await engine.coach_pull()

        assert report.athletes == 1
        assert report.failures == 1
        assert await store.exists("Flipmode/Athletes/Fine/summary.md")

    @pytest.mark.asyncio
    async def test_requires_coach_client(self, store, layout, index, linker):
        """Test coach pull without a coach client."""
        engine = ReconciliationEngine(store, layout, index, linker)

        with pytest.raises(DomainError):
            await engine.coach_pull()


class TestAthletePull:
    """Test the athlete pulling coach completions."""

    @pytest.fixture
    def remote(self, queue_client):
        queue_client.list_jobs.return_value = [
            Job(job_id="j1", query_text="knee slice", status=JobStatus.COMPLETE),
            Job(job_id="j2", query_text="still waiting", status=JobStatus.PENDING),
        ]
        queue_client.get_result.return_value = JobResult(status=JobStatus.COMPLETE, article="Article one")
        queue_client.get_concepts.return_value = [Concept(name="Knee Slice", parent="Passing", summary="Cut through")]
        return queue_client

    @pytest.mark.asyncio
    async def test_pull_is_idempotent(self, engine, remote, store, artifacts_of_type):
        """Test athlete pull is idempotent."""
        first = await engine.athlete_pull()
        files = await store.list_files()
        second = await engine.athlete_pull()

        assert first.articles_created == 1
        assert first.concepts_created == 1
        assert second.created == 0
        assert second.articles_skipped == 1
        assert second.concepts_skipped == 1
        assert await store.list_files() == files
        remote.get_result.assert_awaited_once_with("j1")

        research = await artifacts_of_type("coach-research")
        assert len(research) == 1
        assert research[0][1].body == "Article one"

    @pytest.mark.asyncio
    async def test_pending_marker_is_completed_and_linked(self, engine, remote, store):
        """Test the pending marker is completed and linked."""
        marker_path = "Flipmode/Pending/2026-10-16 - knee slice.md"
        await store.create(marker_path, pending_marker("j1", "knee slice", datetime(2026, 10, 16)).render())

        report = await engine.athlete_pull()

        assert report.articles_created == 1
        marker = await store.read_document(marker_path)
        assert marker.status == "complete"
        assert "## Research" in marker.body

    @pytest.mark.asyncio
    async def test_pull_removes_job_from_tracking(self, engine, remote, repository):
        """Test pull removes the job from tracking."""
        repository.add(TrackedJob(job_id="j1", query="knee slice"))

        await engine.athlete_pull()

        assert "j1" not in repository

    @pytest.mark.asyncio
    async def test_result_failure_counts_and_continues(self, engine, queue_client):
        """Test a result failure is counted and the pull continues."""
        queue_client.list_jobs.return_value = [
            Job(job_id="j1", query_text="a", status=JobStatus.COMPLETE),
            Job(job_id="j2", query_text="b", status=JobStatus.COMPLETE),
        ]
        queue_client.get_result.side_effect = [
            TransportError("reset"),
            JobResult(status=JobStatus.COMPLETE, article="B"),
        ]
        queue_client.get_concepts.return_value = []

        report = await engine.athlete_pull()

        assert report.failures == 1
        assert report.articles_created == 1

    @pytest.mark.asyncio
    async def test_complete_result_with_error_is_skipped(self, engine, remote, store):
        """A job listed as complete whose result carries an error is not saved."""
        remote.get_result.return_value = JobResult(status=JobStatus.COMPLETE, error="model timeout")

        report = await engine.athlete_pull()

        assert report.articles_created == 0
        assert report.articles_skipped == 1
        assert await store.list_folder("Flipmode/Research") == []

    @pytest.mark.asyncio
    async def test_unreadable_note_does_not_stop_pull(self, engine, remote, store):
        """A non-UTF-8 note in the vault is skipped, the pull still completes."""
        (store.root / "stray.md").write_bytes(b"\xff\xfe\x00junk")

        report = await engine.athlete_pull()

        assert report.articles_created == 1
        assert report.concepts_created == 1

    @pytest.mark.asyncio
    async def test_concept_fetch_failure_keeps_articles(self, engine, remote):
        """Test a concept fetch failure keeps the articles."""
        remote.get_concepts.side_effect = TransportError("down")

        report = await engine.athlete_pull()

        assert report.articles_created == 1
        assert report.failures == 1

    @pytest.mark.asyncio
    async def test_duplicate_concept_names_create_one_note(self, engine, queue_client, store):
        """Test duplicate concept names create one note."""
        queue_client.list_jobs.return_value = []
        queue_client.get_concepts.return_value = [
            Concept(name="Knee Slice", summary="from coach A"),
            Concept(name="Knee Slice", summary="from coach B"),
        ]

        report = await engine.athlete_pull()

        assert report.concepts_created == 1
        assert report.concepts_skipped == 1
        note = await store.read_document("Flipmode/Concepts/Knee Slice.md")
        assert "from coach A" in note.body

    @pytest.mark.asyncio
    async def test_existing_concept_is_not_updated(self, engine, queue_client, store):
        """Test an existing concept note is not updated."""
        await store.create(
            "Flipmode/Concepts/Knee Slice.md",
            concept_note(Concept(name="Knee Slice", summary="my notes")).render(),
        )
        queue_client.list_jobs.return_value = []
        queue_client.get_concepts.return_value = [Concept(name="Knee Slice", summary="new text")]

        report = await engine.athlete_pull()

        assert report.concepts_created == 0
        note = await store.read_document("Flipmode/Concepts/Knee Slice.md")
        assert "my notes" in note.body


class TestGraphAndConcepts:
    """Test graph snapshots and concept pushes."""

    @pytest.mark.asyncio
    async def test_push_graph_snapshot(self, engine, queue_client, store):
        """Test the graph snapshot sent to the coach."""
        await store.create(
            "Flipmode/Sessions/s1.md",
            Document({"type": "training-session", "date": "2026-10-01", "tags": ["guard"]}, "").render(),
        )
        await store.create(
            "Flipmode/Research/r1.md",
            Document({"type": "coach-research", "job_id": "j1", "query": "guard"}, "A").render(),
        )
        await store.create(
            "Flipmode/Research/r2.md",
            Document({"type": "research", "topic": "guard", "date": "2026-10-02"}, "B").render(),
        )
        await store.create(
            "Flipmode/Pending/p1.md",
            Document({"type": "pending-query", "job_id": "j3", "query": "mount"}, "C").render(),
        )
        await store.create("Elsewhere/ignored.md", Document({"type": "training-session"}, "").render())

        snapshot = await engine.push_graph()

        queue_client.sync_graph.assert_awaited_once_with(snapshot)
        assert snapshot["sessions"] == [{"date": "2026-10-01", "tags": ["guard"]}]
        assert snapshot["topics"] == ["guard"]
        assert {"topic": "mount", "date": None, "pending": True} in snapshot["queries"]
        assert len(snapshot["queries"]) == 3

    @pytest.mark.asyncio
    async def test_push_graph_reads_wikilink_topics(self, engine, queue_client, store):
        """Research topics stored as links are sent as plain names."""
        await store.create(
            "Flipmode/Research/r1.md",
            Document({"type": "research", "topic": "[[Knee Shield]]", "date": "2026-10-02"}, "B").render(),
        )

        snapshot = await engine.push_graph()

        assert snapshot["topics"] == ["Knee Shield"]
        assert snapshot["queries"] == [{"topic": "Knee Shield", "date": "2026-10-02"}]

    @pytest.mark.asyncio
    async def test_push_graph_skips_unreadable_notes(self, engine, queue_client, store):
        """A non-UTF-8 note is left out of the snapshot."""
        await store.create(
            "Flipmode/Sessions/s1.md",
            Document({"type": "training-session", "date": "2026-10-01"}, "").render(),
        )
        (store.root / "Flipmode" / "Sessions" / "broken.md").write_bytes(b"\xff\xfe\x00junk")

        snapshot = await engine.push_graph()

        assert snapshot["sessions"] == [{"date": "2026-10-01", "tags": []}]
        queue_client.sync_graph.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_collect_and_push_concepts(self, engine, coach_client, store):
        """Test collecting and pushing concepts."""
        await store.create(
            "Flipmode/Concepts/Knee Slice.md",
            concept_note(
                Concept(name="Knee Slice", category="Pass", parent="Passing", prerequisites=["Base"])
            ).render(),
        )
        await store.create("Flipmode/Concepts/_index.md", "# Index\n")
        coach_client.push_concepts.return_value = (1, 0)

        created, updated = await engine.push_concepts(42)

        assert (created, updated) == (1, 0)
        athlete_id, concepts = coach_client.push_concepts.await_args.args
        assert athlete_id == 42
        assert [c.name for c in concepts] == ["Knee Slice"]
        assert concepts[0].parent == "Passing"
        assert concepts[0].category == "pass"
        assert concepts[0].prerequisites == ["Base"]

    @pytest.mark.asyncio
    async def test_collect_concepts_skips_unreadable_notes(self, engine, store):
        """A non-UTF-8 concept note is skipped, the others are collected."""
        await store.create(
            "Flipmode/Concepts/Knee Slice.md", concept_note(Concept(name="Knee Slice")).render()
        )
        (store.root / "Flipmode" / "Concepts" / "Broken.md").write_bytes(b"\xff\xfe\x00junk")

        concepts = await engine.collect_concepts()

        assert [c.name for c in concepts] == ["Knee Slice"]

    @pytest.mark.asyncio
    async def test_push_concepts_without_notes(self, engine, coach_client):
        """Test pushing concepts with no concept notes."""
        with pytest.raises(DomainError):
            await engine.push_concepts(42)
        coach_client.push_concepts.assert_not_awaited()


def test_sync_report_summary():
    """Test sync report summary text."""
    assert SyncReport().summary() == "Everything already synced"
    assert "2 research article(s)" in SyncReport(articles_created=2, failures=1).summary()
