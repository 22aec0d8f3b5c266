"""Clarification dialogue that turns a raw transcript into a research query."""

import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .artifacts import VaultLayout, voice_note
from .clients.dialogue import DialogueClient
from .errors import DomainError, FlipmodeError, ServiceUnavailable, TransportError
from .jobs import JobLifecycleManager, Notify, log_notice
from .models import TherapySession, TherapyState
from .store.base import DocumentStore, join

logger = logging.getLogger(__name__)

AnswerFn = Callable[[str], Union[Optional[str], Awaitable[Optional[str]]]]


class TherapyDialogue:
    """State machine over the remote dialogue service.

    ``started`` moves to ``clarifying`` or ``ready`` on every service reply.
    The caller can force ``ready`` at any round with ``skip``.
    """

    def __init__(self, client: DialogueClient):
        self.client = client

    async def start(self, transcript: str) -> TherapySession:
        session = TherapySession(transcript=transcript)
        try:
            reply = await self.client.start_therapy(transcript)
        except TransportError as e:
            raise ServiceUnavailable("Clarification is unavailable right now", detail=str(e))
        self._apply(session, reply)
        return session

    async def respond(self, session: TherapySession, answer: str) -> TherapySession:
        if session.state is not TherapyState.CLARIFYING:
            raise FlipmodeError("This session is not waiting for an answer")
        try:
            reply = await self.client.respond_therapy(session.session_id, answer)
        except TransportError as e:
            raise ServiceUnavailable("Clarification is unavailable right now", detail=str(e))
        session.answers.append(answer)
        self._apply(session, reply)
        return session

    def skip(self, session: TherapySession) -> TherapySession:
        """Bail out: the original transcript becomes the query."""
        session.state = TherapyState.READY
        session.enriched_query = session.transcript
        session.question = None
        session.skipped = True
        return session

    def fallback_query(self, session: TherapySession) -> str:
        return session.transcript

    def _apply(self, session: TherapySession, reply: Dict[str, Any]):
        session.session_id = reply.get("session_id") or session.session_id
        question = reply.get("question")
        if reply.get("state") == TherapyState.CLARIFYING.value and question and session.session_id:
            session.state = TherapyState.CLARIFYING
            session.question = question
            logger.debug(f"Therapy session {session.session_id} asks: {question}")
            return

        session.state = TherapyState.READY
        session.question = None
        session.enriched_query = reply.get("enriched_query") or session.transcript
        logger.info(f"Therapy session {session.session_id} ready after {session.rounds} round(s)")


class CaptureFlow:
    """Capture → clarification → submission, with a raw-transcript fallback."""

    def __init__(
        self,
        dialogue: TherapyDialogue,
        manager: JobLifecycleManager,
        store: DocumentStore,
        layout: VaultLayout,
        notify: Notify = log_notice,
    ):
        self.dialogue = dialogue
        self.manager = manager
        self.store = store
        self.layout = layout
        self.notify = notify

    async def clarify(self, transcript: str, answer_fn: AnswerFn) -> TherapySession:
        """Run the dialogue until it is ready. ``answer_fn`` returning None skips."""
        try:
            session = await self.dialogue.start(transcript)
            while session.state is TherapyState.CLARIFYING:
                answer = answer_fn(session.question)
                if inspect.isawaitable(answer):
                    answer = await answer
                if answer is None or not answer.strip():
                    return self.dialogue.skip(session)
                session = await self.dialogue.respond(session, answer.strip())
            return session
        except ServiceUnavailable as e:
            logger.warning(f"{e}: {e.detail}")
            self.notify("Clarification unavailable, sending your note as-is.")
            session = TherapySession(transcript=transcript)
            session.enriched_query = self.dialogue.fallback_query(session)
            session.state = TherapyState.READY
            session.skipped = True
            return session

    async def transcribe(self, audio: bytes) -> str:
        """Speech to text. Daily limit and length errors surface as DomainError."""
        if not audio:
            raise DomainError("The recording is empty")
        reply = await self.dialogue.client.transcribe(audio)
        text = str(reply.get("text") or "").strip()
        if not text:
            raise DomainError("No speech detected in the recording")

        usage = reply.get("usage") or {}
        message = f"Transcribed {round(float(reply.get('duration') or 0))}s"
        if usage.get("remaining") is not None:
            message += f" ({usage['remaining']} voice notes remaining today)"
        self.notify(message)
        return text

    async def run_audio(self, audio: bytes, answer_fn: AnswerFn) -> str:
        """Transcribe a recording, then clarify and submit it like a typed note."""
        return await self.run(await self.transcribe(audio), answer_fn)

    async def run(self, transcript: str, answer_fn: AnswerFn) -> str:
        """Clarify, save the voice note and submit. Returns the job id."""
        session = await self.clarify(transcript, answer_fn)
        query = session.enriched_query or transcript

        await self._save_voice_note(transcript, query)
        return await self.manager.submit(query, session.context())

    async def _save_voice_note(self, transcript: str, query: str) -> Optional[str]:
        now = datetime.now()
        path = join(self.layout.voice_notes, f"Voice Note {now.strftime('%Y-%m-%d %H-%M-%S')}.md")
        try:
            await self.store.ensure_folder(self.layout.voice_notes)
            path = await self.store.available_path(path)
            await self.store.create(path, voice_note(transcript, query, now).render())
        except (FlipmodeError, OSError) as e:
            logger.warning(f"Could not save voice note: {e}")
            return None
        logger.debug(f"Saved voice note {path}")
        return path
