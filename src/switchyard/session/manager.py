"""Session ownership, per-session serialization and handler handoff."""

from __future__ import annotations

import asyncio
import contextlib
import enum
from collections import OrderedDict
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from switchyard.handlers import HandlerCatalog, HandlerProfile
from switchyard.inference import GenerationRequest
from switchyard.session.attachments import AttachmentResolver
from switchyard.session.cache import SessionCacheArena, SessionCaches
from switchyard.session.store import SessionStore
from switchyard.types import HandlerKind, Session, Turn

TRANSITION_NOTE = (
    "[Context note] The conversation so far was handled in {previous} mode and now continues in "
    "{current} mode. Continue naturally from the full history; do not announce or mention any change of mode."
)
DEFAULT_RESIDENT_SESSIONS = 256


class SessionPhase(enum.StrEnum):
    NO_ACTIVE_HANDLER = "no_active_handler"
    CREATING = "creating"
    ACTIVE = "active"


@dataclass
class LiveContext:
    """Generation context of the active handler of one session."""

    profile: HandlerProfile
    transition_note: str | None = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    closed: bool = False

    @property
    def handler(self) -> HandlerKind:
        return self.profile.kind

    def close(self) -> None:
        self.closed = True

    def build_request(
        self,
        history: Sequence[Turn],
        parts: Sequence[dict[str, Any]],
        *,
        tools: Sequence[Any] = (),
        model: str | None = None,
        extra_params: dict[str, Any] | None = None,
    ) -> GenerationRequest:
        """Full turn history, then the one-shot transition note, then the new parts."""
        if self.closed:
            raise RuntimeError(f"live context for {self.handler} is closed")
        messages = [turn.to_message() for turn in history]
        if self.transition_note:
            messages.append({"role": "system", "content": self.transition_note})
            self.transition_note = None
        return GenerationRequest(
            system_instruction=self.profile.system_prompt,
            history=messages,
            parts=list(parts),
            tools=list(tools),
            tool_choice="auto" if tools else "none",
            model=model,
            model_params={**self.profile.model_params, **(extra_params or {})},
        )


class SessionManager:
    """The only writer of sessions; every mutation happens under the session's lock."""

    def __init__(
        self,
        store: SessionStore,
        catalog: HandlerCatalog,
        *,
        caches: SessionCacheArena | None = None,
        resolver: AttachmentResolver | None = None,
        max_resident_sessions: int = DEFAULT_RESIDENT_SESSIONS,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._caches = caches or SessionCacheArena()
        self._resolver = resolver
        self._locks: dict[str, asyncio.Lock] = {}
        self._live: dict[str, LiveContext] = {}
        self._phases: dict[str, SessionPhase] = {}
        self._max_resident = max(1, max_resident_sessions)
        self._recent: OrderedDict[str, None] = OrderedDict()
        self._users: dict[str, int] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    @contextlib.asynccontextmanager
    async def turn(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session lock for one turn.

        Afterwards the least recently used sessions beyond the resident limit are
        forgotten, unless a turn of theirs is running or waiting for the lock.
        """
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with self.lock(session_id):
                yield
        finally:
            remaining = self._users.pop(session_id) - 1
            if remaining:
                self._users[session_id] = remaining
            self._recent[session_id] = None
            self._recent.move_to_end(session_id)
            self._evict_idle()

    def _evict_idle(self) -> None:
        excess = len(self._recent) - self._max_resident
        for session_id in list(self._recent):
            if excess <= 0:
                break
            if session_id in self._users:
                continue
            logger.debug("session.evict session={}", session_id)
            self.forget(session_id)
            excess -= 1

    def resident(self, session_id: str) -> bool:
        return session_id in self._recent

    def phase(self, session_id: str) -> SessionPhase:
        return self._phases.get(session_id, SessionPhase.NO_ACTIVE_HANDLER)

    def live_context(self, session_id: str) -> LiveContext | None:
        return self._live.get(session_id)

    def caches(self, session_id: str) -> SessionCaches:
        return self._caches.for_session(session_id)

    async def load_or_create(self, session_id: str) -> Session:
        session = await self._store.load(session_id)
        if session is None:
            logger.info("session.create session={}", session_id)
            session = Session(session_id=session_id)
        return session

    async def activate(self, session: Session, handler: HandlerKind) -> LiveContext:
        """Make `handler` the active handler, handing off if another one is active.

        The replacement context is fully built before the session is updated, so a
        caller never observes a session without exactly one live handler.
        """
        session_id = session.session_id
        current = self._live.get(session_id)
        if current is not None and not current.closed and current.handler == handler == session.active_handler:
            return current

        previous = session.active_handler
        self._phases[session_id] = SessionPhase.CREATING
        note = None
        if previous is not None and previous != handler:
            note = TRANSITION_NOTE.format(
                previous=self._catalog.get(previous).title,
                current=self._catalog.get(handler).title,
            )
        replacement = LiveContext(profile=self._catalog.get(handler), transition_note=note)

        if current is not None:
            current.close()
        self._live[session_id] = replacement
        session.active_handler = handler
        session.touch()
        self._phases[session_id] = SessionPhase.ACTIVE

        if note is not None:
            logger.info(
                "session.handoff from={} to={} seeded_turns={}",
                previous,
                handler,
                len(session.turns),
            )
        else:
            logger.info("session.open handler={} seeded_turns={}", handler, len(session.turns))
        return replacement

    async def append(self, session: Session, turn: Turn) -> None:
        session.append_turn(turn)
        await self._store.save(session)

    async def save(self, session: Session) -> None:
        await self._store.save(session)

    async def pending_attachments(self, session: Session) -> list[str]:
        pending = session.pending_attachment_ids()
        if not pending or self._resolver is None:
            return pending
        resolved = await self._resolver.resolve_by_ids(pending)
        return [item.attachment_id for item in resolved if item.status != "failed"]

    def forget(self, session_id: str) -> None:
        """Release in-memory state of a session; the stored session is untouched."""
        live = self._live.pop(session_id, None)
        if live is not None:
            live.close()
        self._phases.pop(session_id, None)
        self._caches.drop(session_id)
        self._recent.pop(session_id, None)
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked() and session_id not in self._users:
            del self._locks[session_id]
