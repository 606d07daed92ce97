"""Session store contract and the bundled adapters."""

from __future__ import annotations

import asyncio
import json
import threading
from hashlib import md5
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from loguru import logger
from pydantic import ValidationError

from switchyard.errors import SessionStoreError
from switchyard.types import Session

SESSION_FILE_SUFFIX = ".json"


class SessionStore(Protocol):
    async def load(self, session_id: str) -> Session | None: ...

    async def save(self, session: Session) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class InMemorySessionStore:
    """Process-local store; sessions are copied on the way in and out."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    async def load(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def save(self, session: Session) -> None:
        self._sessions[session.session_id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class FileSessionStore:
    """One JSON document per session, replaced atomically on save."""

    def __init__(self, root: Path, namespace: str = "default") -> None:
        self._root = root.expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._prefix = md5(namespace.encode("utf-8")).hexdigest()[:12]  # noqa: S324
        self._lock = threading.Lock()

    def path_for(self, session_id: str) -> Path:
        return self._root / f"{self._prefix}__{quote(session_id, safe='')}{SESSION_FILE_SUFFIX}"

    async def load(self, session_id: str) -> Session | None:
        return await asyncio.to_thread(self._load, session_id)

    async def save(self, session: Session) -> None:
        await asyncio.to_thread(self._save, session)

    async def delete(self, session_id: str) -> None:
        await asyncio.to_thread(self._delete, session_id)

    def _load(self, session_id: str) -> Session | None:
        path = self.path_for(session_id)
        with self._lock:
            if not path.exists():
                return None
            try:
                raw = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise SessionStoreError(f"cannot read session {session_id!r}") from exc
        try:
            return Session.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError):
            logger.warning("session.store.corrupt session={} path={}", session_id, path)
            return None

    def _save(self, session: Session) -> None:
        path = self.path_for(session.session_id)
        temp = path.with_suffix(f"{SESSION_FILE_SUFFIX}.tmp")
        payload = session.model_dump_json(indent=2)
        with self._lock:
            try:
                temp.write_text(payload, encoding="utf-8")
                temp.replace(path)
            except OSError as exc:
                temp.unlink(missing_ok=True)
                raise SessionStoreError(f"cannot write session {session.session_id!r}") from exc

    def _delete(self, session_id: str) -> None:
        with self._lock:
            self.path_for(session_id).unlink(missing_ok=True)
