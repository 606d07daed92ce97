"""Session state, stores and per-session caches."""

from switchyard.session.attachments import AttachmentMetadata, AttachmentResolver, StaticAttachmentResolver
from switchyard.session.cache import SessionCacheArena, SessionCaches
from switchyard.session.manager import LiveContext, SessionManager, SessionPhase
from switchyard.session.store import FileSessionStore, InMemorySessionStore, SessionStore

__all__ = [
    "AttachmentMetadata",
    "AttachmentResolver",
    "FileSessionStore",
    "InMemorySessionStore",
    "LiveContext",
    "SessionCacheArena",
    "SessionCaches",
    "SessionManager",
    "SessionPhase",
    "SessionStore",
    "StaticAttachmentResolver",
]
