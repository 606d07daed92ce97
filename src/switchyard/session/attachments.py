"""Attachment resolution used by the pending-attachment override."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from pydantic import BaseModel


class AttachmentMetadata(BaseModel):
    attachment_id: str
    name: str = ""
    mime_type: str = ""
    status: str = "ready"


class AttachmentResolver(Protocol):
    async def resolve_by_ids(self, ids: Sequence[str]) -> list[AttachmentMetadata]: ...


class StaticAttachmentResolver:
    """Resolves ids against a fixed set of known attachments; unknown ids are skipped."""

    def __init__(self, attachments: Iterable[AttachmentMetadata] = ()) -> None:
        self._attachments = {item.attachment_id: item for item in attachments}

    async def resolve_by_ids(self, ids: Sequence[str]) -> list[AttachmentMetadata]:
        return [self._attachments[item] for item in ids if item in self._attachments]
