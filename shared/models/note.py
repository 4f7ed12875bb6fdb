"""Pydantic models for notes.

Hierarchy:
  Note        local working-set entity observed by the rest of the app.
  RemoteNote  one element of a snapshot delivered by the remote note feed.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from shared.errors import NoteStateError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Note(BaseModel):
    """A note in the local working set.

    The presence of remote_id is the sync marker: a note is pending strictly
    while remote_id is absent. id and created_at never change once assigned.

    Attributes:
        id:            Stable local identifier, generated at creation.
        remote_id:     Identifier assigned by the remote store after persisting.
        content:       Plain text content, always populated.
        rich_content:  Opaque rich-format payload, passed through unmodified.
        title:         Optional title, may be filled asynchronously.
        is_task:       Whether the note is a task.
        category_ids:  Category identifiers, order irrelevant.
        created_at:    Creation timestamp, determines merge order.
        is_completed:  Completion flag for tasks.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), frozen=True)
    remote_id: str | None = None
    content: str = ""
    rich_content: str | None = None
    title: str | None = None
    is_task: bool = False
    category_ids: frozenset[str] = frozenset()
    created_at: datetime = Field(default_factory=_utc_now, frozen=True)
    is_completed: bool = False

    @property
    def is_pending(self) -> bool:
        return self.remote_id is None

    def assign_remote_id(self, remote_id: str) -> None:
        """Mark the note as persisted remotely.

        Args:
            remote_id (str): The identifier assigned by the remote store.

        Raises:
            NoteStateError: If the note already carries a different remote id.
        """
        if not remote_id:
            raise NoteStateError(f"Empty remote id for note {self.id}.")
        if self.remote_id is not None and self.remote_id != remote_id:
            raise NoteStateError(
                f"Note {self.id} already has remote id '{self.remote_id}', refusing '{remote_id}'."
            )
        self.remote_id = remote_id

    def searchable_text(self) -> str:
        """Title and content joined by a newline, blank parts dropped."""
        parts = [self.title, self.content]
        return "\n".join(p for p in parts if p and p.strip())


class RemoteNote(BaseModel):
    """A note as delivered by the remote note store snapshot feed."""

    id: str
    owner_id: str
    content: str = ""
    title: str | None = None
    category_ids: list[str] = []
    is_task: bool = False
    is_completed: bool = False
    created_at: datetime
    rich_content: str | None = None
