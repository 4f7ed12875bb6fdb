from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from shared.models.note import Note, RemoteNote


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)
    categories: list[str] | None = None
    is_task: bool | None = None


class AnswerRequest(BaseModel):
    question: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=100)


class SummarizeRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    categories: list[str] | None = None
    limit: int = Field(default=20, ge=1, le=100)


class WebhookNote(BaseModel):
    """A persisted note as sent by the note store's change trigger."""

    remote_id: str = Field(min_length=1)
    content: str = ""
    title: str | None = None
    is_task: bool = False
    category_ids: list[str] = []
    is_completed: bool = False
    created_at: datetime | None = None

    def to_note(self) -> Note:
        values = dict(
            id=self.remote_id,
            remote_id=self.remote_id,
            content=self.content,
            title=self.title,
            is_task=self.is_task,
            category_ids=frozenset(self.category_ids),
            is_completed=self.is_completed,
        )
        if self.created_at is not None:
            values["created_at"] = self.created_at
        return Note(**values)


class WebhookRequest(BaseModel):
    event: Literal["created", "updated", "deleted"]
    owner_id: str = Field(min_length=1)
    note: WebhookNote


class RebuildRequest(BaseModel):
    owner_id: str = Field(min_length=1)
    notes: list[RemoteNote]
