"""IndexRecord model: one note's entry in the vector index."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.errors import NoteStateError
from shared.models.note import Note

# Wire key of the owner field; every query is constrained on it.
OWNER_KEY = "ownerId"


class IndexMetadata(BaseModel):
    """Explicit metadata schema stored alongside each vector.

    Field names are snake_case in Python and camelCase on the wire
    (ownerId, title, isTask, categories, createdAt). Use to_wire() when
    sending and model_validate() on received dicts.

    Attributes:
        owner_id:    Mandatory. Tenant the record belongs to; used for access isolation.
        title:       Note title, omitted from the wire when absent.
        is_task:     Whether the note is a task.
        categories:  Category identifiers of the note.
        created_at:  ISO-8601 creation timestamp of the note.
    """

    model_config = ConfigDict(populate_by_name=True)

    owner_id: str = Field(alias=OWNER_KEY, min_length=1)
    title: str | None = None
    is_task: bool = Field(default=False, alias="isTask")
    categories: list[str] = []
    created_at: str = Field(alias="createdAt")

    @field_validator("categories", mode="before")
    @classmethod
    def _split_categories(cls, value):
        # stores that only keep scalar metadata hand lists back as joined strings
        if isinstance(value, str):
            return [v for v in value.split(",") if v]
        return value if value is not None else []

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class IndexRecord(BaseModel):
    """A vector index entry. id is the remote id of the source note.

    Attributes:
        id:             Remote id of the note; unique within the collection.
        embedding:      Fixed-length embedding vector.
        metadata:       Filterable metadata.
        document_text:  Note content returned as retrieval snippet.
    """

    id: str = Field(min_length=1)
    embedding: list[float]
    metadata: IndexMetadata
    document_text: str

    @classmethod
    def from_note(cls, note: Note, owner_id: str, embedding: list[float]) -> "IndexRecord":
        """Build the record for a remotely persisted note.

        Raises:
            NoteStateError: If the note has no remote id yet.
        """
        if note.remote_id is None:
            raise NoteStateError(f"Note {note.id} is pending and cannot be indexed.")
        return cls(
            id=note.remote_id,
            embedding=embedding,
            metadata=IndexMetadata(
                owner_id=owner_id,
                title=note.title or None,
                is_task=note.is_task,
                categories=sorted(note.category_ids),
                created_at=note.created_at.isoformat(),
            ),
            document_text=note.content,
        )
