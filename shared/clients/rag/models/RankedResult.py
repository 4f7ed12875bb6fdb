from pydantic import BaseModel

from shared.clients.rag.models.IndexRecord import IndexMetadata


class RankedResult(BaseModel):
    """A single similarity query hit, in the order the vector store ranked it.

    Attributes:
        id:        Record id (remote id of the note).
        distance:  Distance to the query embedding; lower is more similar.
        metadata:  Metadata stored with the record.
        document:  Stored document text, if returned.
    """

    id: str
    distance: float
    metadata: IndexMetadata
    document: str | None = None

    @property
    def similarity(self) -> float:
        """Distance mapped into (0, 1], higher is more similar."""
        return 1.0 / (1.0 + max(self.distance, 0.0))
