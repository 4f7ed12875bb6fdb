"""Index coordination service.

Keeps the vector index in step with the notes: embeds each persisted note's
searchable text via an EmbedClient and writes the resulting record into the
vector store. The index is a derived, rebuildable artifact, so every
note-level failure is logged and absorbed here instead of reaching the
note operations that triggered it.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.IndexRecord import IndexRecord
from shared.clients.rag.models.RankedResult import RankedResult
from shared.errors import IndexWriteFailedError, NoteStateError, VectorIndexError
from shared.helper.HelperConfig import HelperConfig
from shared.models.note import Note

INDEX_CONCURRENCY = 5  # max parallel note indexing tasks


class ReindexReport(BaseModel):
    """Outcome of a bulk reindex.

    Attributes:
        owner_id:         Owner whose notes were indexed.
        skipped:          True if the vector store was unhealthy and nothing was attempted.
        indexed:          Remote ids written to the index.
        failed:           Remote id -> error message for notes that could not be indexed.
        skipped_pending:  Number of notes ignored because they are not persisted yet.
        skipped_empty:    Number of notes without any text to embed.
    """

    owner_id: str
    skipped: bool = False
    indexed: list[str] = []
    failed: dict[str, str] = {}
    skipped_pending: int = 0
    skipped_empty: int = 0


class IndexCoordinator:
    """Drives embedding and vector index writes for notes."""

    def __init__(
        self,
        helper_config: HelperConfig,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._concurrency = int(helper_config.get_number_val("INDEX_CONCURRENCY", default=INDEX_CONCURRENCY))
        if self._concurrency < 1:
            raise ValueError(f"INDEX_CONCURRENCY must be at least 1, got {self._concurrency}.")

    ##########################################
    ############### BULK INDEX ###############
    ##########################################

    async def do_reindex_all(self, notes: Iterable[Note], owner_id: str) -> ReindexReport:
        """Index every persisted note of one owner.

        A health check runs first; if the vector store is unreachable the whole
        run is skipped. Otherwise notes are indexed with bounded parallelism
        and a failure on one note never stops the others.

        Args:
            notes (Iterable[Note]): Working set of the owner.
            owner_id (str): Owner stored in every record's metadata.

        Returns:
            ReindexReport: What was indexed, skipped and failed. Never raises.
        """
        report = ReindexReport(owner_id=owner_id)
        notes = list(notes)
        self.logging.info("Starting reindex of %d notes for owner '%s'...", len(notes), owner_id)

        if not await self._rag_client.do_healthcheck_ok():
            self.logging.warning("Vector store '%s' is unhealthy, skipping reindex.", self._rag_client.get_engine_name())
            report.skipped = True
            return report

        persisted = [n for n in notes if not n.is_pending]
        report.skipped_pending = len(notes) - len(persisted)

        sem = asyncio.Semaphore(self._concurrency)
        results = await asyncio.gather(
            *[self._index_with_limit(note, owner_id, sem) for note in persisted],
            return_exceptions=True,
        )

        for note, result in zip(persisted, results):
            if isinstance(result, BaseException):
                report.failed[note.remote_id] = str(result) or type(result).__name__
            elif result:
                report.indexed.append(note.remote_id)
            else:
                report.skipped_empty += 1

        self.logging.info(
            "Reindex complete for owner '%s': %d indexed, %d failed, %d pending, %d empty.",
            owner_id, len(report.indexed), len(report.failed), report.skipped_pending, report.skipped_empty,
        )
        return report

    async def _index_with_limit(self, note: Note, owner_id: str, sem: asyncio.Semaphore) -> bool:
        async with sem:
            try:
                return await self.do_index_note(note, owner_id)
            except Exception as exc:
                self.logging.error("Indexing failed for note remote_id=%s: %s", note.remote_id, exc)
                raise

    ##########################################
    ############# SINGLE NOTE ##############
    ##########################################

    async def do_index_note(self, note: Note, owner_id: str) -> bool:
        """Embed a note and write its record, replacing any previous one.

        The record is deleted before it is added so repeated indexing keeps a
        single entry per note. A failing delete is ignored; the add decides.
        If the add fails the note has no record until it is indexed again.

        Returns:
            bool: True if a record was written, False if the note has no text
                (any previous record is removed in that case).

        Raises:
            NoteStateError: If the note is pending.
            EmbeddingError: If the embedding cannot be generated.
            VectorIndexError: If the record cannot be written.
        """
        if note.remote_id is None:
            raise NoteStateError(f"Note {note.id} is pending and cannot be indexed.")
        record_id = note.remote_id
        text = note.searchable_text()
        if not text:
            self.logging.info("Note remote_id=%s has no text, removing it from the index.", record_id)
            await self._do_delete_quietly(record_id)
            return False

        embedding = await self._embed_client.do_generate(text)
        record = IndexRecord.from_note(note, owner_id=owner_id, embedding=embedding)

        await self._do_delete_quietly(record_id)
        try:
            await self._rag_client.do_upsert(record)
        except VectorIndexError:
            self.logging.error(
                "Record '%s' was removed but not re-added; it stays missing until the next reindex.", record_id
            )
            raise
        self.logging.debug("Indexed note remote_id=%s.", record_id)
        return True

    async def _do_delete_quietly(self, record_id: str) -> None:
        try:
            await self._rag_client.do_delete(record_id)
        except IndexWriteFailedError as exc:
            self.logging.debug("Delete-before-add of record '%s' failed: %s", record_id, exc)

    ##########################################
    ############# CHANGE HOOKS ###############
    ##########################################

    async def on_note_created(self, note: Note, owner_id: str) -> bool:
        """Best-effort indexing of a newly persisted note. Never raises."""
        return await self._run_hook("create", note, lambda: self.do_index_note(note, owner_id))

    async def on_note_updated(self, note: Note, owner_id: str) -> bool:
        """Best-effort re-indexing of an edited note. Never raises."""
        return await self._run_hook("update", note, lambda: self.do_index_note(note, owner_id))

    async def on_note_deleted(self, note: Note) -> bool:
        """Best-effort removal of a deleted note's record. Never raises."""
        return await self._run_hook("delete", note, lambda: self._rag_client.do_delete(note.remote_id))

    async def _run_hook(self, event: str, note: Note, operation: Callable[[], Awaitable[Any]]) -> bool:
        if note.is_pending:
            self.logging.debug("Ignoring %s event for pending note %s.", event, note.id)
            return False
        try:
            await operation()
        except Exception as exc:
            self.logging.error("Index %s failed for note remote_id=%s: %s", event, note.remote_id, exc)
            return False
        return True

    ##########################################
    ################# SEARCH #################
    ##########################################

    async def do_search(
        self,
        text: str,
        owner_id: str,
        limit: int = 10,
        categories: Iterable[str] | None = None,
        extra_filter: dict[str, Any] | None = None,
    ) -> list[RankedResult]:
        """Semantic search over one owner's notes.

        Categories are sent to the store as a filter, so the limit applies to
        notes carrying at least one of them.

        Args:
            text (str): Free-text query.
            owner_id (str): Owner the results are restricted to.
            limit (int): Maximum number of hits requested from the store.
            categories (Iterable[str] | None): Optional category ids.
            extra_filter (dict | None): Additional metadata clauses, e.g. {"isTask": {"$eq": True}}.

        Returns:
            list[RankedResult]: Hits in the store's ranking order.

        Raises:
            ValueError: If text is blank or limit is not positive.
            EmbeddingError: If the query cannot be embedded.
            VectorIndexError: If the query fails.
        """
        if not text or not text.strip():
            raise ValueError("Search text must not be empty.")
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}.")

        embedding = await self._embed_client.do_generate(text.strip())
        results = await self._rag_client.do_query(
            embedding=embedding,
            owner_id=owner_id,
            limit=limit,
            extra_filter=extra_filter,
            categories=sorted(set(categories or [])),
        )
        self.logging.debug("Search for owner '%s' returned %d hits.", owner_id, len(results))
        return results
