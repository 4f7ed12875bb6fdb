"""Optimistic note operations.

Every create, update and delete is applied to the working set first, then
pushed to the remote note store. A failed push rolls the working set back and
raises NotePersistError. Index maintenance runs as background tasks whose
failures never reach the caller.
"""

import asyncio
from typing import Any, Coroutine, Iterable

from pydantic import ValidationError

from services.note_sync.IndexCoordinator import IndexCoordinator
from services.note_sync.NoteAssistant import NoteAssistant
from services.note_sync.NoteReconciler import NoteReconciler
from shared.clients.notes.NoteStoreInterface import NoteStoreInterface
from shared.errors import NotePersistError, NoteStateError, NoteSyncError
from shared.helper.HelperConfig import HelperConfig
from shared.models.note import Note, RemoteNote

# fields a caller may change through do_update_note
EDITABLE_FIELDS = {"content", "rich_content", "title", "is_task", "category_ids", "is_completed"}


class NoteSyncService:
    """Connects one owner's working set to the note store and the index."""

    def __init__(
        self,
        helper_config: HelperConfig,
        owner_id: str,
        note_store: NoteStoreInterface,
        reconciler: NoteReconciler,
        coordinator: IndexCoordinator,
        assistant: NoteAssistant | None = None,
    ) -> None:
        if not owner_id:
            raise ValueError("owner_id is required.")
        self.logging = helper_config.get_logger()
        self._owner_id = owner_id
        self._note_store = note_store
        self._reconciler = reconciler
        self._coordinator = coordinator
        self._assistant = assistant
        self._unsubscribe = None
        self._index_tasks: set[asyncio.Task] = set()

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self) -> None:
        """Subscribe the working set to the remote snapshot feed."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._note_store.subscribe(self._owner_id, self._on_remote_snapshot)
        self.logging.info("Listening for note snapshots of owner '%s'.", self._owner_id)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            self.logging.info("Stopped listening for note snapshots of owner '%s'.", self._owner_id)

    async def do_drain(self) -> None:
        """Wait for all scheduled index tasks to finish."""
        while self._index_tasks:
            await asyncio.gather(*list(self._index_tasks), return_exceptions=True)

    def _on_remote_snapshot(self, remote_notes: Iterable[RemoteNote]) -> None:
        own_notes = []
        for remote in remote_notes:
            if remote.owner_id != self._owner_id:
                self.logging.warning("Ignoring note '%s' of another owner in snapshot.", remote.id)
                continue
            own_notes.append(remote)
        self._reconciler.apply_remote_snapshot(own_notes)

    def _schedule_index(self, operation: Coroutine[Any, Any, bool]) -> None:
        task = asyncio.create_task(operation)
        self._index_tasks.add(task)
        task.add_done_callback(self._index_tasks.discard)

    async def _fill_title(self, local_id: str, content: str) -> bool:
        """Give an untitled note a generated title; failures are only logged."""
        try:
            title = await self._assistant.do_generate_title(content)
        except (NoteSyncError, ValueError) as exc:
            self.logging.warning("Generating a title for note %s failed: %s", local_id, exc)
            return False

        current = self._reconciler.get(local_id)
        # the note may be gone or titled by hand in the meantime
        if current is None or current.title:
            return False
        try:
            await self.do_update_note(local_id, title=title)
        except (NoteSyncError, ValueError) as exc:
            self.logging.warning("Saving the generated title of note %s failed: %s", local_id, exc)
            return False
        self.logging.info("Note %s titled '%s'.", local_id, title)
        return True

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def do_create_note(
        self,
        content: str,
        title: str | None = None,
        is_task: bool = False,
        category_ids: Iterable[str] = (),
        rich_content: str | None = None,
    ) -> Note:
        """Create a note optimistically.

        The note appears at the front of the working set right away and is
        marked persisted as soon as the store returns its remote id.

        Returns:
            Note: The persisted note.

        Raises:
            NotePersistError: If the store fails; the pending note is discarded.
        """
        note = Note(
            content=content,
            title=title,
            is_task=is_task,
            category_ids=frozenset(category_ids),
            rich_content=rich_content,
        )
        self._reconciler.add_pending(note)

        try:
            remote_id = await self._note_store.do_create_note(self._owner_id, note)
        except Exception as exc:
            self._reconciler.discard(note.id)
            self.logging.error("Creating note %s failed, discarded: %s", note.id, exc)
            raise NotePersistError(f"Note could not be saved: {exc}") from exc

        persisted = self._reconciler.mark_persisted(note.id, remote_id)
        self.logging.info("Created note %s with remote id '%s'.", persisted.id, remote_id)
        self._schedule_index(self._coordinator.on_note_created(persisted, self._owner_id))
        if self._assistant is not None and not persisted.title and persisted.content.strip():
            self._schedule_index(self._fill_title(persisted.id, persisted.content))
        return persisted

    async def do_update_note(self, local_id: str, **changes: Any) -> Note:
        """Edit a persisted note optimistically.

        Args:
            local_id (str): Local id of the note.
            **changes: New values for any of EDITABLE_FIELDS.

        Returns:
            Note: The updated note.

        Raises:
            ValueError: If a field is not editable or a value is invalid.
            NoteStateError: If the note is unknown or still pending.
            NotePersistError: If the store fails; the previous version is restored.
        """
        invalid = set(changes) - EDITABLE_FIELDS
        if invalid:
            raise ValueError(f"Fields cannot be edited: {sorted(invalid)}")

        previous = self._get_persisted(local_id)
        try:
            updated = Note.model_validate({**previous.model_dump(), **changes})
        except ValidationError as exc:
            raise ValueError(f"Invalid note changes: {exc}") from exc
        self._reconciler.replace(updated)

        try:
            await self._note_store.do_update_note(self._owner_id, updated)
        except Exception as exc:
            # a snapshot may have dropped the note in the meantime
            if self._reconciler.get(previous.id) is not None:
                self._reconciler.replace(previous)
            self.logging.error("Updating note '%s' failed, restored: %s", previous.remote_id, exc)
            raise NotePersistError(f"Note could not be updated: {exc}") from exc

        self._schedule_index(self._coordinator.on_note_updated(updated, self._owner_id))
        return updated

    async def do_delete_note(self, local_id: str) -> None:
        """Delete a persisted note optimistically.

        Raises:
            NoteStateError: If the note is unknown or still pending.
            NotePersistError: If the store fails; the note is restored.
        """
        note = self._get_persisted(local_id)
        self._reconciler.remove(local_id)

        try:
            await self._note_store.do_delete_note(self._owner_id, note.remote_id)
        except Exception as exc:
            self._reconciler.restore(note)
            self.logging.error("Deleting note '%s' failed, restored: %s", note.remote_id, exc)
            raise NotePersistError(f"Note could not be deleted: {exc}") from exc

        self.logging.info("Deleted note '%s'.", note.remote_id)
        self._schedule_index(self._coordinator.on_note_deleted(note))

    def _get_persisted(self, local_id: str) -> Note:
        note = self._reconciler.get(local_id)
        if note is None:
            raise NoteStateError(f"Unknown note {local_id}.")
        # the store addresses notes by remote id only
        if note.is_pending:
            raise NoteStateError(f"Note {local_id} is not saved yet.")
        return note
