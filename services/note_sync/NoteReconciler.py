"""Working set reconciliation.

Merges the authoritative remote snapshot with locally pending notes into the
single ordered list the rest of the application observes. All mutations go
through this class; consumers get immutable tuples and change callbacks.
"""

from datetime import timezone
from typing import Callable, Iterable

from shared.errors import NoteStateError
from shared.helper.HelperConfig import HelperConfig
from shared.models.note import Note, RemoteNote

NotesObserver = Callable[[tuple[Note, ...]], None]


def _created_at_key(note: Note):
    created_at = note.created_at
    if created_at.tzinfo is None:
        # naive timestamps are treated as UTC so they stay comparable
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at


def _sort_newest_first(notes: Iterable[Note]) -> tuple[Note, ...]:
    # sorted() stays stable with reverse=True, so ties keep pending notes first
    return tuple(sorted(notes, key=_created_at_key, reverse=True))


class NoteReconciler:
    """Single owner of the note working set."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._notes: tuple[Note, ...] = ()
        self._observers: list[NotesObserver] = []
        # remote id -> last entry seen under it; outlives remove() so a delete in flight keeps its identity
        self._identities: dict[str, Note] = {}

    ##########################################
    ############ OUTWARD CONTRACT ############
    ##########################################

    @property
    def notes(self) -> tuple[Note, ...]:
        """Current working set, newest first."""
        return self._notes

    def get(self, local_id: str) -> Note | None:
        return next((n for n in self._notes if n.id == local_id), None)

    def get_by_remote_id(self, remote_id: str) -> Note | None:
        return next((n for n in self._notes if n.remote_id == remote_id), None)

    def pending_notes(self) -> tuple[Note, ...]:
        return tuple(n for n in self._notes if n.is_pending)

    def subscribe(self, callback: NotesObserver) -> Callable[[], None]:
        """Register a change observer.

        Args:
            callback (NotesObserver): Called with the new working set after every change.

        Returns:
            Callable[[], None]: Unsubscribes the observer; calling it twice is harmless.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _publish(self, notes: Iterable[Note]) -> tuple[Note, ...]:
        self._notes = _sort_newest_first(notes)
        for note in self._notes:
            if note.remote_id is not None:
                self._identities[note.remote_id] = note
        for observer in list(self._observers):
            try:
                observer(self._notes)
            except Exception:
                self.logging.exception("Working set observer %r failed.", observer)
        return self._notes

    ##########################################
    ############# REMOTE SNAPSHOT ############
    ##########################################

    def _from_remote(self, remote: RemoteNote, known: Note | None) -> Note:
        """Map a snapshot element to a working-set note.

        A note known under this remote id keeps its local id and creation
        time, even if it was removed locally in the meantime; anything else
        uses the remote id as its local id.
        """
        return Note(
            id=known.id if known else remote.id,
            remote_id=remote.id,
            content=remote.content,
            rich_content=remote.rich_content,
            title=remote.title,
            is_task=remote.is_task,
            category_ids=frozenset(remote.category_ids),
            created_at=known.created_at if known else remote.created_at,
            is_completed=remote.is_completed,
        )

    def apply_remote_snapshot(self, remote_notes: Iterable[RemoteNote]) -> tuple[Note, ...]:
        """Replace the working set with the snapshot merged with pending notes.

        Persisted notes absent from the snapshot drop out, pending notes are
        always kept. Duplicate remote ids collapse to their first occurrence.

        Args:
            remote_notes (Iterable[RemoteNote]): Full snapshot of the owner's remote notes.

        Returns:
            tuple[Note, ...]: The new working set, newest first.
        """
        merged: dict[str, Note] = {}
        for remote in remote_notes:
            if remote.id in merged:
                self.logging.debug("Duplicate remote id '%s' in snapshot, keeping the first.", remote.id)
                continue
            merged[remote.id] = self._from_remote(remote, self._identities.get(remote.id))

        # identities of notes the store no longer has are forgotten
        self._identities = {rid: n for rid, n in self._identities.items() if rid in merged}
        pending = [n for n in self._notes if n.is_pending]
        self.logging.debug("Reconciled %d remote and %d pending notes.", len(merged), len(pending))
        return self._publish(pending + list(merged.values()))

    ##########################################
    ########### LOCAL ENTRY POINTS ###########
    ##########################################

    def add_pending(self, note: Note) -> Note:
        """Insert a freshly created note that is not yet persisted.

        Raises:
            NoteStateError: If the note has a remote id or its id is already in use.
        """
        if not note.is_pending:
            raise NoteStateError(f"Note {note.id} already has remote id '{note.remote_id}'.")
        if self.get(note.id) is not None:
            raise NoteStateError(f"Note {note.id} is already in the working set.")
        self._publish((note,) + self._notes)
        return note

    def mark_persisted(self, local_id: str, remote_id: str) -> Note:
        """Clear the pending state of a note as soon as its persist call returns.

        If the remote echo already arrived as a separate entry, that entry is
        dropped so the note appears exactly once under its local id.

        Raises:
            NoteStateError: If the note is unknown or already has another remote id.
        """
        note = self.get(local_id)
        if note is None:
            raise NoteStateError(f"Cannot mark unknown note {local_id} as persisted.")

        persisted = note.model_copy()
        persisted.assign_remote_id(remote_id)
        others = [n for n in self._notes if n.id != local_id and n.remote_id != remote_id]
        self._publish([persisted] + others)
        return persisted

    def discard(self, local_id: str) -> Note | None:
        """Drop a pending note whose create failed."""
        return self.remove(local_id)

    def remove(self, local_id: str) -> Note | None:
        """Remove a note from the working set.

        Returns:
            Note | None: The removed note, None if it was not present.
        """
        note = self.get(local_id)
        if note is None:
            return None
        self._publish(n for n in self._notes if n.id != local_id)
        return note

    def restore(self, note: Note) -> Note:
        """Put back a note whose remote delete failed.

        No-op if it is still present. Any other entry carrying the same
        remote id is dropped so the note appears once under its local id.
        """
        if self.get(note.id) is None:
            self._publish((note,) + self._without_remote_id(note))
        return note

    def _without_remote_id(self, note: Note) -> tuple[Note, ...]:
        if note.remote_id is None:
            return self._notes
        return tuple(n for n in self._notes if n.id == note.id or n.remote_id != note.remote_id)

    def replace(self, note: Note) -> Note:
        """Swap in an edited version of a note.

        Raises:
            NoteStateError: If the note is unknown, its creation time changed,
                or its remote id would be dropped or changed.
        """
        current = self.get(note.id)
        if current is None:
            raise NoteStateError(f"Cannot replace unknown note {note.id}.")
        if note.created_at != current.created_at:
            raise NoteStateError(f"created_at of note {note.id} is immutable.")
        if current.remote_id is not None and note.remote_id != current.remote_id:
            raise NoteStateError(f"remote_id of note {note.id} cannot change once assigned.")
        self._publish(note if n.id == note.id else n for n in self._without_remote_id(note))
        return note
