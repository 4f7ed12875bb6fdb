from abc import ABC, abstractmethod
from typing import Callable

from shared.models.note import Note, RemoteNote

SnapshotCallback = Callable[[list[RemoteNote]], None]


class NoteStoreInterface(ABC):
    """Authoritative remote note store.

    The feed delivers the full current snapshot of an owner's notes on every
    change, never a diff. Implementations raise any exception on failure;
    callers treat every exception as a failed persist.
    """

    @abstractmethod
    def subscribe(self, owner_id: str, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Registers a snapshot listener for one owner.

        Args:
            owner_id (str): Owner whose notes are observed.
            callback (SnapshotCallback): Receives the full snapshot on every change.

        Returns:
            Callable[[], None]: Removes the listener when called.
        """
        pass

    @abstractmethod
    async def do_create_note(self, owner_id: str, note: Note) -> str:
        """
        Persists a new note.

        Returns:
            str: The remote id assigned by the store.
        """
        pass

    @abstractmethod
    async def do_update_note(self, owner_id: str, note: Note) -> None:
        """
        Overwrites the mutable fields of a persisted note. note.remote_id is set.
        """
        pass

    @abstractmethod
    async def do_delete_note(self, owner_id: str, remote_id: str) -> None:
        """
        Deletes a persisted note.
        """
        pass
