"""Typed error hierarchy for the note sync and indexing pipeline.

Clients raise these at the transport boundary so that callers can decide
between retrying, self-healing and surfacing without inspecting messages.
"""


class NoteSyncError(Exception):
    """Base error for everything raised by this project."""


##########################################
############ CLASSIFICATION ##############
##########################################

class ConfigurationError(NoteSyncError):
    """Fatal to the operation, never retried."""


class TransientNetworkError(NoteSyncError):
    """Timeouts, connection failures and other transport-level errors."""


class RequestFailedError(NoteSyncError):
    """A backend answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CollectionNotFoundError(NoteSyncError):
    """The vector store reports the referenced collection does not exist."""


class StateError(NoteSyncError):
    """An operation was attempted in a state that does not allow it."""


class NoteStateError(StateError):
    """A note invariant would be violated (e.g. remote id reassignment)."""


##########################################
############### EMBEDDING ################
##########################################

class EmbeddingError(NoteSyncError):
    """Base error of the embedding client."""


class MissingCredentialError(ConfigurationError, EmbeddingError):
    """No API key is configured for the embedding backend."""


class EmbeddingApiFailureError(EmbeddingError):
    """All embedding attempts failed. The last observed error is chained."""

    def __init__(self, message: str, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


##########################################
############### COMPLETION ###############
##########################################

class CompletionError(NoteSyncError):
    """Base error of the LLM chat completion client."""


class MissingCompletionCredentialError(ConfigurationError, CompletionError):
    """No API key is configured for the LLM backend."""


class CompletionFailedError(CompletionError):
    """The chat completion request failed or returned no usable reply."""


##########################################
############# VECTOR INDEX ###############
##########################################

class VectorIndexError(NoteSyncError):
    """Base error of the vector index client."""


class CollectionUnavailableError(VectorIndexError):
    """Collection creation or the follow-up listing did not yield an id."""


class IndexNotInitializedError(VectorIndexError, StateError):
    """The collection could not be resolved before a collection-scoped call."""


class IndexQueryFailedError(VectorIndexError):
    """A similarity query failed, including after one self-healing retry."""


class IndexWriteFailedError(VectorIndexError):
    """An add or delete request against the collection failed."""


##########################################
############## NOTE STORE ################
##########################################

class NotePersistError(NoteSyncError):
    """The remote note store rejected or failed a create, update or delete."""


##########################################
############### ASSISTANT ################
##########################################

class NoRelevantNotesError(NoteSyncError):
    """A question or summary found no notes to work from."""
