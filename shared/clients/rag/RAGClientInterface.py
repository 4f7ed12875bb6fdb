import asyncio
from abc import abstractmethod
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.Collection import Collection, CollectionState
from shared.clients.rag.models.IndexRecord import OWNER_KEY, IndexMetadata, IndexRecord
from shared.clients.rag.models.RankedResult import RankedResult
from shared.errors import (
    CollectionNotFoundError,
    CollectionUnavailableError,
    IndexNotInitializedError,
    IndexQueryFailedError,
    IndexWriteFailedError,
    RequestFailedError,
    TransientNetworkError,
)
from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    """Single point of contact with the vector store.

    Owns the cached collection id, which is a soft cache: the store is
    authoritative. State machine UNRESOLVED -> RESOLVING -> RESOLVED; a
    collection-scoped request answered with "collection does not exist"
    drops the cache back to UNRESOLVED, resolves again and retries the
    request exactly once.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._collection_id: str | None = None
        self._collection_state = CollectionState.UNRESOLVED
        self._resolve_lock = asyncio.Lock()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @abstractmethod
    def is_collection_missing(self, response: httpx.Response) -> bool:
        """
        Classifies a response as "the referenced collection does not exist".

        Args:
            response (httpx.Response): Response of a collection-scoped request.

        Returns:
            bool: True if the cached collection id must be treated as stale.
        """
        pass

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "rag"

    @abstractmethod
    def get_collection_name(self) -> str:
        """
        Returns the configured, process-wide collection name.
        """
        pass

    def get_collection_state(self) -> CollectionState:
        return self._collection_state

    def get_collection_id(self) -> str | None:
        return self._collection_id

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_collections(self) -> str:
        """
        Returns the endpoint path for listing and creating collections.
        """
        pass

    @abstractmethod
    def _get_endpoint_add(self, collection_id: str) -> str:
        """
        Returns the endpoint path for adding records to a collection.
        """
        pass

    @abstractmethod
    def _get_endpoint_query(self, collection_id: str) -> str:
        """
        Returns the endpoint path for similarity queries against a collection.
        """
        pass

    @abstractmethod
    def _get_endpoint_delete(self, collection_id: str) -> str:
        """
        Returns the endpoint path for deleting records from a collection.
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_create_collection_payload(self) -> dict:
        """
        Returns the request body creating the configured collection.
        """
        pass

    @abstractmethod
    def get_add_payload(self, record: IndexRecord) -> dict:
        """
        Returns the request body adding a single record.
        """
        pass

    @abstractmethod
    def get_query_payload(self, embedding: list[float], filter_clauses: list[dict], limit: int) -> dict:
        """
        Returns the request body of a similarity query.

        Args:
            embedding (list[float]): The query embedding.
            filter_clauses (list[dict]): Equality/operator clauses that must ALL hold.
                Always contains the owner clause.
            limit (int): Maximum number of results.
        """
        pass

    @abstractmethod
    def get_delete_payload(self, record_ids: list[str]) -> dict:
        """
        Returns the request body deleting records by id.
        """
        pass

    @abstractmethod
    def get_category_filter(self, categories: list[str]) -> dict:
        """
        Returns one clause matching records that carry at least one of the categories.

        Args:
            categories (list[str]): Non-empty list of category ids.
        """
        pass

    def get_owner_filter_clauses(
        self,
        owner_id: str,
        extra_filter: dict[str, Any] | None = None,
        categories: list[str] | None = None,
    ) -> list[dict]:
        """Combine the mandatory owner clause with caller-supplied clauses.

        Caller clauses on the owner key are dropped, the owner clause always
        wins. Every remaining top-level key becomes its own clause, so
        operators such as "$or" can only narrow the owner's records.

        Args:
            owner_id (str): The tenant the query is restricted to.
            extra_filter (dict | None): Mapping of field to expression, e.g. {"isTask": {"$eq": True}}.
            categories (list[str] | None): Records must carry at least one of these categories.

        Returns:
            list[dict]: Clauses to be AND-combined, the owner clause last.
        """
        if not owner_id:
            raise ValueError("owner_id is required for every query.")
        clauses: list[dict] = []
        for key, expression in (extra_filter or {}).items():
            if key == OWNER_KEY:
                self.logging.warning("Ignoring caller filter on '%s'; the owner constraint is mandatory.", OWNER_KEY)
                continue
            clauses.append({key: expression})
        if categories:
            clauses.append(self.get_category_filter(categories))
        clauses.append({OWNER_KEY: {"$eq": owner_id}})
        return clauses

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_collections(self, raw_response: Any) -> list[Collection]:
        """
        Extracts the collection list from a raw list response.
        """
        pass

    @abstractmethod
    def extract_query_hits(self, raw_response: dict) -> list[dict]:
        """
        Extracts query hits from a raw query response, in the store's ranking order.

        Returns:
            list[dict]: Dicts with keys "id", "distance", "metadata" and "document".

        Raises:
            ValueError: If the response format is invalid.
        """
        pass

    ##########################################
    ########## COLLECTION RESOLUTION #########
    ##########################################

    def invalidate_collection(self, stale_id: str | None = None) -> None:
        """Drop the cached collection id.

        Args:
            stale_id (str | None): Only invalidate if the cache still holds this id.
                Another task may already have re-resolved it.
        """
        if stale_id is not None and self._collection_id != stale_id:
            return
        self.logging.warning("Invalidating cached collection id '%s'.", self._collection_id)
        self._collection_id = None
        self._collection_state = CollectionState.UNRESOLVED

    async def do_list_collections(self) -> list[Collection]:
        """List all collections of the vector store.

        Raises:
            TransientNetworkError: If the store cannot be reached.
            RequestFailedError: On a non-2xx status.
        """
        response = await self.do_request(method="GET", endpoint=self._get_endpoint_collections(), raise_on_error=True)
        return self.extract_collections(response.json())

    async def do_create_collection(self) -> None:
        """Create the configured collection.

        Raises:
            CollectionUnavailableError: If the store rejects the request or cannot be reached.
        """
        try:
            await self.do_request(
                method="POST",
                json=self.get_create_collection_payload(),
                endpoint=self._get_endpoint_collections(),
                raise_on_error=True,
            )
        except (TransientNetworkError, RequestFailedError) as exc:
            raise CollectionUnavailableError(
                f"Could not create collection '{self.get_collection_name()}': {exc}"
            ) from exc

    def _find_collection(self, collections: list[Collection]) -> Collection | None:
        name = self.get_collection_name()
        return next((c for c in collections if c.name == name), None)

    async def do_ensure_collection(self) -> str:
        """Resolve the collection id, creating the collection if needed.

        Lists collections and caches the id of the configured one. If it does
        not exist yet it is created and the list is fetched again to learn
        the id the store assigned. Concurrent callers share one resolution.

        Returns:
            str: The resolved collection id.

        Raises:
            CollectionUnavailableError: If creation or the follow-up listing yields no id.
            TransientNetworkError: If the store cannot be reached while listing.
            RequestFailedError: If listing returns a non-2xx status.
        """
        async with self._resolve_lock:
            if self._collection_state == CollectionState.RESOLVED and self._collection_id:
                return self._collection_id

            self._collection_state = CollectionState.RESOLVING
            resolved_id: str | None = None
            try:
                collection = self._find_collection(await self.do_list_collections())
                if collection is None:
                    self.logging.info("Collection '%s' not found, creating it.", self.get_collection_name())
                    await self.do_create_collection()
                    collection = self._find_collection(await self.do_list_collections())
                if collection is None or not collection.id:
                    raise CollectionUnavailableError(
                        f"Collection '{self.get_collection_name()}' has no id after creation."
                    )
                resolved_id = collection.id
            finally:
                self._collection_id = resolved_id
                self._collection_state = CollectionState.RESOLVED if resolved_id else CollectionState.UNRESOLVED

            self.logging.info("Using collection '%s' with id '%s'.", self.get_collection_name(), resolved_id)
            return resolved_id

    async def _resolve_collection_id(self) -> str:
        """Return the cached collection id, resolving it first if needed.

        Raises:
            IndexNotInitializedError: If resolution fails for any reason.
        """
        if self._collection_state == CollectionState.RESOLVED and self._collection_id:
            return self._collection_id
        try:
            return await self.do_ensure_collection()
        except (CollectionUnavailableError, TransientNetworkError, RequestFailedError, ValueError) as exc:
            raise IndexNotInitializedError(
                f"Collection '{self.get_collection_name()}' could not be resolved: {exc}"
            ) from exc

    async def _do_collection_request(
        self,
        endpoint_builder: Callable[[str], str],
        payload: dict,
        operation: str,
    ) -> httpx.Response:
        """POST to a collection-scoped endpoint with one self-healing retry.

        Args:
            endpoint_builder: Maps a collection id to the endpoint path.
            payload: JSON request body.
            operation: Name used in log and error messages.

        Returns:
            httpx.Response: The response of the (possibly retried) request.

        Raises:
            IndexNotInitializedError: If the collection cannot be resolved.
            CollectionNotFoundError: If the store still reports the collection missing after re-resolution.
            TransientNetworkError: If the store cannot be reached.
        """
        collection_id = await self._resolve_collection_id()
        response = await self.do_request(method="POST", json=payload, endpoint=endpoint_builder(collection_id))
        if not self.is_collection_missing(response):
            return response

        self.logging.warning(
            "%s: collection id '%s' is stale, re-resolving '%s' once.",
            operation, collection_id, self.get_collection_name(),
        )
        self.invalidate_collection(collection_id)
        collection_id = await self._resolve_collection_id()
        response = await self.do_request(method="POST", json=payload, endpoint=endpoint_builder(collection_id))
        if self.is_collection_missing(response):
            self.invalidate_collection(collection_id)
            raise CollectionNotFoundError(
                f"{operation}: collection '{self.get_collection_name()}' still missing after re-resolution."
            )
        return response

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_upsert(self, record: IndexRecord) -> None:
        """Add a record to the collection.

        Raises:
            IndexNotInitializedError: If the collection cannot be resolved.
            IndexWriteFailedError: If the request fails.
        """
        try:
            response = await self._do_collection_request(self._get_endpoint_add, self.get_add_payload(record), "upsert")
        except (TransientNetworkError, CollectionNotFoundError) as exc:
            raise IndexWriteFailedError(f"Upsert of record '{record.id}' failed: {exc}") from exc
        if not response.is_success:
            raise IndexWriteFailedError(
                f"Upsert of record '{record.id}' failed with status {response.status_code}: {response.text[:200]}"
            )
        self.logging.debug("Upserted record '%s' (%d dimensions).", record.id, len(record.embedding))

    async def do_delete(self, record_id: str) -> None:
        """Delete a record from the collection.

        Raises:
            IndexNotInitializedError: If the collection cannot be resolved.
            IndexWriteFailedError: If the request fails.
        """
        try:
            response = await self._do_collection_request(self._get_endpoint_delete, self.get_delete_payload([record_id]), "delete")
        except (TransientNetworkError, CollectionNotFoundError) as exc:
            raise IndexWriteFailedError(f"Delete of record '{record_id}' failed: {exc}") from exc
        if not response.is_success:
            raise IndexWriteFailedError(
                f"Delete of record '{record_id}' failed with status {response.status_code}: {response.text[:200]}"
            )
        self.logging.debug("Deleted record '%s'.", record_id)

    async def do_query(
        self,
        embedding: list[float],
        owner_id: str,
        limit: int = 10,
        extra_filter: dict[str, Any] | None = None,
        categories: list[str] | None = None,
    ) -> list[RankedResult]:
        """Similarity query restricted to one owner.

        Results keep the store's ranking (ascending distance). Hits whose
        metadata names a different owner, or cannot be validated, are dropped.

        Args:
            embedding (list[float]): The query embedding.
            owner_id (str): Tenant the results are restricted to.
            limit (int): Maximum number of results.
            extra_filter (dict | None): Additional clauses; cannot loosen the owner constraint.
            categories (list[str] | None): Only records carrying at least one of these categories.

        Returns:
            list[RankedResult]: Ranked hits.

        Raises:
            IndexNotInitializedError: If the collection cannot be resolved.
            IndexQueryFailedError: If the query fails, including after one re-resolution.
        """
        clauses = self.get_owner_filter_clauses(owner_id, extra_filter, categories)
        payload = self.get_query_payload(embedding, clauses, limit)
        try:
            response = await self._do_collection_request(self._get_endpoint_query, payload, "query")
        except (TransientNetworkError, CollectionNotFoundError) as exc:
            raise IndexQueryFailedError(f"Query failed: {exc}") from exc
        if not response.is_success:
            raise IndexQueryFailedError(
                f"Query failed with status {response.status_code}: {response.text[:200]}"
            )
        try:
            hits = self.extract_query_hits(response.json())
        except ValueError as exc:
            raise IndexQueryFailedError(f"Query response could not be parsed: {exc}") from exc

        results: list[RankedResult] = []
        for hit in hits:
            try:
                metadata = IndexMetadata.model_validate(hit.get("metadata") or {})
            except ValidationError as exc:
                self.logging.warning("Dropping query hit '%s' with invalid metadata: %s", hit.get("id"), exc)
                continue
            if metadata.owner_id != owner_id:
                self.logging.error("Dropping query hit '%s' owned by another tenant.", hit.get("id"))
                continue
            if categories and not set(categories).intersection(metadata.categories):
                self.logging.warning("Dropping query hit '%s' outside the requested categories.", hit.get("id"))
                continue
            results.append(
                RankedResult(
                    id=str(hit["id"]),
                    distance=float(hit["distance"]),
                    metadata=metadata,
                    document=hit.get("document"),
                )
            )
        return results
