from typing import Any

import httpx

from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.Collection import Collection
from shared.clients.rag.models.IndexRecord import IndexRecord
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

# error names the store uses for an unknown collection
_MISSING_COLLECTION_ERRORS = {"InvalidCollection", "NotFoundError", "InvalidCollectionException"}

# records carry one boolean metadata key per category
CATEGORY_KEY_PREFIX = "category:"


class RAGClientChroma(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="http://localhost:8000", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="scrap_notes", val_type="string")

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def is_collection_missing(self, response: httpx.Response) -> bool:
        """
        Chroma answers requests against an unknown collection id with 400 or 404.
        The structured error name is checked first; older servers only put
        "Collection ... does not exist" into the message, so the text match
        remains as a fallback and breaks if that wording changes.
        """
        if response.status_code not in (400, 404):
            return False
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            error_name = str(body.get("error") or "")
            if error_name in _MISSING_COLLECTION_ERRORS:
                return True
            message = f"{error_name} {body.get('message') or ''}"
        else:
            message = response.text
        return "does not exist" in message.lower()

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Chroma"

    def get_collection_name(self) -> str:
        return self._collection_name

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="http://localhost:8000"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="scrap_notes"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"X-Chroma-Token": self._api_key}
        return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/api/v1/heartbeat"

    def _get_endpoint_collections(self) -> str:
        return "/api/v1/collections"

    def _get_endpoint_add(self, collection_id: str) -> str:
        return f"/api/v1/collections/{collection_id}/add"

    def _get_endpoint_query(self, collection_id: str) -> str:
        return f"/api/v1/collections/{collection_id}/query"

    def _get_endpoint_delete(self, collection_id: str) -> str:
        return f"/api/v1/collections/{collection_id}/delete"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_create_collection_payload(self) -> dict:
        return {
            "name": self._collection_name,
            "metadata": {"description": "Semantic index of user notes"},
            "get_or_create": True,
        }

    def get_add_payload(self, record: IndexRecord) -> dict:
        metadata = record.metadata.to_wire()
        # the joined value is read back, the flags are what "where" filters on
        metadata["categories"] = ",".join(record.metadata.categories)
        for category in record.metadata.categories:
            metadata[f"{CATEGORY_KEY_PREFIX}{category}"] = True
        return {
            "ids": [record.id],
            "embeddings": [record.embedding],
            "metadatas": [metadata],
            "documents": [record.document_text],
        }

    def get_query_payload(self, embedding: list[float], filter_clauses: list[dict], limit: int) -> dict:
        where = filter_clauses[0] if len(filter_clauses) == 1 else {"$and": filter_clauses}
        return {
            "query_embeddings": [embedding],
            "n_results": limit,
            "where": where,
            "include": ["metadatas", "documents", "distances"],
        }

    def get_delete_payload(self, record_ids: list[str]) -> dict:
        return {"ids": record_ids}

    def get_category_filter(self, categories: list[str]) -> dict:
        clauses = [{f"{CATEGORY_KEY_PREFIX}{c}": {"$eq": True}} for c in categories]
        # Chroma rejects an $or with fewer than two clauses
        return clauses[0] if len(clauses) == 1 else {"$or": clauses}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_collections(self, raw_response: Any) -> list[Collection]:
        if not isinstance(raw_response, list):
            raise ValueError(f"Expected a list of collections, got {type(raw_response).__name__}.")
        return [Collection.model_validate(item) for item in raw_response if isinstance(item, dict)]

    def extract_query_hits(self, raw_response: dict) -> list[dict]:
        """
        Chroma returns one list per query embedding; only a single embedding is sent.

        Args:
            raw_response (dict): {"ids": [[...]], "distances": [[...]], "metadatas": [[...]], "documents": [[...]]}

        Returns:
            list[dict]: Hits with keys id, distance, metadata and document.
        """
        if not isinstance(raw_response, dict) or "ids" not in raw_response:
            raise ValueError("Query response does not contain 'ids'.")

        def first_row(key: str) -> list:
            rows = raw_response.get(key) or []
            return rows[0] if rows and rows[0] is not None else []

        ids = first_row("ids")
        distances = first_row("distances")
        metadatas = first_row("metadatas")
        documents = first_row("documents")
        if len(distances) != len(ids):
            raise ValueError(f"Query response has {len(ids)} ids but {len(distances)} distances.")

        return [
            {
                "id": record_id,
                "distance": distances[i],
                "metadata": metadatas[i] if i < len(metadatas) else None,
                "document": documents[i] if i < len(documents) else None,
            }
            for i, record_id in enumerate(ids)
        ]
