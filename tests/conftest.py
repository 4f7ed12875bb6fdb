"""Shared fixtures: isolated config, in-memory vector store and embedding backends, fake note store."""

import json
import logging
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from shared.clients.notes.NoteStoreInterface import NoteStoreInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.note import Note, RemoteNote

BASE_ENV = {
    "EMBED_OPENAI_API_KEY": "sk-test",
    "EMBED_OPENAI_BASE_URL": "http://embed.test",
    "RAG_CHROMA_BASE_URL": "http://chroma.test",
    "LLM_OPENAI_API_KEY": "sk-llm-test",
    "LLM_OPENAI_BASE_URL": "http://llm.test",
    "API_SERVER_API_KEY": "test-api-key",
}

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def vector_for(text: str) -> list[float]:
    """Deterministic stand-in embedding."""
    return [float(len(text)), float(sum(ord(c) for c in text) % 101), 1.0]


def _distance(a: list[float], b: list[float]) -> float:
    return sum((x - y) ** 2 for x, y in zip(a, b))


# ---- Vector store ----


class FakeChroma:
    """In-memory server speaking the /api/v1 collection protocol.

    Like the real store, /add ignores ids that already exist.
    """

    def __init__(self):
        self.collections: dict[str, dict] = {}
        self.records: dict[str, dict[str, dict]] = {}
        self.requests: list[tuple[str, str]] = []
        self.bodies: list[dict] = []
        self.healthy = True
        self.honor_where = True
        self.legacy_errors = False
        self.fail_add = False
        self._counter = 0

    def create(self, name: str) -> str:
        self._counter += 1
        collection_id = f"col-{self._counter}"
        self.collections[collection_id] = {"id": collection_id, "name": name, "metadata": None}
        self.records[collection_id] = {}
        return collection_id

    def move(self, name: str) -> str:
        """Give a collection a new id, keeping its records."""
        old_id = next(cid for cid, c in self.collections.items() if c["name"] == name)
        collection = self.collections.pop(old_id)
        records = self.records.pop(old_id)
        self._counter += 1
        new_id = f"col-{self._counter}"
        self.collections[new_id] = {**collection, "id": new_id}
        self.records[new_id] = records
        return new_id

    def records_of(self, name: str = "scrap_notes") -> dict[str, dict]:
        collection_id = next(cid for cid, c in self.collections.items() if c["name"] == name)
        return self.records[collection_id]

    def count(self, method: str, suffix: str) -> int:
        return sum(1 for m, path in self.requests if m == method and path.endswith(suffix))

    def last_body(self, suffix: str) -> dict:
        for (_, path), body in zip(reversed(self.requests), reversed(self.bodies)):
            if path.endswith(suffix):
                return body
        raise AssertionError(f"no request to {suffix}")

    def _missing(self, collection_id: str) -> httpx.Response:
        if self.legacy_errors:
            return httpx.Response(400, json={"error": f"ValueError('Collection {collection_id} does not exist.')"})
        return httpx.Response(404, json={"error": "NotFoundError", "message": f"Collection {collection_id} does not exist."})

    def _matches(self, metadata: dict, where: dict | None) -> bool:
        if not where:
            return True
        if "$and" in where:
            return all(self._matches(metadata, clause) for clause in where["$and"])
        if "$or" in where:
            return any(self._matches(metadata, clause) for clause in where["$or"])
        ((key, expression),) = where.items()
        value = metadata.get(key)
        if not isinstance(expression, dict):
            return value == expression
        if "$eq" in expression:
            return value == expression["$eq"]
        if "$ne" in expression:
            return value != expression["$ne"]
        if "$in" in expression:
            return value in expression["$in"]
        raise AssertionError(f"unsupported operator {expression}")

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, path))
        self.bodies.append(body)

        if path == "/api/v1/heartbeat":
            return httpx.Response(200 if self.healthy else 503, json={"nanosecond heartbeat": 1})

        if path == "/api/v1/collections":
            if request.method == "GET":
                return httpx.Response(200, json=list(self.collections.values()))
            existing = next((c for c in self.collections.values() if c["name"] == body["name"]), None)
            if existing is None:
                existing = self.collections[self.create(body["name"])]
            return httpx.Response(200, json=existing)

        _, _, _, _, collection_id, operation = path.split("/")
        if collection_id not in self.collections:
            return self._missing(collection_id)
        records = self.records[collection_id]

        if operation == "add":
            if self.fail_add:
                return httpx.Response(500, json={"error": "InternalError"})
            for i, record_id in enumerate(body["ids"]):
                records.setdefault(record_id, {
                    "id": record_id,
                    "embedding": body["embeddings"][i],
                    "metadata": body["metadatas"][i],
                    "document": body["documents"][i],
                })
            return httpx.Response(201, json=True)

        if operation == "delete":
            for record_id in body["ids"]:
                records.pop(record_id, None)
            return httpx.Response(200, json=body["ids"])

        if operation == "query":
            query = body["query_embeddings"][0]
            candidates = [
                r for r in records.values()
                if not self.honor_where or self._matches(r["metadata"], body.get("where"))
            ]
            ranked = sorted(candidates, key=lambda r: _distance(query, r["embedding"]))[: body["n_results"]]
            return httpx.Response(200, json={
                "ids": [[r["id"] for r in ranked]],
                "distances": [[_distance(query, r["embedding"]) for r in ranked]],
                "metadatas": [[r["metadata"] for r in ranked]],
                "documents": [[r["document"] for r in ranked]],
            })

        return httpx.Response(404, json={"error": "NotFound"})


# ---- Embedding backend ----


class FakeEmbedder:
    """OpenAI-compatible /v1/embeddings endpoint."""

    def __init__(self):
        self.requests: list[dict] = []
        self.auth_headers: list[str | None] = []
        self.fail_markers: set[str] = set()
        self.fail_next = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": []})
        body = json.loads(request.content)
        self.requests.append(body)
        self.auth_headers.append(request.headers.get("Authorization"))
        text = body["input"]
        if self.fail_next > 0:
            self.fail_next -= 1
            return httpx.Response(500, json={"error": {"message": "upstream overloaded"}})
        if any(marker in text for marker in self.fail_markers):
            return httpx.Response(500, json={"error": {"message": "upstream overloaded"}})
        return httpx.Response(200, json={
            "object": "list",
            "data": [{"object": "embedding", "index": 0, "embedding": vector_for(text)}],
            "model": body["model"],
        })


# ---- LLM backend ----


class FakeLLM:
    """OpenAI-compatible /v1/chat/completions endpoint answering with queued replies."""

    def __init__(self):
        self.requests: list[dict] = []
        self.auth_headers: list[str | None] = []
        self.replies: list[str] = []
        self.default_reply = "fake reply"
        self.status_code = 200

    def prompts(self) -> list[str]:
        return [body["messages"][-1]["content"] for body in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": []})
        body = json.loads(request.content)
        self.requests.append(body)
        self.auth_headers.append(request.headers.get("Authorization"))
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "model overloaded"}})
        reply = self.replies.pop(0) if self.replies else self.default_reply
        return httpx.Response(200, json={
            "object": "chat.completion",
            "model": body["model"],
            "choices": [{"index": 0, "message": {"role": "assistant", "content": reply}, "finish_reason": "stop"}],
        })


def unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# ---- Note store ----


class FakeNoteStore(NoteStoreInterface):
    """Remote note store that pushes snapshots only when emit() is called."""

    def __init__(self):
        self.notes: dict[str, RemoteNote] = {}
        self.callbacks: dict[str, list] = {}
        self.fail_create = False
        self.fail_update = False
        self.fail_delete = False
        self._counter = 0

    def subscribe(self, owner_id, callback):
        self.callbacks.setdefault(owner_id, []).append(callback)
        callback(self._snapshot(owner_id))

        def unsubscribe():
            self.callbacks[owner_id].remove(callback)

        return unsubscribe

    def _snapshot(self, owner_id: str) -> list[RemoteNote]:
        return [n for n in self.notes.values() if n.owner_id == owner_id]

    def emit(self, owner_id: str) -> None:
        for callback in list(self.callbacks.get(owner_id, [])):
            callback(self._snapshot(owner_id))

    async def do_create_note(self, owner_id, note):
        if self.fail_create:
            raise ConnectionError("note store offline")
        self._counter += 1
        remote_id = f"remote-{self._counter}"
        self.notes[remote_id] = RemoteNote(
            id=remote_id,
            owner_id=owner_id,
            content=note.content,
            title=note.title,
            category_ids=sorted(note.category_ids),
            is_task=note.is_task,
            created_at=note.created_at,
        )
        return remote_id

    async def do_update_note(self, owner_id, note):
        if self.fail_update:
            raise ConnectionError("note store offline")
        self.notes[note.remote_id] = self.notes[note.remote_id].model_copy(
            update={"content": note.content, "title": note.title, "is_completed": note.is_completed}
        )

    async def do_delete_note(self, owner_id, remote_id):
        if self.fail_delete:
            raise ConnectionError("note store offline")
        self.notes.pop(remote_id, None)


# ---- Fixtures ----


@pytest.fixture
def config_factory():
    """Build a HelperConfig from BASE_ENV plus overrides; None removes a key."""

    def _make(**overrides) -> HelperConfig:
        env = {**BASE_ENV, **overrides}
        return HelperConfig(
            logger=logging.getLogger("note_sync.tests"),
            env={k: v for k, v in env.items() if v is not None},
        )

    return _make


@pytest.fixture
def helper_config(config_factory):
    return config_factory()


@pytest.fixture
def fake_chroma():
    return FakeChroma()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_note_store():
    return FakeNoteStore()


@pytest.fixture
def make_note():
    """Persisted note factory; the n-th note is n minutes newer than T0."""

    def _make(n: int, content: str | None = None, **fields) -> Note:
        values = dict(
            id=f"local-{n}",
            remote_id=f"remote-{n}",
            content=content if content is not None else f"note number {n}",
            created_at=T0 + timedelta(minutes=n),
        )
        values.update(fields)
        return Note(**values)

    return _make


@pytest.fixture
def make_remote():
    def _make(n: int, owner_id: str = "owner-a", **fields) -> RemoteNote:
        values = dict(
            id=f"remote-{n}",
            owner_id=owner_id,
            content=f"note number {n}",
            created_at=T0 + timedelta(minutes=n),
        )
        values.update(fields)
        return RemoteNote(**values)

    return _make


@pytest.fixture
def unreachable_transport():
    return httpx.MockTransport(unreachable)
