"""Tests for NoteSyncService: optimistic operations, rollback and background indexing."""

import httpx
import pytest

from services.note_sync.IndexCoordinator import IndexCoordinator
from services.note_sync.NoteAssistant import NoteAssistant
from services.note_sync.NoteReconciler import NoteReconciler
from services.note_sync.NoteSyncService import NoteSyncService
from shared.clients.embed.openai.EmbedClientOpenai import EmbedClientOpenai
from shared.clients.llm.openai.LLMClientOpenai import LLMClientOpenai
from shared.clients.rag.chroma.RAGClientChroma import RAGClientChroma
from shared.errors import NotePersistError, NoteStateError
from shared.models.note import Note


async def _service(config, note_store, embed_transport, rag_transport) -> NoteSyncService:
    embed_client = EmbedClientOpenai(helper_config=config)
    await embed_client.boot(transport=embed_transport)
    rag_client = RAGClientChroma(helper_config=config)
    await rag_client.boot(transport=rag_transport)
    return NoteSyncService(
        helper_config=config,
        owner_id="owner-a",
        note_store=note_store,
        reconciler=NoteReconciler(helper_config=config),
        coordinator=IndexCoordinator(helper_config=config, embed_client=embed_client, rag_client=rag_client),
    )


@pytest.fixture
def transports(fake_embedder, fake_chroma):
    return httpx.MockTransport(fake_embedder.handler), httpx.MockTransport(fake_chroma.handler)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_loads_snapshot_and_follows_changes(self, helper_config, fake_note_store, transports, make_remote):
        fake_note_store.notes["remote-1"] = make_remote(1)
        fake_note_store.notes["remote-9"] = make_remote(9, owner_id="owner-b")
        service = await _service(helper_config, fake_note_store, *transports)

        service.start()
        assert [n.remote_id for n in service._reconciler.notes] == ["remote-1"]

        fake_note_store.notes["remote-2"] = make_remote(2)
        fake_note_store.emit("owner-a")
        assert [n.remote_id for n in service._reconciler.notes] == ["remote-2", "remote-1"]

        service.stop()
        fake_note_store.notes["remote-3"] = make_remote(3)
        fake_note_store.emit("owner-a")
        assert len(service._reconciler.notes) == 2

    @pytest.mark.asyncio
    async def test_foreign_notes_in_snapshot_are_ignored(self, helper_config, fake_note_store, transports, make_remote):
        service = await _service(helper_config, fake_note_store, *transports)

        service._on_remote_snapshot([make_remote(1), make_remote(2, owner_id="owner-b")])

        assert [n.remote_id for n in service._reconciler.notes] == ["remote-1"]

    def test_owner_required(self, helper_config, fake_note_store):
        with pytest.raises(ValueError):
            NoteSyncService(
                helper_config=helper_config,
                owner_id="",
                note_store=fake_note_store,
                reconciler=NoteReconciler(helper_config=helper_config),
                coordinator=None,
            )


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_persists_and_indexes(self, helper_config, fake_note_store, transports, fake_chroma):
        service = await _service(helper_config, fake_note_store, *transports)
        service.start()

        note = await service.do_create_note("buy milk", title="Shopping", category_ids=["home"])
        await service.do_drain()

        assert note.remote_id == "remote-1"
        assert service._reconciler.notes == (note,)
        record = fake_chroma.records_of()["remote-1"]
        assert record["metadata"]["ownerId"] == "owner-a"
        assert record["metadata"]["title"] == "Shopping"

        fake_note_store.emit("owner-a")
        assert len(service._reconciler.notes) == 1
        assert service._reconciler.notes[0].id == note.id

    @pytest.mark.asyncio
    async def test_failed_create_discards_pending_note(self, helper_config, fake_note_store, transports, fake_chroma):
        fake_note_store.fail_create = True
        service = await _service(helper_config, fake_note_store, *transports)

        with pytest.raises(NotePersistError) as exc_info:
            await service.do_create_note("lost thought")
        await service.do_drain()

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert service._reconciler.notes == ()
        assert fake_chroma.requests == []

    @pytest.mark.asyncio
    async def test_create_succeeds_while_index_is_down(self, helper_config, fake_note_store, fake_embedder, unreachable_transport):
        service = await _service(helper_config, fake_note_store, httpx.MockTransport(fake_embedder.handler), unreachable_transport)

        note = await service.do_create_note("still saved")
        await service.do_drain()

        assert note.remote_id == "remote-1"
        assert service._reconciler.get(note.id) == note

    @pytest.mark.asyncio
    async def test_pending_note_visible_while_persisting(self, helper_config, fake_note_store, transports):
        service = await _service(helper_config, fake_note_store, *transports)
        observed = []
        service._reconciler.subscribe(lambda notes: observed.append([n.is_pending for n in notes]))

        await service.do_create_note("x")

        assert observed[0] == [True]
        assert observed[-1] == [False]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_pushes_and_reindexes(self, helper_config, fake_note_store, transports, fake_chroma):
        service = await _service(helper_config, fake_note_store, *transports)
        note = await service.do_create_note("first draft")
        await service.do_drain()

        updated = await service.do_update_note(note.id, content="final", is_completed=True)
        await service.do_drain()

        assert updated.id == note.id and updated.remote_id == note.remote_id
        assert fake_note_store.notes[note.remote_id].content == "final"
        assert fake_chroma.records_of()[note.remote_id]["document"] == "final"

    @pytest.mark.asyncio
    async def test_failed_update_restores_previous_version(self, helper_config, fake_note_store, transports):
        service = await _service(helper_config, fake_note_store, *transports)
        note = await service.do_create_note("original")
        fake_note_store.fail_update = True

        with pytest.raises(NotePersistError):
            await service.do_update_note(note.id, content="changed")

        assert service._reconciler.get(note.id).content == "original"

    @pytest.mark.asyncio
    async def test_update_validation(self, helper_config, fake_note_store, transports):
        service = await _service(helper_config, fake_note_store, *transports)
        note = await service.do_create_note("x")

        with pytest.raises(ValueError, match="remote_id"):
            await service.do_update_note(note.id, remote_id="other")
        with pytest.raises(NoteStateError):
            await service.do_update_note("unknown", content="y")

        draft = Note(content="pending")
        service._reconciler.add_pending(draft)
        with pytest.raises(NoteStateError):
            await service.do_update_note(draft.id, content="y")


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_note_and_record(self, helper_config, fake_note_store, transports, fake_chroma):
        service = await _service(helper_config, fake_note_store, *transports)
        note = await service.do_create_note("temporary")
        await service.do_drain()

        await service.do_delete_note(note.id)
        await service.do_drain()

        assert service._reconciler.notes == ()
        assert note.remote_id not in fake_note_store.notes
        assert fake_chroma.records_of() == {}

    @pytest.mark.asyncio
    async def test_failed_delete_restores_note(self, helper_config, fake_note_store, transports, fake_chroma):
        service = await _service(helper_config, fake_note_store, *transports)
        note = await service.do_create_note("keep me")
        await service.do_drain()
        fake_note_store.fail_delete = True

        with pytest.raises(NotePersistError):
            await service.do_delete_note(note.id)
        await service.do_drain()

        assert service._reconciler.get(note.id) == note
        assert note.remote_id in fake_chroma.records_of()

    @pytest.mark.asyncio
    async def test_snapshot_during_failed_delete_keeps_one_entry(self, helper_config, fake_note_store, transports):
        service = await _service(helper_config, fake_note_store, *transports)
        service.start()
        note = await service.do_create_note("contested")
        await service.do_drain()

        async def echo_then_fail(owner_id, remote_id):
            fake_note_store.emit(owner_id)
            raise ConnectionError("note store offline")

        fake_note_store.do_delete_note = echo_then_fail

        with pytest.raises(NotePersistError):
            await service.do_delete_note(note.id)

        assert [(n.id, n.remote_id) for n in service._reconciler.notes] == [(note.id, note.remote_id)]


class TestGeneratedTitles:
    async def _titled_service(self, config, note_store, transports, fake_llm) -> NoteSyncService:
        service = await _service(config, note_store, *transports)
        llm_client = LLMClientOpenai(helper_config=config)
        await llm_client.boot(transport=httpx.MockTransport(fake_llm.handler))
        service._assistant = NoteAssistant(helper_config=config, llm_client=llm_client, coordinator=service._coordinator)
        return service

    @pytest.mark.asyncio
    async def test_untitled_note_gets_a_title_in_the_background(self, helper_config, fake_note_store, transports, fake_llm):
        service = await self._titled_service(helper_config, fake_note_store, transports, fake_llm)
        fake_llm.replies.append('Title: "Grocery run"')

        note = await service.do_create_note("buy oat milk and bread")
        assert note.title is None
        await service.do_drain()

        assert service._reconciler.get(note.id).title == "Grocery run"
        assert fake_note_store.notes[note.remote_id].title == "Grocery run"

    @pytest.mark.asyncio
    async def test_titled_note_is_left_alone(self, helper_config, fake_note_store, transports, fake_llm):
        service = await self._titled_service(helper_config, fake_note_store, transports, fake_llm)

        note = await service.do_create_note("buy oat milk", title="Shopping")
        await service.do_drain()

        assert fake_llm.requests == []
        assert service._reconciler.get(note.id).title == "Shopping"

    @pytest.mark.asyncio
    async def test_title_failure_leaves_note_untitled(self, helper_config, fake_note_store, transports, fake_llm, fake_chroma):
        service = await self._titled_service(helper_config, fake_note_store, transports, fake_llm)
        fake_llm.status_code = 503

        note = await service.do_create_note("buy oat milk")
        await service.do_drain()

        assert len(fake_llm.requests) == 1
        assert service._reconciler.get(note.id).title is None
        assert note.remote_id in fake_chroma.records_of()

    @pytest.mark.asyncio
    async def test_title_set_by_hand_meanwhile_wins(self, helper_config, fake_note_store, transports, fake_llm):
        service = await self._titled_service(helper_config, fake_note_store, transports, fake_llm)

        note = await service.do_create_note("buy oat milk")
        await service.do_update_note(note.id, title="Mine")
        await service.do_drain()

        assert service._reconciler.get(note.id).title == "Mine"
