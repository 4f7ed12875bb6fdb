"""FastAPI application entry point for the note sync index server."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.llm.LLMClientManager import LLMClientManager
from shared.errors import VectorIndexError, TransientNetworkError, RequestFailedError
from services.note_sync.IndexCoordinator import IndexCoordinator
from services.note_sync.NoteAssistant import NoteAssistant
from server.core.QueryService import QueryService
from server.routers.WebhookRouter import router as webhook_router
from server.routers.QueryRouter import router as query_router
from server.routers.IndexRouter import router as index_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    app.state.helper_config = HelperConfig(logger=logging)

    embed_client = EmbedClientManager(helper_config=app.state.helper_config).get_client()
    rag_client = RAGClientManager(helper_config=app.state.helper_config).get_client()
    llm_client = LLMClientManager(helper_config=app.state.helper_config).get_client()

    logging.info("Booting all clients...")
    for client in [embed_client, rag_client, llm_client]:
        await client.boot()
    logging.info("All clients booted successfully.", color="green")

    app.state.embed_client = embed_client
    app.state.rag_client = rag_client
    app.state.llm_client = llm_client
    app.state.coordinator = IndexCoordinator(
        helper_config=app.state.helper_config,
        embed_client=embed_client,
        rag_client=rag_client,
    )
    app.state.assistant = NoteAssistant(
        helper_config=app.state.helper_config,
        llm_client=llm_client,
        coordinator=app.state.coordinator,
    )
    app.state.query_service = QueryService(
        helper_config=app.state.helper_config,
        coordinator=app.state.coordinator,
        assistant=app.state.assistant,
    )

    await check_connections(embed_client, rag_client, llm_client)

    # while the app is running...
    yield

    # when the app shuts down, close all client connections
    logging.info("Shutting down, closing all clients...")
    for client in [embed_client, rag_client, llm_client]:
        await client.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="note_sync_index",
    description=(
        "Semantic index for user notes. Notes are embedded and stored in a vector "
        "database, searched per owner via POST /query, answered and summarized via POST /query/answer and "
        "POST /query/summarize, kept current via "
        "POST /webhook/note and rebuilt via POST /index/rebuild."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook_router)
app.include_router(query_router)
app.include_router(index_router)


async def check_connections(
    embed_client: EmbedClientInterface,
    rag_client: RAGClientInterface,
    llm_client: LLMClientInterface,
) -> None:
    """Check connectivity to all configured backends on startup.

    Nothing here is fatal. The index is rebuildable and every request
    resolves the collection again if needed, so the server stays up and
    reports problems in the log.
    """
    if not embed_client.has_credentials():
        logging.error(
            "Embed client '%s' has no API key configured. Queries and indexing will fail.",
            embed_client.get_engine_name(),
        )
    elif not await embed_client.do_healthcheck_ok():
        logging.warning("Embed client '%s' is not reachable.", embed_client.get_engine_name())

    if not llm_client.has_credentials():
        logging.warning(
            "LLM client '%s' has no API key configured. Answers, summaries and titles are unavailable.",
            llm_client.get_engine_name(),
        )

    if not await rag_client.do_healthcheck_ok():
        logging.warning(
            "RAG client '%s' is not reachable. Queries fail until it is back.",
            rag_client.get_engine_name(),
        )
        return

    try:
        await rag_client.do_ensure_collection()
    except (VectorIndexError, TransientNetworkError, RequestFailedError, ValueError) as e:
        logging.warning("Collection '%s' could not be resolved yet: %s", rag_client.get_collection_name(), e)


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting note_sync_index API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
