"""Reindex runner entry point.

Rebuilds the vector index for one owner from a JSON export of their notes.
The export is a list of remote notes as delivered by the note store feed.

Usage:
    NOTES_EXPORT_FILE=notes.json NOTES_OWNER_ID=<owner> python -m services.note_sync.reindex_runner
"""

import asyncio
import sys
from pathlib import Path

from pydantic import TypeAdapter

from services.note_sync.IndexCoordinator import IndexCoordinator, ReindexReport
from services.note_sync.NoteReconciler import NoteReconciler
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import ColorLogger, setup_logging
from shared.models.note import RemoteNote


def load_export(path: Path) -> list[RemoteNote]:
    """Read and validate a notes export file.

    Raises:
        OSError: If the file cannot be read.
        ValidationError: If the content is not a list of notes.
    """
    return TypeAdapter(list[RemoteNote]).validate_json(path.read_bytes())


def log_report(logger: ColorLogger, report: ReindexReport) -> None:
    """Log the outcome of a reindex, green when every note made it."""
    if report.skipped:
        logger.error("Vector store unreachable, nothing was indexed.", color="red")
        return
    for remote_id, error in report.failed.items():
        logger.error(f"Note {remote_id} could not be indexed: {error}")

    summary = (
        f"Reindex of owner {report.owner_id}: {len(report.indexed)} indexed, {len(report.failed)} failed, "
        f"{report.skipped_pending} pending and {report.skipped_empty} empty skipped."
    )
    if report.failed:
        logger.warning(summary, color="yellow")
    else:
        logger.info(summary, color="green")


async def main() -> int:
    """Run a full reindex. Returns the process exit code."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)

    try:
        export_file = Path(config.get_string_val("NOTES_EXPORT_FILE"))
        owner_id = config.get_string_val("NOTES_OWNER_ID")
        remote_notes = load_export(export_file)
    except (ValueError, OSError) as e:
        # pydantic's ValidationError is a ValueError
        logger.error(f"Cannot load notes export: {e}")
        return 1

    embed_client = EmbedClientManager(helper_config=config).get_client()
    rag_client = RAGClientManager(helper_config=config).get_client()

    try:
        # the embed client is required, without embeddings there is nothing to index
        try:
            await embed_client.boot()
        except Exception as e:
            logger.error(f"Error booting Embed client {embed_client.get_engine_name()}: {e}. Aborting.")
            return 1
        if not embed_client.has_credentials():
            logger.error(f"Embed client {embed_client.get_engine_name()} has no API key configured. Aborting.")
            return 1

        try:
            await rag_client.boot()
        except Exception as e:
            logger.error(f"Error booting RAG client {rag_client.get_engine_name()}: {e}. Aborting.")
            return 1

        # the export has the feed's shape, so the reconciler turns it into the working set
        reconciler = NoteReconciler(helper_config=config)
        notes = reconciler.apply_remote_snapshot(n for n in remote_notes if n.owner_id == owner_id)
        if len(notes) != len(remote_notes):
            logger.warning(f"Ignored {len(remote_notes) - len(notes)} notes of other owners or duplicates.")

        coordinator = IndexCoordinator(helper_config=config, embed_client=embed_client, rag_client=rag_client)
        report = await coordinator.do_reindex_all(notes, owner_id=owner_id)
        log_report(logger, report)
        return 0
    finally:
        await embed_client.close()
        await rag_client.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
