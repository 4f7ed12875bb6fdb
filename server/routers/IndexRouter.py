from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import RebuildRequest
from services.note_sync.IndexCoordinator import ReindexReport
from services.note_sync.NoteReconciler import NoteReconciler

router = APIRouter(prefix="/index", tags=["index"])


@router.post("/rebuild")
async def rebuild_index(
    request: Request,
    body: RebuildRequest,
    _: None = Depends(verify_api_key),
) -> ReindexReport:
    """Reindex all notes of one owner.

    Args:
        request (Request): FastAPI request (provides app.state.coordinator).
        body (RebuildRequest): Owner and the full snapshot of their notes.
        _ (None): Auth dependency result (unused).

    Returns:
        ReindexReport: Indexed, failed and skipped notes. A skipped report
            means the vector store was unreachable.
    """
    reconciler = NoteReconciler(helper_config=request.app.state.helper_config)
    notes = reconciler.apply_remote_snapshot(n for n in body.notes if n.owner_id == body.owner_id)
    return await request.app.state.coordinator.do_reindex_all(notes, owner_id=body.owner_id)
