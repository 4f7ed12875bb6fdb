from fastapi import APIRouter, BackgroundTasks, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import WebhookRequest
from server.models.responses import WebhookResponse

router = APIRouter(prefix="/webhook", tags=["webhook"])


@router.post("/note")
async def webhook_note(
    request: Request,
    body: WebhookRequest,
    background_tasks: BackgroundTasks,
    _: None = Depends(verify_api_key),
) -> WebhookResponse:
    """Accept a note change event and update the index in the background.

    Args:
        request (Request): FastAPI request (provides app.state.coordinator).
        body (WebhookRequest): Event type, owner and the changed note.
        background_tasks (BackgroundTasks): FastAPI background task queue.
        _ (None): Auth dependency result (unused).

    Returns:
        WebhookResponse: Acknowledgement with event and remote id.
    """
    coordinator = request.app.state.coordinator
    note = body.note.to_note()

    if body.event == "deleted":
        background_tasks.add_task(coordinator.on_note_deleted, note)
    elif body.event == "updated":
        background_tasks.add_task(coordinator.on_note_updated, note, body.owner_id)
    else:
        background_tasks.add_task(coordinator.on_note_created, note, body.owner_id)

    return WebhookResponse(status="accepted", event=body.event, remote_id=body.note.remote_id)
