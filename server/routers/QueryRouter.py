from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import AnswerRequest, SearchRequest, SummarizeRequest
from server.models.responses import AnswerResponse, SearchResponse, SummaryResponse
from shared.errors import (
    CompletionError,
    ConfigurationError,
    EmbeddingError,
    MissingCredentialError,
    NoRelevantNotesError,
    VectorIndexError,
)

router = APIRouter(prefix="/query", tags=["query"])


@router.post("")
async def query_notes(
    request: Request,
    body: SearchRequest,
    _: None = Depends(verify_api_key),
) -> SearchResponse:
    """Execute a semantic search over one owner's notes.

    Args:
        request (Request): FastAPI request (provides app.state.query_service).
        body (SearchRequest): JSON body with query string, owner_id, limit and optional filters.
        _ (None): Auth dependency result (unused).

    Returns:
        SearchResponse: Matching notes with metadata and similarity.

    Raises:
        HTTPException: 400 for a blank query, 503 if embedding or vector store are unavailable.
    """
    query_service = request.app.state.query_service
    try:
        return await query_service.search(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MissingCredentialError as e:
        raise HTTPException(status_code=503, detail=f"Embedding is not configured: {e}")
    except (EmbeddingError, VectorIndexError) as e:
        request.app.state.logging.error("Query failed: %s", e)
        raise HTTPException(status_code=503, detail="Search backend unavailable")


@router.post("/answer")
async def answer_question(
    request: Request,
    body: AnswerRequest,
    _: None = Depends(verify_api_key),
) -> AnswerResponse:
    """Answer a question from one owner's most similar notes.

    Raises:
        HTTPException: 400 for a blank question, 404 if no note is relevant,
            503 if a backend is unavailable or not configured.
    """
    query_service = request.app.state.query_service
    try:
        return await query_service.answer(body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoRelevantNotesError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=f"Assistant is not configured: {e}")
    except (EmbeddingError, VectorIndexError, CompletionError) as e:
        request.app.state.logging.error("Answer failed: %s", e)
        raise HTTPException(status_code=503, detail="Assistant backend unavailable")


@router.post("/summarize")
async def summarize_notes(
    request: Request,
    body: SummarizeRequest,
    _: None = Depends(verify_api_key),
) -> SummaryResponse:
    """Summarize one owner's notes, optionally restricted to categories."""
    query_service = request.app.state.query_service
    try:
        return await query_service.summarize(body)
    except NoRelevantNotesError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=f"Assistant is not configured: {e}")
    except (EmbeddingError, VectorIndexError, CompletionError) as e:
        request.app.state.logging.error("Summary failed: %s", e)
        raise HTTPException(status_code=503, detail="Assistant backend unavailable")
