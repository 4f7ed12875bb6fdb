from services.note_sync.IndexCoordinator import IndexCoordinator
from services.note_sync.NoteAssistant import NoteAssistant
from shared.errors import ConfigurationError
from shared.helper.HelperConfig import HelperConfig
from server.models.requests import AnswerRequest, SearchRequest, SummarizeRequest
from server.models.responses import AnswerResponse, SearchResponse, SearchResultItem, SummaryResponse


class QueryService:
    """Handles semantic search queries: embed -> owner-filtered query -> map results.

    Question answering and summaries are delegated to the NoteAssistant.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        coordinator: IndexCoordinator,
        assistant: NoteAssistant | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._coordinator = coordinator
        self._assistant = assistant

    ##########################################
    ############### CORE #####################
    ##########################################

    async def search(self, request: SearchRequest) -> SearchResponse:
        """Embed a query and return the owner's closest notes.

        Args:
            request (SearchRequest): The search request with query, owner_id, limit and optional filters.

        Returns:
            SearchResponse: The matching notes in ranking order.

        Raises:
            EmbeddingError: If the query cannot be embedded.
            VectorIndexError: If the vector store query fails.
        """
        self.logging.info(
            "QueryService.search: query='%s', owner_id=%s, limit=%d",
            request.query, request.owner_id, request.limit,
        )

        extra_filter = None
        if request.is_task is not None:
            extra_filter = {"isTask": {"$eq": request.is_task}}

        results = await self._coordinator.do_search(
            text=request.query,
            owner_id=request.owner_id,
            limit=request.limit,
            categories=request.categories,
            extra_filter=extra_filter,
        )

        items = [
            SearchResultItem(
                remote_id=r.id,
                document=r.document,
                distance=r.distance,
                similarity=r.similarity,
                title=r.metadata.title,
                is_task=r.metadata.is_task,
                categories=r.metadata.categories,
                created_at=r.metadata.created_at,
            )
            for r in results
        ]

        self.logging.info("QueryService.search: returning %d result(s).", len(items))
        return SearchResponse(query=request.query, results=items, total=len(items))

    ##########################################
    ############### ASSISTANT ################
    ##########################################

    def _get_assistant(self) -> NoteAssistant:
        if self._assistant is None:
            raise ConfigurationError("No LLM client is configured for answers and summaries.")
        return self._assistant

    async def answer(self, request: AnswerRequest) -> AnswerResponse:
        """Answer a question from the owner's notes.

        Raises:
            ConfigurationError: If no assistant is configured.
            NoRelevantNotesError: If no note matches the question.
        """
        self.logging.info("QueryService.answer: question='%s', owner_id=%s", request.question, request.owner_id)
        result = await self._get_assistant().do_answer(
            question=request.question,
            owner_id=request.owner_id,
            limit=request.limit,
        )
        return AnswerResponse(**result.model_dump())

    async def summarize(self, request: SummarizeRequest) -> SummaryResponse:
        self.logging.info(
            "QueryService.summarize: owner_id=%s, categories=%s", request.owner_id, request.categories,
        )
        summary = await self._get_assistant().do_summarize(
            owner_id=request.owner_id,
            categories=request.categories,
            limit=request.limit,
        )
        return SummaryResponse(owner_id=request.owner_id, summary=summary)
