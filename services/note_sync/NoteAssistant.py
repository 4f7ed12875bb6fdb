"""Language-model features on top of the note index.

Answers questions from an owner's notes, summarizes notes and suggests titles
for untitled ones. Retrieval goes through the IndexCoordinator, generation
through an LLM client.
"""

from typing import Iterable

from pydantic import BaseModel

from services.note_sync.IndexCoordinator import IndexCoordinator
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.rag.models.RankedResult import RankedResult
from shared.errors import NoRelevantNotesError
from shared.helper.HelperConfig import HelperConfig

TITLE_CONTENT_CHARS = 500
TITLE_MAX_CHARS = 50
TITLE_FALLBACK = "Note"
TITLE_PREFIXES = (
    "Title:", "Title :", "Title-", "Title –",
    "Note:", "Note :", "Subject:", "Subject :", "Topic:", "Topic :",
)
ANSWER_SOURCES = 3
MAX_CONFIDENCE = 95.0
SUMMARY_DEFAULT_QUERY = "notes thoughts ideas tasks"

TITLE_PROMPT = (
    "Create a concise, descriptive title (max 6 words) for this note content. "
    "The title should capture the main topic or purpose. "
    "Return only the title, no quotes or extra text.\n\n"
    "Content: {content}"
)
ANSWER_PROMPT = (
    "Based on the following notes from the user, answer their question accurately and concisely.\n"
    "If the notes don't contain relevant information, say so politely.\n\n"
    "User's Notes:\n{context}\n\n"
    "Question: {question}\n\n"
    "Answer:"
)
SUMMARY_PROMPT = (
    "Please create a comprehensive summary of these notes. "
    "Organize the information into key themes, important points, and actionable items. "
    "Make it clear and well-structured.\n\n"
    "Notes to summarize:\n{content}\n\n"
    "Summary:"
)


class AnswerResult(BaseModel):
    """An answer generated from the owner's notes.

    Attributes:
        question:    The question as asked.
        answer:      Generated answer text.
        source_ids:  Remote ids of the notes used as context, best match first.
        confidence:  Top similarity as a percentage, capped at 95.
    """

    question: str
    answer: str
    source_ids: list[str]
    confidence: float


def clean_title(raw: str) -> str:
    """Normalize a generated title.

    Strips quotes and a leading label such as "Title:", truncates long titles
    and falls back to "Note" when too little is left.
    """
    title = raw.strip().replace('"', "").replace("'", "")
    for prefix in TITLE_PREFIXES:
        if title.startswith(prefix):
            title = title[len(prefix):].strip()
            break
    if len(title) > TITLE_MAX_CHARS:
        title = title[:TITLE_MAX_CHARS - 3] + "..."
    if len(title) < 3:
        return TITLE_FALLBACK
    return title


def calculate_confidence(results: list[RankedResult]) -> float:
    if not results:
        return 0.0
    return min(results[0].similarity * 100.0, MAX_CONFIDENCE)


class NoteAssistant:
    """Question answering, summaries and title suggestions over an owner's notes."""

    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        coordinator: IndexCoordinator,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._llm_client = llm_client
        self._coordinator = coordinator

    ##########################################
    ################# TITLES #################
    ##########################################

    async def do_generate_title(self, content: str) -> str:
        """Suggest a short title for a note.

        Raises:
            ValueError: If content is blank.
            CompletionError: If the LLM is not configured or the request fails.
        """
        if not content or not content.strip():
            raise ValueError("Cannot generate a title for empty content.")

        prompt = TITLE_PROMPT.format(content=content.strip()[:TITLE_CONTENT_CHARS])
        raw = await self._llm_client.do_chat(
            [{"role": "user", "content": prompt}], max_tokens=20, temperature=0.7,
        )
        return clean_title(raw)

    ##########################################
    ################ QUESTIONS ###############
    ##########################################

    async def do_answer(self, question: str, owner_id: str, limit: int = 5) -> AnswerResult:
        """Answer a question from the owner's most similar notes.

        The top three hits are sent as context and reported as sources.

        Raises:
            ValueError: If the question is blank.
            NoRelevantNotesError: If the search returns nothing.
            EmbeddingError, VectorIndexError: If retrieval fails.
            CompletionError: If generation fails.
        """
        results = await self._coordinator.do_search(text=question, owner_id=owner_id, limit=limit)
        if not results:
            raise NoRelevantNotesError(f"No notes of owner '{owner_id}' match the question.")

        sources = results[:ANSWER_SOURCES]
        context = "\n\n".join(f"Note: {r.document or ''}" for r in sources)
        prompt = ANSWER_PROMPT.format(context=context, question=question.strip())
        answer = await self._llm_client.do_chat(
            [{"role": "user", "content": prompt}], max_tokens=300, temperature=0.3,
        )

        confidence = calculate_confidence(results)
        self.logging.info(
            "Answered question for owner '%s' from %d note(s), confidence %.1f.",
            owner_id, len(sources), confidence,
        )
        return AnswerResult(
            question=question,
            answer=answer,
            source_ids=[r.id for r in sources],
            confidence=confidence,
        )

    ##########################################
    ################ SUMMARIES ###############
    ##########################################

    async def do_summarize(self, owner_id: str, categories: Iterable[str] | None = None, limit: int = 20) -> str:
        """Summarize the owner's notes, optionally restricted to categories.

        Raises:
            NoRelevantNotesError: If no notes are found.
            EmbeddingError, VectorIndexError: If retrieval fails.
            CompletionError: If generation fails.
        """
        wanted = sorted(set(categories or []))
        query = " ".join(wanted) if wanted else SUMMARY_DEFAULT_QUERY
        results = await self._coordinator.do_search(
            text=query, owner_id=owner_id, limit=limit, categories=wanted or None,
        )
        if not results:
            raise NoRelevantNotesError(f"No notes of owner '{owner_id}' to summarize.")

        content = "\n".join(f"• {r.document or ''}" for r in results)
        summary = await self._llm_client.do_chat(
            [{"role": "user", "content": SUMMARY_PROMPT.format(content=content)}],
            max_tokens=500,
            temperature=0.5,
        )
        self.logging.info("Summarized %d note(s) for owner '%s'.", len(results), owner_id)
        return summary
