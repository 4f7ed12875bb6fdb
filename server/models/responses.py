from pydantic import BaseModel


class SearchResultItem(BaseModel):
    remote_id: str
    document: str | None
    distance: float
    similarity: float
    title: str | None
    is_task: bool
    categories: list[str]
    created_at: str


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResultItem]
    total: int


class AnswerResponse(BaseModel):
    question: str
    answer: str
    source_ids: list[str]
    confidence: float


class SummaryResponse(BaseModel):
    owner_id: str
    summary: str


class WebhookResponse(BaseModel):
    status: str
    event: str
    remote_id: str
