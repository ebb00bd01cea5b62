"""Knowledge base models."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from callagent.services.call_session.models import utcnow


class DocumentInput(BaseModel):
    """A document as supplied by an operator."""

    title: str = "Untitled"
    content: str = Field(min_length=1)
    metadata: Dict[str, Any] = {}


class Chunk(BaseModel):
    """Contiguous, sentence-respecting slice of a document."""

    index: int
    content: str
    length: int


class Document(BaseModel):
    """An ingested document."""

    id: str
    title: str
    content: str
    chunks: List[Chunk] = []
    metadata: Dict[str, Any] = {}
    processed_at: datetime = Field(default_factory=utcnow)


class KnowledgeBase(BaseModel):
    """A named collection of ingested documents."""

    id: str
    name: str
    description: Optional[str] = None
    documents: List[Document] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class KnowledgeBaseSummary(BaseModel):
    """Knowledge base listing entry."""

    id: str
    name: str
    description: Optional[str] = None
    document_count: int
    created_at: datetime
    updated_at: datetime


class KnowledgeResult(BaseModel):
    """One ranked retrieval hit."""

    document_id: str
    chunk_id: int
    title: str
    content: str
    score: int
    metadata: Dict[str, Any] = {}
