"""Knowledge base API endpoints."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from callagent.core.dependencies import get_knowledge_index
from callagent.core.errors import InvalidSpec, SessionNotFound
from callagent.services.knowledge.index import KnowledgeIndex
from callagent.services.knowledge.models import (
    DocumentInput,
    KnowledgeBase,
    KnowledgeBaseSummary,
    KnowledgeResult,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateKnowledgeBaseRequest(BaseModel):
    """Knowledge base creation request."""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    documents: List[DocumentInput] = Field(min_length=1)


class QueryRequest(BaseModel):
    """Knowledge base query request."""
    query: str
    max_results: int = Field(default=5, ge=1, le=50)


class KnowledgeBaseResponse(BaseModel):
    """Single knowledge base response."""
    success: bool = True
    knowledge_base: KnowledgeBase


class KnowledgeBaseListResponse(BaseModel):
    """Knowledge base listing response."""
    success: bool = True
    knowledge_bases: List[KnowledgeBaseSummary]


class QueryResponse(BaseModel):
    """Query results response."""
    success: bool = True
    results: List[KnowledgeResult]


@router.post("/api/knowledge/bases", response_model=KnowledgeBaseResponse)
async def create_knowledge_base(
    body: CreateKnowledgeBaseRequest,
    knowledge_index: KnowledgeIndex = Depends(get_knowledge_index),
):
    """Create and index a knowledge base."""
    knowledge_base = knowledge_index.ingest(
        name=body.name,
        description=body.description,
        documents=body.documents,
    )
    return KnowledgeBaseResponse(knowledge_base=knowledge_base)


@router.get("/api/knowledge/bases", response_model=KnowledgeBaseListResponse)
async def list_knowledge_bases(knowledge_index: KnowledgeIndex = Depends(get_knowledge_index)):
    """List knowledge bases."""
    knowledge_bases = knowledge_index.list()
    logger.info(f"[KNOWLEDGE API] Listing knowledge bases - Count: {len(knowledge_bases)}")
    return KnowledgeBaseListResponse(knowledge_bases=knowledge_bases)


@router.get("/api/knowledge/bases/{knowledge_base_id}", response_model=KnowledgeBaseResponse)
async def get_knowledge_base(
    knowledge_base_id: str,
    knowledge_index: KnowledgeIndex = Depends(get_knowledge_index),
):
    """Get one knowledge base with its documents and chunks."""
    knowledge_base = knowledge_index.get(knowledge_base_id)
    if knowledge_base is None:
        raise SessionNotFound(f"Knowledge base not found: {knowledge_base_id}")
    return KnowledgeBaseResponse(knowledge_base=knowledge_base)


@router.delete("/api/knowledge/bases/{knowledge_base_id}")
async def delete_knowledge_base(
    knowledge_base_id: str,
    knowledge_index: KnowledgeIndex = Depends(get_knowledge_index),
):
    """Delete a knowledge base."""
    if not knowledge_index.delete(knowledge_base_id):
        raise SessionNotFound(f"Knowledge base not found: {knowledge_base_id}")
    return {"success": True, "message": "Knowledge base deleted"}


@router.post("/api/knowledge/bases/{knowledge_base_id}/query", response_model=QueryResponse)
async def query_knowledge_base(
    knowledge_base_id: str,
    body: QueryRequest,
    knowledge_index: KnowledgeIndex = Depends(get_knowledge_index),
):
    """Run a lexical query against a knowledge base."""
    if not body.query.strip():
        raise InvalidSpec("Query is required")
    results = knowledge_index.query(knowledge_base_id, body.query, body.max_results)
    return QueryResponse(results=results)
