"""Lexical knowledge index."""
import logging
import re
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from callagent.core.errors import InvalidSpec
from callagent.services.knowledge.models import (
    Chunk,
    Document,
    DocumentInput,
    KnowledgeBase,
    KnowledgeBaseSummary,
    KnowledgeResult,
)

logger = logging.getLogger(__name__)

# A sentence runs up to and including its terminator(s); trailing text
# without a terminator is a sentence too.
_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)|[.!?]+")
_WORD_RE = re.compile(r"\w+")

DEFAULT_CHUNK_SIZE = 500


def split_sentences(content: str) -> List[Tuple[int, int]]:
    """Return (start, end) spans of the sentences in content, whitespace trimmed."""
    spans = []
    for match in _SENTENCE_RE.finditer(content):
        start, end = match.span()
        text = match.group()
        stripped = text.strip()
        if not stripped or not any(ch.isalnum() for ch in stripped):
            continue
        start += len(text) - len(text.lstrip())
        end -= len(text) - len(text.rstrip())
        spans.append((start, end))
    return spans


def create_chunks(content: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[Chunk]:
    """
    Split content into chunks at sentence boundaries.

    Sentences are accumulated until adding the next one would push the
    chunk past chunk_size. A sentence longer than chunk_size on its own is
    kept whole as a single chunk. Each chunk is an exact slice of content.
    """
    groups: List[Tuple[int, int]] = []
    group_start: Optional[int] = None
    group_end = 0

    for start, end in split_sentences(content):
        if group_start is None:
            group_start, group_end = start, end
        elif end - group_start > chunk_size:
            groups.append((group_start, group_end))
            group_start, group_end = start, end
        else:
            group_end = end

    if group_start is not None:
        groups.append((group_start, group_end))

    chunks = []
    for index, (start, end) in enumerate(groups):
        text = content[start:end]
        chunks.append(Chunk(index=index, content=text, length=len(text)))
    return chunks


def tokenize_query(text: str) -> List[str]:
    """Distinct lowercase words longer than two characters, in query order."""
    tokens: List[str] = []
    for word in _WORD_RE.findall(text.lower()):
        if len(word) > 2 and word not in tokens:
            tokens.append(word)
    return tokens


def score_chunk(chunk_text: str, tokens: Sequence[str], phrase: str) -> int:
    """Count tokens present in the chunk, plus 2 when the whole query appears."""
    content_lower = chunk_text.lower()
    score = sum(1 for token in tokens if token in content_lower)
    if phrase and phrase in content_lower:
        score += 2
    return score


class KnowledgeIndex:
    """
    In-memory store of knowledge bases with lexical retrieval.

    Knowledge bases are built completely before being published, and the
    mapping is swapped rather than mutated, so concurrent readers never see
    a half-built base.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size
        self._bases: Dict[str, KnowledgeBase] = {}

    def __len__(self) -> int:
        return len(self._bases)

    def ingest(
        self,
        name: str,
        documents: Sequence[Union[DocumentInput, Mapping[str, Any]]],
        description: Optional[str] = None,
        knowledge_base_id: Optional[str] = None,
    ) -> KnowledgeBase:
        """Chunk documents and publish them as a new knowledge base."""
        if not name or not name.strip():
            raise InvalidSpec("Knowledge base name is required")

        processed = []
        for raw in documents:
            try:
                doc = raw if isinstance(raw, DocumentInput) else DocumentInput.model_validate(raw)
            except ValidationError as e:
                raise InvalidSpec(f"Invalid document: {e.errors()[0].get('msg')}") from e
            processed.append(
                Document(
                    id=str(uuid.uuid4()),
                    title=doc.title or "Untitled",
                    content=doc.content,
                    chunks=create_chunks(doc.content, self.chunk_size),
                    metadata=doc.metadata,
                )
            )

        knowledge_base = KnowledgeBase(
            id=knowledge_base_id or str(uuid.uuid4()),
            name=name,
            description=description,
            documents=processed,
        )
        self._bases = {**self._bases, knowledge_base.id: knowledge_base}

        logger.info(
            f"[KNOWLEDGE] Knowledge base created - Id: {knowledge_base.id}, Name: {name}, "
            f"Documents: {len(processed)}, "
            f"Chunks: {sum(len(d.chunks) for d in processed)}, "
            f"Total bases: {len(self._bases)}"
        )
        return knowledge_base

    def query(
        self, knowledge_base_id: Optional[str], text: str, max_results: int = 5
    ) -> List[KnowledgeResult]:
        """Rank chunks of one knowledge base against the query text."""
        knowledge_base = self._bases.get(knowledge_base_id) if knowledge_base_id else None
        if knowledge_base is None:
            logger.warning(f"[KNOWLEDGE] Knowledge base not found - Id: {knowledge_base_id}")
            return []

        phrase = (text or "").lower().strip()
        if not phrase or max_results <= 0:
            return []
        tokens = tokenize_query(phrase)

        results = []
        for document in knowledge_base.documents:
            for chunk in document.chunks:
                score = score_chunk(chunk.content, tokens, phrase)
                if score > 0:
                    results.append(
                        KnowledgeResult(
                            document_id=document.id,
                            chunk_id=chunk.index,
                            title=document.title,
                            content=chunk.content,
                            score=score,
                            metadata=document.metadata,
                        )
                    )

        # sorted() is stable, so equal scores keep document/chunk order
        ranked = sorted(results, key=lambda r: -r.score)[:max_results]

        logger.info(
            f"[KNOWLEDGE] Query completed - Id: {knowledge_base_id}, "
            f"Query: '{phrase[:50]}', Results: {len(ranked)}, "
            f"Top score: {ranked[0].score if ranked else 0}"
        )
        return ranked

    def list(self) -> List[KnowledgeBaseSummary]:
        """Summaries of all knowledge bases, oldest first."""
        return [
            KnowledgeBaseSummary(
                id=kb.id,
                name=kb.name,
                description=kb.description,
                document_count=len(kb.documents),
                created_at=kb.created_at,
                updated_at=kb.updated_at,
            )
            for kb in self._bases.values()
        ]

    def get(self, knowledge_base_id: str) -> Optional[KnowledgeBase]:
        return self._bases.get(knowledge_base_id)

    def delete(self, knowledge_base_id: str) -> bool:
        if knowledge_base_id not in self._bases:
            logger.warning(f"[KNOWLEDGE] Delete of unknown knowledge base - Id: {knowledge_base_id}")
            return False
        self._bases = {k: v for k, v in self._bases.items() if k != knowledge_base_id}
        logger.info(
            f"[KNOWLEDGE] Knowledge base deleted - Id: {knowledge_base_id}, "
            f"Remaining: {len(self._bases)}"
        )
        return True
