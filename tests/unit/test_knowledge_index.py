"""Unit tests for knowledge chunking and retrieval."""
import pytest

from callagent.core.errors import InvalidSpec
from callagent.services.knowledge.index import (
    KnowledgeIndex,
    create_chunks,
    score_chunk,
    tokenize_query,
)
from callagent.services.knowledge.loader import load_seed_file


class TestChunking:
    """Test sentence-boundary chunking."""

    def test_short_content_single_chunk(self):
        """Test content under the size limit stays in one chunk."""
        chunks = create_chunks("First sentence. Second one! Third?", chunk_size=500)

        assert len(chunks) == 1
        assert chunks[0].content == "First sentence. Second one! Third?"
        assert chunks[0].index == 0
        assert chunks[0].length == len(chunks[0].content)

    def test_splits_at_sentence_boundaries(self):
        """Test sentences are grouped without exceeding the size limit."""
        content = "Alpha beta gamma. Delta epsilon zeta. Eta theta iota."
        chunks = create_chunks(content, chunk_size=40)

        assert [c.content for c in chunks] == [
            "Alpha beta gamma. Delta epsilon zeta.",
            "Eta theta iota.",
        ]
        for chunk in chunks:
            assert chunk.content in content

    def test_oversized_sentence_kept_whole(self):
        """Test a sentence longer than the limit becomes its own chunk."""
        long_sentence = "word " * 30 + "end."
        content = f"Short one. {long_sentence} Another short."
        chunks = create_chunks(content, chunk_size=20)

        assert long_sentence.strip() in [c.content for c in chunks]
        assert chunks[0].content == "Short one."
        assert chunks[-1].content == "Another short."

    def test_trailing_text_without_terminator(self):
        """Test trailing text without punctuation still becomes chunk content."""
        chunks = create_chunks("Complete sentence. Trailing words", chunk_size=500)

        assert chunks[0].content == "Complete sentence. Trailing words"

    def test_chunk_indexes_are_sequential(self):
        """Test chunk indexes count up from zero."""
        content = " ".join(f"Sentence number {i}." for i in range(20))
        chunks = create_chunks(content, chunk_size=60)

        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert all(c.length <= 60 for c in chunks)


class TestScoring:
    """Test query tokenization and scoring."""

    def test_tokenize_drops_short_words(self):
        """Test words of two characters or fewer are dropped."""
        assert tokenize_query("how much is it") == ["how", "much"]

    def test_tokenize_deduplicates(self):
        """Test repeated words are counted once."""
        assert tokenize_query("price price PRICE plan") == ["price", "plan"]

    def test_score_counts_substring_hits(self):
        """Test tokens match as substrings of the chunk."""
        assert score_chunk("Our pricing plans", ["price", "pricing", "plan"], "x") == 2

    def test_score_phrase_bonus(self):
        """Test the verbatim query adds two points."""
        tokens = tokenize_query("premium plan")
        assert score_chunk("The premium plan is great", tokens, "premium plan") == 4


class TestKnowledgeIndex:
    """Test knowledge base ingestion and query."""

    def test_pricing_query(self, knowledge_index, pricing_knowledge_base):
        """Test the pricing document answers a premium question."""
        results = knowledge_index.query(pricing_knowledge_base.id, "how much is premium", 1)

        assert len(results) == 1
        assert "ninety nine dollars" in results[0].content
        assert results[0].score >= 1
        assert results[0].title == "Pricing"

    def test_unknown_knowledge_base_returns_empty(self, knowledge_index):
        """Test querying an unknown base returns no results instead of failing."""
        assert knowledge_index.query("missing", "anything at all", 5) == []

    def test_empty_query_returns_empty(self, knowledge_index, pricing_knowledge_base):
        """Test an empty query matches nothing."""
        assert knowledge_index.query(pricing_knowledge_base.id, "   ", 5) == []

    def test_zero_score_excluded(self, knowledge_index, pricing_knowledge_base):
        """Test chunks with no matching token are not returned."""
        assert knowledge_index.query(pricing_knowledge_base.id, "refund window", 5) == []

    def test_results_ranked_and_truncated(self, knowledge_index):
        """Test results are sorted by score with ties in document order."""
        kb = knowledge_index.ingest(
            name="Ranking",
            documents=[
                {"title": "A", "content": "Support hours are long."},
                {"title": "B", "content": "Support hours and support email."},
                {"title": "C", "content": "Email support only."},
                {"title": "D", "content": "Nothing relevant."},
            ],
        )

        results = knowledge_index.query(kb.id, "support hours", 3)

        assert [r.title for r in results] == ["A", "B", "C"]
        assert [r.score for r in results] == [4, 4, 1]

    def test_ingest_requires_name(self, knowledge_index):
        """Test a blank name is rejected."""
        with pytest.raises(InvalidSpec):
            knowledge_index.ingest(name="  ", documents=[{"content": "Text."}])

    def test_ingest_rejects_empty_document(self, knowledge_index):
        """Test a document without content is rejected."""
        with pytest.raises(InvalidSpec):
            knowledge_index.ingest(name="Bad", documents=[{"title": "Empty", "content": ""}])

    def test_untitled_document(self, knowledge_index):
        """Test documents without a title get a default one."""
        kb = knowledge_index.ingest(name="Docs", documents=[{"content": "Some text here."}])

        assert kb.documents[0].title == "Untitled"

    def test_list_get_delete(self, knowledge_index, pricing_knowledge_base):
        """Test CRUD over the index."""
        summaries = knowledge_index.list()
        assert len(summaries) == 1
        assert summaries[0].document_count == 1
        assert knowledge_index.get(pricing_knowledge_base.id) is pricing_knowledge_base

        assert knowledge_index.delete(pricing_knowledge_base.id) is True
        assert knowledge_index.get(pricing_knowledge_base.id) is None
        assert knowledge_index.delete(pricing_knowledge_base.id) is False
        assert knowledge_index.query(pricing_knowledge_base.id, "premium", 5) == []


class TestSeedLoader:
    """Test loading knowledge from YAML."""

    def test_load_seed_file(self, test_knowledge_path):
        """Test knowledge bases in the seed file are ingested."""
        index = KnowledgeIndex()

        created = load_seed_file(index, test_knowledge_path)

        assert len(created) == 1
        kb = index.get("kb-test")
        assert kb is not None
        assert kb.name == "Test Company FAQ"
        assert [d.title for d in kb.documents] == ["Pricing", "Support"]
        assert kb.documents[0].metadata == {"source": "website"}

    def test_missing_seed_file(self, tmp_path):
        """Test a missing seed file loads nothing."""
        index = KnowledgeIndex()

        assert load_seed_file(index, tmp_path / "missing.yaml") == []
        assert len(index) == 0
