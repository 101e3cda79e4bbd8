"""
Tests for hierarchical document chunking.

Covers: Coverage and size invariants, overlap, boundary preference, input
validation, chunk utilities
"""

import random

import pytest

from src.rag.chunking import Chunker, ChunkingOptions, estimate_tokens, get_chunker
from src.rag.errors import ChunkingError
from src.rag.models import MAX_DOCUMENT_CHARS, Document, DocumentMetadata

WORDS = (
    "training recovery protein interval sprint squat deadlift mobility tempo "
    "cadence endurance strength power balance core stretch hydrate sleep"
).split()


def make_text(seed: int, paragraphs: int = 8) -> str:
    """Deterministic prose with sentences and blank-line paragraphs."""
    rng = random.Random(seed)
    parts = []
    for _ in range(paragraphs):
        sentences = []
        for _ in range(rng.randint(1, 12)):
            words = [rng.choice(WORDS) for _ in range(rng.randint(3, 25))]
            sentences.append(" ".join(words).capitalize() + rng.choice([".", "!", "?"]))
        parts.append(" ".join(sentences))
    return "\n\n".join(parts)


def reconstruct(chunks) -> str:
    return "".join(c.text[c.overlap :] for c in chunks)


class TestChunkInvariants:
    """Invariants that hold for every document."""

    @pytest.mark.parametrize("seed", range(12))
    def test_coverage_reconstructs_document(self, seed):
        text = make_text(seed)
        chunks = Chunker().chunk(text, "doc")

        assert reconstruct(chunks) == text

    @pytest.mark.parametrize("seed", range(12))
    def test_size_bounds(self, seed):
        options = ChunkingOptions()
        chunks = Chunker(options).chunk(make_text(seed, paragraphs=15), "doc")

        for chunk in chunks:
            assert len(chunk.text) <= options.max_chunk_size
        for chunk in chunks[:-1]:
            assert len(chunk.text) >= options.min_chunk_size

    @pytest.mark.parametrize("seed", range(6))
    def test_positions_locate_chunk_text(self, seed):
        text = make_text(seed)
        for chunk in Chunker().chunk(text, "doc"):
            assert text[chunk.start_char : chunk.end_char] == chunk.text

    def test_indices_are_contiguous_and_carry_parent(self):
        chunks = Chunker().chunk(make_text(3, paragraphs=20), "doc-42")

        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert {c.parent_doc_id for c in chunks} == {"doc-42"}

    def test_overlap_repeats_end_of_previous_chunk(self):
        chunks = Chunker().chunk(make_text(5, paragraphs=20), "doc")

        assert chunks[0].overlap == 0
        for prev, cur in zip(chunks, chunks[1:]):
            assert cur.overlap <= 200
            assert prev.text.endswith(cur.text[: cur.overlap])

    def test_approx_token_count(self):
        chunk = Chunker().chunk("x" * 10, "doc")[0]
        assert chunk.approx_token_count == 3
        assert estimate_tokens("abcd") == 1


class TestChunkingScenarios:
    def test_two_chunks_with_exact_overlap(self):
        # No sentence or paragraph boundaries: overlap is the full 200 chars
        text = ("lorem ipsum dolor sit amet " * 50)[:1200]
        chunks = Chunker(ChunkingOptions(max_chunk_size=1000, overlap_size=200)).chunk(text, "doc")

        assert len(chunks) == 2
        assert chunks[1].overlap == 200
        assert chunks[1].text.startswith(chunks[0].text[-200:])
        assert reconstruct(chunks) == text

    def test_short_document_is_single_chunk(self):
        chunks = Chunker().chunk("A short note.", "doc")

        assert len(chunks) == 1
        assert chunks[0].text == "A short note."
        assert chunks[0].overlap == 0

    def test_long_word_without_whitespace_is_hard_split(self):
        text = "x" * 2500
        options = ChunkingOptions()
        chunks = Chunker(options).chunk(text, "doc")

        assert reconstruct(chunks) == text
        assert all(len(c.text) <= options.max_chunk_size for c in chunks)

    def test_overlap_snaps_to_sentence_start(self):
        sentence = "The quick brown fox jumps over the lazy dog again. "
        text = sentence * 40
        chunks = Chunker().chunk(text, "doc")

        for chunk in chunks[1:]:
            # Overlap begins where a sentence begins
            assert chunk.text.startswith("The quick")

    def test_paragraphs_are_preferred_split_points(self):
        paragraph = ("word " * 100).strip() + "."
        text = "\n\n".join([paragraph] * 6)
        chunks = Chunker().chunk(text, "doc")

        for chunk in chunks[:-1]:
            body = chunk.text[chunk.overlap :]
            assert body.endswith("\n\n") or body.endswith(".")

    def test_final_chunk_within_limits(self):
        options = ChunkingOptions(max_chunk_size=300, overlap_size=50, min_chunk_size=100)
        text = ("alpha beta gamma delta " * 14).strip() + "\n\n" + "tail."
        chunks = Chunker(options).chunk(text, "doc")

        assert reconstruct(chunks) == text
        assert all(len(c.text) <= options.max_chunk_size for c in chunks)


class TestChunkingErrors:
    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_empty_input_rejected(self, text):
        with pytest.raises(ChunkingError):
            Chunker().chunk(text, "doc")

    def test_non_text_rejected(self):
        with pytest.raises(ChunkingError):
            Chunker().chunk(12345, "doc")

    def test_oversized_input_rejected(self):
        with pytest.raises(ChunkingError):
            Chunker().chunk("a" * (MAX_DOCUMENT_CHARS + 1), "doc")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"overlap_size": 1000},
            {"max_chunk_size": 0},
            {"min_chunk_size": -1},
            {"min_chunk_size": 900},
        ],
    )
    def test_invalid_options_rejected(self, kwargs):
        with pytest.raises(ValueError):
            Chunker(ChunkingOptions(**kwargs))

    def test_get_chunker_rejects_unknown_option(self):
        with pytest.raises(ValueError):
            get_chunker(chunk_strategy="paragraph")


class TestChunkUtilities:
    def test_merge_chunks_restores_text_in_any_order(self):
        text = make_text(9, paragraphs=12)
        chunks = Chunker().chunk(text, "doc")

        assert Chunker.merge_chunks(list(reversed(chunks))) == text

    def test_merge_empty_list_rejected(self):
        with pytest.raises(ChunkingError):
            Chunker.merge_chunks([])

    def test_validate_chunks_accepts_chunker_output(self):
        chunker = Chunker()
        report = chunker.validate_chunks(chunker.chunk(make_text(2, paragraphs=12), "doc"))

        assert report.is_valid
        assert report.issues == []
        assert report.max_chunk_size <= 1000

    def test_validate_chunks_reports_problems(self):
        chunker = Chunker()
        chunks = chunker.chunk(make_text(2, paragraphs=12), "doc")
        chunks[0].index = 7

        report = chunker.validate_chunks(chunks)

        assert not report.is_valid
        assert any("sequential" in issue for issue in report.issues)

    def test_validate_no_chunks(self):
        assert not Chunker().validate_chunks([]).is_valid

    def test_optimal_chunk_size(self):
        chunker = Chunker()
        assert chunker.optimal_chunk_size("a" * 500) == 500
        assert chunker.optimal_chunk_size("a" * 2100) == 700

    def test_chunk_document_attaches_metadata(self):
        doc = Document(
            id="d1",
            content="Some content here.",
            metadata=DocumentMetadata(domain="fitness", source="unit", tags=["a"]),
        )
        chunk = Chunker().chunk_document(doc)[0]

        assert chunk.parent_doc_id == "d1"
        assert chunk.metadata["domain"] == "fitness"
        assert chunk.metadata["tags"] == ["a"]
