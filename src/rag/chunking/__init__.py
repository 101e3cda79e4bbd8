"""Document chunking.

Splits document text into ordered, size-bounded chunks with overlap. Chunks
are contiguous slices of the original text: stripping each chunk's leading
overlap and concatenating the remainders reproduces the document exactly.

Splitting is hierarchical: paragraphs first, sentences for paragraphs that are
still too large, and a hard split (at the last whitespace when possible) for
anything left over.
"""

import math
import re
from bisect import bisect_left
from collections import deque
from dataclasses import dataclass, field

from src.core.config import Settings, get_settings
from src.rag.errors import ChunkingError
from src.rag.models import MAX_DOCUMENT_CHARS, Document

_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_END = re.compile(r"[.!?]+[\"')\]]*\s+")

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token count (about four characters per token)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass
class ChunkingOptions:
    """Chunk size limits and boundary preferences (sizes in characters)."""

    max_chunk_size: int = 1000
    overlap_size: int = 200
    min_chunk_size: int = 100
    preserve_paragraphs: bool = True
    preserve_sentences: bool = True

    def validate(self) -> None:
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if self.overlap_size < 0 or self.min_chunk_size < 0:
            raise ValueError("overlap_size and min_chunk_size must not be negative")
        if self.overlap_size >= self.max_chunk_size:
            raise ValueError("overlap_size must be smaller than max_chunk_size")
        if self.min_chunk_size > self.unit_limit:
            raise ValueError("min_chunk_size must not exceed max_chunk_size - overlap_size")

    @property
    def unit_limit(self) -> int:
        """Largest unit that still fits a chunk after its overlap prefix."""
        return self.max_chunk_size - self.overlap_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChunkingOptions":
        return cls(
            max_chunk_size=settings.max_chunk_size,
            overlap_size=settings.overlap_size,
            min_chunk_size=settings.min_chunk_size,
        )


@dataclass
class Chunk:
    """A document chunk ready for embedding.

    `text[:overlap]` repeats the end of the previous chunk; `start_char` and
    `end_char` locate `text` in the parent document.
    """

    index: int
    text: str
    start_char: int
    end_char: int
    overlap: int = 0
    parent_doc_id: str = ""
    metadata: dict = field(default_factory=dict)

    @property
    def body(self) -> str:
        """Chunk text without the overlap copied from the previous chunk."""
        return self.text[self.overlap :]

    @property
    def approx_token_count(self) -> int:
        return estimate_tokens(self.text)


@dataclass
class ChunkValidation:
    """Result of checking a chunk list against the chunking limits."""

    is_valid: bool
    issues: list[str]
    total_chunks: int = 0
    avg_chunk_size: float = 0.0
    min_chunk_size: int = 0
    max_chunk_size: int = 0


def _split_at(text: str, start: int, end: int, pattern: re.Pattern) -> list[tuple[int, int]]:
    """Split text[start:end] after each match, keeping separators attached."""
    spans = []
    cursor = start
    for match in pattern.finditer(text, start, end):
        cut = match.end()
        if cut >= end:
            break
        if cut > cursor:
            spans.append((cursor, cut))
            cursor = cut
    spans.append((cursor, end))
    return spans


def _last_whitespace(text: str, lo: int, hi: int) -> int:
    """Index of the last whitespace character in text[lo:hi], or -1."""
    for i in range(hi - 1, lo - 1, -1):
        if text[i].isspace():
            return i
    return -1


class Chunker:
    """Hierarchical chunker with overlap and minimum-size handling."""

    def __init__(self, options: ChunkingOptions | None = None):
        self.options = options or ChunkingOptions()
        self.options.validate()

    def chunk(
        self,
        text: str,
        parent_doc_id: str = "",
        options: ChunkingOptions | None = None,
        metadata: dict | None = None,
    ) -> list[Chunk]:
        """Split text into ordered overlapping chunks.

        Raises:
            ChunkingError: text is not a string, is blank, or is too long
        """
        opts = options or self.options
        if options is not None:
            options.validate()

        if not isinstance(text, str):
            raise ChunkingError(f"Document content must be text, got {type(text).__name__}")
        if not text.strip():
            raise ChunkingError("Document content is empty")
        if len(text) > MAX_DOCUMENT_CHARS:
            raise ChunkingError(
                f"Document content is {len(text)} characters; limit is {MAX_DOCUMENT_CHARS}"
            )

        if len(text) <= opts.max_chunk_size:
            spans = [(0, 0, len(text))]
        else:
            units = self._split_units(text, opts)
            boundaries = self._boundaries(text, opts)
            spans = self._pack(text, units, boundaries, opts)
            self._merge_short_tail(spans, opts)

        return [
            Chunk(
                index=i,
                text=text[start:end],
                start_char=start,
                end_char=end,
                overlap=core_start - start,
                parent_doc_id=parent_doc_id,
                metadata=dict(metadata or {}),
            )
            for i, (start, core_start, end) in enumerate(spans)
        ]

    def chunk_document(self, document: Document, options: ChunkingOptions | None = None) -> list[Chunk]:
        """Chunk a document, attaching its id and metadata to every chunk."""
        return self.chunk(
            document.content,
            parent_doc_id=document.id,
            options=options,
            metadata=document.metadata.to_dict(),
        )

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def _split_units(self, text: str, opts: ChunkingOptions) -> list[tuple[int, int]]:
        """Cut text into contiguous units no larger than the unit limit."""
        limit = opts.unit_limit
        if opts.preserve_paragraphs:
            pieces = _split_at(text, 0, len(text), _PARAGRAPH_BREAK)
        else:
            pieces = [(0, len(text))]

        units = []
        for start, end in pieces:
            if end - start <= limit:
                units.append((start, end))
                continue

            if opts.preserve_sentences:
                sentences = _split_at(text, start, end, _SENTENCE_END)
            else:
                sentences = [(start, end)]

            for s_start, s_end in sentences:
                if s_end - s_start <= limit:
                    units.append((s_start, s_end))
                else:
                    units.extend(self._hard_split(text, s_start, s_end, opts))
        return units

    def _hard_split(
        self, text: str, start: int, end: int, opts: ChunkingOptions
    ) -> list[tuple[int, int]]:
        """Split a span with no usable boundary, preferring word breaks."""
        limit = opts.unit_limit
        spans = []
        while end - start > limit:
            window_end = start + limit
            # Don't cut in the middle of a word unless the piece would be tiny
            space_pos = _last_whitespace(text, start + opts.min_chunk_size, window_end)
            cut = space_pos + 1 if space_pos >= 0 else window_end
            spans.append((start, cut))
            start = cut
        spans.append((start, end))
        return spans

    def _boundaries(self, text: str, opts: ChunkingOptions) -> list[int]:
        """Sorted positions where a paragraph or sentence begins."""
        positions = set()
        if opts.preserve_paragraphs:
            positions.update(m.end() for m in _PARAGRAPH_BREAK.finditer(text))
        if opts.preserve_sentences:
            positions.update(m.end() for m in _SENTENCE_END.finditer(text))
        return sorted(positions)

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def _overlap_for(
        self, core_start: int, available: int, boundaries: list[int], opts: ChunkingOptions
    ) -> int:
        """Overlap length for a chunk whose own text begins at core_start."""
        size = min(opts.overlap_size, available)
        if size <= 0:
            return 0

        # Snap forward to the earliest sentence/paragraph start in the window
        window_start = core_start - size
        i = bisect_left(boundaries, window_start)
        if i < len(boundaries) and boundaries[i] < core_start:
            return core_start - boundaries[i]
        return size

    def _pack(
        self,
        text: str,
        units: list[tuple[int, int]],
        boundaries: list[int],
        opts: ChunkingOptions,
    ) -> list[tuple[int, int, int]]:
        """Greedily pack units into (start, core_start, end) chunk spans."""
        pending = deque(units)
        spans: list[tuple[int, int, int]] = []
        core_start = 0

        while pending:
            overlap = 0
            if spans:
                overlap = self._overlap_for(core_start, core_start - spans[-1][0], boundaries, opts)
            budget = opts.max_chunk_size - overlap
            core_end = core_start

            while pending:
                unit_start, unit_end = pending[0]
                if unit_end - core_start <= budget:
                    core_end = unit_end
                    pending.popleft()
                    continue

                if overlap + (core_end - core_start) < opts.min_chunk_size:
                    cut = self._top_up_cut(text, core_start, unit_start, overlap, budget, opts)
                    if cut > unit_start:
                        pending[0] = (cut, unit_end)
                        core_end = cut
                break

            if core_end == core_start:
                # Units never exceed the budget; an oversized one is kept whole
                core_end = pending.popleft()[1]

            spans.append((core_start - overlap, core_start, core_end))
            core_start = core_end

        return spans

    def _top_up_cut(
        self,
        text: str,
        core_start: int,
        unit_start: int,
        overlap: int,
        budget: int,
        opts: ChunkingOptions,
    ) -> int:
        """Where to split the next unit so an undersized chunk reaches the minimum."""
        hi = core_start + budget
        if hi <= unit_start:
            return unit_start
        lo = max(unit_start, core_start + opts.min_chunk_size - overlap)
        space_pos = _last_whitespace(text, lo, hi)
        return space_pos + 1 if space_pos >= 0 else hi

    def _merge_short_tail(self, spans: list[tuple[int, int, int]], opts: ChunkingOptions) -> None:
        """Fold an undersized final chunk into its predecessor when it fits."""
        if len(spans) < 2:
            return
        start, _core, end = spans[-1]
        if end - start >= opts.min_chunk_size:
            return
        prev_start, prev_core, _prev_end = spans[-2]
        if end - prev_start <= opts.max_chunk_size:
            spans[-2] = (prev_start, prev_core, end)
            spans.pop()

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    @staticmethod
    def merge_chunks(chunks: list[Chunk]) -> str:
        """Reconstruct the original text from its chunks."""
        if not chunks:
            raise ChunkingError("Cannot merge an empty chunk list")
        ordered = sorted(chunks, key=lambda c: c.index)
        return "".join(c.body for c in ordered)

    def validate_chunks(
        self, chunks: list[Chunk], options: ChunkingOptions | None = None
    ) -> ChunkValidation:
        """Check chunk sizes and index continuity."""
        opts = options or self.options
        if not chunks:
            return ChunkValidation(is_valid=False, issues=["No chunks provided"])

        issues = []
        sizes = [len(c.text) for c in chunks]

        oversized = [c.index for c in chunks if len(c.text) > opts.max_chunk_size]
        if oversized:
            issues.append(f"Chunks larger than {opts.max_chunk_size}: {oversized}")

        # The final chunk may legitimately be short
        undersized = [c.index for c in chunks[:-1] if len(c.text) < opts.min_chunk_size]
        if undersized:
            issues.append(f"Chunks smaller than {opts.min_chunk_size}: {undersized}")

        if sorted(c.index for c in chunks) != list(range(len(chunks))):
            issues.append("Chunk indices are not sequential")

        if len({c.parent_doc_id for c in chunks}) > 1:
            issues.append("Chunks belong to different documents")

        return ChunkValidation(
            is_valid=not issues,
            issues=issues,
            total_chunks=len(chunks),
            avg_chunk_size=sum(sizes) / len(sizes),
            min_chunk_size=min(sizes),
            max_chunk_size=max(sizes),
        )

    def optimal_chunk_size(self, text: str) -> int:
        """Chunk size that splits text into the fewest evenly sized pieces."""
        if len(text) <= self.options.max_chunk_size:
            return len(text)
        ideal_chunks = math.ceil(len(text) / self.options.max_chunk_size)
        return math.ceil(len(text) / ideal_chunks)


def get_chunker(settings: Settings | None = None, **overrides) -> Chunker:
    """Build a chunker from settings, with optional option overrides.

    Args:
        settings: Application settings (defaults to the cached settings)
        **overrides: ChunkingOptions fields to override

    Returns:
        Configured chunker
    """
    options = ChunkingOptions.from_settings(settings or get_settings())
    for key, value in overrides.items():
        if not hasattr(options, key):
            raise ValueError(f"Unknown chunking option: {key}")
        setattr(options, key, value)
    return Chunker(options)


__all__ = [
    "Chunk",
    "ChunkValidation",
    "Chunker",
    "ChunkingOptions",
    "estimate_tokens",
    "get_chunker",
]
