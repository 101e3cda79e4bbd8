"""Answer synthesis.

Builds a token-bounded, citation-numbered context from retrieved matches and
asks the completion provider for the final answer.
"""

import logging
from dataclasses import dataclass

from src.rag.chunking import CHARS_PER_TOKEN, estimate_tokens
from src.rag.completion import CompletionProvider
from src.rag.errors import ProviderError, SynthesisError
from src.rag.models import QueryPlan, RetrievalMatch

logger = logging.getLogger(__name__)

NO_INFORMATION_PHRASE = "no relevant information"


@dataclass
class SynthesisResult:
    """Answer plus the matches that made it into the context."""

    answer: str
    confidence: float
    sources: list[RetrievalMatch]
    context_tokens: int


def compute_confidence(matches: list[RetrievalMatch], planning_confidence: float) -> float:
    """Overall answer confidence in [0, 1].

    Weighted blend of average match score, top score (discounted when fewer
    than three matches support it) and planner confidence. Without matches
    the confidence never exceeds 0.1.
    """
    if not matches:
        return max(0.0, min(0.1, 0.1 * planning_confidence))

    scores = [m.score for m in matches]
    avg_score = sum(scores) / len(scores)
    top_score = max(scores)
    support = min(len(matches) / 3, 1.0)
    confidence = 0.6 * avg_score + 0.25 * top_score * support + 0.15 * planning_confidence
    return max(0.0, min(1.0, confidence))


def truncate_text(text: str, max_chars: int) -> str:
    """Cut text to max_chars, preferring a sentence end, then a word break."""
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]

    truncated = text[:max_chars]
    last_sentence_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_sentence_end > max_chars * 0.7:
        return truncated[: last_sentence_end + 1]

    truncated = text[: max_chars - 3]
    last_space = truncated.rfind(" ")
    if last_space > max_chars * 0.8:
        return truncated[:last_space] + "..."
    return truncated + "..."


def build_system_prompt(domain: str) -> str:
    return f"""You are a knowledgeable assistant for the "{domain}" domain.
You answer questions using the context passages retrieved from the {domain} knowledge base.

Guidelines:
- Base your answer on the provided context; cite passages as [1], [2], ...
- If the context only partially answers the question, say what is missing
- If the context does not contain the answer, say that no relevant information was found
- Be concise, specific and practical
- Do not invent facts, numbers or sources"""


def build_user_prompt(query: str, context: str) -> str:
    if not context:
        return f"""Question: {query}

No relevant information was found in the knowledge base for this question.
Tell the user that no relevant information was found, and suggest how they could rephrase or narrow the question."""

    return f"""Use the following context to answer the question.

Context:
{context}

Question: {query}"""


class ResponseSynthesizer:
    """Generates answers from retrieved context."""

    def __init__(
        self,
        completion: CompletionProvider,
        max_tokens_per_context: int = 4000,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        self.completion = completion
        self.max_tokens_per_context = max_tokens_per_context
        self.temperature = temperature
        self.max_tokens = max_tokens

    @staticmethod
    def _format_entry(i: int, match: RetrievalMatch, text: str) -> str:
        source = match.metadata.get("title") or match.metadata.get("source") or match.document_id
        return f"[{i}] (source: {source}, relevance: {match.score:.2f})\n{text}\n"

    def build_context(self, matches: list[RetrievalMatch]) -> tuple[str, list[RetrievalMatch]]:
        """Format matches as numbered context within the token budget.

        Matches are added best first; the first one that does not fit ends the
        context. A top match that alone exceeds the budget is truncated.

        Returns:
            Tuple of (context text, matches included)
        """
        parts: list[str] = []
        included: list[RetrievalMatch] = []
        used_tokens = 0

        for match in sorted(matches, key=lambda m: m.score, reverse=True):
            i = len(parts) + 1
            entry = self._format_entry(i, match, match.text)
            cost = estimate_tokens(entry)

            if used_tokens + cost > self.max_tokens_per_context:
                if parts:
                    break
                header_chars = len(self._format_entry(i, match, ""))
                available = self.max_tokens_per_context * CHARS_PER_TOKEN - header_chars
                if available <= 0:
                    break
                entry = self._format_entry(i, match, truncate_text(match.text, available))
                cost = estimate_tokens(entry)

            parts.append(entry)
            included.append(match)
            used_tokens += cost

        return "\n".join(parts), included

    async def synthesize(
        self,
        query: str,
        plan: QueryPlan,
        matches: list[RetrievalMatch],
        domain: str,
    ) -> SynthesisResult:
        """Generate the answer for a query.

        Raises:
            SynthesisError: the completion failed or returned no content
        """
        context, included = self.build_context(matches)
        messages = [
            {"role": "system", "content": build_system_prompt(domain)},
            {"role": "user", "content": build_user_prompt(query, context)},
        ]

        try:
            result = await self.completion.complete(
                messages, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except ProviderError as e:
            raise SynthesisError(f"Answer generation failed: {e.message}") from e

        answer = (result.content or "").strip()
        if not answer:
            raise SynthesisError("Answer generation returned no content")

        if not included and NO_INFORMATION_PHRASE not in answer.lower():
            answer = f"No relevant information was found in the {domain} knowledge base. {answer}"

        confidence = compute_confidence(included, plan.planning_confidence)
        logger.info(
            f"[Synthesizer] Answer from {len(included)} context passages "
            f"({estimate_tokens(context)} tokens), confidence={confidence:.2f}"
        )
        return SynthesisResult(
            answer=answer,
            confidence=confidence,
            sources=included,
            context_tokens=estimate_tokens(context),
        )
