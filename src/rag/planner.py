"""Query planning.

Rewrites a raw user query into a focused semantic search query plus metadata
filters. Planning never fails a query: unusable planner output falls back to
searching for the raw query within the requested domain.
"""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.rag.completion import CompletionProvider
from src.rag.errors import PlanningDegraded, ProviderError
from src.rag.models import QueryPlan, parse_timestamp

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
DEFAULT_PLANNER_CONFIDENCE = 0.8

# Planner filter keys and the metadata field each maps to
_FILTER_FIELDS = {
    "tags": "tags",
    "content_type": "content_type",
    "contentType": "content_type",
    "source": "source",
    "author": "author",
}
_DATE_RANGE_KEYS = ("dateRange", "date_range")


class PlannerOutput(BaseModel):
    """JSON object the planner model is asked to return."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    semantic_query: str = Field(alias="semanticQuery", min_length=1)
    filters: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=DEFAULT_PLANNER_CONFIDENCE, ge=0.0, le=1.0)
    reasoning: str = ""


def build_planner_prompt(domain: str, available_domains: list[str] | None = None) -> str:
    domains = ", ".join(available_domains) if available_domains else domain
    return f"""You are a query processing assistant for a document search system.
Your job is to turn a user's question into:
1. A semantic search query optimized for finding relevant passages
2. Metadata filters, only when the user explicitly asks for them
3. A confidence score for your interpretation

The search is limited to the "{domain}" domain. Available domains: {domains}

Query enhancement rules:
- Keep the key concepts and entities of the question
- Add closely related terminology that would appear in relevant documents
- Drop conversational filler ("can you tell me", "please")

Allowed filters:
- "tags": list of topic tags
- "contentType": one of text, post, article, summary, note
- "source": where the document came from
- "author": who wrote the document
- "dateRange": {{"start": ISO 8601 date, "end": ISO 8601 date}} on when the document was added

Return JSON in this exact format:
{{
  "semanticQuery": "focused search terms based on user query",
  "filters": {{}},
  "confidence": 0.9,
  "reasoning": "short explanation of how the query was interpreted"
}}

Only add filters if they are explicitly mentioned in the user's query. Keep the semanticQuery focused on what the user actually asked."""


def _sanitize_date_range(value: Any) -> dict[str, str] | None:
    """`{"start": ..., "end": ...}` as an inclusive range on `created_at`."""
    if not isinstance(value, dict):
        return None
    bounds = {}
    for key, op in (("start", "gte"), ("end", "lte")):
        parsed = parse_timestamp(value.get(key))
        if parsed is not None:
            bounds[op] = parsed.isoformat()
    return bounds or None


def sanitize_filters(raw: dict[str, Any], domain: str) -> dict[str, Any]:
    """Keep only supported filter keys with usable values; force the domain."""
    filters: dict[str, Any] = {}
    for key, value in raw.items():
        if key in _DATE_RANGE_KEYS:
            date_range = _sanitize_date_range(value)
            if date_range is None:
                logger.debug(f"[Planner] Dropping filter '{key}' with value {value!r}")
            else:
                filters["created_at"] = date_range
            continue

        field_name = _FILTER_FIELDS.get(key)
        if field_name is None:
            if key != "domain":
                logger.debug(f"[Planner] Dropping unsupported filter '{key}'")
            continue

        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
            filters[field_name] = [value] if field_name == "tags" else value
        elif isinstance(value, list):
            values = [v.strip() for v in value if isinstance(v, str) and v.strip()]
            if values:
                filters[field_name] = values
        else:
            logger.debug(f"[Planner] Dropping filter '{key}' with value {value!r}")

    filters["domain"] = domain
    return filters


def fallback_plan(query: str, domain: str, reason: str) -> QueryPlan:
    """Plan used when the planner output cannot be trusted."""
    return QueryPlan(
        semantic_query=query,
        filters={"domain": domain},
        planning_confidence=FALLBACK_CONFIDENCE,
        reasoning=reason,
        degraded=True,
    )


class QueryPlanner:
    """Turns raw queries into QueryPlans using a JSON-mode completion."""

    def __init__(
        self,
        completion: CompletionProvider,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ):
        self.completion = completion
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def _request_plan(
        self, query: str, domain: str, available_domains: list[str] | None
    ) -> PlannerOutput:
        messages = [
            {"role": "system", "content": build_planner_prompt(domain, available_domains)},
            {
                "role": "user",
                "content": f'User Query: "{query}"\n\nExtract the semantic search query.',
            },
        ]

        try:
            result = await self.completion.complete(
                messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
            )
        except ProviderError as e:
            raise PlanningDegraded(f"Planner call failed: {e.message}") from e

        try:
            payload = json.loads(result.content or "")
        except json.JSONDecodeError as e:
            raise PlanningDegraded(f"Planner returned invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise PlanningDegraded("Planner returned JSON that is not an object")

        try:
            return PlannerOutput.model_validate(payload)
        except ValidationError as e:
            raise PlanningDegraded(
                f"Planner output failed validation: {e.error_count()} error(s)"
            ) from e

    async def plan(
        self,
        query: str,
        domain: str,
        available_domains: list[str] | None = None,
    ) -> QueryPlan:
        """Plan a query within a domain.

        Args:
            query: Raw user query
            domain: Domain the search is restricted to
            available_domains: Domains known to the system, for the prompt

        Returns:
            QueryPlan; `degraded` is set when the fallback plan was used
        """
        try:
            output = await self._request_plan(query, domain, available_domains)
        except PlanningDegraded as e:
            logger.warning(f"[Planner] Using fallback plan: {e.message}")
            return fallback_plan(query, domain, e.message)

        plan = QueryPlan(
            semantic_query=output.semantic_query.strip() or query,
            filters=sanitize_filters(output.filters, domain),
            planning_confidence=output.confidence,
            reasoning=output.reasoning,
        )
        logger.debug(
            f"[Planner] '{query}' -> '{plan.semantic_query}' "
            f"filters={plan.filters} confidence={plan.planning_confidence}"
        )
        return plan
