"""
Concept Extractor - pull named concepts out of fragment text.

Local extraction uses pattern matching:
- Capitalized phrases: likely proper nouns (people, places, products)
- camelCase terms: technical identifiers, weighted double

When a remote provider is configured, the model is asked for a JSON array of
concepts instead; any failure falls back to local extraction.
"""

import re
import logging
from collections import OrderedDict
from typing import List, Optional, Sequence

from .cache import ResultCache, make_cache_key
from .errors import MalformedResponseError, ProviderError
from .providers import AIProvider, Prompt, parse_json_content
from .types import Concept, ConceptCategory

logger = logging.getLogger(__name__)

PATTERNS = {
    # One or more capitalized words in a row
    "capitalized": re.compile(r'\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*\b'),
    # camelCase identifiers
    "technical": re.compile(r'\b[a-z]+(?:[A-Z][a-z]*)+\b'),
}

TECHNOLOGY_HINT = re.compile(r'js|api|http|css|html|react|node|python|java|sql', re.IGNORECASE)
THEORY_HINT = re.compile(r'theory|principle|concept|framework|model')
ORGANIZATION_HINT = re.compile(r'inc|corp|llc|ltd|company|university|institute', re.IGNORECASE)

MAX_LOCAL_CONCEPTS = 10
MIN_NAME_LENGTH = 3

EXTRACTION_SYSTEM_PROMPT = """You are a concept extraction specialist. Analyze text and identify key concepts, entities, and ideas. For each concept, determine its category and confidence level.

Categories:
- person: Named individuals
- organization: Companies, institutions, groups
- technology: Technologies, tools, frameworks, programming languages
- theory: Theoretical concepts, principles, frameworks
- method: Techniques, methodologies, processes
- location: Geographic locations
- event: Historical or notable events
- unknown: Concepts that don't fit other categories

Return ONLY a JSON array of concepts with this structure:
[
  {{
    "name": "concept name",
    "confidence": 0.95,
    "category": "technology",
    "relatedConcepts": ["related concept 1", "related concept 2"]
  }}
]

Only include concepts with confidence >= {min_confidence}.{existing}"""


def guess_category(term: str, context: str) -> ConceptCategory:
    """Heuristic category for a locally extracted term."""
    if TECHNOLOGY_HINT.search(term):
        return ConceptCategory.TECHNOLOGY

    if term in context and THEORY_HINT.search(context):
        return ConceptCategory.THEORY

    position = context.find(term)
    if position >= 0:
        window = context[max(0, position - 50):position + len(term) + 50]
        if ORGANIZATION_HINT.search(window):
            return ConceptCategory.ORGANIZATION

    return ConceptCategory.UNKNOWN


def extract_concepts_locally(text: str) -> List[Concept]:
    """
    Extract concepts with pattern matching.

    Confidence grows with occurrences: 0.5 + 0.1 per count, capped at 0.95.
    Returns the top 10 by confidence.
    """
    if not text:
        return []

    counts: "OrderedDict[str, int]" = OrderedDict()
    for match in PATTERNS["capitalized"].findall(text):
        counts[match] = counts.get(match, 0) + 1
    for match in PATTERNS["technical"].findall(text):
        counts[match] = counts.get(match, 0) + 2

    concepts = [
        Concept(
            name=name,
            category=guess_category(name, text),
            confidence=min(0.95, 0.5 + count * 0.1),
        )
        for name, count in counts.items()
        if len(name) >= MIN_NAME_LENGTH
    ]
    concepts.sort(key=lambda c: c.confidence, reverse=True)
    return concepts[:MAX_LOCAL_CONCEPTS]


def _coerce_confidence(value) -> float:
    if isinstance(value, bool):
        return 0.5
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.5


def parse_concepts(content: str) -> List[Concept]:
    """
    Parse a model's JSON concept array.

    Items without a usable name are skipped and unreadable confidences
    default to 0.5. Raises MalformedResponseError when the response is not
    an array, or when it has items but none of them are usable.
    """
    parsed = parse_json_content(content)
    if not isinstance(parsed, list):
        raise MalformedResponseError("Concept response is not a JSON array")

    concepts = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        related = item.get("relatedConcepts", item.get("related_concepts"))
        if not isinstance(related, list):
            related = []
        concepts.append(Concept(
            name=name.strip(),
            category=ConceptCategory.parse(item.get("category")),
            confidence=_coerce_confidence(item.get("confidence", 0.5)),
            related_concepts=[r for r in related if isinstance(r, str)],
        ))

    if parsed and not concepts:
        raise MalformedResponseError("Concept response has no usable concepts")
    return concepts


class ConceptExtractor:
    """
    Extracts concepts through the AI provider, or locally without one.

    Usage:
        extractor = ConceptExtractor(provider, cache)
        concepts = await extractor.extract("React hooks replaced class components")
    """

    def __init__(self, provider: AIProvider, cache: Optional[ResultCache] = None):
        self.provider = provider
        self.cache = cache

    def _build_prompt(
        self,
        text: str,
        existing: Sequence[Concept],
        min_confidence: float
    ) -> Prompt:
        existing_context = ""
        if existing:
            names = ", ".join(c.name for c in existing)
            existing_context = f"\n\nExisting concepts in the user's knowledge base: {names}"

        return Prompt(
            system_prompt=EXTRACTION_SYSTEM_PROMPT.format(
                min_confidence=min_confidence, existing=existing_context
            ),
            user_prompt=f"Extract key concepts from this text:\n\n{text}",
            max_tokens=1000,
            temperature=0.3,
        )

    async def extract(
        self,
        text: str,
        existing: Sequence[Concept] = (),
        min_confidence: float = 0.7
    ) -> List[Concept]:
        if not (self.provider.is_remote and self.provider.is_available()):
            return extract_concepts_locally(text)

        cache_key = make_cache_key("concepts", {
            "provider": self.provider.kind.value,
            "text": text,
            "existing": [c.name for c in existing],
            "min_confidence": min_confidence,
        })
        if self.cache is not None:
            found, cached = self.cache.get(cache_key)
            if found:
                return list(cached)

        try:
            response = await self.provider.complete(
                self._build_prompt(text, existing, min_confidence)
            )
            concepts = parse_concepts(response.content)
        except ProviderError as e:
            logger.warning(f"Concept extraction failed, falling back to local: {e}")
            return extract_concepts_locally(text)

        if self.cache is not None:
            self.cache.set(cache_key, list(concepts))
        return concepts
