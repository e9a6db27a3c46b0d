"""
Similarity Engine - TF-IDF, concept and Jaccard matching for MarkMind.

Every function here is pure and symmetric in its two fragment arguments:
- TF-IDF vectorization against an IndexSnapshot
- Cosine similarity for text matching
- Concept overlap, concept-graph walks and category-weighted overlap
- Jaccard similarity across concepts, topics, tags and long words
- Temporal boost for recently captured fragments
"""

import math
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .indexing import IndexSnapshot, term_counts
from .types import Concept, ConceptCategory, Fragment, ensure_aware

logger = logging.getLogger(__name__)

CATEGORY_WEIGHTS: Dict[ConceptCategory, float] = {
    ConceptCategory.TECHNOLOGY: 1.0,
    ConceptCategory.THEORY: 0.9,
    ConceptCategory.METHOD: 0.8,
    ConceptCategory.EVENT: 0.7,
    ConceptCategory.PERSON: 0.6,
    ConceptCategory.ORGANIZATION: 0.5,
    ConceptCategory.UNKNOWN: 0.4,
    ConceptCategory.LOCATION: 0.3,
}

# Weights of the combined concept score
DIRECT_WEIGHT = 0.5
GRAPH_WEIGHT = 0.3
CATEGORY_WEIGHT = 0.2

# Weights of the Jaccard multi-dimensional score
JACCARD_CONCEPT_WEIGHT = 0.4
JACCARD_TOPIC_WEIGHT = 0.3
JACCARD_TAG_WEIGHT = 0.15
JACCARD_WORD_WEIGHT = 0.15

RECENCY_WINDOW = timedelta(days=30)
MAX_RECENCY_BOOST = 0.1


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# =============================================================================
# TF-IDF
# =============================================================================

def idf(term: str, snapshot: IndexSnapshot) -> float:
    """ln(N / df); terms the index has never seen carry no weight."""
    df = snapshot.document_frequency(term)
    if df == 0 or snapshot.document_count == 0:
        return 0.0
    return math.log(snapshot.document_count / df)


def tfidf_vector(text: str, snapshot: IndexSnapshot) -> Dict[str, float]:
    """Raw term count times IDF, for every term in the text."""
    return {
        term: count * idf(term, snapshot)
        for term, count in term_counts(text).items()
    }


def cosine_similarity(vec1: Mapping[str, float], vec2: Mapping[str, float]) -> float:
    """Compute cosine similarity between two sparse vectors."""
    if not vec1 or not vec2:
        return 0.0

    # Iterate the smaller vector for the dot product
    small, large = (vec1, vec2) if len(vec1) <= len(vec2) else (vec2, vec1)
    dot_product = sum(value * large.get(term, 0.0) for term, value in small.items())

    mag1 = math.sqrt(sum(v * v for v in vec1.values()))
    mag2 = math.sqrt(sum(v * v for v in vec2.values()))

    if mag1 == 0 or mag2 == 0:
        return 0.0

    return clamp(dot_product / (mag1 * mag2))


def top_shared_terms(
    vec1: Mapping[str, float],
    vec2: Mapping[str, float],
    count: int = 3
) -> List[str]:
    """Terms present in both vectors, ranked by the smaller of their two weights."""
    shared = [
        (term, min(weight, vec2[term]))
        for term, weight in vec1.items()
        if vec2.get(term)
    ]
    shared.sort(key=lambda item: item[1], reverse=True)
    return [term for term, _ in shared[:count]]


# =============================================================================
# Concept similarity
# =============================================================================

def concept_names(concepts: Iterable[Concept]) -> Set[str]:
    return {c.key for c in concepts}


def group_by_category(concepts: Iterable[Concept]) -> Dict[ConceptCategory, Set[str]]:
    grouped: Dict[ConceptCategory, Set[str]] = defaultdict(set)
    for concept in concepts:
        grouped[concept.category].add(concept.key)
    return grouped


def overlap_similarity(a: Set[str], b: Set[str]) -> float:
    """|A ∩ B| / sqrt(|A| * |B|), zero when either side is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / math.sqrt(len(a) * len(b))


def graph_similarity(
    source: Iterable[str],
    target: Iterable[str],
    graph: Mapping[str, Iterable[str]]
) -> float:
    """
    Score concept pairs by graph distance.

    A direct edge scores 1, a path through one intermediate concept scores
    0.5 and anything else 0; the total is averaged over all pairs.
    """
    source = sorted(set(source))
    target = sorted(set(target))
    total_pairs = len(source) * len(target)
    if total_pairs == 0:
        return 0.0

    connections = 0.0
    for s in source:
        neighbors = graph.get(s, ())
        for t in target:
            if t in neighbors:
                connections += 1.0
            elif any(t in graph.get(mid, ()) for mid in neighbors):
                connections += 0.5

    return connections / total_pairs


def category_similarity(
    source: Mapping[ConceptCategory, Set[str]],
    target: Mapping[ConceptCategory, Set[str]]
) -> float:
    """Weighted average of per-category overlap across categories either side uses."""
    weighted = 0.0
    total_weight = 0.0

    for category, weight in CATEGORY_WEIGHTS.items():
        a = source.get(category, set())
        b = target.get(category, set())
        if not a and not b:
            continue
        weighted += overlap_similarity(a, b) * weight
        total_weight += weight

    return weighted / total_weight if total_weight > 0 else 0.0


def combined_concept_similarity(
    source: Fragment,
    target: Fragment,
    graph: Mapping[str, Iterable[str]]
) -> float:
    """0.5 * direct overlap + 0.3 * graph walk + 0.2 * category overlap."""
    source_names = concept_names(source.concepts)
    target_names = concept_names(target.concepts)

    direct = overlap_similarity(source_names, target_names)
    walk = graph_similarity(source_names, target_names, graph)
    by_category = category_similarity(
        group_by_category(source.concepts),
        group_by_category(target.concepts)
    )

    return clamp(
        DIRECT_WEIGHT * direct +
        GRAPH_WEIGHT * walk +
        CATEGORY_WEIGHT * by_category
    )


def shared_concept_names(source: Fragment, target: Fragment) -> List[str]:
    """Shared lower-cased concept names in the source's concept order."""
    target_names = concept_names(target.concepts)
    shared: List[str] = []
    for concept in source.concepts:
        if concept.key in target_names and concept.key not in shared:
            shared.append(concept.key)
    return shared


def concept_match_reason(shared: List[str]) -> str:
    """Human-readable explanation of a concept match."""
    count = len(shared)
    if count == 0:
        return "Related content"
    if count == 1:
        return f"Shares concept: {shared[0]}"
    if count == 2:
        return f"Shares concepts: {shared[0]} and {shared[1]}"
    return f"Shares {count} concepts including {', '.join(shared[:2])}"


# =============================================================================
# Jaccard multi-dimensional similarity
# =============================================================================

def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def long_words(text: str) -> Set[str]:
    return {w for w in text.lower().split() if len(w) > 4}


def jaccard_similarity(source: Fragment, target: Fragment) -> float:
    """Weighted Jaccard over concepts, topics, tags and words longer than 4 characters."""
    concepts = jaccard(concept_names(source.concepts), concept_names(target.concepts))
    topics = jaccard({t.lower() for t in source.topics}, {t.lower() for t in target.topics})
    tags = jaccard({t.lower() for t in source.tags}, {t.lower() for t in target.tags})
    words = jaccard(long_words(source.text), long_words(target.text))

    return clamp(
        JACCARD_CONCEPT_WEIGHT * concepts +
        JACCARD_TOPIC_WEIGHT * topics +
        JACCARD_TAG_WEIGHT * tags +
        JACCARD_WORD_WEIGHT * words
    )


# =============================================================================
# Temporal decay
# =============================================================================

def recency_boost(created_at: datetime, now: Optional[datetime] = None) -> float:
    """
    Small boost for fragments younger than 30 days.

    Falls linearly from 0.1 for a brand-new fragment to 0 at 30 days.
    Timestamps in the future count as brand new.
    """
    now = now or datetime.now(timezone.utc)
    age = max(timedelta(0), now - ensure_aware(created_at))
    if age >= RECENCY_WINDOW:
        return 0.0
    return (1 - age / RECENCY_WINDOW) * MAX_RECENCY_BOOST
