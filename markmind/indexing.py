"""
Vocabulary and concept-graph indexing for MarkMind.

Both indexes are rebuilt wholesale from the full fragment set and published
together as one immutable IndexSnapshot, so a reader sees either the old or
the new state but never a mix.
"""

import re
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from .types import Fragment

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would',
    'could', 'should', 'may', 'might', 'must', 'can', 'this', 'that',
    'these', 'those', 'i', 'you', 'he', 'she', 'it', 'we', 'they',
    'what', 'which', 'who', 'when', 'where', 'why', 'how'
})

STEM_SUFFIXES = ('ing', 'ed', 'es', 's', 'ly', 'er', 'est', 'tion', 'ation')

# Longest first so "ation" wins over "tion" and "es" over "s"
_SUFFIXES_BY_LENGTH = sorted(STEM_SUFFIXES, key=len, reverse=True)

_PUNCTUATION = re.compile(r'[^\w\s]')


def stem(word: str) -> str:
    """Strip the longest known suffix, keeping a stem of at least 3 characters."""
    for suffix in _SUFFIXES_BY_LENGTH:
        if word.endswith(suffix) and len(word) - len(suffix) > 2:
            return word[:-len(suffix)]
    return word


def tokenize(text: Optional[str]) -> List[str]:
    """
    Tokenize text into stemmed index terms.

    - Lowercases and replaces punctuation with spaces
    - Drops tokens of length <= 2, stop words and pure numbers
    - Applies the suffix-stripping stemmer
    """
    if not text:
        return []

    words = _PUNCTUATION.sub(' ', text.lower()).split()
    return [
        stem(word)
        for word in words
        if len(word) > 2 and word not in STOP_WORDS and not word.isdigit()
    ]


def term_counts(text: Optional[str]) -> Counter:
    """Raw term frequencies for a text."""
    return Counter(tokenize(text))


@dataclass(frozen=True)
class IndexSnapshot:
    """
    Vocabulary postings and concept graph built from one corpus read.

    Attributes:
        postings: term -> ids of fragments containing it
        concept_graph: lower-cased concept -> co-occurring lower-cased concepts
        document_count: Number of fragments indexed
        built_at: When the snapshot was built (None for the empty snapshot)
    """
    postings: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    concept_graph: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    document_count: int = 0
    built_at: Optional[datetime] = None

    def document_frequency(self, term: str) -> int:
        return len(self.postings.get(term, ()))

    def neighbors(self, concept: str) -> FrozenSet[str]:
        return self.concept_graph.get(concept, frozenset())

    def is_stale(self, max_age_seconds: float, now: Optional[datetime] = None) -> bool:
        if self.built_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return (now - self.built_at).total_seconds() > max_age_seconds


EMPTY_SNAPSHOT = IndexSnapshot()


def build_vocabulary_index(fragments: Iterable[Fragment]) -> Dict[str, FrozenSet[str]]:
    """Build term -> {fragment ids} postings."""
    postings: Dict[str, set] = {}
    for fragment in fragments:
        for term in set(tokenize(fragment.text)):
            postings.setdefault(term, set()).add(fragment.id)
    return {term: frozenset(ids) for term, ids in postings.items()}


def build_concept_graph(fragments: Iterable[Fragment]) -> Dict[str, FrozenSet[str]]:
    """Link every pair of distinct concepts that appear in the same fragment."""
    graph: Dict[str, set] = {}
    for fragment in fragments:
        names = [c.key for c in fragment.concepts]
        for name in names:
            neighbors = graph.setdefault(name, set())
            for other in names:
                if other != name:
                    neighbors.add(other)
                    graph.setdefault(other, set()).add(name)
    return {name: frozenset(neighbors) for name, neighbors in graph.items()}


def build_snapshot(fragments: List[Fragment]) -> IndexSnapshot:
    """Build a complete snapshot from the full fragment list."""
    snapshot = IndexSnapshot(
        postings=build_vocabulary_index(fragments),
        concept_graph=build_concept_graph(fragments),
        document_count=len(fragments),
        built_at=datetime.now(timezone.utc),
    )
    logger.info(
        f"Indexes rebuilt: {len(snapshot.postings)} unique terms, "
        f"{len(snapshot.concept_graph)} concepts"
    )
    return snapshot
