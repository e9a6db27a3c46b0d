"""
Relevance scoring for full-text fragment search.

Scores are additive and unbounded; a fragment with no textual match scores 0
and is dropped before filtering.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from .types import Fragment, SearchFilters, ensure_aware

# Full-phrase matches
PHRASE_IN_TEXT = 10.0
PHRASE_IN_NOTE = 8.0
PHRASE_IN_TITLE = 5.0

# Per-term matches
TERM_IN_TEXT = 3.0
TERM_IN_NOTE = 2.0
TERM_IN_TITLE = 1.0
TERM_IN_CONCEPT = 4.0
TERM_IN_TOPIC = 3.0
TERM_IN_TAG = 2.0

# Boosts
WEEK_BOOST = 1.0
DAY_BOOST = 2.0  # On top of WEEK_BOOST
REFERENCE_BOOST = 0.5


def match_score(query: str, fragment: Fragment) -> float:
    """Score phrase and per-term matches of a query against one fragment."""
    phrase = query.strip().lower()
    if not phrase:
        return 0.0

    text = fragment.text.lower()
    note = (fragment.note or "").lower()
    title = (fragment.page_title or "").lower()
    concepts = [c.key for c in fragment.concepts]
    topics = [t.lower() for t in fragment.topics]
    tags = [t.lower() for t in fragment.tags]

    score = 0.0
    if phrase in text:
        score += PHRASE_IN_TEXT
    if phrase in note:
        score += PHRASE_IN_NOTE
    if phrase in title:
        score += PHRASE_IN_TITLE

    for term in phrase.split():
        if term in text:
            score += TERM_IN_TEXT
        if term in note:
            score += TERM_IN_NOTE
        if term in title:
            score += TERM_IN_TITLE
        if any(term in name for name in concepts):
            score += TERM_IN_CONCEPT
        if any(term in topic for topic in topics):
            score += TERM_IN_TOPIC
        if any(term in tag for tag in tags):
            score += TERM_IN_TAG

    return score


def boost_score(fragment: Fragment, now: Optional[datetime] = None) -> float:
    """Recency and popularity boosts."""
    now = now or datetime.now(timezone.utc)
    age = now - ensure_aware(fragment.created_at)

    boost = 0.0
    if age < timedelta(days=7):
        boost += WEEK_BOOST
    if age < timedelta(days=1):
        boost += DAY_BOOST

    return boost + REFERENCE_BOOST * max(0, fragment.reference_count)


def relevance_score(query: str, fragment: Fragment, now: Optional[datetime] = None) -> float:
    """Total relevance; boosts only apply to fragments that actually match."""
    score = match_score(query, fragment)
    if score <= 0:
        return 0.0
    return score + boost_score(fragment, now)


def matches_filters(fragment: Fragment, filters: Optional[SearchFilters]) -> bool:
    if filters is None:
        return True

    if filters.collection_id and filters.collection_id not in fragment.collections:
        return False

    if filters.tags:
        tags = {t.lower() for t in fragment.tags}
        if not all(t.lower() in tags for t in filters.tags):
            return False

    if filters.color is not None and fragment.color != filters.color:
        return False

    created = ensure_aware(fragment.created_at)
    if filters.date_from is not None and created < ensure_aware(filters.date_from):
        return False
    if filters.date_to is not None and created > ensure_aware(filters.date_to):
        return False

    if filters.topics:
        topics = {t.lower() for t in fragment.topics}
        if not any(t.lower() in topics for t in filters.topics):
            return False

    return True


def rank_fragments(
    query: str,
    fragments: List[Fragment],
    filters: Optional[SearchFilters] = None,
    now: Optional[datetime] = None
) -> List[Tuple[Fragment, float]]:
    """Score, filter and sort fragments by relevance (stable on ties)."""
    now = now or datetime.now(timezone.utc)
    scored = []
    for fragment in fragments:
        score = relevance_score(query, fragment, now)
        if score > 0 and matches_filters(fragment, filters):
            scored.append((fragment, score))

    scored.sort(key=lambda item: item[1], reverse=True)
    return scored
