"""
Digest - local summaries and reading insights over a set of fragments.

Neither needs an AI provider:
- summarize_locally() previews the most substantial fragments and adds word counts
- generate_local_insights() spots a dominant topic and a recent burst of reading
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .types import Fragment, Insight, InsightType, SummaryStyle, ensure_aware, utcnow

logger = logging.getLogger(__name__)

EMPTY_SUMMARY = "No highlights available to summarize."
SUMMARY_TOP_COUNT = 5
BULLET_PREVIEW_CHARS = 150
PARAGRAPH_PREVIEW_CHARS = 200

RECENT_WINDOW = timedelta(days=30)
MIN_FRAGMENTS_FOR_INSIGHTS = 5
DEEP_DIVE_MIN_COUNT = 5
ACTIVE_PHASE_SHARE = 0.3
INSIGHT_RELATED_LIMIT = 5


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _word_count(text: str) -> int:
    return len(text.split())


def summarize_locally(
    fragments: Sequence[Fragment],
    style: SummaryStyle = SummaryStyle.CONCISE
) -> str:
    """
    Summarize fragments without a language model.

    The longest fragments are taken as the ones the user cared most about;
    the top five are previewed (numbered with notes for the bullet style,
    separated paragraphs otherwise), followed by word statistics.
    """
    if not fragments:
        return EMPTY_SUMMARY

    sources = {f.page_title for f in fragments}
    total_words = sum(_word_count(f.text) for f in fragments)
    avg_words = round(total_words / len(fragments))
    # Stable sort keeps store order among equal lengths
    top = sorted(fragments, key=lambda f: len(f.text), reverse=True)[:SUMMARY_TOP_COUNT]

    plural = "s" if len(sources) > 1 else ""
    summary = f"Summary of {len(fragments)} highlights from {len(sources)} source{plural}:\n\n"

    if SummaryStyle(style) == SummaryStyle.BULLET:
        summary += "Key highlights:\n"
        for i, fragment in enumerate(top, 1):
            summary += f"\n{i}. {_preview(fragment.text, BULLET_PREVIEW_CHARS)}"
            if fragment.note:
                summary += f"\n   Note: {fragment.note}"
    else:
        blocks = []
        for fragment in top:
            block = _preview(fragment.text, PARAGRAPH_PREVIEW_CHARS)
            if fragment.note:
                block += f"\n\nYour note: {fragment.note}"
            blocks.append(block)
        summary += "\n\n---\n\n".join(blocks)

    summary += (
        f"\n\nStatistics: {total_words} total words highlighted, "
        f"averaging {avg_words} words per highlight."
    )
    return summary


def generate_local_insights(
    fragments: Sequence[Fragment],
    now: Optional[datetime] = None
) -> List[Insight]:
    """
    Derive insights from topic counts and capture dates.

    Needs at least five fragments. Produces a deep-dive insight when one
    topic appears on five or more fragments, and an active-learning insight
    when at least 30% of the fragments were captured in the last 30 days.
    """
    if len(fragments) < MIN_FRAGMENTS_FOR_INSIGHTS:
        return []

    now = ensure_aware(now) if now is not None else utcnow()
    insights: List[Insight] = []

    topic_counts = Counter(topic for f in fragments for topic in f.topics)
    if topic_counts:
        topic, count = topic_counts.most_common(1)[0]
        if count >= DEEP_DIVE_MIN_COUNT:
            percentage = round(count / len(fragments) * 100)
            insights.append(Insight(
                type=InsightType.DEEP_DIVE,
                title=f"Deep dive into {topic}",
                description=(
                    f"You've been focusing heavily on {topic}, with {count} highlights "
                    f"({percentage}% of your recent reading). This suggests genuine "
                    f"interest in this area."
                ),
                related_ids=[f.id for f in fragments if topic in f.topics][:INSIGHT_RELATED_LIMIT],
                confidence=0.9,
                created_at=now,
            ))

    cutoff = now - RECENT_WINDOW
    recent = [f for f in fragments if ensure_aware(f.created_at) > cutoff]
    if len(recent) >= len(fragments) * ACTIVE_PHASE_SHARE:
        insights.append(Insight(
            type=InsightType.PATTERN_DETECTED,
            title="Active learning phase",
            description=(
                f"You've created {len(recent)} highlights in the last 30 days, showing "
                f"consistent engagement with your reading. Keep up the momentum!"
            ),
            related_ids=[f.id for f in recent[:INSIGHT_RELATED_LIMIT]],
            confidence=0.8,
            created_at=now,
        ))

    logger.debug(f"Generated {len(insights)} insights from {len(fragments)} fragments")
    return insights
