"""
Semantic Linker - ranks related fragments with the configured AI provider.

Remote providers are asked for a JSON array of fragment ids; the local
provider ranks candidates with the Jaccard multi-dimensional similarity.
"""

import logging
from typing import List, Optional, Sequence

from .cache import ResultCache, make_cache_key
from .errors import MalformedResponseError, ProviderUnavailableError
from .providers import AIProvider, Prompt, parse_json_content
from .similarity import jaccard_similarity
from .types import Fragment

logger = logging.getLogger(__name__)

LOCAL_MIN_SIMILARITY = 0.3
CANDIDATE_PREVIEW_CHARS = 200

LINKING_SYSTEM_PROMPT = """You are a knowledge connection specialist. Given a source highlight and a list of other highlights, identify which highlights are most semantically related to the source. Consider:
- Shared concepts and entities
- Similar themes or topics
- Complementary or contrasting ideas
- Cause-effect relationships
- Examples and generalizations

Return ONLY a JSON array of highlight IDs, ordered by relevance (most relevant first). Limit to the top {max_links} most related highlights."""


def _preview(text: str) -> str:
    if len(text) > CANDIDATE_PREVIEW_CHARS:
        return text[:CANDIDATE_PREVIEW_CHARS] + "..."
    return text


def build_linking_prompt(
    source: Fragment,
    candidates: Sequence[Fragment],
    max_links: int
) -> Prompt:
    lines = [f'Source highlight: "{source.text}"']
    if source.note:
        lines.append(f"User's note: {source.note}")
    lines.append(f"Source concepts: {', '.join(c.name for c in source.concepts)}")
    lines.append(f"Source topics: {', '.join(source.topics)}")
    lines.append("")
    lines.append("Other highlights to compare:")

    blocks = []
    for i, candidate in enumerate(candidates):
        blocks.append(
            f"[{i}] ID: {candidate.id}\n"
            f'Text: "{_preview(candidate.text)}"\n'
            f"Concepts: {', '.join(c.name for c in candidate.concepts)}\n"
            f"Topics: {', '.join(candidate.topics)}"
        )
    lines.append("\n\n".join(blocks))
    lines.append("")
    lines.append("Return the IDs of the most related highlights as a JSON array.")

    return Prompt(
        system_prompt=LINKING_SYSTEM_PROMPT.format(max_links=max_links),
        user_prompt="\n".join(lines),
        max_tokens=500,
        temperature=0.2,
    )


def rank_by_jaccard(
    source: Fragment,
    candidates: Sequence[Fragment],
    max_links: int,
    min_similarity: float = LOCAL_MIN_SIMILARITY
) -> List[str]:
    """Ids of the most similar candidates by weighted Jaccard, best first."""
    scored = [
        (candidate.id, jaccard_similarity(source, candidate))
        for candidate in candidates
        if candidate.id != source.id
    ]
    scored = [item for item in scored if item[1] >= min_similarity]
    scored.sort(key=lambda item: item[1], reverse=True)
    return [fragment_id for fragment_id, _ in scored[:max_links]]


class SemanticLinker:
    """
    Links fragments through an AI provider.

    Usage:
        linker = SemanticLinker(create_provider("openai", api_key), cache)
        if linker.is_available():
            ids = await linker.link_concepts(source, candidates, max_links=5)
    """

    def __init__(self, provider: AIProvider, cache: Optional[ResultCache] = None):
        self.provider = provider
        self.cache = cache

    def is_available(self) -> bool:
        return self.provider.is_available()

    async def link_concepts(
        self,
        source: Fragment,
        candidates: Sequence[Fragment],
        max_links: int = 5
    ) -> List[str]:
        """
        Rank candidates by relatedness to the source.

        Returns:
            At most max_links fragment ids, most related first

        Raises:
            ProviderUnavailableError: Provider cannot serve requests
            TransientProviderError: Network failure or timeout
            MalformedResponseError: Completion was not a JSON array
        """
        if not self.is_available():
            raise ProviderUnavailableError(
                f"{self.provider.kind.value} provider is not available"
            )

        candidates = [c for c in candidates if c.id != source.id]
        if not candidates:
            return []

        if not self.provider.is_remote:
            return rank_by_jaccard(source, candidates, max_links)

        prompt = build_linking_prompt(source, candidates, max_links)
        # Keyed on the rendered prompt so concept or topic edits miss the cache
        cache_key = make_cache_key("link_concepts", {
            "provider": self.provider.kind.value,
            "system": prompt.system_prompt,
            "user": prompt.user_prompt,
            "max_links": max_links,
        })
        if self.cache is not None:
            found, cached = self.cache.get(cache_key)
            if found:
                logger.debug(f"link_concepts cache hit for {source.id}")
                return list(cached)

        response = await self.provider.complete(prompt)
        parsed = parse_json_content(response.content)
        if not isinstance(parsed, list):
            raise MalformedResponseError("Linking response is not a JSON array")

        linked_ids = [str(item) for item in parsed if isinstance(item, (str, int))][:max_links]

        if self.cache is not None:
            self.cache.set(cache_key, list(linked_ids))
        return linked_ids
