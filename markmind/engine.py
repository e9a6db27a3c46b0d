"""
Link Engine - the core of MarkMind's relevance and linking system.

This module handles:
- Keeping the vocabulary index and concept graph fresh (single-flight rebuilds)
- Finding related fragments through tiered strategies:
  AI semantic ranking -> concept similarity -> TF-IDF text similarity
- Temporal decay favouring recently captured fragments
- Full-text relevance search
- Batch link building with progress reporting and cancellation
- Corpus-wide link statistics, local summaries and reading insights
"""

import asyncio
import inspect
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .cache import ResultCache
from .concepts import ConceptExtractor
from .config import Settings, settings as default_settings
from .digest import generate_local_insights, summarize_locally
from .errors import FragmentNotFoundError
from .indexing import EMPTY_SNAPSHOT, IndexSnapshot, build_snapshot
from .logging_config import with_request_id
from .providers import AIProvider, ProviderKind, create_provider
from .search import rank_fragments
from .semantic import SemanticLinker
from .similarity import (
    clamp,
    combined_concept_similarity,
    concept_match_reason,
    cosine_similarity,
    recency_boost,
    shared_concept_names,
    tfidf_vector,
    top_shared_terms,
)
from .store import FragmentStore
from .types import (
    Concept,
    Fragment,
    GraphStatistics,
    Insight,
    LinkingOptions,
    MatchType,
    RelatedFragment,
    SearchFilters,
    SummaryStyle,
    ensure_aware,
)

logger = logging.getLogger(__name__)

AI_TOP_SCORE = 0.9
AI_RANK_STEP = 0.1
AI_REASON = "AI identified semantic relationship"
SHARED_TERM_COUNT = 3
TOP_CONCEPT_COUNT = 10

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]


@dataclass
class TierOutcome:
    """
    Result of one strategy tier.

    A tier either produced rows (possibly none) or failed / was skipped with
    a reason; the selector moves on to the next tier unless rows came back.
    """
    match_type: MatchType
    results: List[RelatedFragment] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, match_type: MatchType, results: List[RelatedFragment]) -> "TierOutcome":
        return cls(match_type=match_type, results=results)

    @classmethod
    def failure(cls, match_type: MatchType, reason: str) -> "TierOutcome":
        return cls(match_type=match_type, error=reason)


@dataclass
class BatchSummary:
    total: int = 0
    processed: int = 0
    linked: int = 0
    failed: int = 0
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "linked": self.linked,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


class LinkEngine:
    """
    Relevance and linking engine over one fragment store.

    The engine owns its index snapshot, result cache and AI provider; build
    one per application context and pass it to whatever needs it.

    Usage:
        engine = LinkEngine(SQLFragmentStore(db))
        related = await engine.find_related_fragments("abc123")
        hits = await engine.search_fragments("machine learning")
        await engine.batch_build_links(on_progress=print)
    """

    def __init__(
        self,
        store: FragmentStore,
        config: Optional[Settings] = None,
        provider: Optional[AIProvider] = None,
        semantic_linker: Optional[SemanticLinker] = None,
        cache: Optional[ResultCache] = None,
    ):
        self.store = store
        self.config = config or default_settings
        self.cache = cache if cache is not None else ResultCache(
            ttl=self.config.cache_ttl_seconds,
            maxsize=self.config.cache_maxsize
        )
        self.provider = provider or create_provider(
            self.config.ai_provider, self.config.ai_api_key
        )
        if semantic_linker is None:
            semantic_linker = SemanticLinker(self.provider, self.cache)
        self.semantic_linker = semantic_linker
        self.concept_extractor = ConceptExtractor(self.provider, self.cache)

        self._snapshot: IndexSnapshot = EMPTY_SNAPSHOT
        self._rebuild_task: Optional[asyncio.Future] = None

    # =========================================================================
    # Provider management
    # =========================================================================

    def set_provider(self, kind: Any, api_key: Optional[str] = None) -> bool:
        """
        Switch AI provider or credentials.

        Clears the result cache when anything changed, since cached results
        belong to the previous backend.

        Returns:
            True if the provider or its key changed
        """
        kind = ProviderKind(kind)
        if kind == self.provider.kind and (api_key or "") == self.provider.api_key:
            return False

        self.provider = create_provider(kind, api_key)
        self.semantic_linker = SemanticLinker(self.provider, self.cache)
        self.concept_extractor = ConceptExtractor(self.provider, self.cache)
        cleared = self.cache.clear()
        logger.info(f"AI provider set to {kind.value} ({cleared} cached results dropped)")
        return True

    # =========================================================================
    # Index maintenance
    # =========================================================================

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    async def rebuild_indexes(self) -> IndexSnapshot:
        """
        Rebuild the vocabulary index and concept graph from the store.

        Concurrent callers share the in-flight rebuild instead of starting
        their own. The new snapshot replaces the old one in a single
        assignment once it is complete.
        """
        if self._rebuild_task is None:
            self._rebuild_task = asyncio.ensure_future(self._rebuild())
        return await asyncio.shield(self._rebuild_task)

    async def _rebuild(self) -> IndexSnapshot:
        try:
            fragments = await self.store.get_all_fragments()
            snapshot = build_snapshot(fragments)
            self._snapshot = snapshot
            return snapshot
        finally:
            self._rebuild_task = None

    def invalidate_indexes(self) -> None:
        """Force the next query to rebuild before it runs."""
        self._snapshot = EMPTY_SNAPSHOT

    async def _fresh_snapshot(self) -> IndexSnapshot:
        if self._snapshot.is_stale(self.config.index_refresh_seconds):
            return await self.rebuild_indexes()
        return self._snapshot

    # =========================================================================
    # Related fragments
    # =========================================================================

    def default_options(self) -> LinkingOptions:
        return LinkingOptions(
            max_results=self.config.max_results,
            min_similarity=self.config.min_similarity,
        )

    @with_request_id
    async def find_related_fragments(
        self,
        source_id: str,
        options: Optional[LinkingOptions] = None
    ) -> List[RelatedFragment]:
        """
        Find fragments related to a source fragment.

        Args:
            source_id: Id of the fragment to find relations for
            options: Result count, similarity threshold, AI use, excluded ids

        Returns:
            Related fragments sorted by similarity descending, at most
            options.max_results long; never contains source_id

        Raises:
            FragmentNotFoundError: source_id is not in the store
        """
        options = options or self.default_options()
        snapshot = await self._fresh_snapshot()

        source = await self.store.get_fragment(source_id)
        if source is None:
            raise FragmentNotFoundError(source_id)

        excluded = set(options.exclude_ids)
        excluded.add(source.id)
        candidates: List[Fragment] = []
        seen = set()
        for fragment in await self.store.get_all_fragments():
            if fragment.id in excluded or fragment.id in seen:
                continue
            seen.add(fragment.id)
            candidates.append(fragment)

        outcome = await self._select_tier(source, candidates, snapshot, options)
        logger.debug(
            f"Tier {outcome.match_type.value} produced {len(outcome.results)} "
            f"results for {source_id}",
            extra={"fragment_id": source_id, "match_type": outcome.match_type.value},
        )

        results = self._apply_temporal_decay(outcome.results, candidates)
        # Stable: equal scores keep the tier's order
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:options.max_results]

    async def _select_tier(
        self,
        source: Fragment,
        candidates: List[Fragment],
        snapshot: IndexSnapshot,
        options: LinkingOptions
    ) -> TierOutcome:
        """Evaluate tiers in order and keep the first one that yields results."""
        outcome = await self._ai_tier(source, candidates, options)
        if outcome.ok and outcome.results:
            return outcome
        if outcome.error:
            logger.debug(f"AI tier skipped for {source.id}: {outcome.error}")

        outcome = self._concept_tier(source, candidates, snapshot, options)
        if outcome.ok and outcome.results:
            return outcome

        return self._text_tier(source, candidates, snapshot, options)

    async def _ai_tier(
        self,
        source: Fragment,
        candidates: List[Fragment],
        options: LinkingOptions
    ) -> TierOutcome:
        if not options.use_ai:
            return TierOutcome.failure(MatchType.AI_SEMANTIC, "not requested")
        if not self.semantic_linker.is_available():
            return TierOutcome.failure(MatchType.AI_SEMANTIC, "no semantic linker available")
        if not candidates:
            return TierOutcome.failure(MatchType.AI_SEMANTIC, "no candidates")

        try:
            linked_ids = await asyncio.wait_for(
                self.semantic_linker.link_concepts(source, candidates, options.max_results),
                timeout=self.config.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Semantic linking timed out after {self.config.ai_timeout_seconds}s, "
                "falling back to local similarity"
            )
            return TierOutcome.failure(MatchType.AI_SEMANTIC, "timeout")
        except Exception as e:
            logger.warning(f"Semantic linking failed, falling back to local similarity: {e}")
            return TierOutcome.failure(MatchType.AI_SEMANTIC, str(e))

        if not isinstance(linked_ids, (list, tuple)):
            return TierOutcome.failure(MatchType.AI_SEMANTIC, "malformed response")

        known = {c.id for c in candidates}
        results: List[RelatedFragment] = []
        for fragment_id in linked_ids:
            fragment_id = str(fragment_id)
            if fragment_id not in known or any(r.fragment_id == fragment_id for r in results):
                continue
            results.append(RelatedFragment(
                fragment_id=fragment_id,
                similarity=clamp(AI_TOP_SCORE - AI_RANK_STEP * len(results)),
                match_type=MatchType.AI_SEMANTIC,
                reason=AI_REASON,
            ))

        if not results:
            return TierOutcome.failure(MatchType.AI_SEMANTIC, "no usable ids returned")
        return TierOutcome.success(MatchType.AI_SEMANTIC, results)

    def _concept_tier(
        self,
        source: Fragment,
        candidates: List[Fragment],
        snapshot: IndexSnapshot,
        options: LinkingOptions
    ) -> TierOutcome:
        if not source.concepts:
            return TierOutcome.failure(MatchType.CONCEPT_BASED, "source has no concepts")

        results = []
        for candidate in candidates:
            if not candidate.concepts:
                continue
            similarity = combined_concept_similarity(source, candidate, snapshot.concept_graph)
            if similarity < options.min_similarity:
                continue
            shared = shared_concept_names(source, candidate)
            results.append(RelatedFragment(
                fragment_id=candidate.id,
                similarity=similarity,
                match_type=MatchType.CONCEPT_BASED,
                shared_concepts=shared,
                reason=concept_match_reason(shared),
            ))
        return TierOutcome.success(MatchType.CONCEPT_BASED, results)

    def _text_tier(
        self,
        source: Fragment,
        candidates: List[Fragment],
        snapshot: IndexSnapshot,
        options: LinkingOptions
    ) -> TierOutcome:
        source_vector = tfidf_vector(source.text, snapshot)

        results = []
        for candidate in candidates:
            candidate_vector = tfidf_vector(candidate.text, snapshot)
            similarity = cosine_similarity(source_vector, candidate_vector)
            if similarity < options.min_similarity:
                continue
            shared = top_shared_terms(source_vector, candidate_vector, SHARED_TERM_COUNT)
            results.append(RelatedFragment(
                fragment_id=candidate.id,
                similarity=similarity,
                match_type=MatchType.TEXT_SIMILARITY,
                shared_concepts=shared,
                reason=f"Shared themes: {', '.join(shared)}",
            ))
        return TierOutcome.success(MatchType.TEXT_SIMILARITY, results)

    def _apply_temporal_decay(
        self,
        results: List[RelatedFragment],
        candidates: Sequence[Fragment]
    ) -> List[RelatedFragment]:
        now = datetime.now(timezone.utc)
        created = {c.id: c.created_at for c in candidates}
        for result in results:
            if result.fragment_id in created:
                boost = recency_boost(created[result.fragment_id], now)
                result.similarity = clamp(result.similarity + boost)
        return list(results)

    # =========================================================================
    # Search
    # =========================================================================

    @with_request_id
    async def search_scored(
        self,
        query: str,
        filters: Optional[SearchFilters] = None
    ) -> List[Tuple[Fragment, float]]:
        """Search returning (fragment, relevance score) pairs, best first."""
        fragments = await self.store.get_all_fragments()
        return rank_fragments(query, fragments, filters)

    async def search_fragments(
        self,
        query: str,
        filters: Optional[SearchFilters] = None
    ) -> List[Fragment]:
        """
        Full-text search over all fragments.

        Args:
            query: Free-text query; matched as a phrase and per whitespace term
            filters: Optional collection / tag / color / date / topic restrictions

        Returns:
            Matching fragments ordered by relevance score descending
        """
        return [fragment for fragment, _ in await self.search_scored(query, filters)]

    # =========================================================================
    # Batch linking
    # =========================================================================

    async def find_unlinked_fragments(
        self,
        min_content_length: Optional[int] = None
    ) -> List[Fragment]:
        """Fragments with no related ids and enough text to be worth linking."""
        if min_content_length is None:
            min_content_length = self.config.min_content_length
        fragments = await self.store.get_all_fragments()
        return [
            f for f in fragments
            if not f.related_ids and len(f.text) >= min_content_length
        ]

    async def _link_one(self, fragment: Fragment, options: LinkingOptions) -> Optional[bool]:
        """Link one fragment; True if it got links, None on failure."""
        try:
            related = await self.find_related_fragments(fragment.id, options)
            # Re-read so edits made since the run started are kept
            current = await self.store.get_fragment(fragment.id)
            if current is None:
                logger.debug(f"Fragment {fragment.id} was removed before linking")
                return False
            current.related_ids = [r.fragment_id for r in related if r.fragment_id != current.id]
            await self.store.save_fragment(current)
            return bool(current.related_ids)
        except Exception as e:
            logger.error(
                f"Failed to build links for fragment {fragment.id}: {e}",
                extra={"fragment_id": fragment.id},
            )
            return None

    @with_request_id
    async def batch_build_links(
        self,
        batch_size: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        min_content_length: Optional[int] = None,
    ) -> BatchSummary:
        """
        Populate related ids for every unlinked fragment.

        Fragments are processed in batches of at most batch_size concurrent
        lookups (AI disabled). After each batch the progress callback gets
        (processed, total), then the loop sleeps briefly to let other tasks
        run. cancel_event is checked between batches only.

        Fragments that already have links are skipped, so repeated runs only
        pick up new work.
        """
        if batch_size is None:
            batch_size = self.config.batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        options = LinkingOptions(
            max_results=self.config.max_results,
            min_similarity=self.config.batch_min_similarity,
            use_ai=False,
        )

        unlinked = await self.find_unlinked_fragments(min_content_length)
        summary = BatchSummary(total=len(unlinked))
        logger.info(f"Building links for {summary.total} fragments...")

        for start in range(0, summary.total, batch_size):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.info(f"Batch linking cancelled after {summary.processed} fragments")
                break

            batch = unlinked[start:start + batch_size]
            outcomes = await asyncio.gather(*(self._link_one(f, options) for f in batch))

            summary.processed = min(start + batch_size, summary.total)
            summary.linked += sum(1 for o in outcomes if o)
            summary.failed += sum(1 for o in outcomes if o is None)

            if on_progress is not None:
                maybe_coro = on_progress(summary.processed, summary.total)
                if inspect.isawaitable(maybe_coro):
                    await maybe_coro

            if summary.processed < summary.total:
                await asyncio.sleep(self.config.batch_pause_seconds)

        logger.info(
            f"Batch link building complete: {summary.linked} linked, "
            f"{summary.failed} failed, {summary.processed}/{summary.total} processed"
        )
        return summary

    # =========================================================================
    # Statistics and concepts
    # =========================================================================

    @with_request_id
    async def get_graph_statistics(self) -> GraphStatistics:
        fragments = await self.store.get_all_fragments()

        total = len(fragments)
        linked = sum(1 for f in fragments if f.related_ids)
        total_links = sum(len(f.related_ids) for f in fragments)

        counts: Counter = Counter()
        display_names: Dict[str, str] = {}
        for fragment in fragments:
            for concept in fragment.concepts:
                display_names.setdefault(concept.key, concept.name)
                counts[concept.key] += 1

        # Counter.most_common keeps first-seen order on ties
        top = [
            {"name": display_names[key], "count": count}
            for key, count in counts.most_common(TOP_CONCEPT_COUNT)
        ]

        return GraphStatistics(
            total_fragments=total,
            linked_fragments=linked,
            linkage_percentage=(linked / total) * 100 if total else 0.0,
            total_links=total_links,
            avg_links_per_fragment=round(total_links / total, 1) if total else 0.0,
            total_concepts=len(counts),
            top_concepts=top,
        )

    async def _fragments_by_id(self, fragment_ids: Sequence[str]) -> List[Fragment]:
        fragments = []
        for fragment_id in fragment_ids:
            fragment = await self.store.get_fragment(fragment_id)
            if fragment is None:
                raise FragmentNotFoundError(fragment_id)
            fragments.append(fragment)
        return fragments

    @with_request_id
    async def summarize_fragments(
        self,
        fragment_ids: Optional[Sequence[str]] = None,
        style: SummaryStyle = SummaryStyle.CONCISE
    ) -> str:
        """
        Local summary of the given fragments, or of the whole store.

        Raises:
            FragmentNotFoundError: one of fragment_ids is not in the store
        """
        if fragment_ids:
            fragments = await self._fragments_by_id(fragment_ids)
        else:
            fragments = await self.store.get_all_fragments()
        return summarize_locally(fragments, SummaryStyle(style))

    @with_request_id
    async def generate_insights(
        self,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[Insight]:
        """Local reading insights over fragments created in [since, until]."""
        fragments = [
            f for f in await self.store.get_all_fragments()
            if (since is None or ensure_aware(f.created_at) >= ensure_aware(since))
            and (until is None or ensure_aware(f.created_at) <= ensure_aware(until))
        ]
        return generate_local_insights(fragments)

    async def extract_concepts(
        self,
        text: str,
        existing: Sequence[Concept] = ()
    ) -> List[Concept]:
        """Extract concepts from text with the configured provider or locally."""
        return await self.concept_extractor.extract(text, existing)
