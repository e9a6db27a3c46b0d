"""Tests for batch link building."""

import asyncio

import pytest

from markmind.engine import LinkEngine
from markmind.store import InMemoryFragmentStore

BATCH_TEXTS = {
    "f1": "Neural networks learn hierarchical representations from labelled examples",
    "f2": "Neural networks learn hierarchical representations from labelled examples quickly",
    "f3": "Sourdough bakery opened downtown serving croissants every single morning",
    "f4": "Mountain hiking trails close during winter storms because avalanche danger rises",
    "f5": "Jazz musicians improvised melodies late into the quiet summer evening",
}


class FlakyStore(InMemoryFragmentStore):
    """Store whose save fails for chosen ids."""

    def __init__(self, fragments, failing_ids):
        super().__init__(fragments)
        self.failing_ids = set(failing_ids)

    async def save_fragment(self, fragment):
        if fragment.id in self.failing_ids:
            raise OSError(f"disk full while saving {fragment.id}")
        return await super().save_fragment(fragment)


@pytest.fixture
def batch_fragments(fragment_factory):
    return [fragment_factory(fid, text) for fid, text in BATCH_TEXTS.items()]


async def related_map(store):
    return {f.id: f.related_ids for f in await store.get_all_fragments()}


class TestBatchBuildLinks:
    """Test linking all unlinked fragments."""

    @pytest.mark.asyncio
    async def test_links_similar_pair_only(self, batch_fragments, test_settings):
        store = InMemoryFragmentStore(batch_fragments)
        engine = LinkEngine(store, config=test_settings)

        summary = await engine.batch_build_links(batch_size=2)

        related = await related_map(store)
        assert related["f1"] == ["f2"]
        assert related["f2"] == ["f1"]
        assert related["f3"] == []
        assert related["f4"] == []
        assert related["f5"] == []

        assert summary.total == 5
        assert summary.processed == 5
        assert summary.linked == 2
        assert summary.failed == 0
        assert summary.cancelled is False

    @pytest.mark.asyncio
    async def test_progress_reported_per_batch(self, batch_fragments, test_settings):
        engine = LinkEngine(InMemoryFragmentStore(batch_fragments), config=test_settings)
        progress = []

        await engine.batch_build_links(batch_size=2, on_progress=lambda p, t: progress.append((p, t)))

        assert progress == [(2, 5), (4, 5), (5, 5)]

    @pytest.mark.asyncio
    async def test_async_progress_callback(self, batch_fragments, test_settings):
        engine = LinkEngine(InMemoryFragmentStore(batch_fragments), config=test_settings)
        progress = []

        async def report(processed, total):
            progress.append(processed)

        await engine.batch_build_links(batch_size=5, on_progress=report)
        assert progress == [5]

    @pytest.mark.asyncio
    async def test_batch_size_bounds_concurrency(self, batch_fragments, test_settings):
        engine = LinkEngine(InMemoryFragmentStore(batch_fragments), config=test_settings)
        active = 0
        peak = 0
        original = engine.find_related_fragments

        async def tracked(fragment_id, options=None):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            try:
                return await original(fragment_id, options)
            finally:
                active -= 1

        engine.find_related_fragments = tracked
        await engine.batch_build_links(batch_size=2)
        assert peak == 2

    @pytest.mark.asyncio
    async def test_cancellation_between_batches(self, batch_fragments, test_settings):
        store = InMemoryFragmentStore(batch_fragments)
        engine = LinkEngine(store, config=test_settings)
        cancel = asyncio.Event()

        summary = await engine.batch_build_links(
            batch_size=2,
            on_progress=lambda p, t: cancel.set(),
            cancel_event=cancel,
        )

        assert summary.cancelled is True
        assert summary.processed == 2
        # Only the first batch (f1, f2) was linked
        related = await related_map(store)
        assert related["f1"] == ["f2"]
        assert related["f2"] == ["f1"]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, batch_fragments, test_settings):
        engine = LinkEngine(InMemoryFragmentStore(batch_fragments), config=test_settings)
        cancel = asyncio.Event()
        cancel.set()

        summary = await engine.batch_build_links(cancel_event=cancel)
        assert summary.cancelled is True
        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_rerun_skips_linked_fragments(self, batch_fragments, test_settings):
        store = InMemoryFragmentStore(batch_fragments)
        engine = LinkEngine(store, config=test_settings)

        await engine.batch_build_links(batch_size=2)
        before = await related_map(store)
        second = await engine.batch_build_links(batch_size=2)

        # Only the fragments that found nothing are eligible again
        assert second.total == 3
        assert second.linked == 0
        assert await related_map(store) == before

    @pytest.mark.asyncio
    async def test_short_fragments_not_eligible(self, fragment_factory, test_settings):
        fragments = [
            fragment_factory("short", "Too short to link"),
            fragment_factory("long", BATCH_TEXTS["f1"]),
        ]
        engine = LinkEngine(InMemoryFragmentStore(fragments), config=test_settings)
        unlinked = await engine.find_unlinked_fragments()
        assert [f.id for f in unlinked] == ["long"]

    @pytest.mark.asyncio
    async def test_failures_logged_and_skipped(self, batch_fragments, test_settings, caplog):
        store = FlakyStore(batch_fragments, failing_ids={"f3"})
        engine = LinkEngine(store, config=test_settings)

        summary = await engine.batch_build_links(batch_size=2)

        assert summary.failed == 1
        assert summary.processed == 5
        assert summary.linked == 2
        assert "Failed to build links for fragment f3" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_size", [0, -1])
    async def test_invalid_batch_size(self, batch_fragments, test_settings, batch_size):
        engine = LinkEngine(InMemoryFragmentStore(batch_fragments), config=test_settings)
        with pytest.raises(ValueError):
            await engine.batch_build_links(batch_size=batch_size)

    @pytest.mark.asyncio
    async def test_empty_store(self, test_settings):
        engine = LinkEngine(InMemoryFragmentStore(), config=test_settings)
        summary = await engine.batch_build_links()
        assert summary.to_dict() == {
            "total": 0, "processed": 0, "linked": 0, "failed": 0, "cancelled": False,
        }

    @pytest.mark.asyncio
    async def test_edits_during_run_are_kept(self, batch_fragments, test_settings):
        store = InMemoryFragmentStore(batch_fragments)
        engine = LinkEngine(store, config=test_settings)

        async def edit_last(processed, total):
            if processed == 2:
                fragment = await store.get_fragment("f5")
                fragment.note = "user edit"
                fragment.tags = ["kept"]
                await store.save_fragment(fragment)

        await engine.batch_build_links(batch_size=2, on_progress=edit_last)

        fragment = await store.get_fragment("f5")
        assert fragment.note == "user edit"
        assert fragment.tags == ["kept"]

    @pytest.mark.asyncio
    async def test_fragment_removed_while_linking_stays_removed(self, batch_fragments, test_settings):
        store = InMemoryFragmentStore(batch_fragments)
        engine = LinkEngine(store, config=test_settings)
        original = engine.find_related_fragments

        async def remove_after_lookup(fragment_id, options=None):
            related = await original(fragment_id, options)
            if fragment_id == "f1":
                await store.delete_fragment("f1")
            return related

        engine.find_related_fragments = remove_after_lookup
        summary = await engine.batch_build_links(batch_size=5)

        assert await store.get_fragment("f1") is None
        assert summary.failed == 0
        assert summary.processed == 5
