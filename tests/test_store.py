"""Tests for the fragment stores and data model conversion."""

import shutil
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from markmind.database import DatabaseManager
from markmind.engine import LinkEngine
from markmind.store import FragmentStore, InMemoryFragmentStore, SQLFragmentStore
from markmind.types import ConceptCategory, Fragment, HighlightColor


@pytest.fixture
def temp_storage():
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


class TestFragmentModel:
    """Test Fragment construction and serialization."""

    def test_from_camel_case_export(self):
        fragment = Fragment.from_dict({
            "id": "h1",
            "text": "Highlighted text",
            "pageTitle": "Some Page",
            "color": "green",
            "createdAt": 1700000000000,
            "updatedAt": 1700000000000,
            "referenceCount": 2,
            "relatedHighlightIds": ["h2"],
            "concepts": [{"name": "Rust", "category": "technology", "confidence": 0.9,
                          "relatedConcepts": ["Cargo"]}],
        })
        assert fragment.page_title == "Some Page"
        assert fragment.color == HighlightColor.GREEN
        assert fragment.created_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert fragment.reference_count == 2
        assert fragment.related_ids == ["h2"]
        assert fragment.concepts[0].category == ConceptCategory.TECHNOLOGY
        assert fragment.concepts[0].related_concepts == ["Cargo"]

    def test_round_trip_dict(self, fragment_factory):
        fragment = fragment_factory("a", "text", concepts=[("React", "technology")], tags=["t"])
        assert Fragment.from_dict(fragment.to_dict()) == fragment

    def test_unknown_category(self):
        fragment = Fragment.from_dict({"id": "x", "text": "t",
                                       "concepts": [{"name": "Thing", "category": "gadget"}]})
        assert fragment.concepts[0].category == ConceptCategory.UNKNOWN


class TestStoreContract:
    """Test the abstract store interface."""

    def test_delete_is_required(self):
        class ReadOnlyStore(FragmentStore):
            async def get_all_fragments(self):
                return []

            async def get_fragment(self, fragment_id):
                return None

            async def save_fragment(self, fragment):
                return fragment.id

        with pytest.raises(TypeError):
            ReadOnlyStore()


class TestInMemoryStore:
    """Test the dict-backed store."""

    @pytest.mark.asyncio
    async def test_newest_first(self, fragment_factory):
        now = datetime.now(timezone.utc)
        store = InMemoryFragmentStore([
            fragment_factory("old", "x", created_at=now - timedelta(days=2)),
            fragment_factory("new", "y", created_at=now),
        ])
        assert [f.id for f in await store.get_all_fragments()] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_returns_copies(self, fragment_factory):
        store = InMemoryFragmentStore([fragment_factory("a", "x")])
        fragment = await store.get_fragment("a")
        fragment.related_ids.append("b")
        assert (await store.get_fragment("a")).related_ids == []

    @pytest.mark.asyncio
    async def test_missing_and_delete(self, fragment_factory):
        store = InMemoryFragmentStore([fragment_factory("a", "x")])
        assert await store.get_fragment("zzz") is None
        assert await store.delete_fragment("a") is True
        assert await store.delete_fragment("a") is False
        assert len(store) == 0


class TestSQLStore:
    """Test the SQLite-backed store."""

    @pytest.mark.asyncio
    async def test_round_trip(self, temp_storage, fragment_factory):
        db = DatabaseManager(temp_storage)
        store = SQLFragmentStore(db)
        try:
            fragment = fragment_factory(
                "a", "Spaced repetition works",
                concepts=[("Spaced Repetition", "method")],
                note="try anki", url="https://example.com/a", page_title="Learning",
                color=HighlightColor.PINK, collections=["c1"], tags=["memory"],
                topics=["learning"], reference_count=3,
            )
            await store.save_fragment(fragment)

            loaded = await store.get_fragment("a")
            assert loaded is not None
            assert loaded.text == fragment.text
            assert loaded.note == "try anki"
            assert loaded.color == HighlightColor.PINK
            assert loaded.collections == ["c1"]
            assert loaded.tags == ["memory"]
            assert loaded.concepts[0].name == "Spaced Repetition"
            assert loaded.concepts[0].category == ConceptCategory.METHOD
            assert loaded.reference_count == 3
            assert loaded.created_at.tzinfo is not None
            assert abs(loaded.created_at - fragment.created_at) < timedelta(seconds=1)
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_update_related_ids(self, temp_storage, fragment_factory):
        db = DatabaseManager(temp_storage)
        store = SQLFragmentStore(db)
        try:
            await store.save_fragment(fragment_factory("a", "x"))
            fragment = await store.get_fragment("a")
            fragment.related_ids = ["b", "c"]
            await store.save_fragment(fragment)

            assert (await store.get_fragment("a")).related_ids == ["b", "c"]
            assert len(await store.get_all_fragments()) == 1
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_ordering_and_delete(self, temp_storage, fragment_factory):
        db = DatabaseManager(temp_storage)
        store = SQLFragmentStore(db)
        now = datetime.now(timezone.utc)
        try:
            await store.save_fragments([
                fragment_factory("old", "x", created_at=now - timedelta(days=1)),
                fragment_factory("new", "y", created_at=now),
            ])
            assert [f.id for f in await store.get_all_fragments()] == ["new", "old"]
            assert await store.get_fragment("missing") is None
            assert await store.delete_fragment("old") is True
            assert await store.delete_fragment("old") is False
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_engine_over_sql_store(self, temp_storage, fragment_factory, test_settings):
        db = DatabaseManager(temp_storage)
        store = SQLFragmentStore(db)
        try:
            await store.save_fragments([
                fragment_factory("f1", "Neural networks learn hierarchical representations from labelled examples"),
                fragment_factory("f2", "Neural networks learn hierarchical representations from labelled examples quickly"),
                fragment_factory("f3", "Sourdough bakery opened downtown serving croissants every single morning"),
            ])
            engine = LinkEngine(store, config=test_settings)
            summary = await engine.batch_build_links()

            assert summary.linked == 2
            assert (await store.get_fragment("f1")).related_ids == ["f2"]
            assert (await store.get_fragment("f3")).related_ids == []
        finally:
            await db.close()
