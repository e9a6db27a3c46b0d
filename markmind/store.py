"""
Fragment stores - the single source of truth for fragments.

The linking engine reads fragments through this interface and writes back
only the related-fragment ids, always through save_fragment().

Two implementations:
- InMemoryFragmentStore: dict-backed, for tests and embedding
- SQLFragmentStore: SQLite via SQLAlchemy's async engine
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, delete

from .database import DatabaseManager
from .models import FragmentRecord
from .types import Concept, Fragment, HighlightColor, ensure_aware

logger = logging.getLogger(__name__)


class FragmentStore(ABC):
    """Async storage contract consumed by the engine."""

    @abstractmethod
    async def get_all_fragments(self) -> List[Fragment]:
        """All fragments, newest first."""

    @abstractmethod
    async def get_fragment(self, fragment_id: str) -> Optional[Fragment]:
        """One fragment, or None when the id is unknown."""

    @abstractmethod
    async def save_fragment(self, fragment: Fragment) -> str:
        """Insert or replace a fragment; returns its id."""

    @abstractmethod
    async def delete_fragment(self, fragment_id: str) -> bool:
        """Remove a fragment; False when the id was unknown."""

    async def save_fragments(self, fragments: Iterable[Fragment]) -> int:
        count = 0
        for fragment in fragments:
            await self.save_fragment(fragment)
            count += 1
        return count


def _newest_first(fragments: Iterable[Fragment]) -> List[Fragment]:
    return sorted(fragments, key=lambda f: f.created_at, reverse=True)


class InMemoryFragmentStore(FragmentStore):
    """
    Dict-backed store.

    Hands out copies so callers only change stored state through save_fragment,
    the same as with a persistent store.
    """

    def __init__(self, fragments: Optional[Iterable[Fragment]] = None):
        self._fragments: Dict[str, Fragment] = {}
        for fragment in fragments or []:
            self._fragments[fragment.id] = copy.deepcopy(fragment)

    async def get_all_fragments(self) -> List[Fragment]:
        return _newest_first(copy.deepcopy(f) for f in self._fragments.values())

    async def get_fragment(self, fragment_id: str) -> Optional[Fragment]:
        fragment = self._fragments.get(fragment_id)
        return copy.deepcopy(fragment) if fragment is not None else None

    async def save_fragment(self, fragment: Fragment) -> str:
        self._fragments[fragment.id] = copy.deepcopy(fragment)
        return fragment.id

    async def delete_fragment(self, fragment_id: str) -> bool:
        return self._fragments.pop(fragment_id, None) is not None

    def __len__(self) -> int:
        return len(self._fragments)


def _to_fragment(record: FragmentRecord) -> Fragment:
    return Fragment(
        id=record.id,
        text=record.text,
        note=record.note or "",
        url=record.url or "",
        page_title=record.page_title or "",
        color=HighlightColor(record.color or "yellow"),
        collections=list(record.collections or []),
        tags=list(record.tags or []),
        topics=list(record.topics or []),
        concepts=[Concept.from_dict(c) for c in record.concepts or []],
        created_at=ensure_aware(record.created_at),
        updated_at=ensure_aware(record.updated_at),
        reference_count=record.reference_count or 0,
        related_ids=list(record.related_ids or []),
    )


def _to_record(fragment: Fragment) -> FragmentRecord:
    return FragmentRecord(
        id=fragment.id,
        text=fragment.text,
        note=fragment.note,
        url=fragment.url,
        page_title=fragment.page_title,
        color=fragment.color.value,
        collections=list(fragment.collections),
        tags=list(fragment.tags),
        topics=list(fragment.topics),
        concepts=[c.to_dict() for c in fragment.concepts],
        reference_count=fragment.reference_count,
        related_ids=list(fragment.related_ids),
        created_at=fragment.created_at,
        updated_at=fragment.updated_at,
    )


class SQLFragmentStore(FragmentStore):
    """
    SQLite-backed store.

    Usage:
        db = DatabaseManager(settings.get_storage_path())
        store = SQLFragmentStore(db)
        await store.save_fragment(fragment)
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def get_all_fragments(self) -> List[Fragment]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(FragmentRecord).order_by(FragmentRecord.created_at.desc())
            )
            return [_to_fragment(r) for r in result.scalars().all()]

    async def get_fragment(self, fragment_id: str) -> Optional[Fragment]:
        async with self.db.get_session() as session:
            record = await session.get(FragmentRecord, fragment_id)
            return _to_fragment(record) if record is not None else None

    async def save_fragment(self, fragment: Fragment) -> str:
        async with self.db.get_session() as session:
            await session.merge(_to_record(fragment))
        logger.debug(f"Saved fragment {fragment.id}")
        return fragment.id

    async def delete_fragment(self, fragment_id: str) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(FragmentRecord).where(FragmentRecord.id == fragment_id)
            )
            return result.rowcount > 0
