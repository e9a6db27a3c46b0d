"""
Core data types for MarkMind.

Fragments are the user-captured highlights the engine links and searches.
Concepts are named ideas extracted from a fragment's text.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ConceptCategory(str, Enum):
    """Closed set of concept categories."""
    PERSON = "person"
    ORGANIZATION = "organization"
    TECHNOLOGY = "technology"
    THEORY = "theory"
    METHOD = "method"
    LOCATION = "location"
    EVENT = "event"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ConceptCategory":
        """Map a raw value onto a category; anything unrecognised is UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class HighlightColor(str, Enum):
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    PINK = "pink"


class MatchType(str, Enum):
    """Which strategy tier produced a related-fragment result."""
    AI_SEMANTIC = "ai_semantic"
    CONCEPT_BASED = "concept_based"
    TEXT_SIMILARITY = "text_similarity"


class SummaryStyle(str, Enum):
    CONCISE = "concise"
    DETAILED = "detailed"
    BULLET = "bullet"
    NARRATIVE = "narrative"
    QUESTION = "question"


class InsightType(str, Enum):
    """Kinds of observations made about a reading history."""
    PATTERN_DETECTED = "pattern_detected"
    KNOWLEDGE_GAP = "knowledge_gap"
    TOPIC_SHIFT = "topic_shift"
    CONCEPT_CONNECTION = "concept_connection"
    DEEP_DIVE = "deep_dive"
    SURFACE_LEVEL = "surface_level"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite hands them back naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_datetime(value: Any) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as exported by the browser extension
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return ensure_aware(datetime.fromisoformat(str(value)))


@dataclass
class Concept:
    """A named idea extracted from fragment text."""
    name: str
    category: ConceptCategory = ConceptCategory.UNKNOWN
    confidence: float = 0.5
    related_concepts: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.category = ConceptCategory.parse(self.category)
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    @property
    def key(self) -> str:
        """Case-insensitive identity used for all similarity comparisons."""
        return self.name.lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category.value,
            "confidence": self.confidence,
            "related_concepts": list(self.related_concepts),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Concept":
        return cls(
            name=data.get("name") or "Unknown",
            category=data.get("category", ConceptCategory.UNKNOWN),
            confidence=data.get("confidence", 0.5),
            related_concepts=list(
                data.get("related_concepts", data.get("relatedConcepts")) or []
            ),
        )


@dataclass
class Fragment:
    """
    A user-captured snippet of text with its metadata.

    The engine only ever writes `related_ids`; everything else is owned by
    whoever captured the fragment.
    """
    id: str
    text: str
    note: str = ""
    url: str = ""
    page_title: str = ""
    color: HighlightColor = HighlightColor.YELLOW
    collections: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    concepts: List[Concept] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    reference_count: int = 0
    related_ids: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not isinstance(self.color, HighlightColor):
            self.color = HighlightColor(str(self.color).lower())
        self.created_at = ensure_aware(self.created_at)
        self.updated_at = ensure_aware(self.updated_at)
        self.concepts = [
            c if isinstance(c, Concept) else Concept.from_dict(c)
            for c in self.concepts
        ]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["color"] = self.color.value
        data["concepts"] = [c.to_dict() for c in self.concepts]
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fragment":
        """Build a fragment from a dict, accepting the extension's camelCase export keys."""
        def pick(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        return cls(
            id=str(data["id"]),
            text=data.get("text", ""),
            note=data.get("note") or "",
            url=data.get("url", ""),
            page_title=pick("page_title", "pageTitle", ""),
            color=data.get("color") or HighlightColor.YELLOW,
            collections=list(data.get("collections") or []),
            tags=list(data.get("tags") or []),
            topics=list(data.get("topics") or []),
            concepts=[Concept.from_dict(c) for c in data.get("concepts") or []],
            created_at=_parse_datetime(pick("created_at", "createdAt")),
            updated_at=_parse_datetime(pick("updated_at", "updatedAt")),
            reference_count=int(pick("reference_count", "referenceCount", 0) or 0),
            related_ids=list(pick("related_ids", "relatedHighlightIds", []) or []),
        )


@dataclass(frozen=True)
class LinkingOptions:
    """Options for find_related_fragments, validated once at construction."""
    max_results: int = 5
    min_similarity: float = 0.3
    use_ai: bool = False
    exclude_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.max_results < 1:
            raise ValueError(f"max_results must be >= 1, got {self.max_results}")
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ValueError(f"min_similarity must be in [0, 1], got {self.min_similarity}")
        # Accept any iterable of ids
        object.__setattr__(self, "exclude_ids", tuple(self.exclude_ids))


@dataclass
class RelatedFragment:
    """One ranked result of find_related_fragments."""
    fragment_id: str
    similarity: float
    match_type: MatchType
    shared_concepts: List[str] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fragment_id": self.fragment_id,
            "similarity": round(self.similarity, 4),
            "match_type": self.match_type.value,
            "shared_concepts": list(self.shared_concepts),
            "reason": self.reason,
        }


@dataclass
class SearchFilters:
    """
    Optional search restrictions.

    Attributes:
        collection_id: Fragment must belong to this collection
        tags: Fragment must carry every listed tag (case-insensitive)
        color: Fragment must have this highlight color
        date_from: Inclusive lower bound on created_at
        date_to: Inclusive upper bound on created_at
        topics: Fragment must share at least one topic (case-insensitive)
    """
    collection_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    color: Optional[HighlightColor] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    topics: List[str] = field(default_factory=list)


@dataclass
class GraphStatistics:
    total_fragments: int
    linked_fragments: int
    linkage_percentage: float
    total_links: int
    avg_links_per_fragment: float
    total_concepts: int
    top_concepts: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Insight:
    """One observation about the user's reading, with supporting fragment ids."""
    type: InsightType
    title: str
    description: str
    related_ids: List[str] = field(default_factory=list)
    confidence: float = 0.5
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data
